"""
Verification Service - 6-digit email codes.

Two stores are used: codes for existing (unverified) accounts live on the user
row, codes issued before the account exists live in pending_verifications.
Both expire after CODE_EXPIRY_MINUTES.
"""
import secrets
from .base import (
    logging, datetime, timedelta, ValidationError, ConflictError, NotFoundError,
    DatabaseStorage, get_storage, now_iso
)
from .email_service import EmailService, get_email_service

logger = logging.getLogger("gym_app")

CODE_EXPIRY_MINUTES = 15
MAX_ATTEMPTS = 5


def generate_code() -> str:
    return f"{secrets.randbelow(10**6):06d}"


class VerificationService:
    def __init__(self, storage: DatabaseStorage, email: EmailService):
        self.storage = storage
        self.email = email

    def _expiry(self) -> str:
        return (datetime.utcnow() + timedelta(minutes=CODE_EXPIRY_MINUTES)).isoformat()

    # --- Codes for existing accounts ---

    def issue_account_code(self, user) -> str:
        code = generate_code()
        self.storage.update_user(
            user.id, verification_code=code, verification_code_expiry=self._expiry(), verification_attempts=0
        )
        if not self.email.send_verification_code_email(user.email, user.first_name or user.username, code):
            logger.warning(f"Verification code for {user.email} could not be emailed")
        return code

    def verify_account_code(self, email: str, code: str):
        user = self.storage.get_user_by_email(email)
        if not user:
            raise NotFoundError("Account not found")
        if user.email_verified:
            return user
        if not user.verification_code:
            raise ValidationError("Verification code expired or not requested")
        if user.verification_code != code:
            attempts = self.storage.increment_verification_attempts(user.id)
            if attempts >= MAX_ATTEMPTS:
                self.storage.update_user(user.id, verification_code=None, verification_code_expiry=None)
                raise ValidationError("Too many attempts. Please request a new code.")
            raise ValidationError("Invalid verification code")
        if not user.verification_code_expiry or user.verification_code_expiry <= now_iso():
            raise ValidationError("Verification code expired. Please request a new one.")

        user = self.storage.update_user(
            user.id, email_verified=True, verification_code=None, verification_code_expiry=None,
            verification_attempts=0
        )
        logger.info(f"Email verified for user {user.id}")
        return user

    def resend_account_code(self, email: str) -> dict:
        user = self.storage.get_user_by_email(email)
        if not user:
            raise NotFoundError("Account not found")
        if user.email_verified:
            raise ConflictError("Email already verified")
        self.issue_account_code(user)
        return {"status": "success", "message": "Verification code sent"}

    # --- Codes issued before the account exists ---

    def issue_pending_code(self, email: str) -> str:
        if self.storage.get_user_by_email(email):
            raise ConflictError("Email already registered")
        code = generate_code()
        self.storage.upsert_pending_verification(email, code, self._expiry())
        if not self.email.send_verification_code_email(email, email.split("@")[0], code):
            logger.warning(f"Pending verification code for {email} could not be emailed")
        return code

    def consume_pending_code(self, email: str, code: str):
        """Check the code; on success the pending entry is removed."""
        pending = self.storage.get_pending_verification(email)
        if not pending or pending.expires_at <= now_iso():
            if pending:
                self.storage.delete_pending_verification(email)
            raise ValidationError("Verification code expired or not requested")

        if pending.code != code:
            attempts = self.storage.increment_pending_attempts(email)
            if attempts >= MAX_ATTEMPTS:
                self.storage.delete_pending_verification(email)
                raise ValidationError("Too many attempts. Please request a new code.")
            raise ValidationError("Invalid verification code")

        self.storage.delete_pending_verification(email)

    def sweep_expired(self) -> int:
        return self.storage.delete_expired_pending_verifications(now_iso())


# Singleton instance for easy import
verification_service = VerificationService(get_storage(), get_email_service())

def get_verification_service() -> VerificationService:
    """Dependency injection helper."""
    return verification_service
