"""
Auth Service - handles user authentication and registration.
"""
import os
from .base import (
    logging, ValidationError, AuthenticationError, PermissionDeniedError,
    DatabaseStorage, get_storage
)
from .verification_service import VerificationService, get_verification_service
from .upload_helper import save_data_url
from auth import verify_password, get_password_hash
from models import RegisterRequest, RegisterVerifiedRequest, AdminRegisterRequest

logger = logging.getLogger("gym_app")

ADMIN_SECRET_KEY = os.getenv("ADMIN_SECRET_KEY", "admin123")
STAFF_ROLES = {"admin", "owner"}


def _allowed_domains():
    raw = os.getenv("ALLOWED_EMAIL_DOMAINS", "")
    return {d.strip().lower() for d in raw.split(",") if d.strip()}


class AuthService:
    """Service for managing authentication and user registration."""

    def __init__(self, storage: DatabaseStorage, verification: VerificationService):
        self.storage = storage
        self.verification = verification

    def _check_domain(self, email: str):
        domains = _allowed_domains()
        if domains and email.split("@")[-1] not in domains:
            raise ValidationError(f"Email domain must be one of: {', '.join(sorted(domains))}")

    def _member_fields(self, data: RegisterRequest) -> dict:
        fields = {
            "username": data.username,
            "email": data.email,
            "first_name": data.first_name,
            "last_name": data.last_name,
            "phone": data.phone,
            "hashed_password": get_password_hash(data.password),
            "role": "member",
            "active": True,
        }
        if data.selfie_image:
            fields["profile_image_url"] = save_data_url(data.selfie_image, "profiles")
        return fields

    def register_member(self, data: RegisterRequest):
        """Create an unverified member and email them a verification code."""
        self._check_domain(data.email)
        user = self.storage.create_user(email_verified=False, **self._member_fields(data))
        self.verification.issue_account_code(user)
        logger.info(f"Registered member {user.username} ({user.id}), awaiting email verification")
        return user

    def register_verified_member(self, data: RegisterVerifiedRequest):
        """Create a member whose email was verified before the account existed."""
        self._check_domain(data.email)
        self.verification.consume_pending_code(data.email, data.verification_code)
        user = self.storage.create_user(email_verified=True, **self._member_fields(data))
        logger.info(f"Registered verified member {user.username} ({user.id})")
        return user

    def register_admin(self, data: AdminRegisterRequest):
        if data.admin_secret_key != ADMIN_SECRET_KEY:
            logger.warning(f"Admin registration rejected for {data.username}: bad secret")
            raise PermissionDeniedError("Invalid admin secret key")
        user = self.storage.create_user(
            username=data.username,
            email=data.email,
            first_name=data.first_name,
            last_name=data.last_name,
            hashed_password=get_password_hash(data.password),
            role="admin",
            active=True,
            email_verified=True
        )
        logger.info(f"Registered admin {user.username} ({user.id})")
        return user

    def authenticate_user(self, identifier: str, password: str):
        """Authenticate by username, email or phone."""
        user = self.storage.get_user_by_identifier(identifier.strip())
        if not user or not verify_password(password, user.hashed_password):
            raise AuthenticationError("Invalid username or password")
        if user.role not in STAFF_ROLES and not user.email_verified:
            raise PermissionDeniedError("Email not verified. Please verify your email first.")
        return user


# Singleton instance
auth_service = AuthService(get_storage(), get_verification_service())

def get_auth_service() -> AuthService:
    return auth_service
