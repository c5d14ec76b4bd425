"""
Password Reset Service - handles token generation, validation and password reset.
"""
import hashlib
import secrets
import logging
from datetime import datetime, timedelta

from auth import get_password_hash
from errors import ValidationError
from storage import get_storage
from .email_service import get_email_service

logger = logging.getLogger("gym_app")

TOKEN_EXPIRY_MINUTES = 15
GENERIC_MESSAGE = "If an account exists with that email, we've sent a reset link."


def _hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def request_password_reset(email: str, base_url: str) -> dict:
    """Create a password reset token and send email. Always returns success to prevent email enumeration."""
    storage = get_storage()
    user = storage.get_user_by_email(email)
    if not user:
        logger.info("Password reset requested for unknown email")
        return {"status": "success", "message": GENERIC_MESSAGE}

    raw_token = secrets.token_urlsafe(32)
    storage.create_password_reset_token(
        email=user.email,
        token_hash=_hash_token(raw_token),
        expires_at=(datetime.utcnow() + timedelta(minutes=TOKEN_EXPIRY_MINUTES)).isoformat()
    )

    reset_url = f"{base_url.rstrip('/')}/reset-password?token={raw_token}"
    email_service = get_email_service()
    if email_service.is_configured():
        email_service.send_password_reset_email(user.email, user.first_name or user.username, reset_url)
    else:
        logger.warning("SMTP not configured - password reset email not sent")

    return {"status": "success", "message": GENERIC_MESSAGE}


def reset_password(raw_token: str, new_password: str) -> dict:
    """Validate token and set new password. The token can be used once."""
    storage = get_storage()
    token_hash = _hash_token(raw_token)
    record = storage.get_password_reset_token(token_hash)
    if not record or not storage.mark_password_reset_token_used(token_hash):
        raise ValidationError("Invalid or expired reset link. Please request a new one.")

    user = storage.get_user_by_email(record.email)
    if not user:
        raise ValidationError("Account not found.")

    storage.update_user(user.id, hashed_password=get_password_hash(new_password))
    # old sessions die with the old password
    storage.delete_user_sessions(user.id)
    logger.info(f"Password reset for user {user.id}")
    return {"status": "success", "message": "Password updated. You can now log in."}
