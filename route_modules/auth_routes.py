"""
Auth Routes - registration, email verification, login/logout and password reset.
"""
import os
import logging
from fastapi import APIRouter, Depends, Request, Response

from auth import get_current_user, get_optional_user, start_session, end_session
from models import (
    RegisterRequest, RegisterVerifiedRequest, AdminRegisterRequest, SendVerificationCodeRequest,
    VerifyEmailRequest, LoginRequest, ForgotPasswordRequest, ResetPasswordRequest
)
from service_modules.auth_service import AuthService, get_auth_service
from service_modules.verification_service import VerificationService, get_verification_service
from service_modules.activity_log_service import ActivityLogService, get_activity_log_service
from service_modules.serializers import user_to_dict
from service_modules import password_reset_service
from storage import DatabaseStorage, get_storage

logger = logging.getLogger("gym_app")
router = APIRouter()


# --- REGISTRATION ---

@router.post("/api/register")
def register(
    data: RegisterRequest,
    service: AuthService = Depends(get_auth_service)
):
    """Register a member. The account stays unverified until the emailed code is entered."""
    user = service.register_member(data)
    return {
        "status": "success",
        "message": "Registration successful. Check your email for the verification code.",
        "user": user_to_dict(user),
    }


@router.post("/api/verify-email")
def verify_email(
    data: VerifyEmailRequest,
    verification: VerificationService = Depends(get_verification_service)
):
    """Verify an existing account with its 6-digit code."""
    user = verification.verify_account_code(data.email, data.code)
    return {"status": "success", "message": "Email verified", "user": user_to_dict(user)}


@router.post("/api/resend-verification-code")
def resend_verification_code(
    data: SendVerificationCodeRequest,
    verification: VerificationService = Depends(get_verification_service)
):
    return verification.resend_account_code(data.email)


@router.post("/api/send-verification-code")
def send_verification_code(
    data: SendVerificationCodeRequest,
    verification: VerificationService = Depends(get_verification_service)
):
    """Email a code before the account exists (verify-then-register flow)."""
    verification.issue_pending_code(data.email)
    return {"status": "success", "message": "Verification code sent"}


@router.post("/api/register-verified")
def register_verified(
    data: RegisterVerifiedRequest,
    service: AuthService = Depends(get_auth_service)
):
    user = service.register_verified_member(data)
    return {"status": "success", "message": "Registration successful", "user": user_to_dict(user)}


@router.post("/api/register-admin")
def register_admin(
    data: AdminRegisterRequest,
    service: AuthService = Depends(get_auth_service)
):
    user = service.register_admin(data)
    return {"status": "success", "message": "Admin account created", "user": user_to_dict(user)}


# --- SESSION ---

@router.post("/api/login")
def login(
    data: LoginRequest,
    request: Request,
    response: Response,
    service: AuthService = Depends(get_auth_service),
    activity_log: ActivityLogService = Depends(get_activity_log_service),
    storage: DatabaseStorage = Depends(get_storage)
):
    """Log in with username, email or phone and set the session cookie."""
    user = service.authenticate_user(data.identifier, data.password)
    session = start_session(request, response, user, data.remember_me, storage)
    activity_log.log_login(user.id, request=request)
    logger.info(f"User {user.username} logged in (role: {user.role})")
    return {
        "status": "success",
        "user": user_to_dict(user),
        "expires_at": session.expires_at,
    }


@router.post("/api/logout")
def logout(
    request: Request,
    response: Response,
    user = Depends(get_optional_user),
    activity_log: ActivityLogService = Depends(get_activity_log_service),
    storage: DatabaseStorage = Depends(get_storage)
):
    end_session(request, response, storage)
    if user is not None:
        activity_log.log_logout(user.id, request=request)
    return {"status": "success", "message": "Logged out"}


@router.get("/api/auth/user")
def get_auth_user(user = Depends(get_current_user)):
    """Current user, re-read from the database."""
    return user_to_dict(user)


# --- PASSWORD RESET ---

@router.post("/api/forgot-password")
def forgot_password(data: ForgotPasswordRequest, request: Request):
    base_url = os.getenv("APP_URL") or str(request.base_url)
    return password_reset_service.request_password_reset(data.email, base_url)


@router.post("/api/reset-password")
def reset_password(data: ResetPasswordRequest):
    return password_reset_service.reset_password(data.token, data.new_password)
