from datetime import datetime, timedelta
from typing import Optional
from jose import JWTError, jwt

from fastapi import Depends, Request, Response

from errors import AuthenticationError, PermissionDeniedError
from models_orm import UserORM, SessionORM
from storage import DatabaseStorage, get_storage

import os
import bcrypt
import logging

logger = logging.getLogger("gym_app")

SECRET_KEY = os.getenv("SECRET_KEY", "dev_secret_key_123")
ALGORITHM = "HS256"
SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "gym_session")
SECURE_COOKIES = os.getenv("APP_ENV", "development") == "production"

REMEMBER_ME_DAYS = 30
SESSION_HOURS = 24


def verify_password(plain_password, hashed_password):
    # bcrypt requires bytes for both
    if not hashed_password:
        return False
    pwd_bytes = plain_password.encode('utf-8')
    hashed_bytes = hashed_password.encode('utf-8')
    return bcrypt.checkpw(pwd_bytes, hashed_bytes)

def get_password_hash(password):
    # bcrypt requires bytes, returns bytes. We store as string.
    pwd_bytes = password.encode('utf-8')
    salt = bcrypt.gensalt()
    hashed = bcrypt.hashpw(pwd_bytes, salt)
    return hashed.decode('utf-8')

def create_session_token(session_id: str, user_id: str, expires_at: datetime) -> str:
    """Signed cookie value. Only points at the server-side session row."""
    to_encode = {"sid": session_id, "sub": user_id, "exp": expires_at}
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def _client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def start_session(request: Request, response: Response, user: UserORM, remember_me: bool,
                  storage: DatabaseStorage) -> SessionORM:
    """Persist a session row and set the HTTP-only cookie that references it."""
    lifetime = timedelta(days=REMEMBER_ME_DAYS) if remember_me else timedelta(hours=SESSION_HOURS)
    expires_at = datetime.utcnow() + lifetime
    session = storage.create_session(
        user_id=user.id,
        expires_at=expires_at.isoformat(),
        ip_address=_client_ip(request),
        user_agent=request.headers.get("User-Agent")
    )
    token = create_session_token(session.id, user.id, expires_at)
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=token,
        httponly=True,
        secure=SECURE_COOKIES,
        samesite="lax",
        max_age=int(lifetime.total_seconds()) if remember_me else None,
        path="/"
    )
    return session


def _read_token(request: Request) -> Optional[str]:
    # Get token from Authorization header or cookie
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header.replace("Bearer ", "", 1)
    return request.cookies.get(SESSION_COOKIE_NAME)


def _decode(token: str) -> Optional[dict]:
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError as e:
        logger.debug(f"Session token rejected: {e}")
        return None


def end_session(request: Request, response: Response, storage: DatabaseStorage):
    token = _read_token(request)
    payload = _decode(token) if token else None
    if payload and payload.get("sid"):
        storage.delete_session(payload["sid"])
    response.delete_cookie(SESSION_COOKIE_NAME, path="/")


def resolve_user(request: Request, storage: DatabaseStorage) -> Optional[UserORM]:
    """Session row and user row are both re-read on every call."""
    token = _read_token(request)
    if not token:
        return None
    payload = _decode(token)
    if not payload or not payload.get("sid"):
        return None

    session = storage.get_session(payload["sid"])
    if session is None or session.user_id != payload.get("sub"):
        return None
    if session.expires_at <= datetime.utcnow().isoformat():
        storage.delete_session(session.id)
        return None

    return storage.get_user(session.user_id)


def get_current_user(request: Request, storage: DatabaseStorage = Depends(get_storage)) -> UserORM:
    user = resolve_user(request, storage)
    if user is None:
        raise AuthenticationError("Could not validate credentials")
    return user


def get_optional_user(request: Request, storage: DatabaseStorage = Depends(get_storage)) -> Optional[UserORM]:
    return resolve_user(request, storage)


def require_roles(*roles: str):
    """Dependency factory: the freshly loaded user must hold one of `roles`."""
    def dependency(user: UserORM = Depends(get_current_user)) -> UserORM:
        if user.role not in roles:
            logger.warning(f"User {user.id} ({user.role}) denied, requires {roles}")
            raise PermissionDeniedError("Admin access required")
        return user
    return dependency


require_admin = require_roles("admin", "owner")
