"""
Password hashing, bearer tokens and the FastAPI dependencies that resolve the
calling user.

Token claims are always generated from the stored user record, and every
request resolves the token's subject back to that record: role and plan in
the claims are informational only.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import bcrypt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from config import settings
from dependencies import get_store
from errors import AuthError, ForbiddenError
from logger import setup_logger
from repository import BookingStore
from schemas import User, UserRole

logger = setup_logger(__name__)

security = HTTPBearer(auto_error=False)


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        logger.warning("Stored password hash is malformed")
        return False


def role_for_email(email: str) -> str:
    if email.lower() in settings.SUPERADMIN_EMAILS:
        return UserRole.SUPERADMIN.value
    return UserRole.PARLOUR_OWNER.value


def create_access_token(user: User, expires_delta: Optional[timedelta] = None) -> str:
    """
    Issue a bearer token for a stored user.

    Args:
        user: The user as currently stored
        expires_delta: Token lifetime (default ACCESS_TOKEN_EXPIRE_MINUTES)
    """
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    claims = {
        "sub": user.id,
        "email": user.email,
        "role": user.role,
        "plan": user.plan,
        "exp": expire,
    }
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> Dict[str, Any]:
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as e:
        logger.warning(f"JWT verification failed: {e}")
        raise AuthError("Invalid or expired token") from e


def token_response(user: User) -> Dict[str, Any]:
    return {
        "access_token": create_access_token(user),
        "token_type": "bearer",
        "user": user.model_dump(mode="json"),
    }


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    store: BookingStore = Depends(get_store),
) -> User:
    if credentials is None or not credentials.credentials:
        raise AuthError("Not authenticated")

    claims = decode_access_token(credentials.credentials)
    user_id = claims.get("sub")
    if not user_id:
        raise AuthError("Invalid token claims")

    user = store.get_user(user_id)
    if not user:
        raise AuthError("User no longer exists")
    return user


def require_superadmin(user: User = Depends(get_current_user)) -> User:
    if user.role != UserRole.SUPERADMIN.value:
        raise ForbiddenError("Superadmin access required")
    return user
