"""
Security utilities for authentication and authorization
"""

from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
from uuid import UUID
import logging

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from parkgo.config import settings
from parkgo.core.database import get_session, db_manager
from parkgo.core.exceptions import AuthenticationError, AuthorizationError

logger = logging.getLogger(__name__)

# PBKDF2 avoids bcrypt backend/version issues and the 72-byte bcrypt input limit
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

# OAuth2 scheme
oauth2_scheme = OAuth2PasswordBearer(tokenUrl=f"{settings.API_PREFIX}/auth/login")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a JWT access token for an API caller
    """
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode = data.copy()
    to_encode.update({
        "exp": datetime.now(timezone.utc) + expires_delta,
        "type": "access",
    })
    return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> Dict[str, Any]:
    """
    Decode and verify a JWT access token
    """
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM]
        )
    except JWTError as e:
        logger.info(f"JWT decode error: {e}")
        raise AuthenticationError("Could not validate credentials")

    if payload.get("type") != "access":
        raise AuthenticationError("Invalid token type. Expected access")
    return payload


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_session)
):
    """
    Get current user from JWT token
    """
    from parkgo.models.user import User

    payload = decode_token(token)
    subject = payload.get("sub")
    if subject is None:
        raise AuthenticationError("Could not validate credentials")

    try:
        user_id = UUID(subject)
    except ValueError:
        raise AuthenticationError("Could not validate credentials")

    async with db_manager.transaction(db):
        result = await db.execute(select(User).where(User.id == user_id))
        user = result.scalar_one_or_none()

    if not user or not user.is_active:
        raise AuthenticationError("User not found")
    return user


async def require_admin(current_user=Depends(get_current_user)):
    """
    Require admin role for endpoint
    """
    from parkgo.models.user import UserRole

    if current_user.role != UserRole.ADMIN:
        raise AuthorizationError("Admin access required")
    return current_user
