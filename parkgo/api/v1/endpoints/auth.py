"""
Authentication endpoints
"""

from datetime import timedelta
from typing import Any
from fastapi import APIRouter, Depends, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
import logging

from parkgo.config import settings
from parkgo.core.database import get_session, db_manager
from parkgo.core.exceptions import AuthenticationError, ValidationError
from parkgo.core.security import (
    create_access_token,
    hash_password,
    verify_password,
    get_current_user,
)
from parkgo.models.user import User, UserRole
from parkgo.schemas.user import UserCreate, UserResponse, TokenResponse

logger = logging.getLogger(__name__)

router = APIRouter()


def _token_for(user: User) -> TokenResponse:
    expires = timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES)
    access_token = create_access_token(
        data={"sub": str(user.id), "role": UserRole(user.role).value},
        expires_delta=expires
    )
    return TokenResponse(access_token=access_token, expires_in=int(expires.total_seconds()))


@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def register(
    user_data: UserCreate,
    db: AsyncSession = Depends(get_session)
) -> Any:
    """
    Register a new user
    """
    async with db_manager.transaction(db):
        result = await db.execute(select(User).where(User.email == user_data.email))
        if result.scalar_one_or_none():
            raise ValidationError("Email already registered", field="email")

        user = User(
            email=user_data.email,
            full_name=user_data.full_name,
            phone=user_data.phone,
            password_hash=hash_password(user_data.password),
            role=UserRole(user_data.role),
            is_active=True,
            balance=0
        )
        db.add(user)
        await db.flush()

    logger.info("User registered", extra={"user_id": str(user.id)})
    return user


@router.post("/login", response_model=TokenResponse)
async def login(
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: AsyncSession = Depends(get_session)
) -> Any:
    """
    OAuth2 compatible token login
    """
    async with db_manager.transaction(db):
        result = await db.execute(select(User).where(User.email == form_data.username))
        user = result.scalar_one_or_none()

    if not user or not verify_password(form_data.password, user.password_hash):
        raise AuthenticationError("Incorrect email or password")
    if not user.is_active:
        raise AuthenticationError("User account is inactive")

    return _token_for(user)


@router.get("/me", response_model=UserResponse)
async def me(current_user: User = Depends(get_current_user)) -> Any:
    """
    Current user profile, including balance
    """
    return current_user
