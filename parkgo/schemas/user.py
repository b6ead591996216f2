"""
User and authentication schemas
"""

from pydantic import EmailStr, Field, field_validator
from typing import Optional
import re

from parkgo.schemas.base import BaseSchema, IDSchema, TimestampSchema
from parkgo.models.user import UserRole


class UserBase(BaseSchema):
    """Base user schema"""
    email: EmailStr
    full_name: str = Field(..., min_length=1, max_length=255)
    phone: Optional[str] = Field(None, max_length=20)


class UserCreate(UserBase):
    """User registration schema"""
    password: str = Field(..., min_length=8, max_length=100)
    role: UserRole = UserRole.USER

    @field_validator('role')
    def validate_role(cls, v):
        if v == UserRole.ADMIN:
            raise ValueError('Administrators cannot self-register')
        return v

    @field_validator('phone')
    def validate_phone(cls, v):
        if v and not re.match(r'^\+?[1-9]\d{1,14}$', v):
            raise ValueError('Invalid phone number format')
        return v


class UserResponse(UserBase, IDSchema, TimestampSchema):
    """User response schema"""
    role: UserRole
    balance: int
    is_active: bool


class TokenResponse(BaseSchema):
    """Bearer token response"""
    access_token: str
    token_type: str = "bearer"
    expires_in: int


class BalanceResponse(BaseSchema):
    balance: int
