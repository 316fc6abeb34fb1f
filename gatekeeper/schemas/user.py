"""User and session schemas"""

from pydantic import BaseModel, Field, field_validator
from typing import Optional
from datetime import datetime
from enum import Enum


class UserRole(str, Enum):
    """User role enumeration, highest rank first"""
    SUPER_ADMIN = "SUPER_ADMIN"
    ADMIN = "ADMIN"
    SUPERVISOR = "SUPERVISOR"
    USER = "USER"


class UserLogin(BaseModel):
    """User login schema"""
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=3)

    @field_validator('email')
    @classmethod
    def normalize_email(cls, v):
        """Emails are matched case-insensitively"""
        return v.strip().lower()


class UserResponse(BaseModel):
    """User response schema"""
    id: str
    email: str
    username: str
    role: UserRole
    city_id: Optional[str] = None
    is_active: bool
    created_at: Optional[datetime] = None
    last_login: Optional[datetime] = None

    class Config:
        from_attributes = True


class TokenResponse(BaseModel):
    """JWT token pair response"""
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserResponse


class RefreshTokenRequest(BaseModel):
    """Body of the refresh endpoint"""
    refresh_token: str = Field(..., min_length=1)
