"""
user.py — Pydantic schemas for account and session bodies.

Separation of concerns:
  UserCreate   — what the client sends to register
  LoginRequest — what the client sends to log in
  AuthUser     — what the API returns (never includes password_hash)
  UserInDB     — internal representation stored in MongoDB
  Token        — JWT response from register / login / anonymous
"""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, EmailStr, Field


class UserCreate(BaseModel):
    """Payload for POST /v1/auth/register."""
    email: EmailStr
    password: str = Field(min_length=8, max_length=128)
    subscription_tier: Optional[str] = Field(default=None, max_length=32)


class LoginRequest(BaseModel):
    """Payload for POST /v1/auth/login."""
    email: EmailStr
    password: str


class AuthUser(BaseModel):
    """Safe user representation — no secrets."""
    id: str
    email: Optional[str] = None  # guests carry a synthetic <id>@anon.local
    is_anonymous: bool = False
    subscription_tier: str = "free"
    created_at: datetime


class UserInDB(BaseModel):
    """Full document as stored in MongoDB (includes password_hash)."""
    email: EmailStr
    password_hash: str
    subscription_tier: str = "free"
    api_key: str
    is_active: bool = True
    created_at: datetime = Field(default_factory=lambda: datetime.now(tz=timezone.utc))


class Token(BaseModel):
    """Response body for successful register / login / anonymous session."""
    access_token: str
    token_type: str = "bearer"
    user: AuthUser
    # Only returned once, at registration
    api_key: Optional[str] = None
