"""
security.py — Password hashing, JWT and identifier utilities.

Uses:
  - bcrypt (direct, no passlib) — avoids passlib 1.7.x / bcrypt 4+ compatibility
    issues on Python 3.13
  - python-jose for JWT creation / verification

Session tokens carry user_id + email and a "type" claim of "user_session";
any other type is rejected on decode. Guest (anonymous) sessions use the
same token shape with an "anon-…" user id.

Configuration is read from gateway.core.config.settings so all secrets
live in environment variables / .env files, never in code.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
from jose import JWTError, jwt

from gateway.core.config import settings

SESSION_TOKEN_TYPE = "user_session"
GUEST_ID_PREFIX = "anon-"


class TokenConfigError(RuntimeError):
    """Raised when a token is requested but ACTION_TOKEN_SECRET is not set."""


@dataclass(frozen=True)
class TokenClaims:
    user_id: str
    email: str

    @property
    def is_guest(self) -> bool:
        return self.user_id.startswith(GUEST_ID_PREFIX)


# ── Password hashing ──────────────────────────────────────────────────────────

def hash_password(plain: str) -> str:
    """Return bcrypt hash of *plain* password (bcrypt only reads the first 72 bytes)."""
    salt = bcrypt.gensalt()
    return bcrypt.hashpw(plain.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if *plain* matches *hashed*."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Stored hash is not a bcrypt hash
        return False


# ── JWT ───────────────────────────────────────────────────────────────────────

def create_access_token(
    user_id: str,
    email: str,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Create a signed session JWT.

    Args:
        user_id:       Database id, or "anon-…" id for guests.
        email:         Account email (guests get "<id>@anon.local").
        expires_delta: Custom TTL; defaults to settings.jwt_expiry_hours.

    Raises:
        TokenConfigError: ACTION_TOKEN_SECRET is not configured.
    """
    if not settings.action_token_secret:
        raise TokenConfigError("JWT secret not configured (set ACTION_TOKEN_SECRET)")

    now = datetime.now(tz=timezone.utc)
    delta = expires_delta or timedelta(hours=settings.jwt_expiry_hours)
    payload = {
        "user_id": user_id,
        "email": email,
        "type": SESSION_TOKEN_TYPE,
        "iat": int(now.timestamp()),
        "exp": int((now + delta).timestamp()),
    }
    return jwt.encode(payload, settings.action_token_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> Optional[TokenClaims]:
    """
    Decode and validate a session JWT.

    Returns None if the secret is unset, or the token is missing, expired,
    tampered with, or not a session token.
    """
    if not token or not settings.action_token_secret:
        return None
    try:
        payload = jwt.decode(
            token,
            settings.action_token_secret,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError:
        return None

    if payload.get("type") != SESSION_TOKEN_TYPE:
        return None
    user_id, email = payload.get("user_id"), payload.get("email")
    if not user_id or not email:
        return None
    return TokenClaims(user_id=user_id, email=email)


# ── Identifiers ───────────────────────────────────────────────────────────────

def generate_api_key() -> str:
    """API key for programmatic access: "ak_<32 hex chars>"."""
    return f"ak_{uuid.uuid4().hex}"


def new_guest_id(now: Optional[datetime] = None) -> str:
    """Anonymous session id: "anon-<epoch ms>-<8 hex chars>"."""
    now = now or datetime.now(tz=timezone.utc)
    return f"{GUEST_ID_PREFIX}{int(now.timestamp() * 1000)}-{uuid.uuid4().hex[:8]}"
