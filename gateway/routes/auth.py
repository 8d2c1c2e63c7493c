"""
auth.py — Account and session routes.

Routes:
  POST /v1/auth/register  — create new account (returns JWT + API key)
  POST /v1/auth/login     — exchange credentials for JWT
  POST /v1/auth/anonymous — issue a guest JWT (no database needed)
  GET  /v1/auth/me        — return current user (requires valid JWT)

MongoDB operations use Motor's async driver via the get_db() dependency.
Passwords are hashed with bcrypt; tokens are HS256 JWTs.

All errors use HTTPException so FastAPI serialises them as:
  { "detail": "..." }
"""

import logging
from datetime import datetime, timezone
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from gateway.core.database import get_db
from gateway.core.security import (
    TokenClaims,
    TokenConfigError,
    create_access_token,
    decode_access_token,
    generate_api_key,
    hash_password,
    new_guest_id,
    verify_password,
)
from gateway.models.user import AuthUser, LoginRequest, Token, UserCreate, UserInDB
from gateway.services.event_store import log_system_event

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/v1/auth", tags=["auth"])

# Reusable bearer extractor (does NOT auto-raise on missing token)
_bearer = HTTPBearer(auto_error=False)
CredDep = Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer)]


# ── Helpers ───────────────────────────────────────────────────────────────────

def _doc_to_auth_user(doc: dict) -> AuthUser:
    """Convert a raw MongoDB document to an AuthUser Pydantic model."""
    return AuthUser(
        id=str(doc["_id"]),
        email=doc["email"],
        is_anonymous=False,
        subscription_tier=doc.get("subscription_tier") or "free",
        created_at=doc.get("created_at", datetime.now(tz=timezone.utc)),
    )


def _guest_created_at(guest_id: str) -> datetime:
    # anon-<epoch ms>-<hex>
    try:
        millis = int(guest_id.split("-")[1])
        return datetime.fromtimestamp(millis / 1000, tz=timezone.utc)
    except (IndexError, ValueError, OverflowError, OSError):
        return datetime.now(tz=timezone.utc)


def _claims_to_guest(claims: TokenClaims) -> AuthUser:
    return AuthUser(
        id=claims.user_id,
        email=claims.email,
        is_anonymous=True,
        created_at=_guest_created_at(claims.user_id),
    )


def _issue_token(user_id: str, email: str) -> str:
    try:
        return create_access_token(user_id, email)
    except TokenConfigError as exc:
        logger.error("Cannot issue session token: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Authentication is not configured",
        )


def _require_db(db):
    if db is None:
        raise HTTPException(status_code=503, detail="Database unavailable")
    return db


async def get_optional_claims(credentials: CredDep) -> Optional[TokenClaims]:
    """Decoded Bearer claims, or None when the header is absent or invalid."""
    if not credentials:
        return None
    return decode_access_token(credentials.credentials)


async def _get_current_user(credentials: CredDep, db=Depends(get_db)) -> AuthUser:
    """
    FastAPI dependency — extracts and validates the Bearer token.

    Guests are answered from their claims; registered users are fetched
    from MongoDB. Raises 401 if the token is missing, invalid, or the user
    no longer exists.
    """
    cred_error = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid or expired token",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if not credentials:
        raise cred_error

    claims = decode_access_token(credentials.credentials)
    if claims is None:
        raise cred_error
    if claims.is_guest:
        return _claims_to_guest(claims)

    _require_db(db)

    from bson import ObjectId
    from bson.errors import InvalidId

    try:
        oid = ObjectId(claims.user_id)
    except (InvalidId, TypeError):
        raise cred_error

    doc = await db["users"].find_one({"_id": oid, "is_active": True})
    if not doc:
        raise cred_error

    return _doc_to_auth_user(doc)


# Re-export so other routes can depend on it
CurrentUser = Annotated[AuthUser, Depends(_get_current_user)]
OptionalClaims = Annotated[Optional[TokenClaims], Depends(get_optional_claims)]


# ── Routes ────────────────────────────────────────────────────────────────────

@router.post("/register", response_model=Token, status_code=status.HTTP_201_CREATED)
async def register(payload: UserCreate, db=Depends(get_db)):
    """Register a new user and return a JWT plus a one-time API key."""
    _require_db(db)

    # Duplicate email check
    existing = await db["users"].find_one({"email": payload.email})
    if existing:
        await log_system_event(
            db, "user_registration_failed", "warn",
            f"Registration attempt with existing email: {payload.email}",
        )
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="An account with this email already exists",
        )

    api_key = generate_api_key()
    user = UserInDB(
        email=payload.email,
        password_hash=hash_password(payload.password),
        subscription_tier=payload.subscription_tier or "free",
        api_key=api_key,
    )
    user_doc = user.model_dump()
    result = await db["users"].insert_one(user_doc)
    user_doc["_id"] = result.inserted_id
    user_id = str(result.inserted_id)

    token = _issue_token(user_id, user.email)
    await log_system_event(
        db, "user_registered", "info",
        f"New user registered: {user.email}",
        user_id=user_id,
        metadata={"subscription_tier": user.subscription_tier},
    )
    return Token(access_token=token, user=_doc_to_auth_user(user_doc), api_key=api_key)


@router.post("/login", response_model=Token)
async def login(payload: LoginRequest, db=Depends(get_db)):
    """Authenticate with email + password and return a JWT."""
    _require_db(db)

    _cred_err = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Incorrect email or password",
        headers={"WWW-Authenticate": "Bearer"},
    )

    doc = await db["users"].find_one({"email": payload.email})
    if not doc or not verify_password(payload.password, doc.get("password_hash", "")):
        await log_system_event(
            db, "login_failed", "warn",
            f"Failed login attempt for email: {payload.email}",
        )
        raise _cred_err

    user_id = str(doc["_id"])
    if not doc.get("is_active", True):
        await log_system_event(
            db, "login_failed", "warn",
            f"Login attempt for disabled account: {payload.email}",
            user_id=user_id,
        )
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is disabled")

    token = _issue_token(user_id, doc["email"])
    await log_system_event(
        db, "user_login", "info", f"User logged in: {doc['email']}", user_id=user_id,
    )
    return Token(access_token=token, user=_doc_to_auth_user(doc))


@router.post("/anonymous", response_model=Token)
async def anonymous_session(db=Depends(get_db)):
    """Start a guest session. Guests are rate limited by the daily quota."""
    guest_id = new_guest_id()
    claims = TokenClaims(user_id=guest_id, email=f"{guest_id}@anon.local")
    token = _issue_token(claims.user_id, claims.email)

    await log_system_event(
        db, "anonymous_session_created", "info",
        f"Anonymous session created: {guest_id}",
        user_id=guest_id,
    )
    return Token(access_token=token, user=_claims_to_guest(claims))


@router.get("/me", response_model=AuthUser)
async def me(current_user: CurrentUser):
    """Return the currently authenticated user's profile."""
    return current_user
