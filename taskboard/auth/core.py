from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
from jose import JWTError, jwt

from ..config import settings

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------

def hash_password(plain: str) -> str:
    return bcrypt.hashpw(plain.encode(), bcrypt.gensalt()).decode()


def verify_password(plain: str, hashed: str) -> bool:
    return bcrypt.checkpw(plain.encode(), hashed.encode())


# ---------------------------------------------------------------------------
# Principal: what a verified access token says about the caller
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Principal:
    user_id: str
    tenant_id: str
    role_id: str
    role_name: str
    group_id: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role_name == "admin"


# ---------------------------------------------------------------------------
# JWT
# ---------------------------------------------------------------------------

ALGORITHM = "HS256"


def create_access_token(principal: Principal, expires_minutes: int | None = None) -> str:
    minutes = expires_minutes or settings.jwt_expire_minutes
    now = datetime.now(timezone.utc)
    payload = {
        "sub": principal.user_id,
        "tenant_id": principal.tenant_id,
        "role_id": principal.role_id,
        "role_name": principal.role_name,
        "group_id": principal.group_id,
        "exp": now + timedelta(minutes=minutes),
        "iat": now,
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=ALGORITHM)


def decode_token(token: str) -> dict:
    """Decode and validate JWT. Raises JWTError on failure."""
    return jwt.decode(token, settings.jwt_secret, algorithms=[ALGORITHM])


def principal_from_token(token: str) -> Principal:
    """Verify ``token`` and build the caller's principal. Raises JWTError."""
    claims = decode_token(token)
    user_id = claims.get("sub")
    tenant_id = claims.get("tenant_id")
    if not user_id or not tenant_id:
        raise JWTError("Token is missing subject or tenant.")
    return Principal(
        user_id=user_id,
        tenant_id=tenant_id,
        role_id=claims.get("role_id", ""),
        role_name=claims.get("role_name", ""),
        group_id=claims.get("group_id"),
    )


def access_token_expiry_seconds() -> int:
    return settings.jwt_expire_minutes * 60


# ---------------------------------------------------------------------------
# Refresh tokens
# ---------------------------------------------------------------------------

def generate_refresh_token() -> str:
    return secrets.token_hex(64)


def refresh_token_expiry() -> datetime:
    return datetime.now(timezone.utc) + timedelta(days=settings.refresh_token_days)


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
