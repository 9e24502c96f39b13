from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from .core import (
    Principal,
    access_token_expiry_seconds,
    as_utc,
    create_access_token,
    generate_refresh_token,
    hash_password,
    refresh_token_expiry,
    verify_password,
)
from .dependencies import require_tenant
from ..api.routes_invites import accept_invite, open_invite
from ..config import settings
from ..database import db_session
from ..models import RefreshToken, Role, Tenant, User
from ..rate_limit import credential_limit, limiter
from ..schemas import (
    AuthResponse,
    AuthUser,
    LoginRequest,
    MessageResponse,
    RefreshRequest,
    RegisterRequest,
    UserRead,
)

logger = logging.getLogger("taskboard.auth")

router = APIRouter(prefix="/auth", tags=["auth"])


# ---------------------------------------------------------------------------
# Helpers shared with tenant signup
# ---------------------------------------------------------------------------

def principal_for(user: User) -> Principal:
    return Principal(
        user_id=user.id,
        tenant_id=user.tenant_id,
        role_id=user.role_id,
        role_name=user.role.name,
        group_id=user.group_id,
    )


def issue_tokens(session: Session, user: User, tenant_name: str | None = None) -> AuthResponse:
    """Mint an access token and persist a fresh refresh token for ``user``."""
    refresh_value = generate_refresh_token()
    session.add(RefreshToken(token=refresh_value, user_id=user.id, expires_at=refresh_token_expiry()))
    return AuthResponse(
        access_token=create_access_token(principal_for(user)),
        refresh_token=refresh_value,
        expires_in=access_token_expiry_seconds(),
        user=AuthUser(
            id=user.id,
            email=user.email,
            name=user.name,
            surname=user.surname,
            tenant_id=user.tenant_id,
            role_name=user.role.name,
            group_id=user.group_id,
            tenant_name=tenant_name,
        ),
    )


# ---------------------------------------------------------------------------
# Register / login
# ---------------------------------------------------------------------------

@router.post("/register", response_model=AuthResponse, status_code=201)
def register(body: RegisterRequest) -> AuthResponse:
    """Join a tenant, either directly as ``member`` or through an invite.

    With ``inviteId`` the tenant and role come from the invite and the email
    must match it. Invite signups work even when public registration is off.
    """
    if body.invite_id is None and body.tenant_id is None:
        raise HTTPException(status_code=400, detail="Either tenantId or inviteId is required.")
    if body.invite_id is None and not settings.registration_enabled:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Public registration is disabled. Contact an administrator.",
        )
    with db_session() as session:
        invite = None
        if body.invite_id is not None:
            invite = open_invite(session, body.invite_id)
            if invite.email.lower() != body.email.lower():
                raise HTTPException(status_code=400, detail="Email does not match the invite.")
        tenant_id = invite.tenant_id if invite is not None else body.tenant_id
        role_name = invite.role if invite is not None else "member"

        tenant = session.get(Tenant, tenant_id)
        if tenant is None:
            raise HTTPException(status_code=404, detail="Tenant not found.")
        if not tenant.is_active:
            raise HTTPException(status_code=409, detail="Cannot register to an inactive tenant.")
        existing = session.execute(
            select(User.id).where(User.email == body.email)
        ).scalar_one_or_none()
        if existing:
            raise HTTPException(status_code=409, detail="A user with this email already exists.")

        role = session.execute(
            select(Role).where(Role.tenant_id == tenant.id, Role.name == role_name)
        ).scalar_one_or_none()
        if role is None:
            if invite is not None:
                raise HTTPException(status_code=400, detail=f'Role "{role_name}" no longer exists.')
            role = Role(tenant_id=tenant.id, name=role_name)
            session.add(role)
            session.flush()

        user = User(
            email=body.email,
            name=body.name,
            surname=body.surname,
            password_hash=hash_password(body.password),
            tenant_id=tenant.id,
            role_id=role.id,
        )
        session.add(user)
        session.flush()
        if invite is not None:
            accept_invite(invite, user)
            session.flush()
        session.refresh(user)
        logger.info("User %s registered in tenant %s as %s", user.id, tenant.id, role_name)
        return issue_tokens(session, user, tenant.name)


def _guest_expired(user: User) -> bool:
    return (
        user.is_guest
        and user.guest_expires_at is not None
        and as_utc(user.guest_expires_at) < datetime.now(timezone.utc)
    )


@router.post("/login", response_model=AuthResponse)
@limiter.limit(credential_limit)
def login(request: Request, body: LoginRequest) -> AuthResponse:
    with db_session() as session:
        user = session.execute(
            select(User).where(User.email == body.email)
        ).scalar_one_or_none()
        if user is None or not verify_password(body.password, user.password_hash):
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED,
                                detail="Invalid email or password.")
        if not user.is_active:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED,
                                detail="Account is deactivated.")
        if _guest_expired(user):
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED,
                                detail="Guest access has expired.")
        tenant = session.get(Tenant, user.tenant_id)
        if tenant is None or not tenant.is_active:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED,
                                detail="Tenant is inactive.")
        return issue_tokens(session, user, tenant.name)


# ---------------------------------------------------------------------------
# Refresh rotation / logout
# ---------------------------------------------------------------------------

@router.post("/refresh", response_model=AuthResponse)
def refresh(body: RefreshRequest) -> AuthResponse:
    """Swap a refresh token for a new token pair. The old token is consumed."""
    with db_session() as session:
        stored = session.execute(
            select(RefreshToken).where(RefreshToken.token == body.refresh_token)
        ).scalar_one_or_none()
        if stored is None:
            raise HTTPException(status_code=401, detail="Invalid refresh token.")
        user = session.get(User, stored.user_id)
        expired = as_utc(stored.expires_at) < datetime.now(timezone.utc)
        session.delete(stored)
        if expired:
            session.commit()
            raise HTTPException(status_code=401, detail="Refresh token has expired.")
        if user is None or not user.is_active:
            session.commit()
            raise HTTPException(status_code=401, detail="Account is deactivated.")
        if _guest_expired(user):
            session.commit()
            raise HTTPException(status_code=401, detail="Guest access has expired.")
        tenant = session.get(Tenant, user.tenant_id)
        if tenant is None or not tenant.is_active:
            session.commit()
            raise HTTPException(status_code=401, detail="Tenant is inactive.")
        return issue_tokens(session, user, tenant.name)


@router.post("/logout", response_model=MessageResponse)
def logout(body: RefreshRequest) -> MessageResponse:
    """Invalidate a refresh token. Unknown tokens also succeed (no enumeration)."""
    with db_session() as session:
        session.execute(delete(RefreshToken).where(RefreshToken.token == body.refresh_token))
    return MessageResponse(message="Successfully logged out")


# ---------------------------------------------------------------------------
# Current user
# ---------------------------------------------------------------------------

@router.get("/me", response_model=UserRead)
def me(principal: Principal = Depends(require_tenant)) -> UserRead:
    with db_session() as session:
        user = session.get(User, principal.user_id)
        if user is None or user.tenant_id != principal.tenant_id:
            raise HTTPException(status_code=404, detail="User not found.")
        return UserRead(
            id=user.id,
            email=user.email,
            name=user.name,
            surname=user.surname,
            tenant_id=user.tenant_id,
            role_name=user.role.name,
            group_id=user.group_id,
            is_active=user.is_active,
        )
