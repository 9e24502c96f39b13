"""
routes_invites.py — Invitations to join a tenant
================================================
Admins invite an email address into their tenant with a role name and a
type (``member`` or ``guest``). The invitee opens ``GET /invites/{id}/public``
without an account and signs up through ``POST /auth/register`` with the
``inviteId``; registration lands them in the inviting tenant with the
invited role. Guest accounts expire ``guest_access_days`` after acceptance.

No mail is sent: the invitation text is written to the ``taskboard.invites``
log instead.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..auth.core import Principal, as_utc
from ..auth.dependencies import require_admin, require_tenant
from ..config import settings
from ..database import db_session
from ..models import Invite, Role, User
from ..schemas import InviteCreate, InvitePublic, InviteRead, InviterRead, MessageResponse

logger = logging.getLogger("taskboard.invites")

router = APIRouter(prefix="/invites", tags=["invites"])


def _expiry() -> datetime:
    return datetime.now(timezone.utc) + timedelta(days=settings.invite_expire_days)


def _is_expired(invite: Invite) -> bool:
    return as_utc(invite.expires_at) < datetime.now(timezone.utc)


def _invite_read(invite: Invite) -> InviteRead:
    return InviteRead(
        id=invite.id,
        email=invite.email,
        role=invite.role,
        type=invite.type,
        status=invite.status,
        tenant_id=invite.tenant_id,
        tenant_name=invite.tenant.name,
        expires_at=invite.expires_at,
        created_at=invite.created_at,
        inviter=InviterRead(name=invite.inviter.name, surname=invite.inviter.surname),
    )


def _pending_in_tenant(session: Session, principal: Principal, invite_id: str, verb: str, done: str) -> Invite:
    invite = session.get(Invite, invite_id)
    if invite is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invite not found.")
    if invite.tenant_id != principal.tenant_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN,
                            detail=f"You can only {verb} invites from your own tenant.")
    if invite.status != "pending":
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                            detail=f"Only pending invites can be {done}.")
    return invite


def open_invite(session: Session, invite_id: str) -> Invite:
    """Invite ``invite_id`` if it can still be accepted, else 404 / 400."""
    invite = session.get(Invite, invite_id)
    if invite is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invite not found.")
    if invite.status != "pending":
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                            detail="This invite has already been used or revoked.")
    if _is_expired(invite):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="This invite has expired.")
    return invite


def accept_invite(invite: Invite, user: User) -> None:
    """Mark ``invite`` used by ``user``; guest invites make ``user`` a time-limited guest."""
    invite.status = "accepted"
    if invite.type == "guest":
        user.is_guest = True
        user.guest_expires_at = datetime.now(timezone.utc) + timedelta(days=settings.guest_access_days)
    logger.info("Invite %s accepted by user %s", invite.id, user.id)


@router.post("", response_model=InviteRead, status_code=201)
def send_invite(body: InviteCreate, admin: Principal = Depends(require_admin)) -> InviteRead:
    with db_session() as session:
        role = session.execute(
            select(Role.id).where(Role.tenant_id == admin.tenant_id, Role.name == body.role)
        ).scalar_one_or_none()
        if role is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                                detail=f'Role "{body.role}" does not exist in this tenant.')
        pending = session.execute(
            select(Invite.id).where(
                Invite.tenant_id == admin.tenant_id,
                Invite.email == body.email,
                Invite.status == "pending",
            )
        ).scalar_one_or_none()
        if pending:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT,
                                detail="An invite for this email is already pending.")

        invite = Invite(
            email=body.email,
            role=body.role,
            type=body.type,
            tenant_id=admin.tenant_id,
            invited_by=admin.user_id,
            expires_at=_expiry(),
        )
        session.add(invite)
        session.flush()
        session.refresh(invite)
        logger.info(
            "Invite email to %s: join %s as %s, invited by %s %s (invite %s)",
            invite.email, invite.tenant.name, invite.role,
            invite.inviter.name, invite.inviter.surname, invite.id,
        )
        return _invite_read(invite)


@router.get("", response_model=List[InviteRead])
def list_invites(principal: Principal = Depends(require_tenant)) -> List[InviteRead]:
    """Pending, unexpired invites of the caller's tenant, newest first."""
    with db_session() as session:
        invites = session.execute(
            select(Invite)
            .where(
                Invite.tenant_id == principal.tenant_id,
                Invite.status == "pending",
                Invite.expires_at >= datetime.now(timezone.utc),
            )
            .order_by(Invite.created_at.desc())
        ).scalars().all()
        return [_invite_read(i) for i in invites]


@router.delete("/{invite_id}", response_model=MessageResponse)
def revoke_invite(invite_id: str, admin: Principal = Depends(require_admin)) -> MessageResponse:
    with db_session() as session:
        invite = _pending_in_tenant(session, admin, invite_id, "revoke", "revoked")
        invite.status = "revoked"
        logger.info("Invite %s revoked", invite_id)
    return MessageResponse(message="Invite revoked successfully")


@router.post("/{invite_id}/resend", response_model=InviteRead)
def resend_invite(invite_id: str, admin: Principal = Depends(require_admin)) -> InviteRead:
    """Push the expiry out again and re-send the invitation."""
    with db_session() as session:
        invite = _pending_in_tenant(session, admin, invite_id, "resend", "resent")
        invite.expires_at = _expiry()
        session.flush()
        logger.info("Invite email re-sent to %s: join %s (invite %s)",
                    invite.email, invite.tenant.name, invite.id)
        return _invite_read(invite)


@router.get("/{invite_id}/public", response_model=InvitePublic)
def public_invite(invite_id: str) -> InvitePublic:
    """Unauthenticated view of an invite for the signup page."""
    with db_session() as session:
        invite = open_invite(session, invite_id)
        return InvitePublic(
            id=invite.id,
            email=invite.email,
            tenant_id=invite.tenant_id,
            tenant_name=invite.tenant.name,
            role=invite.role,
            type=invite.type,
            expires_at=invite.expires_at,
        )
