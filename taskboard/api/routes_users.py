"""
routes_users.py — Tenant user administration
============================================
Admins list users and change their group, role and active flag.
"""
from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select

from ..auth.core import Principal
from ..auth.dependencies import require_admin, require_tenant
from ..database import db_session
from ..models import Group, Role, User
from ..schemas import UserRead, UserUpdate

router = APIRouter(prefix="/users", tags=["users"])


def _user_read(user: User) -> UserRead:
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


@router.get("", response_model=List[UserRead])
def list_users(principal: Principal = Depends(require_tenant)) -> List[UserRead]:
    with db_session() as session:
        users = session.execute(
            select(User).where(User.tenant_id == principal.tenant_id).order_by(User.created_at)
        ).scalars().all()
        return [_user_read(u) for u in users]


@router.patch("/{user_id}", response_model=UserRead)
def update_user(user_id: str, body: UserUpdate, admin: Principal = Depends(require_admin)) -> UserRead:
    """Move a member between groups, change role, or (de)activate.

    The change shows up in the member's access token on its next refresh.
    """
    fields = body.model_fields_set
    with db_session() as session:
        user = session.get(User, user_id)
        if user is None or user.tenant_id != admin.tenant_id:
            raise HTTPException(status_code=404, detail="User not found.")
        if "group_id" in fields:
            if body.group_id is not None:
                group = session.get(Group, body.group_id)
                if group is None or group.tenant_id != admin.tenant_id:
                    raise HTTPException(status_code=404, detail="Group not found.")
            user.group_id = body.group_id
        if body.role_name is not None:
            role = session.execute(
                select(Role).where(Role.tenant_id == admin.tenant_id, Role.name == body.role_name)
            ).scalar_one_or_none()
            if role is None:
                raise HTTPException(status_code=404, detail="Role not found.")
            user.role_id = role.id
        if body.is_active is not None:
            user.is_active = body.is_active
        session.flush()
        session.refresh(user)
        return _user_read(user)
