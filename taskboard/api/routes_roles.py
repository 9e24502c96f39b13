"""
routes_roles.py — Tenant roles
==============================
Every tenant starts with the built-in ``admin`` and ``member`` roles; admins
may add custom roles, rename them and delete the ones nobody holds. Built-in
roles cannot be renamed or deleted.

Only ``admin`` carries elevated rights. A custom role grants what ``member``
grants; it exists to label people and to be offered in invites.
"""
from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..auth.core import Principal
from ..auth.dependencies import require_admin, require_tenant
from ..database import db_session
from ..models import Role, User
from ..schemas import MessageResponse, RoleCreate, RoleRead, RoleUpdate

logger = logging.getLogger("taskboard.roles")

router = APIRouter(prefix="/roles", tags=["roles"])

BUILT_IN_ROLES = frozenset({"admin", "member"})


def _role_read(role: Role, user_count: int = 0) -> RoleRead:
    return RoleRead(id=role.id, name=role.name, tenant_id=role.tenant_id, user_count=user_count)


def _tenant_role(session: Session, principal: Principal, role_id: str) -> Role:
    role = session.get(Role, role_id)
    if role is None or role.tenant_id != principal.tenant_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Role not found.")
    return role


def _ensure_name_free(session: Session, tenant_id: str, name: str) -> None:
    taken = session.execute(
        select(Role.id).where(Role.tenant_id == tenant_id, Role.name == name)
    ).scalar_one_or_none()
    if taken:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT,
                            detail=f'Role "{name}" already exists.')


def _holders(session: Session, role_id: str) -> int:
    return session.execute(select(func.count(User.id)).where(User.role_id == role_id)).scalar_one()


@router.get("", response_model=List[RoleRead])
def list_roles(principal: Principal = Depends(require_tenant)) -> List[RoleRead]:
    """Roles of the caller's tenant with how many users hold each."""
    with db_session() as session:
        rows = session.execute(
            select(Role, func.count(User.id))
            .outerjoin(User, User.role_id == Role.id)
            .where(Role.tenant_id == principal.tenant_id)
            .group_by(Role.id)
            .order_by(Role.name)
        ).all()
        return [_role_read(role, n) for role, n in rows]


@router.post("", response_model=RoleRead, status_code=201)
def create_role(body: RoleCreate, admin: Principal = Depends(require_admin)) -> RoleRead:
    with db_session() as session:
        _ensure_name_free(session, admin.tenant_id, body.name)
        role = Role(name=body.name, tenant_id=admin.tenant_id)
        session.add(role)
        session.flush()
        session.refresh(role)
        logger.info("Role %s (%s) created in tenant %s", role.id, role.name, admin.tenant_id)
        return _role_read(role)


@router.put("/{role_id}", response_model=RoleRead)
def update_role(role_id: str, body: RoleUpdate, admin: Principal = Depends(require_admin)) -> RoleRead:
    with db_session() as session:
        role = _tenant_role(session, admin, role_id)
        if role.name in BUILT_IN_ROLES:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN,
                                detail="Cannot modify built-in roles.")
        if body.name != role.name:
            _ensure_name_free(session, admin.tenant_id, body.name)
            role.name = body.name
        session.flush()
        return _role_read(role, _holders(session, role.id))


@router.delete("/{role_id}", response_model=MessageResponse)
def delete_role(role_id: str, admin: Principal = Depends(require_admin)) -> MessageResponse:
    with db_session() as session:
        role = _tenant_role(session, admin, role_id)
        if role.name in BUILT_IN_ROLES:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN,
                                detail="Cannot delete built-in roles.")
        if _holders(session, role.id):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN,
                                detail="Cannot delete a role that has users assigned.")
        session.delete(role)
        logger.info("Role %s deleted from tenant %s", role_id, admin.tenant_id)
    return MessageResponse(message="Role deleted successfully")
