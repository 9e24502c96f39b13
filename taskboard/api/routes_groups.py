"""
routes_groups.py — Tenant groups
================================
Any member may list groups; only admins create, rename or delete them. A
group with members cannot be deleted.
"""
from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import func, select

from ..auth.core import Principal
from ..auth.dependencies import require_admin, require_tenant
from ..database import db_session
from ..models import Group, User
from ..schemas import GroupCreate, GroupRead, GroupUpdate, MessageResponse

router = APIRouter(prefix="/groups", tags=["groups"])


def _group_read(group: Group, member_count: int = 0) -> GroupRead:
    return GroupRead(
        id=group.id,
        name=group.name,
        description=group.description,
        tenant_id=group.tenant_id,
        member_count=member_count,
    )


def _tenant_group(session, principal: Principal, group_id: str) -> Group:
    group = session.get(Group, group_id)
    if group is None or group.tenant_id != principal.tenant_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Group not found.")
    return group


@router.get("", response_model=List[GroupRead])
def list_groups(principal: Principal = Depends(require_tenant)) -> List[GroupRead]:
    """Admins see every group; members only their own."""
    with db_session() as session:
        stmt = (
            select(Group, func.count(User.id))
            .outerjoin(User, User.group_id == Group.id)
            .where(Group.tenant_id == principal.tenant_id)
            .group_by(Group.id)
            .order_by(Group.name)
        )
        if not principal.is_admin:
            stmt = stmt.where(Group.id == principal.group_id)
        return [_group_read(g, n) for g, n in session.execute(stmt).all()]


@router.post("", response_model=GroupRead, status_code=201)
def create_group(body: GroupCreate, admin: Principal = Depends(require_admin)) -> GroupRead:
    with db_session() as session:
        group = Group(name=body.name, description=body.description, tenant_id=admin.tenant_id)
        session.add(group)
        session.flush()
        session.refresh(group)
        return _group_read(group)


@router.put("/{group_id}", response_model=GroupRead)
def update_group(group_id: str, body: GroupUpdate, admin: Principal = Depends(require_admin)) -> GroupRead:
    with db_session() as session:
        group = _tenant_group(session, admin, group_id)
        if body.name is not None:
            group.name = body.name
        if "description" in body.model_fields_set:
            group.description = body.description
        session.flush()
        members = session.execute(
            select(func.count(User.id)).where(User.group_id == group.id)
        ).scalar_one()
        return _group_read(group, members)


@router.delete("/{group_id}", response_model=MessageResponse)
def delete_group(group_id: str, admin: Principal = Depends(require_admin)) -> MessageResponse:
    with db_session() as session:
        group = _tenant_group(session, admin, group_id)
        members = session.execute(
            select(func.count(User.id)).where(User.group_id == group.id)
        ).scalar_one()
        if members:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN,
                                detail="Cannot delete a group that has users assigned.")
        session.delete(group)
    return MessageResponse(message="Group deleted successfully")
