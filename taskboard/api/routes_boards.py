"""
routes_boards.py — Board CRUD
=============================
Boards belong to one tenant and optionally one group. Admins see and edit
every board of their tenant; members see their group's boards plus the
group-less boards they own, and may only change boards they own.

Every committed mutation is published to the tenant's event stream.
"""
from __future__ import annotations

from typing import Dict, List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..auth.core import Principal
from ..auth.dependencies import require_tenant
from ..database import db_session
from ..event_bus import TenantEventBus
from ..models import Board, Group, Task
from ..realtime.emitter import board_deleted_marker, emit_board_event
from ..realtime.visibility import VisibilityScope, board_visibility_clause
from ..schemas import BoardCreate, BoardRead, BoardUpdate, MessageResponse
from .deps import get_event_bus

router = APIRouter(prefix="/boards", tags=["boards"])


def scope_of(principal: Principal) -> VisibilityScope:
    return VisibilityScope(principal.user_id, principal.role_name, principal.group_id)


def _board_read(board: Board, task_count: int = 0) -> BoardRead:
    return BoardRead(
        id=board.id,
        name=board.name,
        description=board.description,
        owner_id=board.owner_id,
        tenant_id=board.tenant_id,
        group_id=board.group_id,
        created_at=board.created_at,
        updated_at=board.updated_at,
        task_count=task_count,
    )


def _task_counts(session: Session, board_ids: List[str]) -> Dict[str, int]:
    if not board_ids:
        return {}
    rows = session.execute(
        select(Task.board_id, func.count(Task.id))
        .where(Task.board_id.in_(board_ids))
        .group_by(Task.board_id)
    ).all()
    return {board_id: count for board_id, count in rows}


def visible_board(session: Session, principal: Principal, board_id: str) -> Board:
    """Board ``board_id`` if the caller may see it, else 404."""
    stmt = select(Board).where(Board.id == board_id, Board.tenant_id == principal.tenant_id)
    clause = board_visibility_clause(scope_of(principal))
    if clause is not None:
        stmt = stmt.where(clause)
    board = session.execute(stmt).scalar_one_or_none()
    if board is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Board not found.")
    return board


def _owned_board(session: Session, principal: Principal, board_id: str, verb: str) -> Board:
    board = session.execute(
        select(Board).where(Board.id == board_id, Board.tenant_id == principal.tenant_id)
    ).scalar_one_or_none()
    if board is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Board not found.")
    if board.owner_id != principal.user_id and not principal.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN,
                            detail=f"You can only {verb} boards you own.")
    return board


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@router.post("", response_model=BoardRead, status_code=201)
def create_board(
    body: BoardCreate,
    principal: Principal = Depends(require_tenant),
    bus: TenantEventBus = Depends(get_event_bus),
) -> BoardRead:
    """Create a board in the caller's tenant.

    Non-admin boards always land in the caller's group (or stay private when
    the caller has none). Admins may pick a group or leave it empty.
    """
    group_id = body.group_id if principal.is_admin else principal.group_id

    with db_session() as session:
        if group_id is not None:
            group = session.get(Group, group_id)
            if group is None or group.tenant_id != principal.tenant_id:
                raise HTTPException(status_code=404, detail="Group not found.")
        board = Board(
            name=body.name,
            description=body.description,
            tenant_id=principal.tenant_id,
            owner_id=principal.user_id,
            group_id=group_id,
        )
        session.add(board)
        session.flush()
        session.refresh(board)
        response = _board_read(board)

    emit_board_event(bus, principal, "created", response)
    return response


@router.get("", response_model=List[BoardRead])
def list_boards(principal: Principal = Depends(require_tenant)) -> List[BoardRead]:
    """Boards the caller may see, newest first."""
    with db_session() as session:
        stmt = (
            select(Board)
            .where(Board.tenant_id == principal.tenant_id)
            .order_by(Board.created_at.desc())
        )
        clause = board_visibility_clause(scope_of(principal))
        if clause is not None:
            stmt = stmt.where(clause)
        boards = session.execute(stmt).scalars().all()
        counts = _task_counts(session, [b.id for b in boards])
        return [_board_read(b, counts.get(b.id, 0)) for b in boards]


@router.get("/{board_id}", response_model=BoardRead)
def get_board(board_id: str, principal: Principal = Depends(require_tenant)) -> BoardRead:
    with db_session() as session:
        board = visible_board(session, principal, board_id)
        counts = _task_counts(session, [board.id])
        return _board_read(board, counts.get(board.id, 0))


@router.put("/{board_id}", response_model=BoardRead)
def update_board(
    board_id: str,
    body: BoardUpdate,
    principal: Principal = Depends(require_tenant),
    bus: TenantEventBus = Depends(get_event_bus),
) -> BoardRead:
    """Rename / re-describe a board. Owner or admin only."""
    with db_session() as session:
        board = _owned_board(session, principal, board_id, "update")
        if body.name is not None:
            board.name = body.name
        if "description" in body.model_fields_set:
            board.description = body.description
        session.flush()
        session.refresh(board)
        counts = _task_counts(session, [board.id])
        response = _board_read(board, counts.get(board.id, 0))

    emit_board_event(bus, principal, "updated", response)
    return response


@router.delete("/{board_id}", response_model=MessageResponse)
def delete_board(
    board_id: str,
    principal: Principal = Depends(require_tenant),
    bus: TenantEventBus = Depends(get_event_bus),
) -> MessageResponse:
    """Delete a board and, by cascade, all of its tasks. Owner or admin only."""
    with db_session() as session:
        board = _owned_board(session, principal, board_id, "delete")
        session.delete(board)

    emit_board_event(bus, principal, "deleted", board_deleted_marker(board_id, principal.tenant_id))
    return MessageResponse(message="Board deleted successfully")
