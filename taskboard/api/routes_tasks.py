"""
routes_tasks.py — Tasks and subtasks on a board
===============================================
Tasks are reachable only through a board the caller can see. Moving a task
between columns is a plain ``PUT`` with a new ``status``.
"""
from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from ..auth.core import Principal
from ..auth.dependencies import require_tenant
from ..database import db_session
from ..event_bus import TenantEventBus
from ..models import Task, User
from ..realtime.emitter import emit_task_event, task_deleted_marker
from ..schemas import AssigneeRead, MessageResponse, TaskCreate, TaskRead, TaskUpdate
from .deps import get_event_bus
from .routes_boards import visible_board

router = APIRouter(prefix="/boards/{board_id}/tasks", tags=["tasks"])


def _task_read(task: Task, with_sub_tasks: bool = False) -> TaskRead:
    assignee = task.assignee
    return TaskRead(
        id=task.id,
        title=task.title,
        description=task.description,
        status=task.status,
        board_id=task.board_id,
        owner_id=task.owner_id,
        assignee_id=task.assignee_id,
        parent_task_id=task.parent_task_id,
        created_at=task.created_at,
        updated_at=task.updated_at,
        assignee=AssigneeRead(id=assignee.id, name=assignee.name, surname=assignee.surname)
        if assignee else None,
        sub_tasks=[_task_read(s) for s in task.sub_tasks] if with_sub_tasks else None,
    )


def _check_assignee(session: Session, principal: Principal, assignee_id: str | None) -> None:
    if assignee_id is None:
        return
    user = session.get(User, assignee_id)
    if user is None or user.tenant_id != principal.tenant_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Assignee not found.")


def _check_parent(session: Session, board_id: str, parent_task_id: str | None) -> None:
    if parent_task_id is None:
        return
    parent = session.get(Task, parent_task_id)
    if parent is None or parent.board_id != board_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Parent task not found.")


def _get_task(session: Session, board_id: str, task_id: str) -> Task:
    task = session.execute(
        select(Task)
        .where(Task.id == task_id, Task.board_id == board_id)
        .options(selectinload(Task.sub_tasks))
    ).scalar_one_or_none()
    if task is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found.")
    return task


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@router.post("", response_model=TaskRead, status_code=201)
def create_task(
    board_id: str,
    body: TaskCreate,
    principal: Principal = Depends(require_tenant),
    bus: TenantEventBus = Depends(get_event_bus),
) -> TaskRead:
    with db_session() as session:
        visible_board(session, principal, board_id)
        _check_assignee(session, principal, body.assignee_id)
        _check_parent(session, board_id, body.parent_task_id)
        task = Task(
            title=body.title,
            description=body.description,
            status=body.status,
            board_id=board_id,
            owner_id=principal.user_id,
            assignee_id=body.assignee_id,
            parent_task_id=body.parent_task_id,
        )
        session.add(task)
        session.flush()
        session.refresh(task)
        response = _task_read(task)

    emit_task_event(bus, principal, "created", response)
    return response


@router.get("", response_model=List[TaskRead])
def list_tasks(board_id: str, principal: Principal = Depends(require_tenant)) -> List[TaskRead]:
    """Top-level tasks of a board, newest first, each with its subtasks."""
    with db_session() as session:
        visible_board(session, principal, board_id)
        tasks = session.execute(
            select(Task)
            .where(Task.board_id == board_id, Task.parent_task_id.is_(None))
            .options(selectinload(Task.sub_tasks))
            .order_by(Task.created_at.desc())
        ).scalars().all()
        return [_task_read(t, with_sub_tasks=True) for t in tasks]


@router.get("/{task_id}", response_model=TaskRead)
def get_task(board_id: str, task_id: str, principal: Principal = Depends(require_tenant)) -> TaskRead:
    with db_session() as session:
        visible_board(session, principal, board_id)
        return _task_read(_get_task(session, board_id, task_id), with_sub_tasks=True)


@router.put("/{task_id}", response_model=TaskRead)
def update_task(
    board_id: str,
    task_id: str,
    body: TaskUpdate,
    principal: Principal = Depends(require_tenant),
    bus: TenantEventBus = Depends(get_event_bus),
) -> TaskRead:
    """Partial update. Allowed for the task's owner, its assignee, or an admin."""
    fields = body.model_fields_set
    with db_session() as session:
        visible_board(session, principal, board_id)
        task = _get_task(session, board_id, task_id)

        if principal.user_id not in (task.owner_id, task.assignee_id) and not principal.is_admin:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN,
                                detail="You can only update tasks you own or are assigned to.")
        if "parent_task_id" in fields and body.parent_task_id == task_id:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN,
                                detail="A task cannot be its own parent.")
        if "assignee_id" in fields:
            _check_assignee(session, principal, body.assignee_id)
        if "parent_task_id" in fields:
            _check_parent(session, board_id, body.parent_task_id)

        if body.title is not None:
            task.title = body.title
        if "description" in fields:
            task.description = body.description
        if body.status is not None:
            task.status = body.status
        if "assignee_id" in fields:
            task.assignee_id = body.assignee_id
        if "parent_task_id" in fields:
            task.parent_task_id = body.parent_task_id

        session.flush()
        session.refresh(task)
        response = _task_read(task)

    emit_task_event(bus, principal, "updated", response)
    return response


@router.delete("/{task_id}", response_model=MessageResponse)
def delete_task(
    board_id: str,
    task_id: str,
    principal: Principal = Depends(require_tenant),
    bus: TenantEventBus = Depends(get_event_bus),
) -> MessageResponse:
    """Delete a task and its subtasks. Owner or admin only."""
    with db_session() as session:
        visible_board(session, principal, board_id)
        task = _get_task(session, board_id, task_id)
        if task.owner_id != principal.user_id and not principal.is_admin:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN,
                                detail="You can only delete tasks you own.")
        session.delete(task)

    emit_task_event(bus, principal, "deleted",
                    task_deleted_marker(task_id, board_id, principal.tenant_id))
    return MessageResponse(message="Task deleted successfully")
