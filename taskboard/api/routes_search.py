"""
routes_search.py — Quick search over boards and tasks
=====================================================
``GET /search?q=...`` matches board names / descriptions and task titles /
descriptions case-insensitively. Results are limited to the caller's tenant
and to boards the caller may see, five of each kind.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy import or_, select

from ..auth.core import Principal
from ..auth.dependencies import require_tenant
from ..database import db_session
from ..models import Board, Task
from ..realtime.visibility import board_visibility_clause
from ..schemas import BoardHit, SearchResults, TaskBoardRef, TaskHit
from .routes_boards import scope_of

router = APIRouter(prefix="/search", tags=["search"])

MIN_QUERY_LENGTH = 2
MAX_HITS = 5


@router.get("", response_model=SearchResults)
def search(
    q: str = Query(default="", max_length=100),
    principal: Principal = Depends(require_tenant),
) -> SearchResults:
    query = q.strip()
    if len(query) < MIN_QUERY_LENGTH:
        return SearchResults()
    pattern = f"%{query}%"

    with db_session() as session:
        board_stmt = (
            select(Board)
            .where(
                Board.tenant_id == principal.tenant_id,
                or_(Board.name.ilike(pattern), Board.description.ilike(pattern)),
            )
            .order_by(Board.created_at.desc())
            .limit(MAX_HITS)
        )
        task_stmt = (
            select(Task, Board)
            .join(Board, Task.board_id == Board.id)
            .where(
                Board.tenant_id == principal.tenant_id,
                or_(Task.title.ilike(pattern), Task.description.ilike(pattern)),
            )
            .order_by(Task.created_at.desc())
            .limit(MAX_HITS)
        )
        clause = board_visibility_clause(scope_of(principal))
        if clause is not None:
            board_stmt = board_stmt.where(clause)
            task_stmt = task_stmt.where(clause)

        boards = [
            BoardHit(id=b.id, name=b.name, description=b.description)
            for b in session.execute(board_stmt).scalars().all()
        ]
        tasks = [
            TaskHit(id=t.id, title=t.title, status=t.status, board=TaskBoardRef(id=b.id, name=b.name))
            for t, b in session.execute(task_stmt).all()
        ]
        return SearchResults(boards=boards, tasks=tasks)
