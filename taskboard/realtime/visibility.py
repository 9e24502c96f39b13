"""
visibility.py — Who may see which board
=======================================
Admins see every board of their tenant. Everyone else sees boards of their
own group plus the group-less boards they own.

The event bus only isolates tenants, so a non-admin stream can carry events
for boards outside the subscriber's scope. Those rules are re-applied here
on the consumer side and are advisory: anything a consumer wants to treat
as authoritative must be re-read from the database.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional, Set

from sqlalchemy import and_, or_

from ..event_bus import TenantEvent
from ..models import Board

ADMIN_ROLE = "admin"


@dataclass(frozen=True)
class VisibilityScope:
    user_id: str
    role_name: str
    group_id: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role_name == ADMIN_ROLE


def can_view_board(scope: VisibilityScope, owner_id: Optional[str], group_id: Optional[str]) -> bool:
    if scope.is_admin:
        return True
    if group_id is not None:
        return scope.group_id is not None and group_id == scope.group_id
    return owner_id == scope.user_id


def board_visibility_clause(scope: VisibilityScope):
    """SQLAlchemy filter equivalent of ``can_view_board``.

    Tenant scoping is not included; callers add ``Board.tenant_id == ...``.
    """
    if scope.is_admin:
        return None
    private_owned = and_(Board.group_id.is_(None), Board.owner_id == scope.user_id)
    if scope.group_id is None:
        return private_owned
    return or_(Board.group_id == scope.group_id, private_owned)


@dataclass
class BoardVisibilityTracker:
    """Per-consumer view of which board ids are visible right now.

    Seed it with the boards the consumer already fetched, then pass every
    delivered event through ``admit``. Board events keep the tracked set in
    sync; task events are admitted when their board is tracked.
    """

    scope: VisibilityScope
    visible_board_ids: Set[str] = field(default_factory=set)

    @classmethod
    def seeded(cls, scope: VisibilityScope, board_ids: Iterable[str]) -> "BoardVisibilityTracker":
        return cls(scope=scope, visible_board_ids=set(board_ids))

    def admit(self, event: TenantEvent) -> bool:
        if self.scope.is_admin:
            self._track(event)
            return True

        payload = event.payload
        if event.entity_kind == "board":
            board_id = payload.get("id")
            if event.change_kind == "deleted":
                was_visible = board_id in self.visible_board_ids
                self.visible_board_ids.discard(board_id)
                return was_visible
            visible = can_view_board(self.scope, payload.get("ownerId"), payload.get("groupId"))
            if visible:
                self.visible_board_ids.add(board_id)
                return True
            # A board that left the scope: pass the update so the consumer drops it
            if board_id in self.visible_board_ids:
                self.visible_board_ids.discard(board_id)
                return True
            return False

        return payload.get("boardId") in self.visible_board_ids

    def _track(self, event: TenantEvent) -> None:
        if event.entity_kind != "board":
            return
        board_id = event.payload.get("id")
        if event.change_kind == "deleted":
            self.visible_board_ids.discard(board_id)
        else:
            self.visible_board_ids.add(board_id)
