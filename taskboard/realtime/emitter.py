"""
emitter.py — Publish board / task changes after a committed write
=================================================================
Route handlers call these helpers once their ``db_session`` block has
committed. Emission is best-effort: the write already succeeded, so any
failure here is logged and swallowed, never raised to the API caller.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Union

from pydantic import BaseModel

from ..auth.core import Principal
from ..event_bus import TenantEvent, TenantEventBus

logger = logging.getLogger("taskboard.realtime")

EntityState = Union[BaseModel, Mapping[str, Any]]


def board_deleted_marker(board_id: str, tenant_id: str) -> Dict[str, str]:
    return {"id": board_id, "tenantId": tenant_id}


def task_deleted_marker(task_id: str, board_id: str, tenant_id: str) -> Dict[str, str]:
    return {"id": task_id, "boardId": board_id, "tenantId": tenant_id}


def _as_payload(state: EntityState) -> Mapping[str, Any]:
    if isinstance(state, BaseModel):
        return state.model_dump(mode="json", by_alias=True)
    return state


def emit(
    bus: TenantEventBus,
    principal: Principal,
    entity_kind: str,
    change_kind: str,
    state: EntityState,
) -> int:
    """Build a TenantEvent for the caller's tenant and publish it.

    The tenant comes from the authenticated principal, never from the
    entity payload. Returns the number of subscribers reached (0 on error).
    """
    try:
        event = TenantEvent(
            tenant_id=principal.tenant_id,
            entity_kind=entity_kind,
            change_kind=change_kind,
            payload=_as_payload(state),
            timestamp=datetime.now(timezone.utc),
        )
        delivered = bus.publish(principal.tenant_id, event)
    except Exception:
        logger.exception(
            "Failed to emit %s_%s for tenant %s", entity_kind, change_kind, principal.tenant_id
        )
        return 0
    logger.debug("Emitted %s to %d subscriber(s) of tenant %s",
                 event.event_type, delivered, principal.tenant_id)
    return delivered


def emit_board_event(
    bus: TenantEventBus, principal: Principal, change_kind: str, board: EntityState
) -> int:
    return emit(bus, principal, "board", change_kind, board)


def emit_task_event(
    bus: TenantEventBus, principal: Principal, change_kind: str, task: EntityState
) -> int:
    return emit(bus, principal, "task", change_kind, task)
