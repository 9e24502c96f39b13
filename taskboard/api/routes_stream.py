"""
routes_stream.py — Server-Sent Events for real-time board / task changes
========================================================================
Provides ``GET /rt/events`` which streams every board and task mutation of
the caller's tenant as it happens.

Authentication: ``Authorization: Bearer <jwt>`` or ``?token=<jwt>`` (for
``EventSource``, which cannot set headers). Any tenant member may connect.

Protocol: ``text/event-stream``. The first frame is ``connected``; a
``heartbeat`` frame follows every ``heartbeat_interval_seconds`` so proxies
and clients can tell a dead connection from a quiet one. Missed events are
not replayed; a reconnecting client refetches.
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse
from sqlalchemy import select
from starlette.concurrency import run_in_threadpool
from starlette.types import Send

from ..auth.core import Principal
from ..auth.dependencies import require_tenant
from ..config import settings
from ..database import db_session
from ..event_bus import ChannelFull, TenantEventBus
from ..models import Board
from ..realtime.session import SessionRegistry, StreamSession
from ..realtime.visibility import BoardVisibilityTracker, VisibilityScope, board_visibility_clause
from ..schemas import StreamStatus
from .deps import get_event_bus, get_session_registry

logger = logging.getLogger("taskboard.stream")

router = APIRouter(prefix="/rt", tags=["stream"])

STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",  # Nginx: disable response buffering
}


class EventStreamResponse(StreamingResponse):
    """StreamingResponse that owns a StreamSession.

    The session is opened here rather than in the route so that its
    subscription and heartbeat only exist inside the ``try/finally`` that
    tears them down. Each send is bounded by ``write_timeout``: a client
    that stops reading gets disconnected instead of pinning the session.
    """

    def __init__(self, session: StreamSession, write_timeout: float) -> None:
        super().__init__(
            content=session.frames(),
            media_type="text/event-stream",
            headers=STREAM_HEADERS,
        )
        self.session = session
        self.write_timeout = write_timeout

    async def stream_response(self, send: Send) -> None:
        try:
            await self.session.open()
        except ChannelFull as exc:
            await self._reject(send, 503, str(exc))
            return

        reason = "completed"
        try:
            await send({
                "type": "http.response.start",
                "status": self.status_code,
                "headers": self.raw_headers,
            })
            async for frame in self.body_iterator:
                chunk = frame.encode(self.charset)
                try:
                    await asyncio.wait_for(
                        send({"type": "http.response.body", "body": chunk, "more_body": True}),
                        timeout=self.write_timeout,
                    )
                except asyncio.TimeoutError:
                    reason = "write_timeout"
                    logger.warning("Stream %s write timed out after %.1fs",
                                   self.session.id, self.write_timeout)
                    return
            await send({"type": "http.response.body", "body": b"", "more_body": False})
        except (asyncio.CancelledError, OSError):
            reason = "disconnect"
            raise
        finally:
            self.session.close(reason)
            await self.body_iterator.aclose()

    async def _reject(self, send: Send, status_code: int, detail: str) -> None:
        body = json.dumps({"detail": detail}).encode()
        await send({
            "type": "http.response.start",
            "status": status_code,
            "headers": [(b"content-type", b"application/json"),
                        (b"content-length", str(len(body)).encode())],
        })
        await send({"type": "http.response.body", "body": body, "more_body": False})


def _visible_board_ids(principal: Principal, scope: VisibilityScope) -> list[str]:
    with db_session() as session:
        stmt = select(Board.id).where(Board.tenant_id == principal.tenant_id)
        clause = board_visibility_clause(scope)
        if clause is not None:
            stmt = stmt.where(clause)
        return list(session.execute(stmt).scalars().all())


@router.get(
    "/events",
    response_class=StreamingResponse,
    summary="Real-time tenant event stream (SSE)",
    description=(
        "Opens a Server-Sent Events connection that streams board and task "
        "changes of the caller's tenant in real time."
    ),
    responses={
        200: {
            "description": "SSE stream of tenant events",
            "content": {"text/event-stream": {}},
        },
        401: {"description": "Missing or invalid credential"},
        503: {"description": "Tenant reached its live stream limit"},
    },
)
async def stream_events(
    request: Request,
    principal: Principal = Depends(require_tenant),
    bus: TenantEventBus = Depends(get_event_bus),
    registry: SessionRegistry = Depends(get_session_registry),
):
    """Stream tenant events in real time via Server-Sent Events.

    Connect with ``EventSource`` or ``curl -N``:
    ```
    curl -N -H "Authorization: Bearer <jwt>" https://localhost:8000/rt/events
    ```

    Frames (``data:`` carries ``{"type", "data", "timestamp"}``):
    - ``connected``: sent immediately on connection
    - ``board_created`` / ``board_updated`` / ``board_deleted``
    - ``task_created`` / ``task_updated`` / ``task_deleted``
    - ``heartbeat``: every ~30 s
    """
    limit = settings.max_subscribers_per_tenant
    if limit and bus.subscriber_count(principal.tenant_id) >= limit:
        raise HTTPException(status_code=503, detail="Too many live streams for this tenant.")

    tracker: Optional[BoardVisibilityTracker] = None
    if settings.stream_visibility_filter:
        scope = VisibilityScope(principal.user_id, principal.role_name, principal.group_id)
        board_ids = await run_in_threadpool(_visible_board_ids, principal, scope)
        tracker = BoardVisibilityTracker.seeded(scope, board_ids)

    session = StreamSession(
        bus,
        principal,
        heartbeat_interval=settings.heartbeat_interval_seconds,
        queue_size=settings.stream_queue_size,
        tracker=tracker,
        registry=registry,
    )
    logger.debug("Stream %s requested from %s", session.id,
                 request.client.host if request.client else "unknown")
    return EventStreamResponse(session, write_timeout=settings.stream_write_timeout_seconds)


@router.get(
    "/status",
    response_model=StreamStatus,
    summary="Stream connection status",
    description="Returns the number of live SSE subscribers for the caller's tenant.",
)
async def stream_status(
    principal: Principal = Depends(require_tenant),
    bus: TenantEventBus = Depends(get_event_bus),
) -> StreamStatus:
    return StreamStatus(
        tenant_id=principal.tenant_id,
        active_subscribers=bus.subscriber_count(principal.tenant_id),
        heartbeat_interval_sec=settings.heartbeat_interval_seconds,
        visibility_filter=settings.stream_visibility_filter,
    )
