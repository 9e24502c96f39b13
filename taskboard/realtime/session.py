"""
session.py — One long-lived real-time stream per connected client
=================================================================
Lifecycle::

    CONNECTING --open()--> OPEN --first frame--> STREAMING --close()--> CLOSED

``open`` queues the ``connected`` frame, subscribes to the caller's tenant
channel and starts the heartbeat task. Every bus delivery is encoded and
queued; ``frames`` drains the queue in order. ``close`` is idempotent and
is reached from every exit path: client disconnect, write timeout, a full
queue (client stopped reading), server shutdown.

The bus may call ``_on_event`` from a worker thread (sync route handlers),
so delivery hops onto the session's event loop with
``call_soon_threadsafe``, which keeps publish order.
"""
from __future__ import annotations

import asyncio
import enum
import logging
import secrets
from threading import Lock
from typing import AsyncIterator, Dict, List, Optional, Set

from ..auth.core import Principal
from ..event_bus import DeliveryFailure, SubscriptionHandle, TenantEvent, TenantEventBus
from .encoder import encode_connected, encode_event, encode_heartbeat
from .visibility import BoardVisibilityTracker

logger = logging.getLogger("taskboard.stream")

_CLOSE = object()


class SessionState(str, enum.Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    STREAMING = "streaming"
    CLOSING = "closing"
    CLOSED = "closed"


class StreamSession:
    """Owns one client's subscription, heartbeat task and outgoing frame queue."""

    def __init__(
        self,
        bus: TenantEventBus,
        principal: Principal,
        *,
        heartbeat_interval: float = 30.0,
        queue_size: int = 256,
        tracker: Optional[BoardVisibilityTracker] = None,
        registry: Optional["SessionRegistry"] = None,
    ) -> None:
        self.id = secrets.token_hex(6)
        self.bus = bus
        self.principal = principal
        self.heartbeat_interval = heartbeat_interval
        self.queue_size = queue_size
        self.tracker = tracker
        self.registry = registry

        self.state = SessionState.CONNECTING
        self.close_reason: Optional[str] = None
        self.frames_sent = 0

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._queue: Optional[asyncio.Queue] = None
        self._handle: Optional[SubscriptionHandle] = None
        self._heartbeat_task: Optional[asyncio.Task] = None
        self._close_lock = Lock()
        self._closing = False

    @property
    def tenant_id(self) -> str:
        return self.principal.tenant_id

    @property
    def closed(self) -> bool:
        return self._closing

    # -- opening -----------------------------------------------------------

    async def open(self) -> None:
        """Queue the ack, subscribe to the tenant channel, start heartbeats.

        Raises ``ChannelFull`` (after cleaning up) if the tenant is at its
        subscriber ceiling.
        """
        if self.state is not SessionState.CONNECTING:
            raise RuntimeError(f"Session {self.id} already {self.state.value}")
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue(maxsize=self.queue_size)
        self._queue.put_nowait(encode_connected(self.tenant_id))
        try:
            self._handle = self.bus.subscribe(self.tenant_id, self._on_event)
        except Exception:
            self.close("subscribe_failed")
            raise
        self._heartbeat_task = asyncio.create_task(self._heartbeat(), name=f"heartbeat-{self.id}")
        self.state = SessionState.OPEN
        if self.registry is not None:
            self.registry.add(self)
        logger.info("Stream %s opened for user %s on tenant %s",
                    self.id, self.principal.user_id, self.tenant_id)

    # -- delivery ----------------------------------------------------------

    def _on_event(self, event: TenantEvent) -> None:
        """Bus callback. Runs on whichever thread called ``publish``."""
        if self._closing:
            raise DeliveryFailure(f"stream {self.id} is closed")
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            self._deliver(event)
            return
        try:
            self._loop.call_soon_threadsafe(self._deliver, event)
        except RuntimeError as exc:  # loop already closed
            raise DeliveryFailure(f"stream {self.id} lost its event loop") from exc

    def _deliver(self, event: TenantEvent) -> None:
        if self._closing:
            return
        if self.tracker is not None and not self.tracker.admit(event):
            return
        self._enqueue(encode_event(event))

    def _enqueue(self, frame: str) -> None:
        try:
            self._queue.put_nowait(frame)
        except asyncio.QueueFull:
            logger.warning(
                "Stream %s fell %d frames behind; closing", self.id, self.queue_size
            )
            self.close("backpressure")

    async def _heartbeat(self) -> None:
        while not self._closing:
            await asyncio.sleep(self.heartbeat_interval)
            if self._closing:
                break
            self._enqueue(encode_heartbeat())

    async def frames(self) -> AsyncIterator[str]:
        """Yield encoded frames in arrival order until the session closes."""
        if self._queue is None:
            raise RuntimeError("open() must be called before frames()")
        try:
            while not self._closing:
                frame = await self._queue.get()
                if frame is _CLOSE:
                    break
                if self.state is SessionState.OPEN:
                    self.state = SessionState.STREAMING
                self.frames_sent += 1
                yield frame
        finally:
            self.close("disconnect")

    # -- teardown ----------------------------------------------------------

    def close(self, reason: str = "closed") -> bool:
        """Stop heartbeats, leave the bus channel, wake the frame iterator.

        Safe to call any number of times from any thread; only the first
        call does anything. Returns True for that first call.

        The bus subscription is gone when this returns. The session reaches
        CLOSED once the heartbeat and queue have been released on its event
        loop, which is immediate when called on that loop and the next loop
        iteration otherwise.
        """
        with self._close_lock:
            if self._closing:
                return False
            self._closing = True
        self.state = SessionState.CLOSING
        self.close_reason = reason

        self.bus.unsubscribe(self._handle)
        if self.registry is not None:
            self.registry.discard(self)
        self._call_on_loop(self._release_loop_resources)

        logger.info("Stream %s closed (%s) after %d frame(s)", self.id, reason, self.frames_sent)
        return True

    def _release_loop_resources(self) -> None:
        if self._heartbeat_task is not None and not self._heartbeat_task.done():
            self._heartbeat_task.cancel()
        if self._queue is not None:
            while not self._queue.empty():
                self._queue.get_nowait()
            self._queue.put_nowait(_CLOSE)
        self.state = SessionState.CLOSED

    def _call_on_loop(self, fn) -> None:
        if self._loop is None:
            # Never opened: no task or queue to release
            fn()
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            fn()
            return
        try:
            self._loop.call_soon_threadsafe(fn)
        except RuntimeError:
            # Loop already closed, its task and queue went with it
            self.state = SessionState.CLOSED


class SessionRegistry:
    """Live sessions, for status reporting and shutdown."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._sessions: Set[StreamSession] = set()

    def add(self, session: StreamSession) -> None:
        with self._lock:
            self._sessions.add(session)

    def discard(self, session: StreamSession) -> None:
        with self._lock:
            self._sessions.discard(session)

    def count(self, tenant_id: Optional[str] = None) -> int:
        with self._lock:
            if tenant_id is None:
                return len(self._sessions)
            return sum(1 for s in self._sessions if s.tenant_id == tenant_id)

    def by_tenant(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        with self._lock:
            for s in self._sessions:
                counts[s.tenant_id] = counts.get(s.tenant_id, 0) + 1
        return counts

    def close_all(self, reason: str = "shutdown") -> int:
        with self._lock:
            sessions: List[StreamSession] = list(self._sessions)
        for s in sessions:
            s.close(reason)
        return len(sessions)
