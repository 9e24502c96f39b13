"""
event_bus.py — In-process tenant-scoped pub/sub for board and task changes
==========================================================================
Board and task handlers publish a TenantEvent here after their write has
committed. Every stream session (connected via /rt/events) registers one
callback on its tenant's channel and receives the event synchronously.

Channels are keyed by tenant id. The bus guarantees tenant isolation and
nothing finer: group / ownership visibility is advisory and handled by
consumers (see realtime/visibility.py).

Handlers run on FastAPI's worker threads while stream sessions live on the
event loop, so the registry is guarded by a lock and ``publish`` iterates
over a snapshot taken under it.
"""
from __future__ import annotations

import itertools
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, Optional

from fastapi.encoders import jsonable_encoder

logger = logging.getLogger("taskboard.bus")

ENTITY_KINDS = ("board", "task")
CHANGE_KINDS = ("created", "updated", "deleted")


class MalformedEvent(ValueError):
    """An event that cannot be distributed (bad fields or wrong channel)."""


class DeliveryFailure(RuntimeError):
    """Raised by a subscriber callback that can no longer accept events."""


class ChannelFull(RuntimeError):
    """The tenant reached ``max_subscribers_per_tenant``."""


@dataclass(frozen=True)
class TenantEvent:
    """One committed mutation, immutable once built."""

    tenant_id: str
    entity_kind: str     # board | task
    change_kind: str     # created | updated | deleted
    payload: Mapping[str, Any]
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self) -> None:
        if not isinstance(self.tenant_id, str) or not self.tenant_id:
            raise MalformedEvent("tenant_id must be a non-empty string")
        if self.entity_kind not in ENTITY_KINDS:
            raise MalformedEvent(f"unknown entity_kind {self.entity_kind!r}")
        if self.change_kind not in CHANGE_KINDS:
            raise MalformedEvent(f"unknown change_kind {self.change_kind!r}")
        if not isinstance(self.payload, Mapping):
            raise MalformedEvent("payload must be a mapping")
        # Detach from the caller's dict and expose a read-only view
        frozen = MappingProxyType(jsonable_encoder(dict(self.payload)))
        object.__setattr__(self, "payload", frozen)

    @property
    def event_type(self) -> str:
        return f"{self.entity_kind}_{self.change_kind}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "entity_kind": self.entity_kind,
            "change_kind": self.change_kind,
            "payload": dict(self.payload),
            "timestamp": self.timestamp.isoformat(),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


Subscriber = Callable[[TenantEvent], None]


@dataclass(frozen=True)
class SubscriptionHandle:
    """Opaque token returned by ``subscribe``; pass it back to ``unsubscribe``."""

    tenant_id: str
    key: int


class TenantEventBus:
    """Tenant-keyed broadcast of TenantEvents to synchronous callbacks."""

    def __init__(self, max_subscribers_per_tenant: Optional[int] = None) -> None:
        self._lock = Lock()
        self._channels: Dict[str, Dict[int, Subscriber]] = {}
        self._keys = itertools.count(1)
        self._max_per_tenant = max_subscribers_per_tenant or None
        self._closed = False

    # -- registration ------------------------------------------------------

    def subscribe(self, tenant_id: str, callback: Subscriber) -> SubscriptionHandle:
        """Register ``callback`` on ``tenant_id``'s channel."""
        if not tenant_id:
            raise ValueError("tenant_id is required to subscribe")
        with self._lock:
            if self._closed:
                raise RuntimeError("Event bus is shut down.")
            channel = self._channels.setdefault(tenant_id, {})
            if self._max_per_tenant is not None and len(channel) >= self._max_per_tenant:
                if not channel:
                    del self._channels[tenant_id]
                raise ChannelFull(
                    f"Tenant {tenant_id} reached {self._max_per_tenant} live subscribers."
                )
            handle = SubscriptionHandle(tenant_id=tenant_id, key=next(self._keys))
            channel[handle.key] = callback
            count = len(channel)
        logger.debug("Subscribed %s to tenant %s (channel size %d)", handle.key, tenant_id, count)
        return handle

    def unsubscribe(self, handle: Optional[SubscriptionHandle]) -> bool:
        """Remove a subscription. Unknown or already-removed handles are a no-op."""
        if handle is None:
            return False
        with self._lock:
            channel = self._channels.get(handle.tenant_id)
            if channel is None or channel.pop(handle.key, None) is None:
                return False
            if not channel:
                del self._channels[handle.tenant_id]
        logger.debug("Unsubscribed %s from tenant %s", handle.key, handle.tenant_id)
        return True

    # -- delivery ----------------------------------------------------------

    def publish(self, tenant_id: str, event: TenantEvent) -> int:
        """Deliver ``event`` to every callback on ``tenant_id``'s channel.

        Returns the number of callbacks that accepted the event. A callback
        that raises is logged and removed; the others still get the event.
        Malformed events are logged and dropped.
        """
        if not isinstance(event, TenantEvent) or event.tenant_id != tenant_id:
            logger.error("Dropping malformed event for tenant %s: %r", tenant_id, event)
            return 0

        with self._lock:
            channel = self._channels.get(tenant_id)
            snapshot = list(channel.items()) if channel else []

        delivered = 0
        for key, callback in snapshot:
            try:
                callback(event)
                delivered += 1
            except Exception as exc:
                logger.warning(
                    "Subscriber %s on tenant %s failed on %s, removing it: %s",
                    key, tenant_id, event.event_type, exc,
                )
                self.unsubscribe(SubscriptionHandle(tenant_id=tenant_id, key=key))
        return delivered

    # -- introspection -----------------------------------------------------

    def subscriber_count(self, tenant_id: Optional[str] = None) -> int:
        with self._lock:
            if tenant_id is not None:
                return len(self._channels.get(tenant_id, ()))
            return sum(len(c) for c in self._channels.values())

    @property
    def channel_count(self) -> int:
        with self._lock:
            return len(self._channels)

    def tenants(self) -> List[str]:
        with self._lock:
            return list(self._channels)

    # -- lifecycle ---------------------------------------------------------

    def close(self) -> None:
        """Drop every registration and refuse new ones (process exit).

        Stream sessions are closed by their registry first; any handle they
        still hold simply becomes unknown to the bus.
        """
        with self._lock:
            self._closed = True
            dropped = sum(len(c) for c in self._channels.values())
            self._channels.clear()
        logger.info("Event bus closed, dropped %d subscription(s)", dropped)
