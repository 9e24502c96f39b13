"""
encoder.py — Server-Sent Events framing for the real-time stream
================================================================
One frame per event::

    event: board_updated
    data: {"type": "board_updated", "data": {...}, "timestamp": "2026-01-01T10:00:00.000Z"}

The JSON body always carries ``type``, ``data`` and ``timestamp``.
``connected`` frames also repeat ``tenantId`` at the top level.
"""
from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from ..event_bus import TenantEvent

CONNECTED = "connected"
HEARTBEAT = "heartbeat"


def format_timestamp(at: datetime) -> str:
    """ISO-8601 UTC with millisecond precision and a ``Z`` suffix."""
    if at.tzinfo is None:
        at = at.replace(tzinfo=timezone.utc)
    at = at.astimezone(timezone.utc)
    return at.strftime("%Y-%m-%dT%H:%M:%S.") + f"{at.microsecond // 1000:03d}Z"


def _frame(event_type: str, body: Dict[str, Any]) -> str:
    data = json.dumps(body, separators=(",", ":"), ensure_ascii=False)
    return f"event: {event_type}\ndata: {data}\n\n"


def encode_event(event: TenantEvent) -> str:
    return _frame(
        event.event_type,
        {
            "type": event.event_type,
            "data": dict(event.payload),
            "timestamp": format_timestamp(event.timestamp),
        },
    )


def encode_connected(tenant_id: str, at: Optional[datetime] = None) -> str:
    at = at or datetime.now(timezone.utc)
    return _frame(
        CONNECTED,
        {
            "type": CONNECTED,
            "tenantId": tenant_id,
            "data": {"tenantId": tenant_id},
            "timestamp": format_timestamp(at),
        },
    )


def encode_heartbeat(at: Optional[datetime] = None) -> str:
    at = at or datetime.now(timezone.utc)
    return _frame(HEARTBEAT, {"type": HEARTBEAT, "data": {}, "timestamp": format_timestamp(at)})


def decode_frame(frame: str) -> Dict[str, Any]:
    """Parse one frame back into its JSON body.

    Multi-line ``data:`` fields are joined with newlines as SSE
    requires; comment lines (``:``) are ignored.
    """
    data_lines = []
    for line in frame.splitlines():
        if line.startswith("data:"):
            data_lines.append(line[5:].lstrip(" "))
    if not data_lines:
        raise ValueError("frame has no data field")
    return json.loads("\n".join(data_lines))
