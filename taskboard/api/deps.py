from __future__ import annotations

from fastapi import Request

from ..event_bus import TenantEventBus
from ..realtime.session import SessionRegistry


def get_event_bus(request: Request) -> TenantEventBus:
    """The process-wide bus built by ``create_app``; override it in tests."""
    return request.app.state.event_bus


def get_session_registry(request: Request) -> SessionRegistry:
    return request.app.state.stream_sessions
