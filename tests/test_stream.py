"""
Tests for the SSE endpoints (/rt/events, /rt/status).

TestClient cannot stop reading an endless stream, so /rt/events is driven
by calling the ASGI app directly: frames are collected from ``send`` and a
``http.disconnect`` is delivered once enough have arrived.

Run with: pytest tests/test_stream.py -v
"""
from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional

import httpx

from taskboard.auth.core import Principal
from taskboard.api.routes_stream import EventStreamResponse
from taskboard.config import settings
from taskboard.event_bus import TenantEventBus
from taskboard.main import app
from taskboard.realtime.encoder import decode_frame
from taskboard.realtime.session import SessionRegistry, StreamSession


def _auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


async def _open_stream(
    token: str,
    *,
    frames_wanted: int = 1,
    via_query: bool = False,
    after_connected: Optional[Callable[[], Awaitable[object]]] = None,
):
    """Run one /rt/events request; returns (status, headers, frames, after_connected result)."""
    headers = [(b"host", b"testserver")]
    query = b""
    if via_query:
        query = f"token={token}".encode()
    else:
        headers.append((b"authorization", f"Bearer {token}".encode()))

    scope = {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": "GET",
        "scheme": "http",
        "path": "/rt/events",
        "raw_path": b"/rt/events",
        "query_string": query,
        "root_path": "",
        "headers": headers,
        "client": ("127.0.0.1", 50000),
        "server": ("testserver", 80),
    }
    start: dict = {}
    frames: list = []
    side_tasks: list = []
    done = asyncio.Event()

    async def receive():
        await done.wait()
        # Keep the stream open until the side request has finished
        await asyncio.gather(*side_tasks)
        return {"type": "http.disconnect"}

    async def send(message):
        if message["type"] == "http.response.start":
            start["status"] = message["status"]
            start["headers"] = {k.decode().lower(): v.decode() for k, v in message["headers"]}
            return
        body = message.get("body", b"")
        if start["status"] == 200 and body:
            frames.append(decode_frame(body.decode()))
            if len(frames) == 1 and after_connected is not None:
                side_tasks.append(asyncio.create_task(after_connected()))
        if len(frames) >= frames_wanted or not message.get("more_body", False):
            done.set()

    await asyncio.wait_for(app(scope, receive, send), timeout=10)
    side_result = await side_tasks[0] if side_tasks else None
    return start["status"], start["headers"], frames, side_result


def _api() -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver")


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------

class TestStreamAuth:
    def test_requires_credential(self, client):
        resp = client.get("/rt/events")
        assert resp.status_code == 401

    def test_rejects_garbage_token(self, client):
        resp = client.get("/rt/events", headers=_auth("not-a-jwt"))
        assert resp.status_code == 401

    def test_rejects_garbage_query_token(self, client):
        resp = client.get("/rt/events", params={"token": "not-a-jwt"})
        assert resp.status_code == 401


# ---------------------------------------------------------------------------
# Stream behaviour
# ---------------------------------------------------------------------------

class TestEventStream:
    def test_connected_frame_and_headers(self, make_tenant):
        admin = make_tenant()
        status, headers, frames, _ = asyncio.run(_open_stream(admin["accessToken"]))
        assert status == 200
        assert headers["content-type"].startswith("text/event-stream")
        assert headers["cache-control"] == "no-cache"
        assert headers["x-accel-buffering"] == "no"
        assert frames[0]["type"] == "connected"
        assert frames[0]["tenantId"] == admin["user"]["tenantId"]

    def test_query_token_accepted(self, make_tenant):
        admin = make_tenant()
        status, _, frames, _ = asyncio.run(_open_stream(admin["accessToken"], via_query=True))
        assert status == 200
        assert frames[0]["type"] == "connected"

    def test_board_mutation_reaches_stream(self, make_tenant):
        admin = make_tenant()
        token = admin["accessToken"]

        async def create_board():
            async with _api() as api:
                resp = await api.post("/boards", json={"name": "Launch"}, headers=_auth(token))
                return resp.json()

        _, _, frames, board = asyncio.run(
            _open_stream(token, frames_wanted=2, after_connected=create_board)
        )
        assert frames[1]["type"] == "board_created"
        assert frames[1]["data"]["id"] == board["id"]
        assert frames[1]["data"]["name"] == "Launch"
        assert frames[1]["data"]["ownerId"] == admin["user"]["id"]
        assert frames[1]["data"]["tenantId"] == admin["user"]["tenantId"]
        assert frames[1]["timestamp"].endswith("Z")

    def test_other_tenant_mutations_not_delivered(self, make_tenant):
        mine = make_tenant("Mine")
        theirs = make_tenant("Theirs")

        async def create_boards():
            async with _api() as api:
                await api.post("/boards", json={"name": "Foreign"}, headers=_auth(theirs["accessToken"]))
                await api.post("/boards", json={"name": "Local"}, headers=_auth(mine["accessToken"]))

        _, _, frames, _ = asyncio.run(
            _open_stream(mine["accessToken"], frames_wanted=2, after_connected=create_boards)
        )
        assert frames[1]["data"]["name"] == "Local"

    def test_heartbeat(self, make_tenant, monkeypatch):
        monkeypatch.setattr(settings, "heartbeat_interval_seconds", 0.05)
        admin = make_tenant()
        _, _, frames, _ = asyncio.run(_open_stream(admin["accessToken"], frames_wanted=2))
        assert [f["type"] for f in frames] == ["connected", "heartbeat"]

    def test_disconnect_releases_exactly_one_subscription(self, make_tenant):
        admin = make_tenant()
        tenant_id = admin["user"]["tenantId"]
        bus = app.state.event_bus
        other = bus.subscribe(tenant_id, lambda e: None)
        try:
            before = bus.subscriber_count(tenant_id)

            async def count_live():
                return bus.subscriber_count(tenant_id)

            _, _, _, during = asyncio.run(_open_stream(admin["accessToken"], after_connected=count_live))
            assert during == before + 1
            assert bus.subscriber_count(tenant_id) == before
            assert app.state.stream_sessions.count(tenant_id) == 0
        finally:
            bus.unsubscribe(other)

    def test_rapid_status_updates_arrive_in_order(self, client, make_tenant):
        admin = make_tenant()
        token = admin["accessToken"]
        board = client.post("/boards", json={"name": "Kanban"}, headers=_auth(token)).json()
        url = f"/boards/{board['id']}/tasks"

        async def churn():
            async with _api() as api:
                task = (await api.post(url, json={"title": "Move me"}, headers=_auth(token))).json()
                for status in ("IN_PROGRESS", "DONE", "TODO", "DONE"):
                    await api.put(f"{url}/{task['id']}", json={"status": status}, headers=_auth(token))

        _, _, frames, _ = asyncio.run(_open_stream(token, frames_wanted=6, after_connected=churn))
        assert [f["type"] for f in frames[1:]] == ["task_created"] + ["task_updated"] * 4
        assert [f["data"]["status"] for f in frames[2:]] == ["IN_PROGRESS", "DONE", "TODO", "DONE"]

    def test_status_counts_live_stream(self, make_tenant):
        admin = make_tenant()
        token = admin["accessToken"]

        async def read_status():
            async with _api() as api:
                return (await api.get("/rt/status", headers=_auth(token))).json()

        _, _, _, live = asyncio.run(_open_stream(token, after_connected=read_status))
        assert live["activeSubscribers"] == 1
        assert live["tenantId"] == admin["user"]["tenantId"]

    def test_tenant_stream_limit(self, client, make_tenant, monkeypatch):
        monkeypatch.setattr(settings, "max_subscribers_per_tenant", 1)
        admin = make_tenant()
        bus = app.state.event_bus
        handle = bus.subscribe(admin["user"]["tenantId"], lambda e: None)
        try:
            resp = client.get("/rt/events", headers=_auth(admin["accessToken"]))
        finally:
            bus.unsubscribe(handle)
        assert resp.status_code == 503


class TestVisibilityFilter:
    def test_filtered_stream_hides_other_group_boards(self, client, make_tenant, make_member, monkeypatch):
        monkeypatch.setattr(settings, "stream_visibility_filter", True)
        admin = make_tenant()
        admin_token = admin["accessToken"]
        group = client.post("/groups", json={"name": "Design"}, headers=_auth(admin_token)).json()
        member = make_member(admin["user"]["tenantId"], admin_token)

        async def create_boards():
            async with _api() as api:
                await api.post("/boards", json={"name": "Hidden", "groupId": group["id"]},
                               headers=_auth(admin_token))
                await api.post("/boards", json={"name": "Private"}, headers=_auth(member["accessToken"]))

        _, _, frames, _ = asyncio.run(
            _open_stream(member["accessToken"], frames_wanted=2, after_connected=create_boards)
        )
        assert frames[1]["data"]["name"] == "Private"

    def test_unfiltered_stream_is_tenant_wide(self, client, make_tenant, make_member):
        admin = make_tenant()
        admin_token = admin["accessToken"]
        group = client.post("/groups", json={"name": "Ops"}, headers=_auth(admin_token)).json()
        member = make_member(admin["user"]["tenantId"], admin_token)

        async def create_board():
            async with _api() as api:
                await api.post("/boards", json={"name": "Group only", "groupId": group["id"]},
                               headers=_auth(admin_token))

        _, _, frames, _ = asyncio.run(
            _open_stream(member["accessToken"], frames_wanted=2, after_connected=create_board)
        )
        assert frames[1]["data"]["name"] == "Group only"


class TestStreamStatus:
    def test_status_shape(self, client, make_tenant):
        admin = make_tenant()
        resp = client.get("/rt/status", headers=_auth(admin["accessToken"]))
        assert resp.status_code == 200
        data = resp.json()
        assert data["tenantId"] == admin["user"]["tenantId"]
        assert data["activeSubscribers"] == 0
        assert data["heartbeatIntervalSec"] == settings.heartbeat_interval_seconds
        assert data["visibilityFilter"] is False

    def test_status_requires_auth(self, client):
        assert client.get("/rt/status").status_code == 401


class TestStreamTeardown:
    def test_stalled_client_hits_write_timeout(self):
        principal = Principal(user_id="u1", tenant_id="stalled-tenant", role_id="r1", role_name="member")
        bus = TenantEventBus()
        registry = SessionRegistry()
        session = StreamSession(bus, principal, registry=registry)
        response = EventStreamResponse(session, write_timeout=0.1)
        started = []

        async def send(message):
            if message["type"] == "http.response.start":
                started.append(message["status"])
                return
            # The client never drains its socket
            await asyncio.Event().wait()

        asyncio.run(asyncio.wait_for(response.stream_response(send), timeout=5))
        assert started == [200]
        assert session.close_reason == "write_timeout"
        assert bus.subscriber_count("stalled-tenant") == 0
        assert registry.count() == 0
