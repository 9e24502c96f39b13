"""
Tests for /search and the Prometheus /metrics endpoint.
"""
from __future__ import annotations

import uuid

from taskboard.main import app


def _auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


class TestSearch:
    def test_matches_boards_and_tasks(self, client, make_tenant):
        token = make_tenant()["accessToken"]
        board = client.post("/boards", json={"name": "Zephyr launch"}, headers=_auth(token)).json()
        client.post("/boards", json={"name": "Other", "description": "zephyr notes"}, headers=_auth(token))
        client.post(f"/boards/{board['id']}/tasks", json={"title": "Book the ZEPHYR venue"}, headers=_auth(token))
        client.post(f"/boards/{board['id']}/tasks", json={"title": "Unrelated"}, headers=_auth(token))

        resp = client.get("/search", params={"q": "zephyr"}, headers=_auth(token))
        assert resp.status_code == 200
        results = resp.json()
        assert {b["name"] for b in results["boards"]} == {"Zephyr launch", "Other"}
        assert [t["title"] for t in results["tasks"]] == ["Book the ZEPHYR venue"]
        assert results["tasks"][0]["board"] == {"id": board["id"], "name": "Zephyr launch"}
        assert results["tasks"][0]["status"] == "TODO"

    def test_short_query_returns_nothing(self, client, make_tenant):
        token = make_tenant()["accessToken"]
        client.post("/boards", json={"name": "A board"}, headers=_auth(token))
        resp = client.get("/search", params={"q": "a"}, headers=_auth(token))
        assert resp.json() == {"boards": [], "tasks": []}

    def test_at_most_five_of_each(self, client, make_tenant):
        token = make_tenant()["accessToken"]
        marker = uuid.uuid4().hex[:8]
        for i in range(7):
            client.post("/boards", json={"name": f"{marker} {i}"}, headers=_auth(token))
        results = client.get("/search", params={"q": marker}, headers=_auth(token)).json()
        assert len(results["boards"]) == 5

    def test_other_tenants_never_match(self, client, make_tenant):
        mine = make_tenant("Mine")["accessToken"]
        theirs = make_tenant("Theirs")["accessToken"]
        marker = uuid.uuid4().hex[:8]
        board = client.post("/boards", json={"name": f"Secret {marker}"}, headers=_auth(theirs)).json()
        client.post(f"/boards/{board['id']}/tasks", json={"title": f"Task {marker}"}, headers=_auth(theirs))
        results = client.get("/search", params={"q": marker}, headers=_auth(mine)).json()
        assert results == {"boards": [], "tasks": []}

    def test_respects_group_visibility(self, client, make_tenant, make_member):
        admin = make_tenant()
        admin_token = admin["accessToken"]
        ops = client.post("/groups", json={"name": "Ops"}, headers=_auth(admin_token)).json()
        marker = uuid.uuid4().hex[:8]
        hidden = client.post("/boards", json={"name": f"Ops {marker}", "groupId": ops["id"]},
                             headers=_auth(admin_token)).json()
        client.post(f"/boards/{hidden['id']}/tasks", json={"title": f"Ops task {marker}"},
                    headers=_auth(admin_token))
        member = make_member(admin["user"]["tenantId"], admin_token)
        client.post("/boards", json={"name": f"Mine {marker}"}, headers=_auth(member["accessToken"]))

        results = client.get("/search", params={"q": marker}, headers=_auth(member["accessToken"])).json()
        assert [b["name"] for b in results["boards"]] == [f"Mine {marker}"]
        assert results["tasks"] == []

        everything = client.get("/search", params={"q": marker}, headers=_auth(admin_token)).json()
        assert len(everything["boards"]) == 2
        assert len(everything["tasks"]) == 1

    def test_requires_auth(self, client):
        assert client.get("/search", params={"q": "abc"}).status_code == 401


class TestMetrics:
    def test_exposes_counts(self, client, make_tenant):
        token = make_tenant()["accessToken"]
        client.post("/boards", json={"name": "Counted"}, headers=_auth(token))
        resp = client.get("/metrics")
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/plain")
        values = {
            name: float(value)
            for name, value in (
                line.split(" ", 1) for line in resp.text.splitlines() if line and not line.startswith("#")
            )
        }
        for name in ("taskboard_users_total", "taskboard_boards_total", "taskboard_tenants_total"):
            assert values[name] >= 1
        assert "taskboard_tasks_total" in values
        assert values["taskboard_uptime_seconds"] >= 0

    def test_reports_stream_subscribers(self, client):
        bus = app.state.event_bus
        before = bus.subscriber_count()
        handle = bus.subscribe("metrics-tenant", lambda e: None)
        try:
            text = client.get("/metrics").text
        finally:
            bus.unsubscribe(handle)
        assert f"taskboard_stream_subscribers {float(before + 1)}" in text
