"""
pytest configuration – point the service at a throwaway SQLite database,
create tables before tests run, and provide tenant / user factories.
"""
import os
import uuid

os.environ.setdefault("TASKBOARD_DATABASE_URL", "sqlite:///./test_taskboard.db")
os.environ.setdefault("TASKBOARD_SEED_DEMO_TENANT", "false")
os.environ.setdefault("TASKBOARD_LOGIN_RATE_LIMIT", "10000/minute")
os.environ.setdefault("TASKBOARD_LOG_FORMAT", "text")

import pytest
from fastapi.testclient import TestClient

from taskboard.database import Base, engine
from taskboard import models  # noqa: F401 – registers ORM mappings with Base.metadata
from taskboard.main import app


@pytest.fixture(autouse=True, scope="session")
def create_tables():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


def _unique_email(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:10]}@example.com"


def auth_headers(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def make_tenant(client):
    """Sign up a fresh tenant; returns the AuthResponse JSON for its admin."""

    def _make(name: str = "Acme") -> dict:
        resp = client.post(
            "/tenants",
            json={
                "tenantName": name,
                "adminEmail": _unique_email("admin"),
                "adminName": "Ada",
                "adminSurname": "Admin",
                "adminPassword": "correct-horse",
            },
        )
        assert resp.status_code == 201, resp.text
        return resp.json()

    return _make


@pytest.fixture
def make_member(client):
    """Register a member in ``tenant_id``, optionally placing them in a group.

    Returns the member's AuthResponse JSON; when a group is assigned the
    member logs in again so the access token carries the group.
    """

    def _make(tenant_id: str, admin_token: str, group_id: str | None = None) -> dict:
        email = _unique_email("member")
        resp = client.post(
            "/auth/register",
            json={
                "email": email,
                "name": "Max",
                "surname": "Member",
                "password": "correct-horse",
                "tenantId": tenant_id,
            },
        )
        assert resp.status_code == 201, resp.text
        member = resp.json()
        if group_id is None:
            return member
        patched = client.patch(
            f"/users/{member['user']['id']}",
            json={"groupId": group_id},
            headers=auth_headers(admin_token),
        )
        assert patched.status_code == 200, patched.text
        relog = client.post("/auth/login", json={"email": email, "password": "correct-horse"})
        assert relog.status_code == 200, relog.text
        return relog.json()

    return _make


@pytest.fixture
def tenant_events():
    """Record every event the app's bus publishes to a tenant's channel."""
    bus = app.state.event_bus
    handles = []

    def _subscribe(tenant_id: str) -> list:
        seen: list = []
        handles.append(bus.subscribe(tenant_id, seen.append))
        return seen

    yield _subscribe
    for handle in handles:
        bus.unsubscribe(handle)
