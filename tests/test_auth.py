"""
Tests for tenant signup, authentication, token refresh and membership admin.
"""
from __future__ import annotations

import uuid

from taskboard.auth.core import Principal, create_access_token, decode_token


def _auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def _email() -> str:
    return f"user-{uuid.uuid4().hex[:10]}@example.com"


class TestTenantSignup:
    def test_signup_returns_admin_tokens(self, make_tenant):
        admin = make_tenant("Globex")
        assert admin["tokenType"] == "bearer"
        assert admin["refreshToken"]
        assert admin["user"]["roleName"] == "admin"
        assert admin["user"]["tenantName"] == "Globex"

    def test_access_token_claims(self, make_tenant):
        admin = make_tenant()
        claims = decode_token(admin["accessToken"])
        assert claims["sub"] == admin["user"]["id"]
        assert claims["tenant_id"] == admin["user"]["tenantId"]
        assert claims["role_name"] == "admin"

    def test_duplicate_admin_email_rejected(self, client):
        email = _email()
        body = {
            "tenantName": "First",
            "adminEmail": email,
            "adminName": "A",
            "adminSurname": "B",
            "adminPassword": "long-enough",
        }
        assert client.post("/tenants", json=body).status_code == 201
        assert client.post("/tenants", json={**body, "tenantName": "Second"}).status_code == 409

    def test_short_password_rejected(self, client):
        resp = client.post("/tenants", json={
            "tenantName": "Weak",
            "adminEmail": _email(),
            "adminName": "A",
            "adminSurname": "B",
            "adminPassword": "short",
        })
        assert resp.status_code == 422

    def test_rename_tenant_admin_only(self, client, make_tenant, make_member):
        admin = make_tenant("Before")
        member = make_member(admin["user"]["tenantId"], admin["accessToken"])
        assert client.put("/tenants/me", json={"name": "Nope"},
                          headers=_auth(member["accessToken"])).status_code == 403
        resp = client.put("/tenants/me", json={"name": "After"}, headers=_auth(admin["accessToken"]))
        assert resp.status_code == 200
        assert client.get("/tenants/me", headers=_auth(admin["accessToken"])).json()["name"] == "After"


class TestLogin:
    def test_register_then_login(self, client, make_tenant):
        tenant_id = make_tenant()["user"]["tenantId"]
        email = _email()
        reg = client.post("/auth/register", json={
            "email": email, "name": "N", "surname": "S", "password": "password1", "tenantId": tenant_id,
        })
        assert reg.status_code == 201
        assert reg.json()["user"]["roleName"] == "member"

        login = client.post("/auth/login", json={"email": email, "password": "password1"})
        assert login.status_code == 200
        assert login.json()["user"]["email"] == email

    def test_register_unknown_tenant(self, client):
        resp = client.post("/auth/register", json={
            "email": _email(), "name": "N", "surname": "S", "password": "password1", "tenantId": "nope",
        })
        assert resp.status_code == 404

    def test_wrong_password(self, client, make_tenant):
        admin = make_tenant()
        me = client.get("/auth/me", headers=_auth(admin["accessToken"])).json()
        resp = client.post("/auth/login", json={"email": me["email"], "password": "wrong-password"})
        assert resp.status_code == 401

    def test_deactivated_user_cannot_login(self, client, make_tenant, make_member):
        admin = make_tenant()
        member = make_member(admin["user"]["tenantId"], admin["accessToken"])
        client.patch(f"/users/{member['user']['id']}", json={"isActive": False},
                     headers=_auth(admin["accessToken"]))
        resp = client.post("/auth/login", json={"email": member["user"]["email"], "password": "correct-horse"})
        assert resp.status_code == 401

    def test_me(self, client, make_tenant):
        admin = make_tenant()
        resp = client.get("/auth/me", headers=_auth(admin["accessToken"]))
        assert resp.status_code == 200
        assert resp.json()["id"] == admin["user"]["id"]
        assert resp.json()["isActive"] is True

    def test_token_for_unknown_tenant_rejected(self, client):
        token = create_access_token(Principal(
            user_id="ghost", tenant_id="no-such-tenant", role_id="r", role_name="admin",
        ))
        assert client.get("/boards", headers=_auth(token)).status_code == 403


class TestRefresh:
    def test_refresh_rotates_token(self, client, make_tenant):
        admin = make_tenant()
        old = admin["refreshToken"]
        resp = client.post("/auth/refresh", json={"refreshToken": old})
        assert resp.status_code == 200
        assert resp.json()["refreshToken"] != old
        # The consumed token cannot be replayed
        assert client.post("/auth/refresh", json={"refreshToken": old}).status_code == 401

    def test_refresh_picks_up_group_change(self, client, make_tenant, make_member):
        admin = make_tenant()
        admin_token = admin["accessToken"]
        member = make_member(admin["user"]["tenantId"], admin_token)
        group = client.post("/groups", json={"name": "Late"}, headers=_auth(admin_token)).json()
        client.patch(f"/users/{member['user']['id']}", json={"groupId": group["id"]},
                     headers=_auth(admin_token))

        refreshed = client.post("/auth/refresh", json={"refreshToken": member["refreshToken"]}).json()
        assert decode_token(refreshed["accessToken"])["group_id"] == group["id"]

    def test_logout_revokes_refresh_token(self, client, make_tenant):
        admin = make_tenant()
        assert client.post("/auth/logout", json={"refreshToken": admin["refreshToken"]}).status_code == 200
        assert client.post("/auth/refresh", json={"refreshToken": admin["refreshToken"]}).status_code == 401

    def test_logout_unknown_token_succeeds(self, client):
        assert client.post("/auth/logout", json={"refreshToken": "unknown"}).status_code == 200


class TestGroupsAndUsers:
    def test_group_lifecycle(self, client, make_tenant):
        token = make_tenant()["accessToken"]
        group = client.post("/groups", json={"name": "QA"}, headers=_auth(token))
        assert group.status_code == 201
        gid = group.json()["id"]

        renamed = client.put(f"/groups/{gid}", json={"name": "Quality"}, headers=_auth(token))
        assert renamed.json()["name"] == "Quality"
        assert client.delete(f"/groups/{gid}", headers=_auth(token)).status_code == 200

    def test_group_with_members_cannot_be_deleted(self, client, make_tenant, make_member):
        admin = make_tenant()
        token = admin["accessToken"]
        group = client.post("/groups", json={"name": "Busy"}, headers=_auth(token)).json()
        make_member(admin["user"]["tenantId"], token, group_id=group["id"])
        assert client.delete(f"/groups/{group['id']}", headers=_auth(token)).status_code == 403

    def test_member_sees_only_own_group(self, client, make_tenant, make_member):
        admin = make_tenant()
        token = admin["accessToken"]
        mine = client.post("/groups", json={"name": "Mine"}, headers=_auth(token)).json()
        client.post("/groups", json={"name": "Theirs"}, headers=_auth(token))
        member = make_member(admin["user"]["tenantId"], token, group_id=mine["id"])

        groups = client.get("/groups", headers=_auth(member["accessToken"])).json()
        assert [g["id"] for g in groups] == [mine["id"]]
        assert groups[0]["memberCount"] == 1

    def test_members_cannot_manage_groups(self, client, make_tenant, make_member):
        admin = make_tenant()
        member = make_member(admin["user"]["tenantId"], admin["accessToken"])
        resp = client.post("/groups", json={"name": "Rogue"}, headers=_auth(member["accessToken"]))
        assert resp.status_code == 403

    def test_user_list_is_tenant_scoped(self, client, make_tenant):
        a = make_tenant("A")
        b = make_tenant("B")
        ids = {u["id"] for u in client.get("/users", headers=_auth(a["accessToken"])).json()}
        assert a["user"]["id"] in ids
        assert b["user"]["id"] not in ids

    def test_promote_member(self, client, make_tenant, make_member):
        admin = make_tenant()
        member = make_member(admin["user"]["tenantId"], admin["accessToken"])
        resp = client.patch(f"/users/{member['user']['id']}", json={"roleName": "admin"},
                            headers=_auth(admin["accessToken"]))
        assert resp.status_code == 200
        assert resp.json()["roleName"] == "admin"

    def test_cannot_move_user_into_foreign_group(self, client, make_tenant, make_member):
        admin = make_tenant("Home")
        other = make_tenant("Away")
        foreign = client.post("/groups", json={"name": "Away team"},
                              headers=_auth(other["accessToken"])).json()
        member = make_member(admin["user"]["tenantId"], admin["accessToken"])
        resp = client.patch(f"/users/{member['user']['id']}", json={"groupId": foreign["id"]},
                            headers=_auth(admin["accessToken"]))
        assert resp.status_code == 404
