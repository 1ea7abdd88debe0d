"""
tests/test_user_routes.py -- Integration tests for /api/v1/users.

Covers:
  - directory reads require auth; 404 for unknown ids
  - admin create; non-admin create refused
  - PATCH rules: self profile edits allowed, other users and admin-only fields
    refused for non-admins, last admin cannot leave the admin group
  - change-password: self only, current password checked, other sessions revoked
  - block/unblock/delete: admin only, never on self, 404 for unknown ids

Fixtures used (from conftest.py): client, admin_client, stores, make_user, login_as
"""

from __future__ import annotations

from fastapi.testclient import TestClient

from auth.models import ADMIN_GROUP_ID


def _new_user(username: str, **extra) -> dict:
    return {
        "username": username,
        "email": f"{username}@example.com",
        "password": "newuserpass1",
        "confirm_password": "newuserpass1",
        "first_name": "New",
        "last_name": "User",
        **extra,
    }


class TestUserReads:
    def test_list_requires_auth(self, client: TestClient) -> None:
        assert client.get("/api/v1/users").status_code == 401

    def test_list_users(self, admin_client: TestClient, make_user) -> None:
        make_user("bob")
        data = admin_client.get("/api/v1/users").json()
        assert [u["username"] for u in data] == ["testadmin", "bob"]
        assert data[0]["is_admin"] is True
        assert data[1]["is_admin"] is False
        assert all("hashed_password" not in u for u in data)

    def test_get_user(self, admin_client: TestClient, make_user) -> None:
        bob = make_user("bob")
        resp = admin_client.get(f"/api/v1/users/{bob.id}")
        assert resp.status_code == 200
        assert resp.json()["email"] == "bob@example.com"

    def test_get_missing_user(self, admin_client: TestClient) -> None:
        resp = admin_client.get("/api/v1/users/9999")
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "not_found"

    def test_non_numeric_id(self, admin_client: TestClient) -> None:
        assert admin_client.get("/api/v1/users/abc").status_code == 400


class TestCreateUser:
    def test_admin_creates_user_in_admin_group(self, admin_client: TestClient, stores) -> None:
        resp = admin_client.post("/api/v1/users", json=_new_user("carol", group_id=ADMIN_GROUP_ID))
        assert resp.status_code == 201, resp.text
        assert resp.json()["is_admin"] is True
        creates = [a for a in stores.activity_log.list(user_id=stores.admin_id) if a.action == "user_create"]
        assert len(creates) == 1

    def test_non_admin_refused(self, client: TestClient, make_user, login_as) -> None:
        make_user("bob")
        bob = login_as("bob")
        assert bob.post("/api/v1/users", json=_new_user("carol")).status_code == 403


class TestPatchUser:
    def test_non_admin_cannot_change_other_users_group(self, client: TestClient, make_user, login_as) -> None:
        make_user("bob")
        carol = make_user("carol")
        bob = login_as("bob")
        resp = bob.patch(f"/api/v1/users/{carol.id}", json={"group_id": 3})
        assert resp.status_code == 403

    def test_non_admin_edits_own_first_name(self, client: TestClient, stores, make_user, login_as) -> None:
        user = make_user("bob")
        bob = login_as("bob")
        resp = bob.patch(f"/api/v1/users/{user.id}", json={"first_name": "Robert"})
        assert resp.status_code == 200, resp.text
        assert resp.json()["first_name"] == "Robert"
        assert stores.user_store.get_by_id(user.id).last_name == "Tester"

    def test_non_admin_cannot_change_own_group(self, client: TestClient, make_user, login_as) -> None:
        user = make_user("bob")
        bob = login_as("bob")
        assert bob.patch(f"/api/v1/users/{user.id}", json={"group_id": ADMIN_GROUP_ID}).status_code == 403
        assert bob.patch(f"/api/v1/users/{user.id}", json={"is_active": False}).status_code == 403

    def test_admin_moves_user(self, admin_client: TestClient, stores, make_user) -> None:
        user = make_user("bob")
        resp = admin_client.patch(f"/api/v1/users/{user.id}", json={"group_id": 3, "is_active": False})
        assert resp.status_code == 200
        assert resp.json()["group_id"] == 3
        assert resp.json()["is_active"] is False
        updates = [a for a in stores.activity_log.list(user_id=stores.admin_id) if a.action == "user_update"]
        assert len(updates) == 1

    def test_admin_unknown_group(self, admin_client: TestClient, make_user) -> None:
        user = make_user("bob")
        assert admin_client.patch(f"/api/v1/users/{user.id}", json={"group_id": 999}).status_code == 400

    def test_last_admin_cannot_leave_admin_group(self, admin_client: TestClient, stores) -> None:
        resp = admin_client.patch(f"/api/v1/users/{stores.admin_id}", json={"group_id": 2})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "last_admin"

    def test_email_conflict(self, admin_client: TestClient, make_user) -> None:
        make_user("bob")
        carol = make_user("carol")
        resp = admin_client.patch(f"/api/v1/users/{carol.id}", json={"email": "bob@example.com"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "email_taken"

    def test_avatar_can_be_cleared(self, admin_client: TestClient, make_user) -> None:
        user = make_user("bob")
        admin_client.patch(f"/api/v1/users/{user.id}", json={"avatar_url": "https://example.com/a.png"})
        resp = admin_client.patch(f"/api/v1/users/{user.id}", json={"avatar_url": None})
        assert resp.status_code == 200
        assert resp.json()["avatar_url"] is None

    def test_null_first_name_rejected(self, admin_client: TestClient, make_user) -> None:
        user = make_user("bob")
        assert admin_client.patch(f"/api/v1/users/{user.id}", json={"first_name": None}).status_code == 400

    def test_patch_missing_user(self, admin_client: TestClient) -> None:
        assert admin_client.patch("/api/v1/users/9999", json={"first_name": "X"}).status_code == 404


class TestChangePassword:
    def test_change_own_password(self, client: TestClient, stores, make_user, login_as) -> None:
        user = make_user("bob")
        other_device = login_as("bob")
        bob = login_as("bob")
        body = {"current_password": "userpass123", "password": "changed12345", "confirm_password": "changed12345"}
        resp = bob.post(f"/api/v1/users/{user.id}/change-password", json=body)
        assert resp.status_code == 200, resp.text
        assert bob.get("/api/v1/session").status_code == 200
        assert other_device.get("/api/v1/session").status_code == 401
        login_as("bob", "changed12345")

    def test_wrong_current_password(self, client: TestClient, make_user, login_as) -> None:
        user = make_user("bob")
        bob = login_as("bob")
        body = {"current_password": "wrongwrong", "password": "changed12345", "confirm_password": "changed12345"}
        resp = bob.post(f"/api/v1/users/{user.id}/change-password", json=body)
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_password"

    def test_cannot_change_someone_elses(self, admin_client: TestClient, make_user) -> None:
        user = make_user("bob")
        body = {"current_password": "adminpass123", "password": "changed12345", "confirm_password": "changed12345"}
        assert admin_client.post(f"/api/v1/users/{user.id}/change-password", json=body).status_code == 403


class TestAdministration:
    def test_admin_cannot_block_self(self, admin_client: TestClient, stores) -> None:
        resp = admin_client.post(f"/api/v1/users/{stores.admin_id}/block")
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "self_operation"

    def test_admin_cannot_delete_self(self, admin_client: TestClient, stores) -> None:
        resp = admin_client.delete(f"/api/v1/users/{stores.admin_id}")
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "self_operation"
        assert stores.user_store.get_by_id(stores.admin_id) is not None

    def test_block_is_idempotent(self, admin_client: TestClient, make_user) -> None:
        user = make_user("bob")
        assert admin_client.post(f"/api/v1/users/{user.id}/block").json()["is_blocked"] is True
        assert admin_client.post(f"/api/v1/users/{user.id}/block").json()["is_blocked"] is True
        assert admin_client.post(f"/api/v1/users/{user.id}/unblock").json()["is_blocked"] is False
        assert admin_client.post(f"/api/v1/users/{user.id}/unblock").json()["is_blocked"] is False

    def test_block_missing_user(self, admin_client: TestClient) -> None:
        assert admin_client.post("/api/v1/users/9999/block").status_code == 404

    def test_non_admin_cannot_block(self, client: TestClient, make_user, login_as) -> None:
        make_user("bob")
        carol = make_user("carol")
        bob = login_as("bob")
        resp = bob.post(f"/api/v1/users/{carol.id}/block")
        assert resp.status_code == 403
        assert resp.json()["error"]["message"] == "Admin access required."

    def test_delete_user(self, admin_client: TestClient, stores, make_user) -> None:
        user = make_user("bob")
        resp = admin_client.delete(f"/api/v1/users/{user.id}")
        assert resp.status_code == 204
        assert admin_client.get(f"/api/v1/users/{user.id}").status_code == 404
        assert admin_client.delete(f"/api/v1/users/{user.id}").status_code == 404
        deletes = [a for a in stores.activity_log.list(user_id=stores.admin_id) if a.action == "user_delete"]
        assert len(deletes) == 1
