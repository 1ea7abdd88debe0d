"""
tests/test_dashboard_route.py -- Integration tests for GET /api/v1/dashboard/stats.
"""

from __future__ import annotations

from fastapi.testclient import TestClient


def test_dashboard_requires_auth(client: TestClient) -> None:
    assert client.get("/api/v1/dashboard/stats").status_code == 401


def test_dashboard_stats(admin_client: TestClient, stores, make_user) -> None:
    make_user("bob")
    make_user("carol", is_blocked=True)
    data = admin_client.get("/api/v1/dashboard/stats").json()
    assert data["total_users"] == 3
    assert data["active_groups"] == 4
    assert data["new_registrations"] == 3
    assert data["blocked_accounts"] == 1
    assert len(data["activity_by_day"]) == 7
    # The admin's login is the only entry so far.
    assert sum(data["activity_by_day"]) == 1
    assert [a["action"] for a in data["recent_activities"]] == ["login"]


def test_recent_activities_capped(admin_client: TestClient, stores) -> None:
    for i in range(25):
        stores.activity_log.record(stores.admin_id, "user_update", f"edit {i}")
    data = admin_client.get("/api/v1/dashboard/stats").json()
    assert len(data["recent_activities"]) == 20
    assert data["recent_activities"][0]["description"] == "edit 24"
    assert sum(data["activity_by_day"]) == 26
