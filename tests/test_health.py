"""
tests/test_health.py -- Integration tests for GET /api/v1/health and the error envelope.

Covers:
  - 200 response with status, version, and components fields
  - components.database reports 'ok'
  - no authentication required
  - unknown routes use the same {"error": {...}} envelope as API errors
"""

from __future__ import annotations

from fastapi.testclient import TestClient


def test_health_returns_200_with_components(client: TestClient) -> None:
    resp = client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert "version" in data
    assert data["components"]["app"] == "ok"
    assert data["components"]["database"] == "ok"


def test_health_no_auth_required(client: TestClient) -> None:
    """Health endpoint is reachable without a session cookie."""
    assert TestClient(client.app).get("/api/v1/health").status_code == 200


def test_unknown_route_uses_error_envelope(client: TestClient) -> None:
    resp = client.get("/api/v1/nope")
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "http_404"
