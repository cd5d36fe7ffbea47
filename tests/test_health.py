"""
tests/test_health.py -- Integration tests for GET /api/v1/health.

Covers:
  - 200 response with status, version, and components fields
  - components.database reports the store's ping result
  - No authentication required
"""

from __future__ import annotations

from unittest.mock import patch

from api.main import VERSION


def test_health_returns_200_with_components(client):
    """Health endpoint returns 200 with status, version, and components."""
    resp = client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert data["version"] == VERSION
    assert data["components"]["app"] == "ok"
    assert data["components"]["database"] == "ok"


def test_health_reports_database_error(client, store):
    """A failing ping is reported in components, not as a 5xx."""
    with patch.object(store, "ping", return_value=False):
        data = client.get("/api/v1/health").json()
    assert data["components"]["database"] == "error"


def test_health_no_auth_required(client):
    """Health endpoint is accessible without any cookies or headers."""
    client.cookies.clear()
    resp = client.get("/api/v1/health", headers={})
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"
