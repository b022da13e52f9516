"""Tests for liveness and readiness checks."""

from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

pytestmark = pytest.mark.unit


def test_health_ok(api_client: TestClient):
    response = api_client.get("/api/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "service": "finance-sync-backend"}


def test_health_503_while_draining(api_app, api_client: TestClient):
    api_app.state.shutting_down = True

    response = api_client.get("/api/health")

    assert response.status_code == 503
    assert response.json()["status"] == "shutting_down"


def test_ready_degraded_without_database(api_client: TestClient):
    factory = MagicMock(side_effect=ConnectionError("database unreachable"))

    with patch("app.api.routes.health.get_session_factory", return_value=factory):
        response = api_client.get("/api/ready")

    assert response.status_code == 503
    assert response.json() == {"status": "degraded", "checks": {"database": False}}
