"""Integration test for the health and metrics endpoints on the FastAPI app.

Uses a lightweight TestClient against the real app without running its
lifespan, so no database is needed.
"""

from __future__ import annotations

import pytest
from starlette.testclient import TestClient

from freecore.config import APP_VERSION
from freecore.main import app


@pytest.fixture()
def client():
    return TestClient(app, raise_server_exceptions=False)


class TestMetricsEndpoint:
    def test_returns_prometheus_text(self, client):
        resp = client.get("/api/metrics")
        assert resp.status_code == 200
        assert "text/plain" in resp.headers["content-type"]

    def test_contains_workflow_metrics(self, client):
        body = client.get("/api/metrics").text
        assert "workflow_transitions_total" in body
        assert "workflow_operation_failures_total" in body


class TestHealthEndpoint:
    def test_health(self, client):
        resp = client.get("/api/health")
        assert resp.json() == {"status": "ok", "version": APP_VERSION}


class TestWorkflowRoutesWithoutEngine:
    def test_engine_not_ready_is_503(self, client):
        from freecore.api.deps import get_current_user

        app.dependency_overrides[get_current_user] = lambda: None
        try:
            resp = client.get("/api/v1/workflows/templates")
        finally:
            app.dependency_overrides.clear()
        assert resp.status_code == 503
