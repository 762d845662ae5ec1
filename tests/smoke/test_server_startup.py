"""Smoke tests for server startup and health endpoint."""

import os
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from src.beatfeed.config import reload_settings
from src.beatfeed.main import app


@pytest.fixture
def env_memory_backends(tmp_path):
    """Environment selecting in-memory storage and no background tick."""
    env = {
        "SCHEDULER_TICK_ENABLED": "false",
        "EXECUTOR_MEDIA_DIR": str(tmp_path / "media"),
    }
    with patch.dict(os.environ, env, clear=False):
        os.environ.pop("REDIS_URI", None)
        reload_settings()
        yield
    reload_settings()


@pytest.fixture
def started_client(env_memory_backends):
    """TestClient running the real application lifespan."""
    with TestClient(app) as client:
        yield client


@pytest.mark.smoke
class TestServerStartup:
    def test_health_check_basic(self, started_client):
        """Test health endpoint returns basic health information."""
        response = started_client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert "version" in data
        assert data["services"]["storage"] == {"backend": "memory", "status": "ok"}
        assert data["services"]["ticker"] == {"status": "disabled"}

    def test_health_reports_scheduler_phase(self, started_client):
        """Test health endpoint reports the scheduler without loading it."""
        scheduler = started_client.get("/health").json()["services"]["scheduler"]
        assert scheduler["initialized"] is False
        assert scheduler["phase"] == "inactive"

        started_client.post("/scheduler/toggle", json={"active": True})

        scheduler = started_client.get("/health").json()["services"]["scheduler"]
        assert scheduler["initialized"] is True
        assert scheduler["phase"] == "active-idle"
        assert scheduler["next_run"] is not None

    def test_state_persists_across_requests(self, started_client):
        """Test sources added through the API survive a scheduler reload."""
        response = started_client.post(
            "/scheduler/sources",
            json={"source": "https://www.youtube.com/@prodbeats", "type": "channel"},
        )
        assert response.status_code == 200

        app.state.scheduler_holder.reset()

        sources = started_client.get("/scheduler/status").json()["sources"]
        assert [s["source"] for s in sources] == ["https://www.youtube.com/@prodbeats"]

    def test_openapi_lists_scheduler_routes(self, started_client):
        paths = started_client.get("/openapi.json").json()["paths"]
        for path in (
            "/scheduler/status",
            "/scheduler/toggle",
            "/scheduler/run",
            "/scheduler/sources",
            "/scheduler/history",
            "/scheduler/history/sources",
            "/scheduler/history/export",
            "/cron/scheduler",
        ):
            assert path in paths
