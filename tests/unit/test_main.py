"""
Unit tests for the application wiring.

Tests cover:
- Lifespan opening one session per configured collection
- Lifespan shutting every session down on exit
- The /metrics endpoint exposing change feed metrics
"""

from unittest.mock import AsyncMock, patch

from fastapi.testclient import TestClient

from changewatch.changefeed.session import SessionState
from changewatch.core.config import settings
from changewatch.main import app, build_session_config, log_change
from changewatch.transport.mongo import MongoChangeFeedTransport
from tests.conftest import FakeTransport, change_event


class ClosableTransport(FakeTransport):
    def __init__(self):
        super().__init__()
        self.close = AsyncMock()


class TestLifespan:
    """Tests for startup and shutdown of change feed sessions."""

    def test_no_collections_starts_without_sessions(self) -> None:
        with patch.object(settings, "CHANGEFEED_COLLECTIONS", []):
            with TestClient(app) as client:
                data = client.get(f"{settings.API_V1_PREFIX}/health/changefeeds").json()

        assert data["status"] == "stopped"

    def test_opens_and_shuts_down_sessions(self) -> None:
        transport = ClosableTransport()

        with patch.object(settings, "CHANGEFEED_COLLECTIONS", ["orders", "payments"]), \
                patch.object(MongoChangeFeedTransport, "from_settings", return_value=transport):
            with TestClient(app) as client:
                data = client.get(f"{settings.API_V1_PREFIX}/health/changefeeds").json()
                registry = app.state.registry

        assert data["session_count"] == 2
        assert [s["collection"] for s in data["sessions"]] == ["orders", "payments"]
        assert all(s.state is SessionState.SHUT_DOWN for s in registry.sessions)
        assert all(h.closed for h in transport.handles)
        transport.close.assert_awaited_once()


class TestSessionConfig:
    def test_build_session_config_uses_settings(self) -> None:
        config = build_session_config("orders", FakeTransport())

        assert config.collection_name == "orders"
        assert config.use_resume_token is settings.CHANGEFEED_USE_RESUME_TOKEN
        assert config.merged_watch_options()["full_document"] == settings.CHANGEFEED_FULL_DOCUMENT
        assert config.listeners.on_change is log_change

    def test_log_change_accepts_events(self) -> None:
        log_change(change_event("t1"))


class TestMetricsEndpoint:
    def test_metrics_exposes_changefeed_metrics(self) -> None:
        response = TestClient(app).get("/metrics")

        assert response.status_code == 200
        assert "changefeed_live_sessions" in response.text
        assert "http_requests_total" in response.text
