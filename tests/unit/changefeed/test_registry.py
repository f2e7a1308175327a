"""
Unit tests for SessionRegistry.

Tests cover:
- Session tracking and handle registration
- Bulk shutdown, including handles already closed or failing to close
- Health reporting
"""

import logging

import pytest
from pymongo.errors import OperationFailure

from changewatch.changefeed.registry import SessionRegistry
from changewatch.changefeed.session import SessionState
from tests.conftest import FakeHandle


# =============================================================================
# Tracking
# =============================================================================


class TestTracking:
    """Tests for session and handle bookkeeping."""

    def test_empty_registry(self, registry):
        assert len(registry) == 0
        assert registry.sessions == []
        assert registry.handles == {}

    def test_create_session_tracks_it(self, registry, make_config, fast_policy):
        session = registry.create_session(make_config(), policy=fast_policy)

        assert registry.sessions == [session]
        assert len(registry) == 1

    def test_track_is_idempotent(self, registry, make_config, fast_policy):
        session = registry.create_session(make_config(), policy=fast_policy)

        registry.track(session)

        assert len(registry) == 1

    def test_register_replaces_previous_handle(self, registry):
        first, second = FakeHandle(), FakeHandle()

        registry.register("orders", first)
        registry.register("orders", second)

        assert registry.handles == {"orders": second}

    @pytest.mark.asyncio
    async def test_reopen_registers_new_handle(self, registry, make_config, transport, fast_policy):
        session = registry.create_session(make_config(), policy=fast_policy)
        await session.open()

        await session.reopen()

        assert registry.handles[session.session_id] is transport.latest
        assert len(transport.handles) == 2

    def test_handles_returns_copy(self, registry):
        registry.register("orders", FakeHandle())

        registry.handles.clear()

        assert len(registry.handles) == 1


# =============================================================================
# Shutdown
# =============================================================================


class TestShutdownAll:
    """Tests for SessionRegistry.shutdown_all()."""

    @pytest.mark.asyncio
    async def test_shuts_down_every_session(self, registry, transport, fast_policy):
        from changewatch.changefeed.config import SessionConfig

        sessions = [
            registry.create_session(
                SessionConfig(collection_name=name, transport=transport), policy=fast_policy
            )
            for name in ("orders", "payments", "invoices")
        ]
        for session in sessions:
            await session.open()

        await registry.shutdown_all()

        assert all(s.state is SessionState.SHUT_DOWN for s in sessions)
        assert all(h.closed for h in transport.handles)
        assert all(h.listener_count() == 0 for h in transport.handles)

    @pytest.mark.asyncio
    async def test_no_reopen_after_shutdown(self, registry, make_config, transport, fast_policy):
        session = registry.create_session(make_config(), policy=fast_policy)
        await session.open()
        transport.latest.emit("error", OperationFailure("boom"))

        await registry.shutdown_all()

        assert session.pending_reopen is None
        assert len(transport.open_calls) == 1

    @pytest.mark.asyncio
    async def test_skips_missing_and_closed_handles(self, registry):
        closed = FakeHandle()
        closed.closed = True
        registry.register("closed", closed)
        registry.register("missing", None)

        await registry.shutdown_all()

        assert closed.close_calls == 0
        assert closed.remove_calls == 0

    @pytest.mark.asyncio
    async def test_closes_orphan_handles(self, registry):
        handle = FakeHandle()
        registry.register("orphan", handle)

        await registry.shutdown_all()

        assert handle.closed
        assert handle.remove_calls == 1

    @pytest.mark.asyncio
    async def test_close_errors_are_logged_not_raised(self, registry, caplog):
        failing = FakeHandle(close_error=RuntimeError("socket gone"))
        healthy = FakeHandle()
        registry.register("failing", failing)
        registry.register("healthy", healthy)

        with caplog.at_level(logging.WARNING):
            await registry.shutdown_all()

        assert healthy.closed
        assert "Error closing change stream handle" in caplog.text

    @pytest.mark.asyncio
    async def test_empty_registry_shutdown(self, registry):
        await registry.shutdown_all()

        assert registry.get_health()["status"] == "stopped"


# =============================================================================
# Health
# =============================================================================


class TestHealth:
    """Tests for SessionRegistry.get_health()."""

    def test_stopped_without_sessions(self):
        health = SessionRegistry().get_health()

        assert health == {"status": "stopped", "session_count": 0, "live_count": 0, "sessions": []}

    @pytest.mark.asyncio
    async def test_healthy_when_all_live(self, registry, make_config, fast_policy):
        session = registry.create_session(make_config(), policy=fast_policy)
        await session.open()

        health = registry.get_health()

        assert health["status"] == "healthy"
        assert health["live_count"] == 1
        assert health["sessions"][0]["state"] == "live"
        assert health["sessions"][0]["generation"] == 1
        await registry.shutdown_all()

    @pytest.mark.asyncio
    async def test_degraded_while_reopening(self, registry, make_config, transport, fast_policy):
        session = registry.create_session(make_config(), policy=fast_policy)
        await session.open()

        transport.latest.emit("end")
        health = registry.get_health()

        assert health["status"] == "degraded"
        assert health["sessions"][0]["state"] == "reopening"
        await registry.shutdown_all()
