"""
Pytest configuration and fixtures for testing.

Provides an in-memory change feed transport that records every open call
and lets tests emit notifications and topology changes by hand.
"""

import os
from collections import defaultdict
from pathlib import Path
from typing import Any

import pytest

os.environ.setdefault("TESTING", "true")


def pytest_configure(config):
    """
    Pytest hook that runs before test collection.

    Loads .env.test (if present) before any changewatch modules are
    imported, so settings pick it up.
    """
    from dotenv import load_dotenv

    test_env_path = Path(__file__).parent.parent / ".env.test"
    if test_env_path.exists():
        load_dotenv(test_env_path, override=True)
        print(f"Loaded test environment from {test_env_path}")


# =============================================================================
# Fake Transport
# =============================================================================


class FakeHandle:
    """In-memory change feed handle."""

    def __init__(self, close_error: Exception | None = None):
        self.listeners: dict[str, list] = defaultdict(list)
        self.closed = False
        self.close_calls = 0
        self.remove_calls = 0
        self._close_error = close_error

    def on(self, name, callback):
        self.listeners[name].append(callback)

    def remove_all_listeners(self):
        self.remove_calls += 1
        self.listeners.clear()

    async def close(self):
        self.close_calls += 1
        if self._close_error is not None:
            raise self._close_error
        self.closed = True

    def emit(self, name, payload=None):
        for callback in list(self.listeners.get(name, ())):
            callback(payload)

    def listener_count(self, name=None) -> int:
        if name is None:
            return sum(len(cbs) for cbs in self.listeners.values())
        return len(self.listeners.get(name, ()))


class FakeTransport:
    """In-memory transport recording opens and topology subscriptions."""

    def __init__(self):
        self.handles: list[FakeHandle] = []
        self.open_calls: list[dict[str, Any]] = []
        self.open_errors: list[Exception] = []
        self.topology_callbacks: list = []

    async def open_feed(self, collection, pipeline, options):
        self.open_calls.append(
            {"collection": collection, "pipeline": list(pipeline), "options": dict(options)}
        )
        if self.open_errors:
            raise self.open_errors.pop(0)
        handle = FakeHandle()
        self.handles.append(handle)
        return handle

    def on_topology_changed(self, callback):
        self.topology_callbacks.append(callback)

    def off_topology_changed(self, callback):
        if callback in self.topology_callbacks:
            self.topology_callbacks.remove(callback)

    def emit_topology(self, change):
        for callback in list(self.topology_callbacks):
            callback(change)

    @property
    def latest(self) -> FakeHandle:
        return self.handles[-1]


def change_event(token: str, operation_type: str = "insert") -> dict[str, Any]:
    """Build a change event carrying ``token`` as its resume token."""
    return {
        "_id": {"_data": token},
        "operationType": operation_type,
        "ns": {"db": "test", "coll": "orders"},
        "documentKey": {"_id": token},
    }


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def fast_policy():
    """Reconnect policy with delays short enough for tests."""
    from changewatch.changefeed.policy import ReconnectPolicy

    return ReconnectPolicy(reopen_delay=0.05, election_delay=0.01)


@pytest.fixture
def registry():
    from changewatch.changefeed.registry import SessionRegistry

    return SessionRegistry()


@pytest.fixture
def make_config(transport):
    """Factory for SessionConfig bound to the fake transport."""
    from changewatch.changefeed.config import SessionConfig

    def _make(**overrides):
        values = {"collection_name": "orders", "transport": transport}
        values.update(overrides)
        return SessionConfig(**values)

    return _make
