"""
Resilient change feed sessions.

Components:
    - SessionConfig: Validated per-session configuration
    - FeedSession: Owns one live subscription and reopens it on failure
    - ResumeTracker: Latest resume token of a session
    - ReconnectPolicy: Per-trigger reopen delays
    - TopologyWatcher: Reopens a session when a new primary is elected
    - SessionRegistry: Tracks sessions for coordinated shutdown

Usage:
    >>> from changewatch.changefeed import SessionConfig, SessionRegistry
    >>> registry = SessionRegistry()
    >>> session = registry.create_session(SessionConfig(collection_name="orders", transport=transport))
    >>> await session.open()
    >>> # ... change events are now being delivered ...
    >>> await registry.shutdown_all()
"""

from changewatch.changefeed.config import FeedListeners, RewatchFlags, SessionConfig
from changewatch.changefeed.errors import (
    ChangeFeedError,
    HistoryLostError,
    OpenFailure,
    StreamFailure,
    TransientStreamError,
    classify_stream_error,
)
from changewatch.changefeed.policy import ReconnectPolicy, ReopenTrigger
from changewatch.changefeed.registry import SessionRegistry
from changewatch.changefeed.resume import ResumeTracker
from changewatch.changefeed.session import FeedSession, SessionState
from changewatch.changefeed.topology import TopologyWatcher

__all__ = [
    "ChangeFeedError",
    "FeedListeners",
    "FeedSession",
    "HistoryLostError",
    "OpenFailure",
    "ReconnectPolicy",
    "ReopenTrigger",
    "ResumeTracker",
    "RewatchFlags",
    "SessionConfig",
    "SessionRegistry",
    "SessionState",
    "StreamFailure",
    "TopologyWatcher",
    "TransientStreamError",
    "classify_stream_error",
]
