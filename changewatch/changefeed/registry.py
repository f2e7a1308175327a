"""
Registry of change feed sessions for coordinated shutdown.

The registry is an ordinary object owned by whoever starts the sessions
(the FastAPI lifespan in this service). It remembers every session it
created and the latest handle each session registered, and tears all of
them down together.

Example:
    >>> registry = SessionRegistry()
    >>> orders = registry.create_session(orders_config)
    >>> await orders.open()
    >>> # ... on process shutdown ...
    >>> await registry.shutdown_all()
"""

from __future__ import annotations

import logging
from typing import Any

from changewatch.changefeed.config import SessionConfig
from changewatch.changefeed.policy import ReconnectPolicy
from changewatch.changefeed.session import FeedSession, SessionState
from changewatch.transport.base import ChangeFeedHandle

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Tracks sessions and their handles; entries are only dropped all at once."""

    def __init__(self) -> None:
        self._sessions: list[FeedSession] = []
        self._handles: dict[str, ChangeFeedHandle] = {}

    def create_session(
        self,
        config: SessionConfig,
        meta: dict[str, Any] | None = None,
        policy: ReconnectPolicy | None = None,
    ) -> FeedSession:
        """Build a session that registers its handles with this registry."""
        return FeedSession(config, meta, registry=self, policy=policy)

    def track(self, session: FeedSession) -> None:
        if session not in self._sessions:
            self._sessions.append(session)

    def register(self, session_id: str, handle: ChangeFeedHandle) -> None:
        """Record the live handle for a session, replacing its previous one."""
        self._handles[session_id] = handle
        logger.debug(
            "Registered change stream handle",
            extra={"session_id": session_id, "handle_count": len(self._handles)},
        )

    @property
    def sessions(self) -> list[FeedSession]:
        return list(self._sessions)

    @property
    def handles(self) -> dict[str, ChangeFeedHandle]:
        return dict(self._handles)

    def __len__(self) -> int:
        return len(self._sessions)

    async def shutdown_all(self) -> None:
        """
        Shut down every session, then close every registered handle.

        Sessions are shut down first so that no pending reopen can open a
        new handle behind the registry's back. Handles that are missing or
        already closed are skipped; close errors are logged, not raised.
        """
        logger.info(
            "Closing all change streams",
            extra={"session_count": len(self._sessions), "handle_count": len(self._handles)},
        )

        for session in list(self._sessions):
            try:
                await session.shutdown()
            except Exception as e:
                logger.error(
                    "Error shutting down change feed session",
                    extra={"session_id": session.session_id, "error": str(e)},
                    exc_info=True,
                )

        for session_id, handle in list(self._handles.items()):
            if handle is None or getattr(handle, "closed", False):
                continue
            try:
                handle.remove_all_listeners()
                await handle.close()
            except Exception as e:
                logger.warning(
                    "Error closing change stream handle",
                    extra={"session_id": session_id, "error": str(e)},
                    exc_info=True,
                )

        logger.info("All change streams closed")

    def get_health(self) -> dict[str, Any]:
        """
        Get health status of all sessions.

        Returns:
            Dictionary with:
            - status: "healthy" when every session is live, "stopped" when
              there are no sessions, otherwise "degraded"
            - session_count: Number of tracked sessions
            - live_count: Number of sessions currently live
            - sessions: Per-session snapshots
        """
        snapshots = [session.snapshot() for session in self._sessions]
        live_count = sum(1 for s in self._sessions if s.state is SessionState.LIVE)

        if not snapshots:
            status = "stopped"
        elif live_count == len(snapshots):
            status = "healthy"
        else:
            status = "degraded"

        return {
            "status": status,
            "session_count": len(snapshots),
            "live_count": live_count,
            "sessions": snapshots,
        }
