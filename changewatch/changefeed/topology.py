"""
Topology watcher for proactive resubscription.

When a replica set elects a new primary, existing change streams may be left
pointing at a stepped-down node. The watcher listens to the transport's
topology notifications and reopens its session shortly after a primary is
elected, before the old feed notices on its own.

A watcher is attached once per session, on the session's first successful
open. Reopens never attach it again; the transport is shared by many
sessions and every attach would add another listener to it.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from changewatch.transport.base import ChangeFeedTransport, TopologyChange

if TYPE_CHECKING:
    from changewatch.changefeed.session import FeedSession

logger = logging.getLogger(__name__)


class TopologyWatcher:
    """Reopens a session when a new primary is elected."""

    def __init__(self, session: "FeedSession") -> None:
        self._session = session
        self._transport: ChangeFeedTransport | None = None
        self._attached = False

    @property
    def attached(self) -> bool:
        """Whether the watcher has ever been attached to a transport."""
        return self._attached

    def attach(self, transport: ChangeFeedTransport) -> None:
        """Subscribe to topology changes. Later calls are no-ops."""
        if self._attached:
            return
        transport.on_topology_changed(self.handle_topology_change)
        self._transport = transport
        self._attached = True
        logger.debug(
            "Topology watcher attached",
            extra={"session_id": self._session.session_id},
        )

    def detach(self) -> None:
        """Unsubscribe from topology changes. The watcher stays attached-once."""
        if self._transport is None:
            return
        self._transport.off_topology_changed(self.handle_topology_change)
        self._transport = None

    def handle_topology_change(self, change: TopologyChange) -> None:
        if not change.is_primary_election:
            return

        logger.info(
            "Server election event: new primary elected: %s",
            change.address,
            extra=self._session.log_extra(
                address=change.address,
                server_type=change.server_type,
                previous_server_type=change.previous_server_type,
            ),
        )
        self._session.reopen(is_server_election=True)
