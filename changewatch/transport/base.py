"""
Transport interface consumed by the change feed core.

A transport opens change feed subscriptions and reports cluster topology
changes. The core only ever talks to these protocols, so any driver that can
provide an event-emitting handle can back a FeedSession.

Notifications emitted by a handle:
    - change: one change event (a mapping carrying its resume token in "_id")
    - error: the feed failed; the payload is the raw driver error
    - end: the feed was exhausted (e.g. invalidated)
    - close: the underlying cursor was closed
"""

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

CHANGE = "change"
ERROR = "error"
END = "end"
CLOSE = "close"

NOTIFICATIONS: tuple[str, ...] = (CHANGE, ERROR, END, CLOSE)

# Server type name reported for a replica set primary
PRIMARY_SERVER_TYPE = "RSPrimary"

NotificationCallback = Callable[[Any], None]


@dataclass(frozen=True)
class TopologyChange:
    """A single server description change observed on the cluster.

    Attributes:
        server_type: Server type after the change (e.g. "RSPrimary")
        address: "host:port" of the server whose description changed
        previous_server_type: Server type before the change, if known
    """

    server_type: str
    address: str
    previous_server_type: str | None = None

    @property
    def is_primary_election(self) -> bool:
        """True when the server now reports itself as the primary."""
        return self.server_type == PRIMARY_SERVER_TYPE


TopologyCallback = Callable[[TopologyChange], None]


@runtime_checkable
class ChangeFeedHandle(Protocol):
    """One live change feed subscription."""

    @property
    def closed(self) -> bool: ...

    def on(self, name: str, callback: NotificationCallback) -> None: ...

    def remove_all_listeners(self) -> None: ...

    async def close(self) -> None: ...


@runtime_checkable
class ChangeFeedTransport(Protocol):
    """Opens change feed subscriptions and publishes topology changes."""

    async def open_feed(
        self,
        collection: str,
        pipeline: Sequence[Mapping[str, Any]],
        options: Mapping[str, Any],
    ) -> ChangeFeedHandle: ...

    def on_topology_changed(self, callback: TopologyCallback) -> None: ...

    def off_topology_changed(self, callback: TopologyCallback) -> None: ...
