"""
Change feed transports.

The core depends only on the protocols in ``changewatch.transport.base``;
``changewatch.transport.mongo`` provides the pymongo-backed implementation.
"""

from changewatch.transport.base import (
    NOTIFICATIONS,
    PRIMARY_SERVER_TYPE,
    ChangeFeedHandle,
    ChangeFeedTransport,
    TopologyChange,
)

__all__ = [
    "NOTIFICATIONS",
    "PRIMARY_SERVER_TYPE",
    "ChangeFeedHandle",
    "ChangeFeedTransport",
    "TopologyChange",
]
