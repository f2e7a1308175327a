"""
MongoDB change feed transport.

Adapts pymongo's asyncio API to the event-emitting handle the change feed
core expects:

- MongoChangeFeedHandle pumps an AsyncChangeStream in a background task and
  emits change / error / end / close notifications to its listeners.
- TopologyEventHub is a pymongo ServerListener that forwards server
  description changes from the driver's monitor threads onto the event loop.
- MongoChangeFeedTransport ties a client, a database and the hub together.

Example:
    >>> transport = MongoChangeFeedTransport.from_settings()
    >>> handle = await transport.open_feed("orders", [], {"full_document": "updateLookup"})
    >>> handle.on("change", print)
    >>> # ...
    >>> await handle.close()
    >>> await transport.close()
"""

import asyncio
import logging
from collections import defaultdict
from collections.abc import Mapping, Sequence
from typing import Any

from pymongo import AsyncMongoClient, monitoring
from pymongo.asynchronous.change_stream import AsyncChangeStream
from pymongo.errors import PyMongoError

from changewatch.core.config import settings
from changewatch.transport.base import (
    CHANGE,
    CLOSE,
    END,
    ERROR,
    NOTIFICATIONS,
    NotificationCallback,
    TopologyCallback,
    TopologyChange,
)

logger = logging.getLogger(__name__)


class MongoChangeFeedHandle:
    """
    Event-emitting wrapper around one pymongo change stream.

    Notification order follows the stream's life: any number of ``change``
    notifications, then either ``error`` (driver raised) or ``end`` (stream
    exhausted, e.g. invalidated), then ``close``. Closing the handle from
    outside emits nothing.
    """

    def __init__(self, stream: AsyncChangeStream) -> None:
        self._stream = stream
        self._listeners: dict[str, list[NotificationCallback]] = defaultdict(list)
        self._task: asyncio.Task | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> None:
        """Start pumping the stream. Must be called from a running loop."""
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self._pump())

    def on(self, name: str, callback: NotificationCallback) -> None:
        if name not in NOTIFICATIONS:
            raise ValueError(f"Unknown notification {name!r}, expected one of {NOTIFICATIONS}")
        self._listeners[name].append(callback)

    def remove_all_listeners(self) -> None:
        self._listeners.clear()

    def _emit(self, name: str, payload: Any = None) -> None:
        for callback in list(self._listeners.get(name, ())):
            callback(payload)

    async def _pump(self) -> None:
        try:
            async for change in self._stream:
                self._emit(CHANGE, change)
        except Exception as e:
            # Driver, decode and listener failures all end this stream
            if not self._closed:
                self._emit(ERROR, e)
        else:
            if not self._closed:
                self._emit(END)

        if self._closed:
            return
        self._closed = True
        try:
            await self._stream.close()
        except PyMongoError as e:
            logger.debug("Error closing exhausted change stream", extra={"error": str(e)})
        self._emit(CLOSE)

    async def close(self) -> None:
        """Close the stream and stop the pump. Idempotent."""
        if self._closed:
            return
        self._closed = True

        task = self._task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        await self._stream.close()


class TopologyEventHub(monitoring.ServerListener):
    """
    Fans pymongo server description changes out to asyncio callbacks.

    pymongo calls ServerListener methods from its monitor threads, so every
    notification is handed to the event loop with call_soon_threadsafe. The
    loop is captured when the first callback is added.
    """

    def __init__(self) -> None:
        self._callbacks: list[TopologyCallback] = []
        self._loop: asyncio.AbstractEventLoop | None = None

    def add_callback(self, callback: TopologyCallback) -> None:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        self._callbacks.append(callback)

    def remove_callback(self, callback: TopologyCallback) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    @property
    def callback_count(self) -> int:
        return len(self._callbacks)

    def opened(self, event: monitoring.ServerOpeningEvent) -> None:
        pass

    def closed(self, event: monitoring.ServerClosedEvent) -> None:
        pass

    def description_changed(self, event: monitoring.ServerDescriptionChangedEvent) -> None:
        host, port = event.server_address
        change = TopologyChange(
            server_type=event.new_description.server_type_name,
            address=f"{host}:{port}",
            previous_server_type=event.previous_description.server_type_name,
        )
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self.dispatch, change)

    def dispatch(self, change: TopologyChange) -> None:
        """Deliver a change to every callback. Runs on the event loop."""
        for callback in list(self._callbacks):
            try:
                callback(change)
            except Exception:
                logger.exception(
                    "Topology callback raised",
                    extra={"address": change.address, "server_type": change.server_type},
                )


class MongoChangeFeedTransport:
    """Opens collection change streams on one MongoDB database."""

    def __init__(
        self,
        client: AsyncMongoClient,
        database: str,
        topology: TopologyEventHub,
    ) -> None:
        """
        Initialize the transport.

        Args:
            client: pymongo async client; ``topology`` must be among its event listeners
            database: Name of the database whose collections are watched
            topology: Hub receiving the client's server description changes
        """
        self._client = client
        self._database = database
        self._topology = topology

    @classmethod
    def from_settings(cls) -> "MongoChangeFeedTransport":
        """Create a transport and client from application settings."""
        topology = TopologyEventHub()
        client = AsyncMongoClient(
            settings.MONGODB_URI,
            appname=settings.MONGODB_APP_NAME,
            serverSelectionTimeoutMS=settings.MONGODB_SERVER_SELECTION_TIMEOUT_MS,
            event_listeners=[topology],
        )
        logger.info(
            "MongoDB change feed transport created",
            extra={"database": settings.MONGODB_DATABASE},
        )
        return cls(client, settings.MONGODB_DATABASE, topology)

    async def open_feed(
        self,
        collection: str,
        pipeline: Sequence[Mapping[str, Any]],
        options: Mapping[str, Any],
    ) -> MongoChangeFeedHandle:
        stream = await self._client[self._database][collection].watch(
            list(pipeline), **dict(options)
        )
        handle = MongoChangeFeedHandle(stream)
        handle.start()
        return handle

    def on_topology_changed(self, callback: TopologyCallback) -> None:
        self._topology.add_callback(callback)

    def off_topology_changed(self, callback: TopologyCallback) -> None:
        self._topology.remove_callback(callback)

    async def close(self) -> None:
        await self._client.close()
        logger.info("MongoDB change feed transport closed")
