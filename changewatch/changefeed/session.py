"""
Resilient change feed session.

A FeedSession owns one live change feed subscription at a time. It delivers
every change event to the application's listeners, remembers the resume token
of the last event, and reopens the feed when it errors, ends or closes, or
when the cluster elects a new primary.

Lifecycle:
    IDLE -> OPENING -> LIVE -> {FAILING, ENDING, CLOSING} -> REOPENING -> OPENING ...
    Any state -> SHUT_DOWN (terminal, via shutdown())

Reopen ordering:
    1. Detach every listener from the current handle (synchronous)
    2. Close the handle
    3. Wait for the reconnect policy's delay
    4. Open a new handle, resuming after the tracked token when enabled

Step 1 happens inside reopen() itself, so once reopen() returns the old
generation can no longer deliver notifications. Steps 2-4 run in a single
asyncio task that shutdown() cancels.

Example:
    >>> registry = SessionRegistry()
    >>> session = registry.create_session(config)
    >>> await session.open()
    >>> # ... listeners now receiving change events ...
    >>> await registry.shutdown_all()
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from enum import Enum
from typing import TYPE_CHECKING, Any

from changewatch.changefeed.config import SessionConfig
from changewatch.changefeed.errors import (
    HistoryLostError,
    OpenFailure,
    classify_stream_error,
)
from changewatch.changefeed.metrics import (
    changefeed_events_total,
    changefeed_failures_total,
    changefeed_live_sessions,
    changefeed_reopens_total,
)
from changewatch.changefeed.policy import ReconnectPolicy, ReopenTrigger
from changewatch.changefeed.resume import ResumeTracker, extract_resume_token
from changewatch.changefeed.topology import TopologyWatcher
from changewatch.transport.base import CHANGE, CLOSE, END, ERROR, ChangeFeedHandle

if TYPE_CHECKING:
    from changewatch.changefeed.registry import SessionRegistry

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    """Lifecycle states of a FeedSession."""

    IDLE = "idle"
    OPENING = "opening"
    LIVE = "live"
    FAILING = "failing"
    ENDING = "ending"
    CLOSING = "closing"
    REOPENING = "reopening"
    SHUT_DOWN = "shut_down"


# States in which a reopen request is dropped: a fresh feed is already on its way
# or the session is finished.
_REOPEN_BLOCKED_STATES = frozenset(
    {SessionState.OPENING, SessionState.REOPENING, SessionState.SHUT_DOWN}
)


class FeedSession:
    """
    Manages one logical change feed across any number of subscriptions.

    Each successful open starts a new generation with its own handle. A
    session never holds more than one handle; the previous one is detached
    and closed before the next is requested.

    Note: Sessions are normally built through SessionRegistry.create_session()
    so that they take part in bulk shutdown.
    """

    def __init__(
        self,
        config: SessionConfig,
        meta: dict[str, Any] | None = None,
        *,
        registry: "SessionRegistry | None" = None,
        policy: ReconnectPolicy | None = None,
    ) -> None:
        """
        Initialize the session. Nothing is opened until open() is awaited.

        Args:
            config: Validated session configuration
            meta: Extra context attached to every log line; an "origin" key
                overrides the default session identity
            registry: Registry to register handles with for bulk shutdown
            policy: Reconnect policy (defaults to delays from settings)
        """
        self.config = config
        self.meta: dict[str, Any] = {
            "origin": f"ChangeWatcher-{config.collection_name}",
            **(meta or {}),
        }
        self._registry = registry
        self._policy = policy or ReconnectPolicy()
        self._resume = ResumeTracker(config.initial_resume_token)
        self._handle: ChangeFeedHandle | None = None
        self._state = SessionState.IDLE
        self._generation = 0
        self._reopen_task: asyncio.Task | None = None
        # Detached handle whose close is still owed by the pending reopen
        self._retired_handle: ChangeFeedHandle | None = None
        self._listener_tasks: set[asyncio.Task] = set()
        self._topology_watcher = (
            TopologyWatcher(self) if config.rewatch.on_server_election else None
        )

        if registry is not None:
            registry.track(self)

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    @property
    def session_id(self) -> str:
        return str(self.meta["origin"])

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def handle(self) -> ChangeFeedHandle | None:
        return self._handle

    @property
    def generation(self) -> int:
        """Number of subscriptions successfully opened so far."""
        return self._generation

    @property
    def resume_tracker(self) -> ResumeTracker:
        return self._resume

    @property
    def topology_watcher(self) -> TopologyWatcher | None:
        return self._topology_watcher

    @property
    def pending_reopen(self) -> asyncio.Task | None:
        """The scheduled reopen task, if one is still running."""
        if self._reopen_task is not None and not self._reopen_task.done():
            return self._reopen_task
        return None

    @property
    def is_shut_down(self) -> bool:
        return self._state is SessionState.SHUT_DOWN

    def log_extra(self, **fields: Any) -> dict[str, Any]:
        """Structured logging context for this session."""
        return {"session_id": self.session_id, "meta": self.meta, **fields}

    def snapshot(self) -> dict[str, Any]:
        """Health view of the session."""
        return {
            "session_id": self.session_id,
            "collection": self.config.collection_name,
            "state": self._state.value,
            "generation": self._generation,
            "has_resume_token": self._resume.has_token,
        }

    def _set_state(self, state: SessionState) -> None:
        previous = self._state
        if previous is state:
            return
        if previous is SessionState.LIVE:
            changefeed_live_sessions.dec()
        elif state is SessionState.LIVE:
            changefeed_live_sessions.inc()
        self._state = state

    # -------------------------------------------------------------------------
    # Opening
    # -------------------------------------------------------------------------

    def _build_watch_options(self) -> dict[str, Any]:
        options = self.config.merged_watch_options()
        if self.config.use_resume_token and self._resume.has_token:
            options["resume_after"] = self._resume.current_token()
        return options

    async def open(self, is_reopen: bool = False) -> None:
        """
        Open a new subscription and start dispatching its notifications.

        Failures raised by the transport are logged and always followed by a
        reopen, whatever the rewatch flags say.

        Args:
            is_reopen: True when called from the reopen path
        """
        if self._state is SessionState.SHUT_DOWN:
            logger.debug("Session shut down, not opening", extra=self.log_extra())
            return
        if self._state in (SessionState.OPENING, SessionState.LIVE):
            logger.warning("%s: change feed already open", self.session_id, extra=self.log_extra())
            return

        self._set_state(SessionState.OPENING)

        # A session left FAILING, ENDING or CLOSING still owns its last handle
        previous = self._detach_handle()
        if previous is not None:
            await self._close_handle(previous)
            if self._state is SessionState.SHUT_DOWN:
                return

        options = self._build_watch_options()

        try:
            handle = await self.config.transport.open_feed(
                self.config.collection_name,
                self.config.pipeline_stages(),
                options,
            )
        except Exception as e:
            failure = OpenFailure(
                f"Failed to open change feed on {self.config.collection_name}",
                original_error=e,
                session_id=self.session_id,
            )
            changefeed_failures_total.labels(
                session=self.session_id, failure=type(failure).__name__
            ).inc()
            logger.error(
                "%s: error while opening change feed, reopen will be triggered",
                self.session_id,
                extra=self.log_extra(
                    error=str(failure),
                    error_type=type(e).__name__,
                    is_reopen=is_reopen,
                    config=self.config.describe(),
                ),
                exc_info=True,
            )
            if self._state is SessionState.SHUT_DOWN:
                return
            self._set_state(SessionState.FAILING)
            self.reopen(trigger=ReopenTrigger.OPEN_FAILURE)
            return

        if self._state is SessionState.SHUT_DOWN:
            # shutdown() ran while the transport was opening
            await self._close_handle(handle)
            return

        self._handle = handle
        self._generation += 1
        if self._registry is not None:
            self._registry.register(self.session_id, handle)

        handle.on(CHANGE, self._on_change)
        handle.on(ERROR, self._on_error)
        handle.on(END, self._on_end)
        handle.on(CLOSE, self._on_close)
        self._set_state(SessionState.LIVE)

        logger.info(
            "%s: started watching change stream events",
            self.session_id,
            extra=self.log_extra(
                is_reopen=is_reopen,
                generation=self._generation,
                resuming=("resume_after" in options),
                config=self.config.describe(),
            ),
        )

        if self._topology_watcher is not None and not self._topology_watcher.attached:
            self._topology_watcher.attach(self.config.transport)

    # -------------------------------------------------------------------------
    # Notification handlers
    # -------------------------------------------------------------------------

    def _on_change(self, change: Any) -> None:
        if self.config.use_resume_token:
            token = extract_resume_token(change)
            if token is not None:
                self._resume.record_token(token)

        changefeed_events_total.labels(session=self.session_id).inc()
        self._invoke_listener("on_change", change)

    def _on_error(self, payload: Any) -> None:
        self._set_state(SessionState.FAILING)
        failure = classify_stream_error(payload, session_id=self.session_id)

        if isinstance(failure, HistoryLostError):
            self._resume.clear()

        changefeed_failures_total.labels(
            session=self.session_id, failure=type(failure).__name__
        ).inc()
        logger.error(
            "%s: change stream errored, no action needed, it will be resumed shortly",
            self.session_id,
            extra=self.log_extra(
                error=str(failure),
                error_class=type(failure).__name__,
                code=failure.code,
                code_name=failure.code_name,
                resume_token_cleared=isinstance(failure, HistoryLostError),
            ),
        )

        self._invoke_listener("on_error", failure)

        if self.config.rewatch.on_error:
            self.reopen(trigger=ReopenTrigger.ERROR)

    def _on_end(self, data: Any = None) -> None:
        self._set_state(SessionState.ENDING)
        logger.warning(
            "%s: change stream ended",
            self.session_id,
            extra=self.log_extra(rewatch=self.config.rewatch.on_end),
        )

        self._invoke_listener("on_end", data)

        if self.config.rewatch.on_end:
            self.reopen(trigger=ReopenTrigger.END)

    def _on_close(self, data: Any = None) -> None:
        self._set_state(SessionState.CLOSING)
        logger.info(
            "%s: change stream closed",
            self.session_id,
            extra=self.log_extra(rewatch=self.config.rewatch.on_close),
        )

        self._invoke_listener("on_close", data)

        if self.config.rewatch.on_close:
            self.reopen(trigger=ReopenTrigger.CLOSE)

    def _invoke_listener(self, name: str, payload: Any) -> None:
        """Call an application listener without letting it break dispatch."""
        callback = getattr(self.config.listeners, name)
        if callback is None:
            return

        try:
            result = callback(payload)
        except Exception:
            logger.exception(
                "%s: %s listener raised",
                self.session_id,
                name,
                extra=self.log_extra(listener=name),
            )
            return

        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._listener_tasks.add(task)
            task.add_done_callback(self._listener_task_done)

    def _listener_task_done(self, task: asyncio.Task) -> None:
        self._listener_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(
                "%s: async listener failed",
                self.session_id,
                extra=self.log_extra(error=str(error), error_type=type(error).__name__),
                exc_info=error,
            )

    # -------------------------------------------------------------------------
    # Reopen and shutdown
    # -------------------------------------------------------------------------

    def _detach_handle(self) -> ChangeFeedHandle | None:
        handle = self._handle
        self._handle = None
        if handle is not None:
            handle.remove_all_listeners()
        return handle

    async def _close_handle(self, handle: ChangeFeedHandle) -> None:
        try:
            await handle.close()
        except Exception as e:
            logger.warning(
                "%s: error closing change stream",
                self.session_id,
                extra=self.log_extra(error=str(e), error_type=type(e).__name__),
                exc_info=True,
            )

    def reopen(
        self,
        is_server_election: bool = False,
        *,
        trigger: ReopenTrigger | None = None,
    ) -> asyncio.Task | None:
        """
        Tear down the current subscription and schedule a new one.

        Listeners are detached from the current handle before this method
        returns. Closing the handle, waiting and reopening happen in the
        returned task.

        Args:
            is_server_election: True when triggered by a primary election
            trigger: Explicit trigger; overrides is_server_election

        Returns:
            The scheduled reopen task, or None if the request was dropped
            because a feed is already being opened or the session is shut down
        """
        if trigger is None:
            trigger = ReopenTrigger.SERVER_ELECTION if is_server_election else ReopenTrigger.ERROR

        if self._state in _REOPEN_BLOCKED_STATES:
            logger.debug(
                "%s: reopen request dropped",
                self.session_id,
                extra=self.log_extra(trigger=trigger.value, state=self._state.value),
            )
            return None

        handle = self._detach_handle()
        self._set_state(SessionState.REOPENING)
        self._retired_handle = handle
        delay = self._policy.delay_for(trigger)

        changefeed_reopens_total.labels(session=self.session_id, trigger=trigger.value).inc()
        logger.warning(
            "%s: rewatch will be triggered shortly",
            self.session_id,
            extra=self.log_extra(trigger=trigger.value, delay_seconds=delay),
        )

        self._reopen_task = asyncio.get_running_loop().create_task(
            self._run_reopen(handle, trigger, delay),
            name=f"reopen-{self.session_id}",
        )
        return self._reopen_task

    async def _run_reopen(
        self,
        handle: ChangeFeedHandle | None,
        trigger: ReopenTrigger,
        delay: float,
    ) -> None:
        if handle is not None:
            await self._close_handle(handle)
        self._retired_handle = None

        await asyncio.sleep(delay)

        if self._state is SessionState.SHUT_DOWN:
            return

        await self.open(is_reopen=True)

        if self._state is not SessionState.LIVE:
            return

        if trigger == ReopenTrigger.SERVER_ELECTION:
            logger.warning(
                "%s: re-initialized the watcher on server election",
                self.session_id,
                extra=self.log_extra(generation=self._generation),
            )
        else:
            logger.warning(
                "%s: re-initialized the watcher on detection of absence/closure of stream",
                self.session_id,
                extra=self.log_extra(trigger=trigger.value, generation=self._generation),
            )

    async def shutdown(self) -> None:
        """
        Stop the session permanently.

        Cancels any scheduled reopen, detaches listeners, closes the current
        handle and stops listening to topology changes. Safe to call more
        than once.
        """
        if self._state is SessionState.SHUT_DOWN:
            return

        self._set_state(SessionState.SHUT_DOWN)

        task = self._reopen_task
        self._reopen_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        for handle in (self._retired_handle, self._detach_handle()):
            if handle is not None:
                await self._close_handle(handle)
        self._retired_handle = None

        if self._topology_watcher is not None:
            self._topology_watcher.detach()

        logger.info(
            "%s: change feed session shut down",
            self.session_id,
            extra=self.log_extra(generation=self._generation),
        )

    def __repr__(self) -> str:
        return (
            f"FeedSession(session_id={self.session_id!r}, "
            f"state={self._state.value}, generation={self._generation})"
        )
