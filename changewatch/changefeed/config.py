"""
Configuration models for change feed sessions.

A SessionConfig is validated once, when it is built, and read by the session
every time it opens a feed. All fields are frozen except
``use_resume_token``, which may be switched at runtime to stop (or start)
resuming on the next reopen. The pipeline is deep-copied into a tuple and
the watch options are copied into a read-only mapping, so later changes to
the caller's objects do not reach the next open.

Example:
    >>> config = SessionConfig(
    ...     collection_name="orders",
    ...     pipeline=[{"$match": {"operationType": "insert"}}],
    ...     listeners=FeedListeners(on_change=handle_order),
    ...     transport=transport,
    ... )
"""

import copy
from collections.abc import Callable, Mapping
from types import MappingProxyType
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from changewatch.transport.base import ChangeFeedTransport

DEFAULT_WATCH_OPTIONS: dict[str, Any] = {"full_document": "updateLookup"}

Listener = Callable[[Any], Any]


class RewatchFlags(BaseModel):
    """Which notifications make a session reopen its feed.

    ``on_server_election`` decides whether the session listens to topology
    changes at all; it is read once when the session is built.
    """

    model_config = ConfigDict(frozen=True)

    on_error: bool = True
    on_end: bool = True
    on_close: bool = True
    on_server_election: bool = True


class FeedListeners(BaseModel):
    """Optional application callbacks, one per notification.

    Callbacks may be plain functions or coroutine functions. ``on_error``
    receives the classified StreamFailure rather than the raw driver error.
    """

    model_config = ConfigDict(frozen=True)

    on_change: Listener | None = None
    on_error: Listener | None = None
    on_end: Listener | None = None
    on_close: Listener | None = None


class SessionConfig(BaseModel):
    """Configuration for one change feed session."""

    model_config = ConfigDict(
        arbitrary_types_allowed=True,
        extra="forbid",
        validate_assignment=True,
    )

    collection_name: str = Field(min_length=1, frozen=True)
    pipeline: tuple[dict[str, Any], ...] = Field(default_factory=tuple, frozen=True)
    watch_options: Mapping[str, Any] = Field(default_factory=lambda: MappingProxyType({}), frozen=True)
    use_resume_token: bool = True
    rewatch: RewatchFlags = Field(default_factory=RewatchFlags, frozen=True)
    listeners: FeedListeners = Field(default_factory=FeedListeners, frozen=True)
    transport: Any = Field(frozen=True)

    @field_validator("transport")
    @classmethod
    def check_transport(cls, v: Any) -> Any:
        """Reject transports that do not implement ChangeFeedTransport."""
        if not isinstance(v, ChangeFeedTransport):
            raise ValueError(
                f"transport must implement open_feed/on_topology_changed/off_topology_changed, "
                f"got {type(v).__name__}"
            )
        return v

    @field_validator("pipeline", mode="before")
    @classmethod
    def copy_pipeline(cls, v: Any) -> Any:
        if isinstance(v, (list, tuple)):
            return tuple(copy.deepcopy(list(v)))
        return v

    @field_validator("watch_options")
    @classmethod
    def freeze_watch_options(cls, v: Mapping[str, Any]) -> Mapping[str, Any]:
        return MappingProxyType(dict(v))

    @property
    def initial_resume_token(self) -> Any:
        """Resume point supplied by the caller through ``watch_options``."""
        return self.watch_options.get("resume_after")

    def merged_watch_options(self) -> dict[str, Any]:
        """Default watch options overlaid with the caller's options.

        ``resume_after`` is left out; the session injects its tracked token
        instead.
        """
        options = {**DEFAULT_WATCH_OPTIONS, **self.watch_options}
        options.pop("resume_after", None)
        return options

    def pipeline_stages(self) -> list[dict[str, Any]]:
        """Fresh copy of the pipeline to hand to the transport."""
        return copy.deepcopy(list(self.pipeline))

    def describe(self) -> dict[str, Any]:
        """Loggable view of the configuration, without callbacks or transport."""
        return {
            "collection_name": self.collection_name,
            "pipeline": self.pipeline_stages(),
            "watch_options": self.merged_watch_options(),
            "use_resume_token": self.use_resume_token,
            "rewatch": self.rewatch.model_dump(),
        }
