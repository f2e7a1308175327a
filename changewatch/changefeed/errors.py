"""
Change feed failure taxonomy.

Every failure a FeedSession observes is mapped onto one of these classes
before it is logged or handed to user callbacks.

Error Categories:
- OpenFailure: the transport raised while establishing a subscription.
  Always retried.
- TransientStreamError: an error notification on a live feed. Retried
  according to the session's rewatch flags; the resume token is kept.
- HistoryLostError: the server can no longer resume from the tracked token
  because the oplog entry was discarded. Retried, but the token is dropped
  and the next feed starts from the server's default position. Events
  between the lost token and the new start point may be skipped or replayed.

Ending and closing of a feed are notifications rather than failures and have
no class here.

Example:
    failure = classify_stream_error(payload)
    if isinstance(failure, HistoryLostError):
        tracker.clear()
"""

from collections.abc import Mapping
from typing import Any

# Server error reported when a resume token points past the retained oplog
HISTORY_LOST_CODE = 286
HISTORY_LOST_CODE_NAME = "ChangeStreamHistoryLost"


class ChangeFeedError(Exception):
    """Base exception for change feed failures.

    Attributes:
        message: Human-readable error description
        original_error: The driver error or payload that caused this failure
        session_id: Identity of the session that observed the failure
    """

    def __init__(
        self,
        message: str,
        original_error: Any = None,
        session_id: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.original_error = original_error
        self.session_id = session_id

    def __str__(self) -> str:
        parts = [self.message]
        if self.session_id:
            parts.append(f"session_id={self.session_id}")
        if self.original_error is not None:
            parts.append(f"original_error={type(self.original_error).__name__}")
        return " | ".join(parts)


class OpenFailure(ChangeFeedError):
    """Raised by the transport while a subscription was being established.

    Open failures are always treated as transient and retried, regardless
    of the session's rewatch flags.
    """

    pass


class StreamFailure(ChangeFeedError):
    """Base class for error notifications delivered by a live feed.

    Attributes:
        code: Numeric server error code, if the driver reported one
        code_name: Symbolic server error name, if the driver reported one
    """

    def __init__(
        self,
        message: str,
        original_error: Any = None,
        session_id: str | None = None,
        code: int | None = None,
        code_name: str | None = None,
    ):
        super().__init__(message, original_error=original_error, session_id=session_id)
        self.code = code
        self.code_name = code_name

    def __str__(self) -> str:
        text = super().__str__()
        if self.code_name:
            return f"{text} | code_name={self.code_name}"
        if self.code is not None:
            return f"{text} | code={self.code}"
        return text


class TransientStreamError(StreamFailure):
    """General or unclassified feed error. The resume token is preserved."""

    pass


class HistoryLostError(StreamFailure):
    """The tracked resume point is no longer available on the server."""

    pass


def _extract_code(payload: Any) -> tuple[int | None, str | None]:
    """Pull the error code and code name out of a driver error or mapping."""
    if isinstance(payload, Mapping):
        code = payload.get("code")
        code_name = payload.get("codeName")
        return (code if isinstance(code, int) else None), code_name

    code = getattr(payload, "code", None)
    code_name = getattr(payload, "code_name", None)
    details = getattr(payload, "details", None)
    if code_name is None and isinstance(details, Mapping):
        code_name = details.get("codeName")
    return (code if isinstance(code, int) else None), code_name


def classify_stream_error(payload: Any, session_id: str | None = None) -> StreamFailure:
    """Classify an error notification payload.

    Accepts a pymongo ``OperationFailure`` (or any exception exposing
    ``code`` / ``details["codeName"]``), a mapping with ``code`` /
    ``codeName`` keys, or anything else. Anything that cannot be recognised
    as a history-lost failure is reported as a TransientStreamError.

    Args:
        payload: The raw payload delivered with the error notification
        session_id: Identity of the session that received it

    Returns:
        HistoryLostError or TransientStreamError wrapping the payload
    """
    if isinstance(payload, StreamFailure):
        return payload

    code, code_name = _extract_code(payload)
    if code_name == HISTORY_LOST_CODE_NAME or code == HISTORY_LOST_CODE:
        return HistoryLostError(
            "Change stream history lost, resume token discarded",
            original_error=payload,
            session_id=session_id,
            code=code,
            code_name=code_name or HISTORY_LOST_CODE_NAME,
        )

    message = str(payload) if isinstance(payload, BaseException) and str(payload) else "Change stream errored"
    return TransientStreamError(
        message,
        original_error=payload,
        session_id=session_id,
        code=code,
        code_name=code_name,
    )
