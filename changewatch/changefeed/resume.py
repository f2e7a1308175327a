"""Resume token bookkeeping for a single feed session."""

from collections.abc import Mapping
from typing import Any


def extract_resume_token(change: Any) -> Any:
    """Return the resume token carried by a change event, if any."""
    if isinstance(change, Mapping):
        return change.get("_id")
    return getattr(change, "resume_token", None)


class ResumeTracker:
    """Holds the latest resume token seen by a session.

    The token is opaque: it is stored and handed back to the transport
    unchanged.
    """

    def __init__(self, token: Any = None) -> None:
        self._token = token

    def record_token(self, token: Any) -> None:
        self._token = token

    def clear(self) -> None:
        self._token = None

    def current_token(self) -> Any:
        return self._token

    @property
    def has_token(self) -> bool:
        return self._token is not None

    def __repr__(self) -> str:
        return f"ResumeTracker(has_token={self.has_token})"
