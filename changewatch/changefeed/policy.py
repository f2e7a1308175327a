"""
Reconnect policy for change feed sessions.

Decides how long a session waits before reopening its feed. The delay is
fixed per trigger type: a primary election gets a short delay so the feed
follows the new primary quickly, every other trigger gets a longer one so a
struggling cluster is not hammered with reconnects. There is no backoff
growth and no attempt limit; sessions retry for as long as they live.

Example:
    from changewatch.changefeed.policy import ReconnectPolicy, ReopenTrigger

    policy = ReconnectPolicy()  # delays from settings
    policy.delay_for(ReopenTrigger.SERVER_ELECTION)  # 1.0

    # Shortened delays for tests
    policy = ReconnectPolicy(reopen_delay=0.05, election_delay=0.01)
"""

from enum import Enum

from changewatch.core.config import settings


class ReopenTrigger(str, Enum):
    """What caused a session to reopen its feed.

    Attributes:
        ERROR: The feed delivered an error notification
        END: The feed ended
        CLOSE: The feed was closed
        SERVER_ELECTION: A new primary was elected
        OPEN_FAILURE: The transport raised while opening the feed
    """

    ERROR = "error"
    END = "end"
    CLOSE = "close"
    SERVER_ELECTION = "server_election"
    OPEN_FAILURE = "open_failure"


class ReconnectPolicy:
    """Fixed per-trigger reopen delays.

    Attributes:
        reopen_delay: Seconds to wait after error, end, close or a failed open
        election_delay: Seconds to wait after a primary election
    """

    def __init__(
        self,
        reopen_delay: float | None = None,
        election_delay: float | None = None,
    ):
        """Initialize the policy.

        Args:
            reopen_delay: General delay. Defaults to settings.CHANGEFEED_REOPEN_DELAY_SECONDS.
            election_delay: Election delay. Defaults to
                settings.CHANGEFEED_ELECTION_REOPEN_DELAY_SECONDS.

        Raises:
            ValueError: If a delay is negative or the election delay is not
                shorter than the general delay
        """
        if reopen_delay is None:
            reopen_delay = settings.CHANGEFEED_REOPEN_DELAY_SECONDS
        if election_delay is None:
            election_delay = settings.CHANGEFEED_ELECTION_REOPEN_DELAY_SECONDS

        if reopen_delay < 0:
            raise ValueError("reopen_delay must be non-negative")
        if election_delay < 0:
            raise ValueError("election_delay must be non-negative")
        if election_delay >= reopen_delay:
            raise ValueError("election_delay must be shorter than reopen_delay")

        self.reopen_delay = reopen_delay
        self.election_delay = election_delay

    def delay_for(self, trigger: ReopenTrigger) -> float:
        """Return the delay in seconds before reopening after ``trigger``."""
        if trigger == ReopenTrigger.SERVER_ELECTION:
            return self.election_delay
        return self.reopen_delay

    def __repr__(self) -> str:
        return (
            f"ReconnectPolicy("
            f"reopen_delay={self.reopen_delay}, "
            f"election_delay={self.election_delay})"
        )
