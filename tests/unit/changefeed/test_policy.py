"""Unit tests for ReconnectPolicy."""

import pytest

from changewatch.changefeed.policy import ReconnectPolicy, ReopenTrigger
from changewatch.core.config import settings


class TestReconnectPolicy:
    """Tests for delay selection and validation."""

    def test_defaults_from_settings(self):
        policy = ReconnectPolicy()

        assert policy.reopen_delay == settings.CHANGEFEED_REOPEN_DELAY_SECONDS
        assert policy.election_delay == settings.CHANGEFEED_ELECTION_REOPEN_DELAY_SECONDS

    @pytest.mark.parametrize(
        "trigger",
        [ReopenTrigger.ERROR, ReopenTrigger.END, ReopenTrigger.CLOSE, ReopenTrigger.OPEN_FAILURE],
    )
    def test_general_delay(self, trigger):
        policy = ReconnectPolicy(reopen_delay=5.0, election_delay=1.0)

        assert policy.delay_for(trigger) == 5.0

    def test_election_delay(self):
        policy = ReconnectPolicy(reopen_delay=5.0, election_delay=1.0)

        assert policy.delay_for(ReopenTrigger.SERVER_ELECTION) == 1.0

    def test_accepts_trigger_values(self):
        policy = ReconnectPolicy(reopen_delay=5.0, election_delay=1.0)

        assert policy.delay_for("server_election") == 1.0
        assert policy.delay_for("error") == 5.0

    def test_delay_does_not_grow(self):
        policy = ReconnectPolicy(reopen_delay=2.0, election_delay=0.5)

        delays = [policy.delay_for(ReopenTrigger.ERROR) for _ in range(10)]

        assert delays == [2.0] * 10

    def test_election_delay_must_be_shorter(self):
        with pytest.raises(ValueError, match="election_delay must be shorter"):
            ReconnectPolicy(reopen_delay=1.0, election_delay=1.0)

    @pytest.mark.parametrize(
        "kwargs,message",
        [
            ({"reopen_delay": -1.0, "election_delay": 0.0}, "reopen_delay must be non-negative"),
            ({"reopen_delay": 1.0, "election_delay": -0.5}, "election_delay must be non-negative"),
        ],
    )
    def test_negative_delays_rejected(self, kwargs, message):
        with pytest.raises(ValueError, match=message):
            ReconnectPolicy(**kwargs)

    def test_repr(self):
        assert "election_delay=0.01" in repr(ReconnectPolicy(reopen_delay=0.05, election_delay=0.01))
