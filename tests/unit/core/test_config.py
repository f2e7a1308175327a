"""
Unit tests for application settings.
"""

import pytest

from changewatch.core.config import Settings


class TestChangeFeedSettings:
    """Tests for change feed related settings."""

    def test_defaults(self, monkeypatch) -> None:
        monkeypatch.delenv("CHANGEFEED_COLLECTIONS", raising=False)
        config = Settings(_env_file=None)

        assert config.CHANGEFEED_COLLECTIONS == []
        assert config.CHANGEFEED_USE_RESUME_TOKEN is True
        assert config.CHANGEFEED_FULL_DOCUMENT == "updateLookup"
        assert config.CHANGEFEED_ELECTION_REOPEN_DELAY_SECONDS < config.CHANGEFEED_REOPEN_DELAY_SECONDS

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("orders", ["orders"]),
            ("orders,payments", ["orders", "payments"]),
            (" orders , payments ,", ["orders", "payments"]),
            ("", []),
        ],
    )
    def test_collections_from_env(self, monkeypatch, raw, expected) -> None:
        monkeypatch.setenv("CHANGEFEED_COLLECTIONS", raw)

        assert Settings(_env_file=None).CHANGEFEED_COLLECTIONS == expected

    def test_collections_from_list(self) -> None:
        config = Settings(_env_file=None, CHANGEFEED_COLLECTIONS=["orders"])

        assert config.CHANGEFEED_COLLECTIONS == ["orders"]

    def test_delays_from_env(self, monkeypatch) -> None:
        monkeypatch.setenv("CHANGEFEED_REOPEN_DELAY_SECONDS", "10")
        monkeypatch.setenv("CHANGEFEED_ELECTION_REOPEN_DELAY_SECONDS", "0.5")

        config = Settings(_env_file=None)

        assert config.CHANGEFEED_REOPEN_DELAY_SECONDS == 10.0
        assert config.CHANGEFEED_ELECTION_REOPEN_DELAY_SECONDS == 0.5

    def test_mongodb_settings_from_env(self, monkeypatch) -> None:
        monkeypatch.setenv("MONGODB_URI", "mongodb://db-1:27017,db-2:27017/?replicaSet=rs1")
        monkeypatch.setenv("MONGODB_DATABASE", "shop")

        config = Settings(_env_file=None)

        assert config.MONGODB_URI.endswith("replicaSet=rs1")
        assert config.MONGODB_DATABASE == "shop"
