"""
Configuration management for the changewatch service.

Uses pydantic-settings to load configuration from environment variables
with sensible defaults for development.
"""

from typing import Annotated, List, Union
from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "changewatch"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = True

    # API
    API_V1_PREFIX: str = "/api/v1"

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    RELOAD: bool = False

    # Logging
    LOG_LEVEL: str = "INFO"

    # ==========================================================================
    # MongoDB Configuration
    # Change streams require a replica set or sharded cluster
    # ==========================================================================

    MONGODB_URI: str = "mongodb://mongo:27017/?replicaSet=rs0"
    MONGODB_DATABASE: str = "changewatch"
    MONGODB_APP_NAME: str = "changewatch"  # Reported to the server in the handshake
    MONGODB_SERVER_SELECTION_TIMEOUT_MS: int = 30000

    # ==========================================================================
    # Change Feed Configuration
    # One watcher session is opened per collection at startup
    # ==========================================================================

    CHANGEFEED_COLLECTIONS: Annotated[List[str], NoDecode] = []
    CHANGEFEED_USE_RESUME_TOKEN: bool = True  # Resume after the last seen event on reopen
    CHANGEFEED_FULL_DOCUMENT: str = "updateLookup"  # Passed as full_document to watch()

    # Reopen delays (seconds). Election delay must stay below the general delay.
    CHANGEFEED_REOPEN_DELAY_SECONDS: float = 5.0  # After error, end, close or failed open
    CHANGEFEED_ELECTION_REOPEN_DELAY_SECONDS: float = 1.0  # After a new primary is elected

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

    @field_validator("CHANGEFEED_COLLECTIONS", mode="before")
    @classmethod
    def parse_collections(cls, v: Union[str, List[str]]) -> List[str]:
        """Parse comma-separated collection names into a list."""
        if isinstance(v, str):
            return [name.strip() for name in v.split(",") if name.strip()]
        elif isinstance(v, list):
            return v
        return []


# Global settings instance
settings = Settings()
