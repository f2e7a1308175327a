"""Core application modules."""

from changewatch.core.config import Settings, settings

__all__ = [
    "Settings",
    "settings",
]
