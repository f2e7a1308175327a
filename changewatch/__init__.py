"""changewatch: resilient MongoDB change stream watcher."""

__version__ = "0.1.0"
