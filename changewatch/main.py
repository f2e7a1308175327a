"""
Main FastAPI application.

The lifespan opens one change feed session per configured collection and
shuts every session down through the registry when the application stops.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

from fastapi import FastAPI

from changewatch.api.routers import health
from changewatch.changefeed import FeedListeners, SessionConfig, SessionRegistry
from changewatch.core.config import settings
from changewatch.observability import configure_logging, setup_observability
from changewatch.transport.mongo import MongoChangeFeedTransport

configure_logging()

logger = logging.getLogger(__name__)


def log_change(change: Any) -> None:
    """Default change listener: record the event without interpreting it."""
    logger.debug(
        "Change event received",
        extra={
            "operation_type": change.get("operationType"),
            "namespace": change.get("ns"),
        },
    )


def build_session_config(collection: str, transport: MongoChangeFeedTransport) -> SessionConfig:
    """Session configuration for one collection from application settings."""
    return SessionConfig(
        collection_name=collection,
        watch_options={"full_document": settings.CHANGEFEED_FULL_DOCUMENT},
        use_resume_token=settings.CHANGEFEED_USE_RESUME_TOKEN,
        listeners=FeedListeners(on_change=log_change),
        transport=transport,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager for startup and shutdown events.

    Args:
        app: FastAPI application instance

    Yields:
        None
    """
    logger.info(
        "Starting %s v%s",
        settings.APP_NAME,
        settings.APP_VERSION,
        extra={"collections": settings.CHANGEFEED_COLLECTIONS},
    )

    registry = SessionRegistry()
    app.state.registry = registry
    transport: MongoChangeFeedTransport | None = None
    # Opens run as tasks so a stalled open holds up only its own session
    open_tasks: list[asyncio.Task] = []

    if settings.CHANGEFEED_COLLECTIONS:
        transport = MongoChangeFeedTransport.from_settings()
        for collection in settings.CHANGEFEED_COLLECTIONS:
            session = registry.create_session(build_session_config(collection, transport))
            open_tasks.append(asyncio.create_task(session.open(), name=f"open-{session.session_id}"))
    else:
        logger.warning("No collections configured, change feeds disabled")

    yield

    logger.info("Shutting down %s", settings.APP_NAME)

    # Stop sessions before closing the client they stream from
    await registry.shutdown_all()

    for task in open_tasks:
        if not task.done():
            task.cancel()
    await asyncio.gather(*open_tasks, return_exceptions=True)

    if transport is not None:
        await transport.close()


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Resilient MongoDB change stream watcher",
    lifespan=lifespan,
)

setup_observability(app)

app.include_router(health.router, prefix=settings.API_V1_PREFIX)
