"""
Observability instrumentation for changewatch.

This module configures:

1. **Structured Logging**
   - JSON log lines via python-json-logger, including every field passed
     through ``extra={...}`` (session_id, trigger, delay_seconds, ...)
   - Test mode support for clean pytest output

2. **Prometheus Metrics**
   - HTTP request counters and duration histograms for the API
   - Change feed metrics from ``changewatch.changefeed.metrics``
   - Exposed at /metrics for Prometheus scraping

Environment Variables:
    SERVICE_NAME: Service name added to every log line (default: "changewatch")
    TESTING: Set to "true" to use a plain text log format

Usage:
    from changewatch.observability import setup_observability

    app = FastAPI()
    setup_observability(app)
"""

import logging
import os
from collections.abc import Awaitable, Callable
from typing import Any

from fastapi import FastAPI, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest
from pythonjsonlogger import jsonlogger

from changewatch.core.config import settings

SERVICE_NAME_VAL = os.getenv("SERVICE_NAME", "changewatch")


# =============================================================================
# Logging Configuration
# =============================================================================

# Standard log record attributes that should not be treated as extra fields
RESERVED_LOG_ATTRS = frozenset({
    "args", "asctime", "created", "exc_info", "exc_text", "filename",
    "funcName", "levelname", "levelno", "lineno", "module", "msecs",
    "message", "msg", "name", "pathname", "process", "processName",
    "relativeCreated", "stack_info", "thread", "threadName", "taskName",
    "service",
})


class StructuredJsonFormatter(jsonlogger.JsonFormatter):
    """
    JSON formatter that includes the service name and all extra fields.

    Example output:
        {"timestamp": "2025-01-15T10:30:00Z", "level": "WARNING",
         "logger": "changewatch.changefeed.session",
         "message": "ChangeWatcher-orders: rewatch will be triggered shortly",
         "service": "changewatch", "session_id": "ChangeWatcher-orders",
         "trigger": "error", "delay_seconds": 5.0}
    """

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(
            *args,
            **kwargs,
            timestamp=True,
        )
        self.service_name = SERVICE_NAME_VAL

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        """Add custom fields to the JSON log record."""
        super().add_fields(log_record, record, message_dict)

        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["service"] = self.service_name

        for key, value in record.__dict__.items():
            if key not in RESERVED_LOG_ATTRS and not key.startswith('_'):
                if key not in log_record:
                    log_record[key] = value


def configure_logging(level: str | None = None) -> None:
    """
    Configure root logging.

    JSON output in normal operation; a simplified text format when
    TESTING=true to avoid noise during pytest.

    Args:
        level: Log level name (defaults to settings.LOG_LEVEL)
    """
    log_level = (level or settings.LOG_LEVEL).upper()
    is_testing = os.getenv("TESTING", "false").lower() == "true"

    if is_testing:
        log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        logging.basicConfig(
            level=log_level,
            format=log_format,
            force=True
        )
    else:
        handler = logging.StreamHandler()
        handler.setLevel(log_level)
        handler.setFormatter(StructuredJsonFormatter())

        root_logger = logging.getLogger()
        root_logger.setLevel(log_level)
        root_logger.handlers.clear()
        root_logger.addHandler(handler)


# =============================================================================
# Prometheus Metrics Definitions
# =============================================================================

http_requests_total = Counter(
    name="http_requests_total",
    documentation="Total number of HTTP requests processed",
    labelnames=["method", "endpoint", "status"]
)

http_request_duration_seconds = Histogram(
    name="http_request_duration_seconds",
    documentation="HTTP request duration in seconds",
    labelnames=["method", "endpoint"]
)

active_requests = Gauge(
    name="active_requests",
    documentation="Number of HTTP requests currently being processed"
)


# =============================================================================
# Setup Function
# =============================================================================

def setup_observability(app: FastAPI) -> FastAPI:
    """
    Add HTTP metrics middleware and the /metrics endpoint to an app.

    Args:
        app: FastAPI application instance to instrument

    Returns:
        The instrumented FastAPI application (same instance, for chaining)
    """
    logger = logging.getLogger(__name__)

    @app.middleware("http")
    async def metrics_middleware(
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        active_requests.inc()
        method = request.method
        path = request.url.path

        try:
            with http_request_duration_seconds.labels(
                method=method,
                endpoint=path
            ).time():
                response = await call_next(request)

            http_requests_total.labels(
                method=method,
                endpoint=path,
                status=response.status_code
            ).inc()

            return response
        finally:
            active_requests.dec()

    @app.get(
        "/metrics",
        include_in_schema=False,
        tags=["monitoring"]
    )
    async def get_metrics() -> Response:
        """Prometheus metrics endpoint, including change feed metrics."""
        return Response(
            content=generate_latest(),
            media_type=CONTENT_TYPE_LATEST
        )

    logger.info(
        "Observability configured",
        extra={"metrics_endpoint": "/metrics", "service": SERVICE_NAME_VAL},
    )

    return app
