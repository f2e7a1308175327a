"""
Health check endpoints for monitoring and orchestration.

Provides basic liveness/readiness checks and the status of every change
feed session owned by the application's registry.
"""

from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel

from changewatch.changefeed.registry import SessionRegistry
from changewatch.core.config import settings


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    service: str
    version: str
    timestamp: datetime


class ChangeFeedSessionHealth(BaseModel):
    """Status of one change feed session."""

    session_id: str
    collection: str
    state: str
    generation: int
    has_resume_token: bool


class ChangeFeedHealthResponse(BaseModel):
    """Aggregated status of all change feed sessions."""

    status: str
    session_count: int
    live_count: int
    sessions: list[ChangeFeedSessionHealth]


def get_registry(request: Request) -> SessionRegistry:
    """Registry created by the application lifespan."""
    return request.app.state.registry


router = APIRouter(tags=["health"])


@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Health check endpoint",
    description="Returns the health status of the service for monitoring and orchestration."
)
async def health_check() -> HealthResponse:
    """
    Perform a basic health check.

    Returns:
        HealthResponse: Current health status of the service
    """
    return HealthResponse(
        status="healthy",
        service=settings.APP_NAME,
        version=settings.APP_VERSION,
        timestamp=datetime.now(timezone.utc)
    )


@router.get(
    "/ready",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Readiness check endpoint",
    description="Returns readiness status indicating if the service can accept requests."
)
async def readiness_check() -> HealthResponse:
    return HealthResponse(
        status="ready",
        service=settings.APP_NAME,
        version=settings.APP_VERSION,
        timestamp=datetime.now(timezone.utc)
    )


@router.get(
    "/health/changefeeds",
    response_model=ChangeFeedHealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Change feed health",
    description="Returns the lifecycle state of every change feed session."
)
async def changefeed_health(
    registry: SessionRegistry = Depends(get_registry),
) -> dict[str, Any]:
    """
    Report change feed session health.

    Status is "healthy" when every session is live, "stopped" when no
    sessions are configured and "degraded" while any session is failing,
    reopening or shut down.
    """
    return registry.get_health()
