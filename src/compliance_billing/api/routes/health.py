"""Health check endpoints."""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Request, status
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from compliance_billing.api.dependencies import DbSession

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: datetime
    database: str


@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
)
async def health_check(db: DbSession) -> HealthResponse:
    """Check API and database health."""
    db_status = "unhealthy"
    try:
        await db.execute(text("SELECT 1"))
        db_status = "healthy"
    except (SQLAlchemyError, OSError):
        logger.warning("Database health check failed", exc_info=True)

    return HealthResponse(
        status="healthy" if db_status == "healthy" else "degraded",
        timestamp=datetime.now(timezone.utc),
        database=db_status,
    )


class ReadinessResponse(BaseModel):
    """Readiness of the collaborators the workflow depends on."""

    status: str
    gateway_provider: str
    gateway_timeout_seconds: float
    pending_notifications: int


@router.get("/ready", response_model=ReadinessResponse, status_code=status.HTTP_200_OK)
async def readiness_check(request: Request) -> ReadinessResponse:
    """Report the payment gateway in use and the notification backlog.

    Gateway settings are validated at startup, so an app that is serving
    requests always has a usable adapter.
    """
    state = request.app.state
    handler = getattr(state, "dispatch_handler", None)
    return ReadinessResponse(
        status="ready",
        gateway_provider=state.settings.gateway.provider,
        gateway_timeout_seconds=state.gateway.timeout_seconds,
        pending_notifications=handler.pending if handler is not None else 0,
    )


@router.get("/live", status_code=status.HTTP_200_OK)
async def liveness_check() -> dict[str, str]:
    """Liveness check for container orchestration."""
    return {"status": "alive"}
