"""Health check endpoints."""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, HTTPException, Request, status
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from collector_earnings import __version__
from collector_earnings.api.dependencies import DbSession
from collector_earnings.gateway.stub import StubGateway

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    timestamp: datetime
    database: str
    gateway: str  # 'trendipay', 'stub' or 'unconfigured'


def _gateway_mode(request: Request) -> str:
    gateway = request.app.state.gateway
    if gateway is None:
        return "unconfigured"
    return "stub" if isinstance(gateway, StubGateway) else "trendipay"


@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
)
async def health_check(request: Request, db: DbSession) -> HealthResponse:
    """Database reachability and the gateway the app is paying out through."""
    db_status = "unhealthy"
    try:
        await db.execute(text("SELECT 1"))
        db_status = "healthy"
    except (SQLAlchemyError, OSError):
        logger.warning("Database health check failed", exc_info=True)

    gateway = _gateway_mode(request)
    # The stub never moves money, so production on the stub is degraded.
    usable = {"trendipay"} if request.app.state.production else {"trendipay", "stub"}
    healthy = db_status == "healthy" and gateway in usable
    return HealthResponse(
        status="healthy" if healthy else "degraded",
        version=__version__,
        timestamp=datetime.now(timezone.utc),
        database=db_status,
        gateway=gateway,
    )


@router.get("/ready", status_code=status.HTTP_200_OK)
async def readiness_check(request: Request) -> dict[str, str]:
    """Ready once the gateway adapter is in place."""
    if request.app.state.gateway is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Gateway not initialised",
        )
    return {"status": "ready"}


@router.get("/live", status_code=status.HTTP_200_OK)
async def liveness_check() -> dict[str, str]:
    """Liveness check for container orchestration."""
    return {"status": "alive"}
