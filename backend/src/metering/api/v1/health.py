"""Health check endpoints for liveness and readiness probes."""
from datetime import datetime

import structlog
from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from metering.cache import cache
from metering.exceptions import UpstreamUnavailableError

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.get("/health", status_code=status.HTTP_200_OK, tags=["Health"])
async def health_check() -> dict[str, str]:
    """
    Liveness probe.

    Does not check external dependencies.
    """
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "version": "0.1.0",
    }


@router.get("/health/ready", tags=["Health"])
async def readiness_check(request: Request) -> JSONResponse:
    """
    Readiness probe.

    The database is required. Redis and Stripe are reported but do not fail
    readiness: plan reads fall back to the database, and Stripe is only
    needed for checkout and snapshot fetches.
    """
    checks = {"database": "unknown", "redis": "unknown", "stripe": "unknown"}
    ready = True

    try:
        async with request.app.state.database.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        checks["database"] = "connected"
    except (SQLAlchemyError, OSError) as exc:
        logger.error("database_health_check_failed", error=str(exc))
        checks["database"] = "disconnected"
        ready = False

    if cache.enabled:
        checks["redis"] = "connected" if await cache.set("health:ping", "1", ttl=5) else "disconnected"
    else:
        checks["redis"] = "disabled"

    try:
        await request.app.state.stripe_adapter.ping()
        checks["stripe"] = "reachable"
    except UpstreamUnavailableError:
        checks["stripe"] = "unreachable"

    return JSONResponse(
        status_code=status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "ready": ready,
            "checks": checks,
            "timestamp": datetime.utcnow().isoformat(),
        },
    )
