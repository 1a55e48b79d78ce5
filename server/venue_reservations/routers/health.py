"""Health, readiness and service information endpoints."""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import settings
from ..core.dependencies import get_db
from ..schemas.health import HealthResponse, HealthStatus

logger = logging.getLogger(__name__)

SERVICE_NAME = "venue-reservations-api"
VERSION = "1.0.0"

router = APIRouter(tags=["health"])

DB_DEPENDENCY = Depends(get_db)


@router.get("/health", summary="Health Check")
async def health_check() -> dict:
    """Liveness probe; does not touch dependencies."""
    return {
        "status": "healthy",
        "service": SERVICE_NAME,
        "version": VERSION,
        "environment": settings.environment,
    }


@router.get("/ready", summary="Readiness Check")
async def readiness_check(request: Request, db: AsyncSession = DB_DEPENDENCY) -> JSONResponse:
    """
    Readiness probe.

    Reports not ready (503) when the database cannot be queried.
    """
    checks = {"database": "ok"}
    try:
        await db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.warning("Readiness check failed", extra={"error": str(e)})
        checks["database"] = "unavailable"

    workers = getattr(request.app.state, "worker_manager", None)
    checks["scheduler"] = "running" if workers and all(workers.get_worker_status().values()) else "stopped"

    ready = checks["database"] == "ok"
    return JSONResponse(
        status_code=200 if ready else 503,
        content={
            "status": "ready" if ready else "not_ready",
            "service": SERVICE_NAME,
            "checks": checks,
        },
    )


@router.get("/info", summary="Service Information")
async def service_info() -> dict:
    """Service information and the booking rules in effect."""
    return {
        "service": SERVICE_NAME,
        "version": VERSION,
        "description": "Availability checks, temporal holds and reconciliation for venue resources",
        "environment": settings.environment,
        "venue_timezone": settings.venue_timezone,
        "hold_ttl_seconds": settings.hold_ttl_seconds,
        "hold_ttl_overrides": settings.hold_ttl_overrides,
        "scheduler": {
            "enabled": settings.scheduler_enabled,
            "interval_seconds": settings.scheduler_interval_seconds,
            "max_retries": settings.scheduler_max_retries,
        },
        "photoshoot_overlap_policy": settings.photoshoot_overlap_policy,
        "endpoints": {
            "health": "/health",
            "readiness": "/ready",
            "metrics": "/metrics",
            "docs": "/docs" if settings.debug else None,
        },
    }


@router.post("/v1/health/ping", response_model=HealthResponse)
async def health_ping() -> JSONResponse:
    """
    Health check endpoint.

    Returns current service status and timestamp.
    """
    response_data = HealthResponse(
        status=HealthStatus.HEALTHY,
        timestamp=datetime.now(timezone.utc),
        version=VERSION
    )

    logger.debug(
        "Health check requested",
        extra={"timestamp": response_data.timestamp.isoformat()}
    )

    return JSONResponse(
        status_code=200,
        content=response_data.model_dump(mode="json")
    )
