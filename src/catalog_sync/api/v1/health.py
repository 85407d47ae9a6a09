"""Health check endpoints."""

from datetime import datetime, timezone
from typing import Any

import structlog
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import text

from catalog_sync import __version__
from catalog_sync.api.v1.sync import get_services
from catalog_sync.config import get_settings
from catalog_sync.services.container import SyncServices

router = APIRouter()
logger = structlog.get_logger()


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    version: str
    environment: str
    timestamp: str
    dependencies: dict[str, Any]


class ReadinessResponse(BaseModel):
    """Readiness check response model."""

    ready: bool
    checks: dict[str, bool]


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """
    Basic health check endpoint.

    Returns the service status and version information.
    """
    settings = get_settings()

    return HealthResponse(
        status="healthy",
        version=__version__,
        environment=settings.app_env,
        timestamp=datetime.now(timezone.utc).isoformat(),
        dependencies={
            "postgres": "configured",
            "redis": "configured",
            "remote_api": settings.remote_api_base_url,
        },
    )


@router.get("/health/ready", response_model=ReadinessResponse)
async def readiness_check(services: SyncServices = Depends(get_services)) -> ReadinessResponse:
    """
    Readiness check endpoint.

    The database must answer; Redis is reported but optional, since the
    cache degrades to a no-op without it.
    """
    checks: dict[str, bool] = {}

    try:
        async with services.session_factory() as session:
            await session.execute(text("SELECT 1"))
        checks["database"] = True
    except Exception as e:
        logger.warning("Database readiness check failed", error=str(e))
        checks["database"] = False

    checks["redis"] = await services.cache.health_check()

    return ReadinessResponse(ready=checks["database"], checks=checks)


@router.get("/health/live")
async def liveness_check() -> dict[str, str]:
    """Returns 200 while the process is up."""
    return {"status": "alive"}
