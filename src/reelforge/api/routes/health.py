"""Health check endpoints."""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

from reelforge.api.schemas import HealthResponse
from reelforge.app_version import get_app_version
from reelforge.config.provider_modes import effective_content_provider
from reelforge.config.settings import settings
from reelforge.observability.logging import get_logger
from reelforge.storage.database import get_async_session_factory

router = APIRouter(tags=["Health"])
logger = get_logger(__name__)


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request) -> dict[str, Any]:
    """Liveness probe with the effective runtime configuration."""
    return {
        "status": "healthy",
        "version": get_app_version(),
        "database_ready": getattr(request.app.state, "database_ready", None),
        "provider_mode": effective_content_provider(settings),
        "asset_store_backend": settings.asset_store_backend,
        "workflow_dispatcher": settings.workflow_dispatcher,
    }


@router.get("/health/db")
async def db_health_check() -> JSONResponse:
    """Check database connectivity. Returns 200 if healthy, 503 otherwise."""
    checks: Dict[str, Any] = {"database": "unknown"}
    status_code = 200
    try:
        SessionLocal = get_async_session_factory()
        async with SessionLocal() as session:
            await session.execute(text("SELECT 1"))
        checks["database"] = "healthy"
    except Exception as exc:
        logger.error("db_health_check_failed", error=str(exc))
        checks["database"] = "unhealthy"
        checks["database_error"] = str(exc)
        status_code = 503
    return JSONResponse(content=checks, status_code=status_code)


__all__ = ["router"]
