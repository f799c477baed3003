"""Prometheus scrape endpoint.

Process counters are collected as they happen; the per-status run gauge is
read from the database at scrape time so every API replica reports the same
totals.
"""

from __future__ import annotations

from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy.exc import SQLAlchemyError

from reelforge.observability.logging import get_logger
from reelforge.observability.metrics import RUNS_BY_STATUS
from reelforge.storage.database import get_async_session_factory
from reelforge.storage.models import RunStatus
from reelforge.storage.repositories import RunRepository

router = APIRouter(tags=["Metrics"])
logger = get_logger(__name__)


async def refresh_run_gauges() -> None:
    SessionLocal = get_async_session_factory()
    async with SessionLocal() as session:
        counts = await RunRepository(session).count_by_status_async()
    for status in RunStatus:
        RUNS_BY_STATUS.labels(status=status.value).set(counts.get(status.value, 0))


@router.get("/metrics")
async def metrics() -> Response:
    try:
        await refresh_run_gauges()
    except SQLAlchemyError as exc:
        # Serve the last known gauge values.
        logger.warning("metrics_run_gauge_refresh_failed", error=str(exc))
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


__all__ = ["router", "refresh_run_gauges"]
