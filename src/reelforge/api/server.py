"""FastAPI application for the ReelForge API."""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Awaitable, Callable
from uuid import uuid4

from fastapi import FastAPI, HTTPException
from fastapi.requests import Request
from fastapi.responses import JSONResponse, Response
from prometheus_client import Counter, Histogram

from reelforge.api.errors import DomainError, from_pipeline_error, to_http_exception
from reelforge.api.routes import health, runs, subjects
from reelforge.api.routes import metrics as metrics_route
from reelforge.app_version import get_app_version
from reelforge.config import settings
from reelforge.observability.logging import logger, request_id_var
from reelforge.pipeline.errors import PipelineError
from reelforge.storage.database import init_async_db, shutdown_async_db

REQUEST_COUNT = Counter(
    "reelforge_http_requests_total", "Total HTTP requests", ["method", "path", "status"]
)
REQUEST_LATENCY = Histogram(
    "reelforge_http_request_duration_seconds",
    "HTTP request duration in seconds",
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10),
    labelnames=["path"],
)


def _metrics_path(request: Request) -> str:
    """Return a low-cardinality path label for metrics."""
    route = request.scope.get("route")
    if route is not None:
        path = getattr(route, "path", None)
        if path:
            return str(path)
    return "unmatched"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: logging and database tables."""
    from reelforge.observability import init_observability

    init_observability()
    logger.info("api_starting", environment=settings.environment)

    try:
        await init_async_db()
        app.state.database_ready = True
    except Exception as exc:
        logger.error("database_init_failed", error=str(exc))
        app.state.database_ready = False
        if settings.fail_fast_on_startup:
            raise

    yield

    logger.info("api_stopping")
    await shutdown_async_db()


app = FastAPI(
    title="ReelForge API",
    description="Short-form video ad production pipeline",
    version=get_app_version(),
    lifespan=lifespan,
)


@app.middleware("http")
async def request_id_middleware(
    request: Request,
    call_next: Callable[[Request], Awaitable[Response]],
) -> Response:
    """Manage the X-Request-ID header and contextvar propagation."""

    incoming_request_id = request.headers.get("X-Request-ID")
    request_id = incoming_request_id or str(uuid4())

    token = request_id_var.set(request_id)
    try:
        response = await call_next(request)
    finally:
        request_id_var.reset(token)

    response.headers["X-Request-ID"] = request_id
    return response


@app.middleware("http")
async def timing_middleware(
    request: Request,
    call_next: Callable[[Request], Awaitable[Response]],
) -> Response:
    start = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - start) * 1000
    try:
        path_label = _metrics_path(request)
        REQUEST_COUNT.labels(
            method=request.method,
            path=path_label,
            status=response.status_code,
        ).inc()
        REQUEST_LATENCY.labels(path=path_label).observe(duration_ms / 1000.0)
    except Exception as metrics_exc:  # pragma: no cover - metrics should not break requests
        logger.debug(
            "metrics_observe_failed",
            exc=str(metrics_exc),
            exc_type=type(metrics_exc).__name__,
        )
    logger.info(
        "request_complete",
        path=str(request.url.path),
        method=request.method,
        status=response.status_code,
        duration_ms=round(duration_ms, 2),
    )
    response.headers["X-Response-Time-ms"] = f"{duration_ms:.2f}"
    return response


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return consistent error envelope."""
    detail = exc.detail
    if isinstance(detail, dict):
        error_code = detail.get("error", "http_error")
    else:
        error_code = "http_error"
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": error_code,
            "detail": detail,
        },
        headers=exc.headers,
    )


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    http_exc = to_http_exception(exc)
    return await http_exception_handler(request, http_exc)


@app.exception_handler(PipelineError)
async def pipeline_error_handler(request: Request, exc: PipelineError) -> JSONResponse:
    return await domain_error_handler(request, from_pipeline_error(exc))


app.include_router(health.router)
app.include_router(metrics_route.router)
app.include_router(subjects.router, prefix="/v1/subjects")
app.include_router(runs.router, prefix="/v1/runs")


__all__ = ["app"]
