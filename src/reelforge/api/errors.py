"""Domain-specific exceptions and helpers for consistent API errors."""

from __future__ import annotations

from fastapi import HTTPException, status

from reelforge.pipeline.errors import (
    PersistenceError,
    PipelineError,
    RunLockedError,
    RunNotFoundError,
)


class DomainError(Exception):
    """Base class for domain errors."""

    error: str = "domain_error"
    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, *, error: str | None = None, status_code: int | None = None):
        super().__init__(message)
        if error:
            self.error = error
        if status_code:
            self.status_code = status_code


class ValidationError(DomainError):
    error = "validation_error"
    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(DomainError):
    error = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(DomainError):
    error = "conflict"
    status_code = status.HTTP_409_CONFLICT


class PersistenceFailure(DomainError):
    error = "persistence_error"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


def to_http_exception(err: DomainError) -> HTTPException:
    """Convert DomainError to HTTPException with consistent payload."""
    return HTTPException(
        status_code=err.status_code,
        detail={"error": err.error, "detail": str(err)},
    )


def from_pipeline_error(exc: PipelineError) -> DomainError:
    """Map pipeline errors raised below the API onto domain errors."""
    if isinstance(exc, RunNotFoundError):
        return NotFoundError(str(exc), error="run_not_found")
    if isinstance(exc, RunLockedError):
        return ConflictError(str(exc), error="run_locked")
    if isinstance(exc, PersistenceError):
        return PersistenceFailure(str(exc))
    return DomainError(str(exc), error="pipeline_error")
