"""Shared retry policy for outbound provider calls."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from reelforge.observability.logging import get_logger

T = TypeVar("T")

logger = get_logger(__name__)


class TransientProviderError(Exception):
    """Raised inside a provider call for failures worth retrying."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RetryConfig:
    """Configuration for the provider retry policy."""

    def __init__(self, max_attempts: int = 3, min_wait: float = 1.0, max_wait: float = 16.0) -> None:
        self.max_attempts = max_attempts
        self.min_wait = min_wait
        self.max_wait = max_wait


def _log_retry(state: RetryCallState) -> None:
    exc = state.outcome.exception() if state.outcome else None
    logger.warning(
        "provider_call_retrying",
        attempt=state.attempt_number,
        error=str(exc) if exc else None,
    )


async def run_with_retry_async(
    fn: Callable[[], Awaitable[T]], *, config: RetryConfig | None = None
) -> T:
    """Await `fn` with exponential backoff on `TransientProviderError`.

    The last transient error is re-raised once attempts are exhausted.
    """
    cfg = config or RetryConfig()
    retrying = AsyncRetrying(
        reraise=True,
        stop=stop_after_attempt(cfg.max_attempts),
        wait=wait_exponential(multiplier=cfg.min_wait, max=cfg.max_wait),
        retry=retry_if_exception_type(TransientProviderError),
        before_sleep=_log_retry,
    )
    async for attempt in retrying:
        with attempt:
            return await fn()
    raise RuntimeError("Retry loop exited unexpectedly")
