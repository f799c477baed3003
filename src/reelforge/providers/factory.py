"""Factory for content providers (real vs fake)."""

from __future__ import annotations

from reelforge.config.provider_modes import effective_content_provider
from reelforge.config.settings import Settings
from reelforge.providers.base import ContentProvider
from reelforge.providers.fake import FakeContentProvider
from reelforge.providers.http import HttpContentProvider
from reelforge.providers.retry import RetryConfig


def get_content_provider(settings: Settings) -> ContentProvider:
    """Return a deterministic fake in fake mode, otherwise the HTTP client."""
    if effective_content_provider(settings) == "fake":
        return FakeContentProvider()

    if not settings.content_provider_url:
        raise RuntimeError("CONTENT_PROVIDER_URL must be set when CONTENT_PROVIDER_MODE=real")

    return HttpContentProvider(
        base_url=settings.content_provider_url,
        api_key=settings.content_provider_api_key,
        timeout=settings.content_provider_timeout_seconds,
        retry=RetryConfig(
            max_attempts=settings.provider_retry_attempts,
            min_wait=settings.provider_retry_min_wait_seconds,
            max_wait=settings.provider_retry_max_wait_seconds,
        ),
    )


__all__ = ["get_content_provider", "FakeContentProvider", "HttpContentProvider"]
