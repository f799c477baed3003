"""Provider mode helpers.

Centralizes the "effective provider mode" rule so the provider factory, health
endpoint and CLI agree:

- `content_provider_mode` is the source of truth ("real" | "fake")
- `use_fake_providers=True` downgrades "real" to "fake"
"""

from __future__ import annotations

from typing import Literal

from reelforge.config.settings import Settings

ProviderMode = Literal["real", "fake"]


def _coerce_mode(value: object, *, default: ProviderMode) -> ProviderMode:
    """Normalize a provider mode; unknown values fall back to `default`."""
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"real", "fake"}:
            return lowered  # type: ignore[return-value]
    return default


def _coerce_bool(value: object, *, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "y", "on"}:
            return True
        if lowered in {"0", "false", "no", "n", "off"}:
            return False
    return default


def effective_content_provider(settings: Settings) -> ProviderMode:
    mode = _coerce_mode(getattr(settings, "content_provider_mode", "real"), default="real")
    use_fake = _coerce_bool(getattr(settings, "use_fake_providers", False), default=False)
    if use_fake and mode == "real":
        return "fake"
    return mode
