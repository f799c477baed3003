"""ReelForge observability: structured logging and Prometheus metrics.

Usage:
    from reelforge.observability import get_logger

    logger = get_logger(__name__)
    logger.info("stage_started", run_id=run_id, stage="images")
"""

from __future__ import annotations

from reelforge.observability.logging import configure_logging, get_logger

__all__ = [
    "configure_logging",
    "get_logger",
    "init_observability",
]

_OBSERVABILITY_INITIALIZED = False


def init_observability() -> None:
    """Initialize logging for the process (idempotent).

    Not executed on import so `reelforge` can be used as a library without
    mutating global logging configuration.
    """
    global _OBSERVABILITY_INITIALIZED
    if _OBSERVABILITY_INITIALIZED:
        return
    from reelforge.config import settings

    configure_logging(settings.log_level)
    _OBSERVABILITY_INITIALIZED = True
