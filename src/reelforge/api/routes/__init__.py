"""API route modules."""

from reelforge.api.routes import health, metrics, runs, subjects

__all__ = ["health", "metrics", "runs", "subjects"]
