"""Durable job queue workers.

API nodes enqueue `run.execute` jobs; worker processes claim them and drive
the pipeline orchestrator.
"""

from __future__ import annotations

from reelforge.workers.worker import run_worker

__all__ = ["run_worker"]
