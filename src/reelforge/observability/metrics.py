"""Prometheus instruments for pipeline execution."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

UNITS_TOTAL = Counter(
    "reelforge_stage_units_total",
    "Stage units processed, by outcome",
    ["stage", "outcome"],
)
RUNS_FINISHED = Counter(
    "reelforge_runs_finished_total",
    "Production runs that reached a terminal status",
    ["status"],
)
STAGE_DURATION = Histogram(
    "reelforge_stage_duration_seconds",
    "Wall-clock duration of executed (not skipped) stages",
    labelnames=["stage"],
    buckets=(0.5, 1, 5, 15, 30, 60, 120, 300, 600),
)
PROVIDER_FAILURES = Counter(
    "reelforge_provider_failures_total",
    "Content provider call failures, by operation and kind",
    ["operation", "kind"],
)

RUNS_BY_STATUS = Gauge(
    "reelforge_runs",
    "Production runs currently stored, by status (refreshed on scrape)",
    ["status"],
)

__all__ = [
    "UNITS_TOTAL",
    "RUNS_FINISHED",
    "STAGE_DURATION",
    "PROVIDER_FAILURES",
    "RUNS_BY_STATUS",
]
