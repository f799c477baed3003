"""Job type constants and idempotency helpers."""

from __future__ import annotations

from uuid import UUID

JOB_RUN_EXECUTE = "run.execute"


def idempotency_run_execute(run_id: UUID) -> str:
    return f"run_execute:{run_id}"
