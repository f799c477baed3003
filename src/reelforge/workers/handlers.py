"""Job handlers for the database-backed worker queue."""

from __future__ import annotations

from typing import Any, Dict
from uuid import UUID

from reelforge.config import settings
from reelforge.observability.logging import get_logger
from reelforge.pipeline.errors import RunLockedError, RunNotFoundError
from reelforge.pipeline.orchestrator import PipelineOrchestrator
from reelforge.workers.exceptions import JobReschedule
from reelforge.workers.job_types import JOB_RUN_EXECUTE

logger = get_logger(__name__)


def _as_uuid(value: Any) -> UUID:
    if isinstance(value, UUID):
        return value
    return UUID(str(value))


async def handle_job(
    *,
    job_type: str,
    run_id: UUID | None,
    payload: Dict[str, Any],
    orchestrator: PipelineOrchestrator | None = None,
) -> None:
    """Execute one job.

    `run.execute` drives the run through the orchestrator. A run that is
    already terminal is only reopened when the job was enqueued by an explicit
    resume (`payload["resume"]`).
    """
    if job_type == JOB_RUN_EXECUTE:
        if run_id is None:
            raise ValueError("run.execute requires run_id")
        owned = orchestrator is None
        orch = orchestrator or PipelineOrchestrator()
        try:
            result = await orch.run(_as_uuid(run_id), reopen_terminal=bool(payload.get("resume")))
        except RunLockedError as exc:
            raise JobReschedule(
                retry_delay_seconds=max(1.0, float(settings.run_lease_seconds) / 3.0),
                reason=str(exc),
            ) from exc
        except RunNotFoundError:
            logger.warning("run_execute_missing_run", run_id=str(run_id))
            return
        finally:
            if owned:
                await orch.aclose()
        logger.info(
            "run_execute_finished",
            run_id=str(run_id),
            status=result.status,
            completed_stages=len(result.completed_stages),
        )
        return

    raise ValueError(f"Unknown job_type: {job_type}")
