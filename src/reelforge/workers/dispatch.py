"""Hand a run to whoever executes it: the job queue or this process."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from reelforge.config import settings
from reelforge.observability.logging import get_logger
from reelforge.pipeline.errors import PipelineError, RunLockedError
from reelforge.pipeline.orchestrator import PipelineOrchestrator
from reelforge.storage.models import Job, JobStatus
from reelforge.storage.repositories import JobRepository
from reelforge.workers.job_types import JOB_RUN_EXECUTE, idempotency_run_execute

logger = get_logger(__name__)


async def enqueue_run_execute(session: AsyncSession, run_id: UUID, *, resume: bool = False) -> Job:
    """Enqueue (or re-arm) the run's single `run.execute` job.

    The caller commits. A running job is returned as-is and a finished one is
    requeued. A pending job is reused; a resume upgrades its payload so the
    worker reopens the run even if it went terminal while queued.
    """
    job_repo = JobRepository(session)
    key = idempotency_run_execute(run_id)
    existing = await job_repo.get_by_idempotency_key_async(JOB_RUN_EXECUTE, key)
    payload = {"resume": resume}
    if existing is None:
        job = await job_repo.enqueue_async(
            JOB_RUN_EXECUTE,
            run_id=run_id,
            payload=payload,
            idempotency_key=key,
            max_attempts=settings.job_max_attempts,
        )
        logger.info("run_job_enqueued", run_id=str(run_id), job_id=str(job.id), resume=resume)
        return job
    if existing.status == JobStatus.PENDING.value:
        # A queued start job must reopen the run if a resume arrives before it is claimed.
        if resume and not (existing.payload or {}).get("resume"):
            await job_repo.set_payload_async(existing.id, payload)
            logger.info("run_job_upgraded_to_resume", run_id=str(run_id), job_id=str(existing.id))
        else:
            logger.info("run_job_already_pending", run_id=str(run_id), job_id=str(existing.id))
        return existing
    if existing.status == JobStatus.RUNNING.value:
        logger.info("run_job_already_running", run_id=str(run_id), job_id=str(existing.id))
        return existing
    await job_repo.requeue_async(existing.id, max_attempts=settings.job_max_attempts, payload=payload)
    logger.info("run_job_requeued", run_id=str(run_id), job_id=str(existing.id), resume=resume)
    return existing


async def run_in_process(run_id: UUID, *, resume: bool = False) -> None:
    """Background-task entry point for `workflow_dispatcher=inprocess`."""
    orchestrator = PipelineOrchestrator()
    try:
        result = await orchestrator.run(run_id, reopen_terminal=resume)
        logger.info("run_inprocess_finished", run_id=str(run_id), status=result.status)
    except RunLockedError:
        logger.info("run_inprocess_skipped_locked", run_id=str(run_id))
    except PipelineError as exc:
        logger.error("run_inprocess_failed", run_id=str(run_id), error=str(exc), exc_info=True)
    finally:
        await orchestrator.aclose()
