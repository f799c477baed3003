"""Worker loop for `run.execute` jobs.

A worker claims one job per free slot, drives the job's run through the
orchestrator (via `handle_job`) while heartbeating the job lease, then settles
the job: succeeded, rescheduled (run leased elsewhere) or failed with backoff.
"""

from __future__ import annotations

import asyncio
import os
import socket
from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from uuid import UUID

import anyio

from reelforge.config import settings
from reelforge.observability.logging import get_logger
from reelforge.storage.database import get_async_session_factory
from reelforge.storage.models import Job, JobStatus
from reelforge.storage.repositories import JobRepository
from reelforge.workers.exceptions import JobReschedule
from reelforge.workers.handlers import handle_job

logger = get_logger(__name__)


def _default_worker_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}"


@dataclass(frozen=True)
class ClaimedJob:
    """Detached copy of a claimed job row; no session is held while it runs."""

    id: UUID
    job_type: str
    run_id: Optional[UUID]
    attempts: int
    max_attempts: int
    payload: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_row(cls, job: Job) -> "ClaimedJob":
        return cls(
            id=job.id,
            job_type=str(job.job_type),
            run_id=job.run_id,
            attempts=int(job.attempts or 0),
            max_attempts=int(job.max_attempts or 0),
            payload=dict(job.payload or {}),
        )

    def log_fields(self) -> Dict[str, Any]:
        return {
            "job_id": str(self.id),
            "job_type": self.job_type,
            "run_id": str(self.run_id) if self.run_id else None,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
        }


async def _load_claimed(job_id: UUID) -> ClaimedJob | None:
    SessionLocal = get_async_session_factory()
    async with SessionLocal() as session:
        job = await session.get(Job, job_id)
        return ClaimedJob.from_row(job) if job is not None else None


async def _keep_job_leased(
    job: ClaimedJob, worker_id: str, lease_seconds: float, done: anyio.Event
) -> None:
    interval = max(1.0, min(lease_seconds / 3.0, 30.0))
    SessionLocal = get_async_session_factory()
    while not done.is_set():
        with anyio.move_on_after(interval):
            await done.wait()
        if done.is_set():
            return
        try:
            async with SessionLocal() as session:
                await JobRepository(session).touch_lease_async(
                    job.id, worker_id=worker_id, lease_seconds=lease_seconds
                )
                await session.commit()
        except Exception:
            logger.warning("job_lease_renew_failed", job_id=str(job.id), exc_info=True)


async def _execute(job: ClaimedJob, worker_id: str, lease_seconds: float) -> Exception | None:
    """Run the job's handler under a lease heartbeat; return its exception, if any."""
    done = anyio.Event()
    outcome: Exception | None = None
    async with anyio.create_task_group() as tg:
        tg.start_soon(_keep_job_leased, job, worker_id, lease_seconds, done)
        try:
            await handle_job(job_type=job.job_type, run_id=job.run_id, payload=job.payload)
        except Exception as exc:
            outcome = exc
        finally:
            done.set()
    return outcome


def _failure_delay(job: ClaimedJob) -> float:
    return float(settings.job_retry_delay_seconds) * max(1, job.attempts)


async def _settle(job: ClaimedJob, outcome: Exception | None) -> None:
    SessionLocal = get_async_session_factory()
    async with SessionLocal() as session:
        repo = JobRepository(session)
        if outcome is None:
            await repo.mark_succeeded_async(job.id)
            await session.commit()
            logger.info("job_succeeded", **job.log_fields())
            return

        if isinstance(outcome, JobReschedule):
            status = await repo.mark_failed_async(
                job.id, error=outcome.reason, retry_delay_seconds=outcome.retry_delay_seconds
            )
            await session.commit()
            event = "job_reschedule_exhausted" if status == JobStatus.FAILED else "job_rescheduled"
            logger.info(
                event,
                retry_delay_seconds=outcome.retry_delay_seconds,
                reason=outcome.reason,
                **job.log_fields(),
            )
            return

        status = await repo.mark_failed_async(
            job.id, error=str(outcome), retry_delay_seconds=_failure_delay(job)
        )
        await session.commit()
        logger.warning(
            "job_failed",
            final=status == JobStatus.FAILED,
            error=str(outcome),
            exc_info=outcome,
            **job.log_fields(),
        )


async def process_one_job(job_id: UUID, worker_id: str, *, lease_seconds: float) -> None:
    """Execute one claimed job and settle it."""
    job = await _load_claimed(job_id)
    if job is None:
        logger.warning("job_vanished", job_id=str(job_id))
        return
    outcome = await _execute(job, worker_id, float(lease_seconds))
    await _settle(job, outcome)


async def claim_job(worker_id: str, lease_seconds: float) -> UUID | None:
    try:
        SessionLocal = get_async_session_factory()
        async with SessionLocal() as session:
            job = await JobRepository(session).claim_next_async(
                worker_id=worker_id, lease_seconds=lease_seconds
            )
            await session.commit()
            return job.id if job else None
    except Exception:
        logger.warning("job_claim_failed", exc_info=True)
        return None


async def _settle_crashed(job_id: UUID, exc: BaseException) -> None:
    try:
        SessionLocal = get_async_session_factory()
        async with SessionLocal() as session:
            await JobRepository(session).mark_failed_async(
                job_id,
                error=str(exc),
                retry_delay_seconds=float(settings.job_retry_delay_seconds),
            )
            await session.commit()
    except Exception:
        logger.error("job_crash_settle_failed", job_id=str(job_id), exc_info=True)


async def run_worker(
    *,
    once: bool = False,
    worker_id: str | None = None,
    concurrency: int | None = None,
) -> None:
    """Claim and execute jobs until cancelled.

    Args:
        once: Process at most one job and return.
        worker_id: Lease owner for claimed jobs (defaults to settings, then host:pid).
        concurrency: Runs executed in parallel (defaults to settings).
    """
    if settings.disable_background_workflows:
        raise RuntimeError("Worker cannot run with DISABLE_BACKGROUND_WORKFLOWS=true")

    owner = worker_id or settings.worker_id or _default_worker_id()
    slots = max(1, int(concurrency or settings.worker_concurrency or 1))
    lease_seconds = float(settings.job_lease_seconds)
    poll_interval = float(settings.job_poll_interval_seconds)
    logger.info("worker_start", worker_id=owner, concurrency=slots, once=once)

    if once:
        claimed = await claim_job(owner, lease_seconds)
        if claimed is not None:
            await process_one_job(claimed, owner, lease_seconds=lease_seconds)
        return

    free_slots = anyio.Semaphore(slots)

    async def _work(job_id: UUID) -> None:
        try:
            await process_one_job(job_id, owner, lease_seconds=lease_seconds)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("job_unhandled_exception", job_id=str(job_id), exc_info=True)
            await _settle_crashed(job_id, exc)
        finally:
            free_slots.release()

    async with anyio.create_task_group() as tg:
        while True:
            await free_slots.acquire()
            job_id = await claim_job(owner, lease_seconds)
            if job_id is None:
                free_slots.release()
                await anyio.sleep(poll_interval)
                continue
            tg.start_soon(_work, job_id)
