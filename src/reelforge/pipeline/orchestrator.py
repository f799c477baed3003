"""Pipeline orchestrator: drives a production run through its stages.

The orchestrator owns a run for the duration of `run()` through a leased
ownership token, executes (or skips) each stage in the fixed order, records
progress after every unit and decides the terminal status.
"""

from __future__ import annotations

import os
import socket
import time
from typing import Dict, List, Optional
from uuid import UUID, uuid4

import anyio
import structlog

from reelforge.assets.base import AssetStore
from reelforge.assets.factory import get_asset_store
from reelforge.config.settings import Settings, get_settings
from reelforge.observability.logging import get_logger
from reelforge.observability.metrics import RUNS_FINISHED, STAGE_DURATION
from reelforge.pipeline.artifacts import RunArtifacts
from reelforge.pipeline.context import StageContext
from reelforge.pipeline.errors import (
    PersistenceError,
    PreconditionError,
    RunCancelled,
    RunLockedError,
)
from reelforge.pipeline.executors import StageExecutor, build_executors
from reelforge.pipeline.results import ProgressDelta, RunResult, StageProgress, UnitResult
from reelforge.pipeline.run_state import RunStateStore
from reelforge.pipeline.stages import EXECUTABLE_STAGES, STAGE_ORDER, stage_index
from reelforge.providers.base import ContentProvider
from reelforge.providers.factory import get_content_provider
from reelforge.storage.database import get_async_session_factory
from reelforge.storage.models import ProductionRun, RunStage, RunStatus

logger = get_logger(__name__)


def _default_owner() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid4().hex[:8]}"


def _as_uuid(value: UUID | str) -> UUID:
    return value if isinstance(value, UUID) else UUID(str(value))


def under_delivered_stages(run: ProductionRun) -> List[str]:
    """Stages whose persisted progress shows fewer completed than total units."""
    progress = dict(run.stage_progress or {})
    return [
        stage.value
        for stage in EXECUTABLE_STAGES
        if not StageProgress.from_dict(progress.get(stage.value)).delivered
    ]


def result_from_run(run: ProductionRun) -> RunResult:
    """Describe a run's current state as a RunResult without executing anything."""
    passed = [s.value for s in EXECUTABLE_STAGES if stage_index(s) < stage_index(run.stage)]
    status = run.status
    if status == RunStatus.FAILED.value:
        return RunResult.failure(str(run.id), run.error or "failed", passed)
    if status == RunStatus.CANCELLED.value:
        return RunResult.cancelled(str(run.id), passed)
    if status in (RunStatus.COMPLETED.value, RunStatus.PARTIAL.value):
        return RunResult.finished(str(run.id), passed, partial=status == RunStatus.PARTIAL.value)
    return RunResult(run_id=str(run.id), status=status, completed_stages=passed)


class PipelineOrchestrator:
    """Execute production runs.

    Args:
        provider: Content provider gateway (defaults to the configured one).
        asset_store: Asset store gateway (defaults to the configured backend).
        session_factory: Async session factory shared by state and artifacts.
        config: Settings; defaults to the process settings.
        owner: Lease owner token; unique per orchestrator instance by default.
    """

    def __init__(
        self,
        *,
        provider: ContentProvider | None = None,
        asset_store: AssetStore | None = None,
        session_factory=None,
        config: Settings | None = None,
        owner: str | None = None,
        executors: Dict[RunStage, StageExecutor] | None = None,
    ) -> None:
        self.config = config or get_settings()
        factory = session_factory or get_async_session_factory()
        self.state = RunStateStore(factory)
        self.artifacts = RunArtifacts(factory)
        self._owns_provider = provider is None
        self.provider = provider or get_content_provider(self.config)
        self.asset_store = asset_store or get_asset_store(self.config)
        self.owner = owner or _default_owner()
        self.executors = executors or build_executors()
        self._lease_lost: Dict[UUID, anyio.Event] = {}

    async def aclose(self) -> None:
        if self._owns_provider:
            await self.provider.aclose()

    async def run(self, run_id: UUID | str, *, reopen_terminal: bool = True) -> RunResult:
        """Drive `run_id` as far as it can go.

        A terminal run is reopened at its first unsatisfied stage unless
        `reopen_terminal` is false, in which case its current result is
        returned untouched.

        Raises:
            RunNotFoundError: unknown run.
            RunLockedError: another orchestrator holds the run lease.
            PersistenceError: run state could not be recorded.
        """
        run_id = _as_uuid(run_id)
        await self.state.load(run_id)
        lease_seconds = float(self.config.run_lease_seconds)
        if not await self.state.acquire_lease(run_id, self.owner, lease_seconds):
            current = await self.state.load(run_id)
            logger.info("run_lease_rejected", run_id=str(run_id), owner=current.lease_owner)
            raise RunLockedError(run_id, current.lease_owner)

        result: Optional[RunResult] = None
        drive_exc: Exception | None = None
        stop_event = anyio.Event()
        self._lease_lost[run_id] = anyio.Event()
        with structlog.contextvars.bound_contextvars(run_id=str(run_id), lease_owner=self.owner):
            try:
                async with anyio.create_task_group() as tg:
                    tg.start_soon(self._lease_heartbeat, run_id, lease_seconds, stop_event)
                    try:
                        result = await self._drive(run_id, reopen_terminal=reopen_terminal)
                    except Exception as exc:
                        drive_exc = exc
                    finally:
                        stop_event.set()
            finally:
                self._lease_lost.pop(run_id, None)
                try:
                    await self.state.release_lease(run_id, self.owner)
                except PersistenceError:
                    logger.warning("run_lease_release_failed", exc_info=True)

        if drive_exc is not None:
            raise drive_exc
        if result is None:
            raise RuntimeError(f"Run {run_id} finished without a result")
        return result

    async def _lease_heartbeat(
        self, run_id: UUID, lease_seconds: float, stop_event: anyio.Event
    ) -> None:
        interval_seconds = max(1.0, min(lease_seconds / 3.0, 30.0))
        while True:
            with anyio.move_on_after(interval_seconds):
                await stop_event.wait()
            if stop_event.is_set():
                return
            try:
                if not await self.state.renew_lease(run_id, self.owner, lease_seconds):
                    logger.warning("run_lease_lost", run_id=str(run_id))
                    self._mark_lease_lost(run_id)
                    return
            except Exception:
                logger.warning("run_lease_renew_failed", run_id=str(run_id), exc_info=True)

    async def _context(self, run_id: UUID) -> StageContext:
        run = await self.state.load(run_id)
        return StageContext(
            run=run,
            subject=await self.artifacts.subject(run.subject_id),
            provider=self.provider,
            asset_store=self.asset_store,
            artifacts=self.artifacts,
            state=self.state,
            config=self.config,
        )

    def _mark_lease_lost(self, run_id: UUID) -> None:
        lost = self._lease_lost.get(run_id)
        if lost is not None:
            lost.set()

    def _lease_is_lost(self, run_id: UUID) -> bool:
        lost = self._lease_lost.get(run_id)
        return lost is not None and lost.is_set()

    async def _ensure_owner(self, run_id: UUID) -> None:
        """Raise RunLockedError once another orchestrator has taken the run."""
        if self._lease_is_lost(run_id):
            raise RunLockedError(run_id)
        run = await self.state.load(run_id)
        if run.lease_owner != self.owner:
            self._mark_lease_lost(run_id)
            raise RunLockedError(run_id, run.lease_owner)

    async def _check_cancel(self, run_id: UUID, stage: RunStage) -> None:
        if await self.state.is_cancel_requested(run_id):
            raise RunCancelled(run_id, stage.value)

    async def first_unsatisfied_stage(self, run_id: UUID) -> RunStage:
        """Earliest stage that still has work (or whose prerequisites fail)."""
        for stage in EXECUTABLE_STAGES:
            executor = self.executors[stage]
            ctx = await self._context(run_id)
            if not await executor.prerequisites_met(ctx):
                return stage
            if not await executor.already_satisfied(ctx):
                return stage
        return EXECUTABLE_STAGES[0]

    async def _drive(self, run_id: UUID, *, reopen_terminal: bool) -> RunResult:
        run = await self.state.load(run_id)
        if run.is_terminal:
            if not reopen_terminal:
                logger.info("run_already_terminal", status=run.status)
                return result_from_run(run)
            await self.state.reopen(run_id, await self.first_unsatisfied_stage(run_id))
            run = await self.state.load(run_id)

        completed: List[str] = []
        start = stage_index(run.stage)
        try:
            for stage in STAGE_ORDER[start:]:
                if stage is RunStage.COMPLETE:
                    break
                await self._ensure_owner(run_id)
                await self._check_cancel(run_id, stage)
                with structlog.contextvars.bound_contextvars(stage=stage.value):
                    await self._run_stage(run_id, stage)
                completed.append(stage.value)
            await self._ensure_owner(run_id)
        except RunLockedError as exc:
            # The new owner drives the run from here; write nothing more.
            logger.warning("run_ownership_lost", new_owner=exc.owner, completed_stages=completed)
            raise
        except PreconditionError as exc:
            logger.error("run_precondition_failed", stage=exc.stage, reasons=exc.reasons)
            await self._ensure_owner(run_id)
            await self.state.mark_terminal(run_id, RunStatus.FAILED, error=str(exc))
            RUNS_FINISHED.labels(status=RunStatus.FAILED.value).inc()
            return RunResult.failure(str(run_id), str(exc), completed)
        except RunCancelled as exc:
            logger.info("run_cancelled", stage=exc.stage)
            await self._ensure_owner(run_id)
            await self.state.mark_terminal(run_id, RunStatus.CANCELLED)
            RUNS_FINISHED.labels(status=RunStatus.CANCELLED.value).inc()
            return RunResult.cancelled(str(run_id), completed)
        except PersistenceError as exc:
            logger.error("run_persistence_failed", error=str(exc))
            await self._try_mark_failed(run_id, str(exc))
            raise
        except Exception as exc:
            logger.error("run_unexpected_error", error=str(exc), exc_info=True)
            await self._try_mark_failed(run_id, f"Unexpected error: {exc}")
            raise

        await self.state.advance_stage(run_id, RunStage.COMPLETE)
        run = await self.state.load(run_id)
        missing = under_delivered_stages(run)
        status = RunStatus.PARTIAL if missing else RunStatus.COMPLETED
        await self.state.mark_terminal(run_id, status)
        RUNS_FINISHED.labels(status=status.value).inc()
        logger.info("run_finished", status=status.value, under_delivered=missing)
        return RunResult.finished(str(run_id), completed, partial=bool(missing))

    async def _try_mark_failed(self, run_id: UUID, error: str) -> None:
        if self._lease_is_lost(run_id):
            logger.warning("run_mark_failed_skipped_lease_lost", error=error)
            return
        try:
            await self.state.mark_terminal(run_id, RunStatus.FAILED, error=error)
            RUNS_FINISHED.labels(status=RunStatus.FAILED.value).inc()
        except PersistenceError:
            logger.error("run_mark_failed_failed", exc_info=True)

    async def _run_stage(self, run_id: UUID, stage: RunStage) -> None:
        executor = self.executors[stage]
        ctx = await self._context(run_id)

        reasons = await executor.unmet_prerequisites(ctx)
        if reasons:
            raise PreconditionError(stage.value, reasons)

        next_stage = STAGE_ORDER[stage_index(stage) + 1]
        total, done = await executor.count_units(ctx)

        if await executor.already_satisfied(ctx):
            await self.state.begin_stage(
                run_id, stage, total_units=total, completed_units=done, message="Already satisfied"
            )
            await self.state.complete_stage(run_id, stage)
            await self.state.advance_stage(run_id, next_stage)
            logger.info("stage_skipped", total_units=total, completed_units=done)
            return

        await self.state.begin_stage(
            run_id, stage, total_units=total, completed_units=done, message=f"Running {stage.value}"
        )
        logger.info("stage_started", total_units=total, completed_units=done)
        await ctx.refresh()

        async def on_unit(result: UnitResult, message: str) -> None:
            await self._ensure_owner(run_id)
            await self.state.record_unit_progress(
                run_id, stage, ProgressDelta.for_unit(result, message)
            )
            await self._check_cancel(run_id, stage)

        started = time.perf_counter()
        outcome = await executor.execute(ctx, on_unit)
        STAGE_DURATION.labels(stage=stage.value).observe(time.perf_counter() - started)

        summary = (
            f"{stage.value}: {outcome.units_succeeded} succeeded, "
            f"{outcome.units_failed} failed, {outcome.units_skipped} skipped"
        )
        record = await self.state.complete_stage(run_id, stage, message=summary)
        await self.state.advance_stage(run_id, next_stage)
        logger.info(
            "stage_completed",
            total_units=record.total_units,
            completed_units=record.completed_units,
            failed_units=record.failed_units,
            skipped_units=record.skipped_units,
        )


__all__ = [
    "PipelineOrchestrator",
    "result_from_run",
    "under_delivered_stages",
]
