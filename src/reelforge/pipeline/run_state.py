"""Durable run state: stage pointer, status, per-stage progress, lease.

Every mutation is a read-modify-write of the latest stored row inside one
transaction (row locked with FOR UPDATE on PostgreSQL). Database failures
surface as `PersistenceError`.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, Mapping, Optional, Tuple
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.attributes import flag_modified

from reelforge.config import settings
from reelforge.observability.logging import get_logger
from reelforge.pipeline.errors import PersistenceError, RunNotFoundError
from reelforge.pipeline.results import ProgressDelta, ProgressSnapshot, StageProgress, iso_now
from reelforge.pipeline.stages import coerce_stage, is_ahead
from reelforge.storage.database import get_async_session_factory
from reelforge.storage.models import (
    TERMINAL_STATUSES,
    ProductionRun,
    RunStage,
    RunStatus,
)
from reelforge.storage.repositories import RunRepository

logger = get_logger(__name__)


def _utc_now_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def default_run_settings(overrides: Mapping[str, Any] | None = None) -> Dict[str, Any]:
    """Per-run options seeded from configuration, then caller overrides."""
    merged: Dict[str, Any] = {
        "duration": settings.default_duration_seconds,
        "aspect_ratio": settings.default_aspect_ratio,
        "style": settings.default_style,
        "video_model": settings.default_video_model,
    }
    merged.update({k: v for k, v in (overrides or {}).items() if v is not None})
    return merged


class RunStateStore:
    """Single source of truth for a production run's progress."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
        self._session_factory = session_factory or get_async_session_factory()

    @asynccontextmanager
    async def _locked(self, run_id: UUID) -> AsyncIterator[Tuple[AsyncSession, ProductionRun]]:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    run = await RunRepository(session).get_for_update_async(run_id)
                    if run is None:
                        raise RunNotFoundError(run_id)
                    yield session, run
        except SQLAlchemyError as exc:
            logger.error("run_state_write_failed", run_id=str(run_id), error=str(exc))
            raise PersistenceError(f"Failed to persist state for run {run_id}: {exc}") from exc

    @staticmethod
    def _progress(run: ProductionRun) -> Dict[str, Any]:
        return dict(run.stage_progress or {})

    @staticmethod
    def _store_progress(run: ProductionRun, progress: Dict[str, Any]) -> None:
        run.stage_progress = progress
        flag_modified(run, "stage_progress")

    async def create_run(
        self,
        *,
        subject_id: UUID | None,
        organization_id: str | None = None,
        run_settings: Mapping[str, Any] | None = None,
    ) -> ProductionRun:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    run = await RunRepository(session).create_async(
                        subject_id=subject_id,
                        organization_id=organization_id,
                        run_settings=default_run_settings(run_settings),
                    )
                return run
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to create run: {exc}") from exc

    async def load(self, run_id: UUID) -> ProductionRun:
        try:
            async with self._session_factory() as session:
                run = await RunRepository(session).get_async(run_id)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to load run {run_id}: {exc}") from exc
        if run is None:
            raise RunNotFoundError(run_id)
        return run

    async def snapshot(self, run_id: UUID) -> ProgressSnapshot:
        return build_snapshot(await self.load(run_id))

    async def advance_stage(self, run_id: UUID, new_stage: RunStage | str) -> bool:
        """Move the stage pointer forward; a non-forward target is a no-op."""
        target = coerce_stage(new_stage)
        async with self._locked(run_id) as (_session, run):
            if not is_ahead(target, run.stage):
                return False
            previous = run.stage
            run.stage = target.value
        logger.info("stage_advanced", run_id=str(run_id), previous=previous, stage=target.value)
        return True

    async def begin_stage(
        self,
        run_id: UUID,
        stage: RunStage | str,
        *,
        total_units: int,
        completed_units: int = 0,
        message: str = "",
    ) -> StageProgress:
        """Reset the stage's progress record for a fresh pass over its units."""
        key = coerce_stage(stage).value
        total = max(0, int(total_units))
        record = StageProgress(
            total_units=total,
            completed_units=min(max(0, int(completed_units)), total),
            message=message,
            started_at=iso_now(),
        )
        async with self._locked(run_id) as (_session, run):
            progress = self._progress(run)
            progress[key] = record.to_dict()
            self._store_progress(run, progress)
            if run.status == RunStatus.PENDING.value:
                run.status = RunStatus.IN_PROGRESS.value
            if run.started_at is None:
                run.started_at = _utc_now_naive()
        return record

    async def record_unit_progress(
        self, run_id: UUID, stage: RunStage | str, delta: ProgressDelta
    ) -> StageProgress:
        """Merge a unit's outcome into the stage record (clamped to total_units)."""
        key = coerce_stage(stage).value
        async with self._locked(run_id) as (_session, run):
            progress = self._progress(run)
            record = StageProgress.from_dict(progress.get(key)).apply(delta)
            progress[key] = record.to_dict()
            self._store_progress(run, progress)
        return record

    async def complete_stage(
        self, run_id: UUID, stage: RunStage | str, *, message: Optional[str] = None
    ) -> StageProgress:
        key = coerce_stage(stage).value
        async with self._locked(run_id) as (_session, run):
            progress = self._progress(run)
            record = StageProgress.from_dict(progress.get(key))
            record.completed_at = iso_now()
            if message is not None:
                record.message = message
            progress[key] = record.to_dict()
            self._store_progress(run, progress)
        return record

    async def mark_terminal(
        self, run_id: UUID, status: RunStatus | str, *, error: Optional[str] = None
    ) -> None:
        value = RunRepository._normalize_status(status)
        if value not in TERMINAL_STATUSES:
            raise ValueError(f"{value} is not a terminal status")
        async with self._locked(run_id) as (_session, run):
            run.status = value
            run.error = error
            run.completed_at = _utc_now_naive()
        logger.info("run_terminal", run_id=str(run_id), status=value, error=error)

    async def reopen(self, run_id: UUID, stage: RunStage | str) -> None:
        """Explicitly re-run a terminal run from `stage` (the only backward move)."""
        target = coerce_stage(stage)
        async with self._locked(run_id) as (_session, run):
            previous = (run.stage, run.status)
            run.stage = target.value
            run.status = RunStatus.IN_PROGRESS.value
            run.error = None
            run.cancel_requested = False
            run.completed_at = None
        logger.info(
            "run_reopened",
            run_id=str(run_id),
            previous_stage=previous[0],
            previous_status=previous[1],
            stage=target.value,
        )

    async def request_cancel(self, run_id: UUID) -> bool:
        """Flag the run for cooperative cancellation.

        A run nobody is executing (no live lease) is cancelled immediately.
        Returns False when the run is already terminal.
        """
        async with self._locked(run_id) as (_session, run):
            if run.status in TERMINAL_STATUSES:
                return False
            run.cancel_requested = True
            now = _utc_now_naive()
            lease_live = run.lease_owner is not None and (
                run.lease_expires_at is not None and run.lease_expires_at > now
            )
            if not lease_live:
                run.status = RunStatus.CANCELLED.value
                run.completed_at = now
        logger.info("run_cancel_requested", run_id=str(run_id), immediate=not lease_live)
        return True

    async def is_cancel_requested(self, run_id: UUID) -> bool:
        run = await self.load(run_id)
        return bool(run.cancel_requested)

    async def update_settings(
        self, run_id: UUID, patch: Mapping[str, Any], *, overwrite: bool = True
    ) -> Dict[str, Any]:
        """Merge `patch` into run settings; with overwrite=False existing keys win."""
        async with self._locked(run_id) as (_session, run):
            current = dict(run.run_settings or {})
            for key, value in patch.items():
                if overwrite or current.get(key) is None:
                    current[key] = value
            run.run_settings = current
            flag_modified(run, "run_settings")
        return current

    async def acquire_lease(self, run_id: UUID, owner: str, lease_seconds: float) -> bool:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    return await RunRepository(session).try_acquire_lease_async(
                        run_id, owner=owner, lease_seconds=lease_seconds
                    )
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to acquire lease for run {run_id}: {exc}") from exc

    async def renew_lease(self, run_id: UUID, owner: str, lease_seconds: float) -> bool:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    return await RunRepository(session).renew_lease_async(
                        run_id, owner=owner, lease_seconds=lease_seconds
                    )
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to renew lease for run {run_id}: {exc}") from exc

    async def release_lease(self, run_id: UUID, owner: str) -> None:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    await RunRepository(session).release_lease_async(run_id, owner=owner)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to release lease for run {run_id}: {exc}") from exc


def build_snapshot(run: ProductionRun) -> ProgressSnapshot:
    """Project a run row onto the stable polling contract."""
    progress = dict(run.stage_progress or {})
    if run.stage == RunStage.COMPLETE.value:
        records = [StageProgress.from_dict(raw) for raw in progress.values()]
        total = sum(r.total_units for r in records)
        completed = sum(r.completed_units for r in records)
        if run.status == RunStatus.PARTIAL.value:
            message = "Completed with missing units"
        else:
            message = "Completed"
    else:
        record = StageProgress.from_dict(progress.get(run.stage))
        total, completed, message = record.total_units, record.completed_units, record.message
    if run.status in {RunStatus.FAILED.value, RunStatus.CANCELLED.value}:
        message = run.error or ("Cancelled" if run.status == RunStatus.CANCELLED.value else message)
    return ProgressSnapshot(
        run_id=str(run.id),
        stage=run.stage,
        status=run.status,
        message=message,
        total_units=total,
        completed_units=completed,
        updated_at=run.updated_at.isoformat() if run.updated_at else None,
    )


__all__ = ["RunStateStore", "build_snapshot", "default_run_settings"]
