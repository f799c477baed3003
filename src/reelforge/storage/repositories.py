"""Data access repositories (async sessions)."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional
from uuid import UUID

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from reelforge.observability.logging import get_logger
from reelforge.storage.models import (
    Job,
    JobStatus,
    MediaAsset,
    MediaKind,
    MusicTrack,
    ProductionRun,
    RunStage,
    RunStatus,
    Scene,
    Script,
    Subject,
)

logger = get_logger(__name__)

__all__ = [
    "SubjectRepository",
    "MusicTrackRepository",
    "RunRepository",
    "ScriptRepository",
    "SceneRepository",
    "MediaAssetRepository",
    "JobRepository",
]


def _utc_now_naive() -> datetime:
    # Keep timestamps tz-naive to match the DB convention in models.py
    return datetime.now(timezone.utc).replace(tzinfo=None)


class SubjectRepository:
    """Repository for advertised subjects (products)."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_async(
        self,
        name: str,
        *,
        description: str | None = None,
        organization_id: str | None = None,
        price: float | None = None,
        original_price: float | None = None,
        features: List[str] | None = None,
        benefits: List[str] | None = None,
    ) -> Subject:
        subject = Subject(
            name=name,
            description=description,
            organization_id=organization_id,
            price=price,
            original_price=original_price,
            features=list(features or []),
            benefits=list(benefits or []),
        )
        self.session.add(subject)
        await self.session.flush()
        logger.info("subject_created", subject_id=str(subject.id), name=name)
        return subject

    async def get_async(self, subject_id: UUID) -> Optional[Subject]:
        return await self.session.get(Subject, subject_id)


class MusicTrackRepository:
    """Repository for organization-level preset music."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_async(self, organization_id: str, name: str, url: str) -> MusicTrack:
        track = MusicTrack(organization_id=organization_id, name=name, url=url)
        self.session.add(track)
        await self.session.flush()
        return track

    async def first_preset_async(self, organization_id: str) -> Optional[MusicTrack]:
        stmt = (
            select(MusicTrack)
            .where(MusicTrack.organization_id == organization_id)
            .order_by(MusicTrack.created_at.asc(), MusicTrack.name.asc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()


class RunRepository:
    """Repository for ProductionRun rows.

    Stage/status/progress mutations go through
    `reelforge.pipeline.run_state.RunStateStore`; this class only offers the
    primitive reads, the locked read and the lease updates it builds on.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_async(
        self,
        *,
        subject_id: UUID | None,
        organization_id: str | None = None,
        run_settings: Dict[str, Any] | None = None,
    ) -> ProductionRun:
        run = ProductionRun(
            subject_id=subject_id,
            organization_id=organization_id,
            stage=RunStage.SCRIPT.value,
            status=RunStatus.PENDING.value,
            stage_progress={},
            run_settings=dict(run_settings or {}),
            cancel_requested=False,
        )
        self.session.add(run)
        await self.session.flush()
        logger.info("run_created", run_id=str(run.id), subject_id=str(subject_id))
        return run

    async def get_async(self, run_id: UUID) -> Optional[ProductionRun]:
        result = await self.session.execute(
            select(ProductionRun).where(ProductionRun.id == run_id)
        )
        return result.scalar_one_or_none()

    async def get_for_update_async(self, run_id: UUID) -> Optional[ProductionRun]:
        """Load a run with a FOR UPDATE lock for read-modify-write.

        SQLite ignores the lock clause; its database-level write lock serializes
        the enclosing transaction instead.
        """
        stmt = (
            select(ProductionRun)
            .where(ProductionRun.id == run_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_async(
        self,
        *,
        limit: int = 10,
        offset: int = 0,
        status: RunStatus | str | None = None,
    ) -> List[ProductionRun]:
        stmt = select(ProductionRun)
        if status:
            stmt = stmt.where(ProductionRun.status == self._normalize_status(status))
        stmt = stmt.order_by(ProductionRun.created_at.desc()).offset(offset).limit(limit)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def count_by_status_async(self) -> Dict[str, int]:
        stmt = select(ProductionRun.status, func.count()).group_by(ProductionRun.status)
        result = await self.session.execute(stmt)
        return {str(status): int(count) for status, count in result.all()}

    @staticmethod
    def _normalize_status(value: RunStatus | str) -> str:
        """Validate and normalize run status to string value."""
        if isinstance(value, RunStatus):
            return value.value
        if isinstance(value, str):
            lowered = value.lower()
            if lowered in {status.value for status in RunStatus}:
                return lowered
        raise ValueError(f"Invalid run status: {value}")

    async def try_acquire_lease_async(
        self, run_id: UUID, *, owner: str, lease_seconds: float
    ) -> bool:
        """Take the run's ownership lease if it is free, expired or already ours."""
        now = _utc_now_naive()
        upd = (
            update(ProductionRun)
            .where(
                ProductionRun.id == run_id,
                or_(
                    ProductionRun.lease_owner.is_(None),
                    ProductionRun.lease_owner == owner,
                    ProductionRun.lease_expires_at.is_(None),
                    ProductionRun.lease_expires_at <= now,
                ),
            )
            .values(
                lease_owner=owner,
                lease_expires_at=now + timedelta(seconds=float(lease_seconds)),
            )
            .execution_options(synchronize_session=False)
        )
        res = await self.session.execute(upd)
        return bool(getattr(res, "rowcount", 0))

    async def renew_lease_async(self, run_id: UUID, *, owner: str, lease_seconds: float) -> bool:
        now = _utc_now_naive()
        upd = (
            update(ProductionRun)
            .where(ProductionRun.id == run_id, ProductionRun.lease_owner == owner)
            .values(lease_expires_at=now + timedelta(seconds=float(lease_seconds)))
            .execution_options(synchronize_session=False)
        )
        res = await self.session.execute(upd)
        return bool(getattr(res, "rowcount", 0))

    async def release_lease_async(self, run_id: UUID, *, owner: str) -> None:
        upd = (
            update(ProductionRun)
            .where(ProductionRun.id == run_id, ProductionRun.lease_owner == owner)
            .values(lease_owner=None, lease_expires_at=None)
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(upd)


class ScriptRepository:
    """Repository for script candidates."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_async(
        self,
        run_id: UUID,
        content: str,
        *,
        candidate_index: int = 0,
        metadata: Dict[str, Any] | None = None,
    ) -> Script:
        script = Script(
            run_id=run_id,
            content=content,
            is_selected=False,
            candidate_index=candidate_index,
            script_metadata=dict(metadata or {}),
        )
        self.session.add(script)
        await self.session.flush()
        return script

    async def get_selected_async(self, run_id: UUID) -> Optional[Script]:
        stmt = (
            select(Script)
            .where(Script.run_id == run_id, Script.is_selected.is_(True))
            .order_by(Script.created_at.asc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_by_run_async(self, run_id: UUID) -> List[Script]:
        stmt = (
            select(Script)
            .where(Script.run_id == run_id)
            .order_by(Script.created_at.asc(), Script.candidate_index.asc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def select_async(self, run_id: UUID, script_id: UUID) -> None:
        """Make `script_id` the only selected script of the run.

        Deselect-all and select-one run in the caller's transaction so no reader
        ever observes two selected scripts.
        """
        await self.session.execute(
            update(Script)
            .where(Script.run_id == run_id)
            .values(is_selected=False)
            .execution_options(synchronize_session=False)
        )
        res = await self.session.execute(
            update(Script)
            .where(Script.id == script_id, Script.run_id == run_id)
            .values(is_selected=True)
            .execution_options(synchronize_session=False)
        )
        if not getattr(res, "rowcount", 0):
            raise ValueError(f"Script {script_id} does not belong to run {run_id}")
        await self.session.flush()


class SceneRepository:
    """Repository for scenes and their cascade cleanup."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_async(
        self,
        *,
        run_id: UUID,
        script_id: UUID,
        scene_number: int,
        script_text: str,
        visual_description: str,
        metadata: Dict[str, Any] | None = None,
    ) -> Scene:
        scene = Scene(
            run_id=run_id,
            script_id=script_id,
            scene_number=scene_number,
            script_text=script_text,
            visual_description=visual_description,
            scene_metadata=dict(metadata or {}),
        )
        self.session.add(scene)
        await self.session.flush()
        return scene

    async def list_by_script_async(self, script_id: UUID) -> List[Scene]:
        stmt = select(Scene).where(Scene.script_id == script_id).order_by(Scene.scene_number.asc())
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def _delete_scenes_where_async(self, *criteria: Any) -> int:
        scene_ids = select(Scene.id).where(*criteria)
        await self.session.execute(
            delete(MediaAsset)
            .where(MediaAsset.scene_id.in_(scene_ids))
            .execution_options(synchronize_session=False)
        )
        res = await self.session.execute(
            delete(Scene).where(*criteria).execution_options(synchronize_session=False)
        )
        return int(getattr(res, "rowcount", 0) or 0)

    async def delete_for_script_async(self, script_id: UUID) -> int:
        """Delete a script's scenes along with any media attached to them."""
        return await self._delete_scenes_where_async(Scene.script_id == script_id)

    async def delete_outside_script_async(self, run_id: UUID, keep_script_id: UUID) -> int:
        """Delete scenes of every non-selected script of the run."""
        return await self._delete_scenes_where_async(
            Scene.run_id == run_id, Scene.script_id != keep_script_id
        )


class MediaAssetRepository:
    """Repository for persisted media assets."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_async(
        self,
        *,
        run_id: UUID,
        kind: MediaKind | str,
        url: str,
        scene_id: UUID | None = None,
        metadata: Dict[str, Any] | None = None,
    ) -> MediaAsset:
        asset = MediaAsset(
            run_id=run_id,
            scene_id=scene_id,
            kind=kind.value if isinstance(kind, MediaKind) else str(kind),
            url=url,
            asset_metadata=dict(metadata or {}),
        )
        self.session.add(asset)
        await self.session.flush()
        return asset

    async def list_by_run_async(
        self, run_id: UUID, kind: MediaKind | str | None = None
    ) -> List[MediaAsset]:
        stmt = select(MediaAsset).where(MediaAsset.run_id == run_id)
        if kind is not None:
            stmt = stmt.where(
                MediaAsset.kind == (kind.value if isinstance(kind, MediaKind) else str(kind))
            )
        stmt = stmt.order_by(MediaAsset.created_at.asc())
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def by_scene_async(
        self, scene_ids: Iterable[UUID], kind: MediaKind
    ) -> Dict[UUID, MediaAsset]:
        """Map scene id to its (oldest) asset of `kind`."""
        ids = list(scene_ids)
        if not ids:
            return {}
        stmt = (
            select(MediaAsset)
            .where(and_(MediaAsset.scene_id.in_(ids), MediaAsset.kind == kind.value))
            .order_by(MediaAsset.created_at.asc())
        )
        result = await self.session.execute(stmt)
        found: Dict[UUID, MediaAsset] = {}
        for asset in result.scalars().all():
            found.setdefault(asset.scene_id, asset)
        return found


class JobRepository:
    """Repository for durable job queue operations.

    Postgres-first (FOR UPDATE SKIP LOCKED), with a portable conditional-update
    fallback for SQLite used in tests.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    def _dialect_name(self) -> str:
        bind = self.session.get_bind()
        dialect = getattr(bind, "dialect", None)
        return str(dialect.name) if dialect is not None else "unknown"

    async def enqueue_async(
        self,
        job_type: str,
        *,
        run_id: UUID | None = None,
        payload: Dict[str, Any] | None = None,
        idempotency_key: str | None = None,
        max_attempts: int = 5,
        available_at: datetime | None = None,
    ) -> Job:
        job = Job(
            job_type=job_type,
            run_id=run_id,
            payload=payload or {},
            idempotency_key=idempotency_key,
            status=JobStatus.PENDING.value,
            max_attempts=max_attempts,
            available_at=available_at or _utc_now_naive(),
        )
        self.session.add(job)
        try:
            await self.session.flush()
        except IntegrityError as exc:
            # Stable error for callers to treat as "already enqueued".
            raise ValueError("job_already_enqueued") from exc
        return job

    async def get_by_idempotency_key_async(self, job_type: str, key: str) -> Optional[Job]:
        stmt = select(Job).where(Job.job_type == job_type, Job.idempotency_key == key)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def set_payload_async(self, job_id: UUID, payload: Dict[str, Any]) -> None:
        await self.session.execute(
            update(Job)
            .where(Job.id == job_id)
            .values(payload=dict(payload), updated_at=_utc_now_naive())
            .execution_options(synchronize_session=False)
        )

    async def requeue_async(
        self, job_id: UUID, *, max_attempts: int, payload: Dict[str, Any] | None = None
    ) -> None:
        """Reset a finished job so it runs again (explicit resume)."""
        values: Dict[str, Any] = {"payload": dict(payload)} if payload is not None else {}
        await self.session.execute(
            update(Job)
            .where(Job.id == job_id)
            .values(
                **values,
                status=JobStatus.PENDING.value,
                attempts=0,
                max_attempts=max_attempts,
                available_at=_utc_now_naive(),
                claimed_by=None,
                lease_expires_at=None,
                last_error=None,
            )
            .execution_options(synchronize_session=False)
        )

    async def claim_next_async(self, *, worker_id: str, lease_seconds: float = 60.0) -> Job | None:
        """Claim the next available job.

        Uses SKIP LOCKED on Postgres; falls back to optimistic claim on SQLite.
        """
        now = _utc_now_naive()
        lease_expires_at = now + timedelta(seconds=float(lease_seconds))

        eligible = or_(
            and_(
                Job.status == JobStatus.PENDING.value,
                Job.available_at <= now,
                or_(Job.lease_expires_at.is_(None), Job.lease_expires_at <= now),
            ),
            and_(Job.status == JobStatus.RUNNING.value, Job.lease_expires_at <= now),
        )

        if self._dialect_name() == "postgresql":
            stmt = (
                select(Job)
                .where(eligible)
                .order_by(Job.available_at.asc(), Job.created_at.asc())
                .limit(1)
                .with_for_update(skip_locked=True)
            )
            result = await self.session.execute(stmt)
            job = result.scalar_one_or_none()
            if job is None:
                return None
            job.status = JobStatus.RUNNING.value
            job.claimed_by = worker_id
            job.lease_expires_at = lease_expires_at
            job.attempts = int(job.attempts or 0) + 1
            await self.session.flush()
            return job

        stmt = (
            select(Job.id)
            .where(eligible)
            .order_by(Job.available_at.asc(), Job.created_at.asc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        job_id = result.scalar_one_or_none()
        if job_id is None:
            return None

        upd = (
            update(Job)
            .where(Job.id == job_id, eligible)
            .values(
                status=JobStatus.RUNNING.value,
                claimed_by=worker_id,
                lease_expires_at=lease_expires_at,
                attempts=Job.attempts + 1,
            )
            .execution_options(synchronize_session=False)
        )
        res = await self.session.execute(upd)
        if not getattr(res, "rowcount", 0):
            return None
        # Refresh even if the Job is already in the identity map.
        return await self.session.get(Job, job_id, populate_existing=True)

    async def touch_lease_async(
        self,
        job_id: UUID,
        *,
        worker_id: str,
        lease_seconds: float = 60.0,
    ) -> None:
        now = _utc_now_naive()
        upd = (
            update(Job)
            .where(
                Job.id == job_id,
                Job.status == JobStatus.RUNNING.value,
                Job.claimed_by == worker_id,
            )
            .values(lease_expires_at=now + timedelta(seconds=float(lease_seconds)), updated_at=now)
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(upd)
        await self.session.flush()

    async def mark_succeeded_async(self, job_id: UUID) -> None:
        upd = (
            update(Job)
            .where(Job.id == job_id)
            .values(
                status=JobStatus.SUCCEEDED.value,
                lease_expires_at=None,
                claimed_by=None,
                updated_at=_utc_now_naive(),
            )
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(upd)
        await self.session.flush()

    async def mark_failed_async(
        self,
        job_id: UUID,
        *,
        error: str,
        retry_delay_seconds: float = 5.0,
    ) -> JobStatus:
        """Mark job failed; reschedule it if attempts remain.

        Returns the resulting JobStatus.
        """
        job = await self.session.get(Job, job_id, populate_existing=True)
        if job is None:
            return JobStatus.FAILED

        job.last_error = error
        job.lease_expires_at = None
        job.claimed_by = None

        if int(job.attempts or 0) >= int(job.max_attempts or 0):
            job.status = JobStatus.FAILED.value
            await self.session.flush()
            return JobStatus.FAILED

        job.status = JobStatus.PENDING.value
        job.available_at = _utc_now_naive() + timedelta(seconds=float(retry_delay_seconds))
        await self.session.flush()
        return JobStatus.PENDING
