"""SQLAlchemy database models for ReelForge."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
import uuid
from typing import Any, Dict
from uuid import UUID

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import declarative_base, relationship


def _utc_now() -> datetime:
    """Return a tz-naive UTC timestamp for TIMESTAMP WITHOUT TIME ZONE columns.

    asyncpg rejects tz-aware values for TIMESTAMP WITHOUT TIME ZONE columns, so
    these fields stay naive and are treated as UTC by convention.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class GUID(TypeDecorator[UUID]):
    """Platform-independent GUID type.

    Uses PostgreSQL's UUID type when available, otherwise stores as String(36)
    so unit tests can run against SQLite.
    """

    impl = String(36)
    cache_ok = True

    def load_dialect_impl(self, dialect: Any) -> Any:
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        return dialect.type_descriptor(String(36))

    def process_bind_param(self, value: Any, dialect: Any) -> Any:
        if value is None:
            return value
        if dialect.name == "postgresql":
            return value if isinstance(value, uuid.UUID) else uuid.UUID(value)
        return str(value) if isinstance(value, uuid.UUID) else value

    def process_result_value(self, value: Any, dialect: Any) -> UUID | None:
        if value is None:
            return value
        if isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(value)


Base = declarative_base()

__all__ = [
    "Base",
    "GUID",
    "Subject",
    "MusicTrack",
    "ProductionRun",
    "RunStage",
    "RunStatus",
    "TERMINAL_STATUSES",
    "Script",
    "Scene",
    "MediaAsset",
    "MediaKind",
    "Job",
    "JobStatus",
]


class RunStage(str, Enum):
    """Ordered pipeline stages; `COMPLETE` is terminal."""

    SCRIPT = "script"
    SCENES = "scenes"
    IMAGES = "images"
    VIDEO = "video"
    VOICEOVER = "voiceover"
    MUSIC = "music"
    CAPTIONS = "captions"
    COMPILE = "compile"
    METADATA = "metadata"
    COMPLETE = "complete"


class RunStatus(str, Enum):
    """Status of a production run."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    PARTIAL = "partial"  # Reached the end with missing units
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset(
    {
        RunStatus.COMPLETED.value,
        RunStatus.PARTIAL.value,
        RunStatus.FAILED.value,
        RunStatus.CANCELLED.value,
    }
)


class MediaKind(str, Enum):
    IMAGE = "image"
    VIDEO_CLIP = "video_clip"
    VOICEOVER = "voiceover"
    MUSIC = "music"
    FINAL_VIDEO = "final_video"


class Subject(Base):
    """Product being advertised."""

    __tablename__ = "subjects"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    organization_id = Column(String(128), nullable=True, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Float, nullable=True)
    original_price = Column(Float, nullable=True)
    features = Column(JSON, default=list)
    benefits = Column(JSON, default=list)
    created_at = Column(DateTime, default=_utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "organization_id": self.organization_id,
            "name": self.name,
            "description": self.description,
            "price": self.price,
            "original_price": self.original_price,
            "features": list(self.features or []),
            "benefits": list(self.benefits or []),
            "created_at": _iso(self.created_at),
        }

    def __repr__(self) -> str:
        return f"<Subject id={self.id} name={self.name!r}>"


class MusicTrack(Base):
    """Organization-level preset music track (oldest preset wins)."""

    __tablename__ = "music_tracks"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    organization_id = Column(String(128), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    url = Column(String(1024), nullable=False)
    created_at = Column(DateTime, default=_utc_now)

    def __repr__(self) -> str:
        return f"<MusicTrack id={self.id} org={self.organization_id} name={self.name!r}>"


class ProductionRun(Base):
    """One end-to-end execution of the generation pipeline for a subject.

    `stage_progress` maps stage name to
    `{message, total_units, completed_units, failed_units, skipped_units,
    started_at, completed_at}` and is only mutated through
    `reelforge.pipeline.run_state.RunStateStore`.
    """

    __tablename__ = "production_runs"
    __table_args__ = (
        Index("ix_production_runs_status", "status"),
        Index("ix_production_runs_created_at", "created_at"),
    )

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    subject_id = Column(GUID(), ForeignKey("subjects.id"), nullable=True)
    organization_id = Column(String(128), nullable=True, index=True)
    stage = Column(String(32), nullable=False, default=RunStage.SCRIPT.value)
    status = Column(String(32), nullable=False, default=RunStatus.PENDING.value)
    stage_progress = Column(JSON, default=dict)
    run_settings = Column("settings", JSON, default=dict)
    error = Column(Text, nullable=True)
    cancel_requested = Column(Boolean, nullable=False, default=False)
    lease_owner = Column(String(128), nullable=True)
    lease_expires_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=_utc_now)
    updated_at = Column(DateTime, default=_utc_now, onupdate=_utc_now)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    jobs_rel = relationship("Job", back_populates="run")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "subject_id": str(self.subject_id) if self.subject_id else None,
            "organization_id": self.organization_id,
            "stage": self.stage,
            "status": self.status,
            "stage_progress": dict(self.stage_progress or {}),
            "settings": dict(self.run_settings or {}),
            "error": self.error,
            "cancel_requested": bool(self.cancel_requested),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
        }

    def __repr__(self) -> str:
        return f"<ProductionRun id={self.id} stage={self.stage} status={self.status}>"


class Script(Base):
    """Script candidate; exactly one per run carries `is_selected`."""

    __tablename__ = "scripts"
    __table_args__ = (Index("ix_scripts_run_selected", "run_id", "is_selected"),)

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    run_id = Column(GUID(), ForeignKey("production_runs.id"), nullable=False)
    content = Column(Text, nullable=False)
    is_selected = Column(Boolean, nullable=False, default=False)
    candidate_index = Column(Integer, nullable=False, default=0)
    script_metadata = Column("metadata", JSON, default=dict)
    created_at = Column(DateTime, default=_utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "content": self.content,
            "is_selected": bool(self.is_selected),
            "candidate_index": self.candidate_index,
            "metadata": dict(self.script_metadata or {}),
            "created_at": _iso(self.created_at),
        }

    def __repr__(self) -> str:
        return f"<Script id={self.id} run={self.run_id} selected={self.is_selected}>"


class Scene(Base):
    """One scene of a selected script, numbered 1..N."""

    __tablename__ = "scenes"
    __table_args__ = (
        UniqueConstraint("script_id", "scene_number", name="ux_scenes_script_number"),
        Index("ix_scenes_run_id", "run_id"),
    )

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    run_id = Column(GUID(), ForeignKey("production_runs.id"), nullable=False)
    script_id = Column(GUID(), ForeignKey("scripts.id", ondelete="CASCADE"), nullable=False)
    scene_number = Column(Integer, nullable=False)
    script_text = Column(Text, nullable=False)
    visual_description = Column(Text, nullable=False)
    scene_metadata = Column("metadata", JSON, default=dict)
    created_at = Column(DateTime, default=_utc_now)

    @property
    def video_prompt(self) -> str:
        meta = self.scene_metadata or {}
        return str(meta.get("video_prompt") or self.visual_description)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "script_id": str(self.script_id),
            "scene_number": self.scene_number,
            "script_text": self.script_text,
            "visual_description": self.visual_description,
            "metadata": dict(self.scene_metadata or {}),
        }

    def __repr__(self) -> str:
        return f"<Scene id={self.id} number={self.scene_number}>"


class MediaAsset(Base):
    """Persisted media produced by a unit of work (immutable once created)."""

    __tablename__ = "media_assets"
    __table_args__ = (
        Index("ix_media_assets_run_kind", "run_id", "kind"),
        Index("ix_media_assets_scene_id", "scene_id"),
    )

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    run_id = Column(GUID(), ForeignKey("production_runs.id"), nullable=False)
    scene_id = Column(GUID(), ForeignKey("scenes.id", ondelete="CASCADE"), nullable=True)
    kind = Column(String(32), nullable=False)
    url = Column(String(1024), nullable=False)
    asset_metadata = Column("metadata", JSON, default=dict)
    created_at = Column(DateTime, default=_utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "scene_id": str(self.scene_id) if self.scene_id else None,
            "kind": self.kind,
            "url": self.url,
            "metadata": dict(self.asset_metadata or {}),
            "created_at": _iso(self.created_at),
        }

    def __repr__(self) -> str:
        return f"<MediaAsset id={self.id} kind={self.kind} scene={self.scene_id}>"


class JobStatus(str, Enum):
    """Job queue status for worker dispatch."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class Job(Base):
    """Durable job queue entry.

    - API enqueues jobs
    - workers claim jobs (FOR UPDATE SKIP LOCKED) with a lease
    - jobs are retried up to max_attempts
    """

    __tablename__ = "jobs"
    __table_args__ = (
        Index("ix_jobs_status_available_at", "status", "available_at"),
        Index("ix_jobs_run_id", "run_id"),
        Index("ix_jobs_lease_expires_at", "lease_expires_at"),
        Index("ux_jobs_type_idempotency", "job_type", "idempotency_key", unique=True),
    )

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    job_type = Column(String(80), nullable=False)
    idempotency_key = Column(String(160), nullable=True)

    run_id = Column(GUID(), ForeignKey("production_runs.id"), nullable=True)
    payload = Column(JSON, default=dict)

    status = Column(String(32), nullable=False, default=JobStatus.PENDING.value)
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=5)

    available_at = Column(DateTime, default=_utc_now, nullable=False)
    claimed_by = Column(String(128), nullable=True)
    lease_expires_at = Column(DateTime, nullable=True)

    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime, default=_utc_now)
    updated_at = Column(DateTime, default=_utc_now, onupdate=_utc_now)

    run = relationship("ProductionRun", back_populates="jobs_rel")

    def __repr__(self) -> str:
        return (
            f"<Job id={self.id} type={self.job_type} status={self.status} "
            f"attempts={self.attempts}/{self.max_attempts}>"
        )
