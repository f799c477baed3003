"""Pipeline result and progress value types."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class UnitOutcome(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"  # Dependent unit whose upstream artifact is missing


@dataclass(frozen=True)
class UnitResult:
    """Outcome of one unit of work, reported before the next unit starts."""

    key: str
    outcome: UnitOutcome
    error: Optional[str] = None

    @classmethod
    def completed(cls, key: str) -> "UnitResult":
        return cls(key=key, outcome=UnitOutcome.COMPLETED)

    @classmethod
    def failed(cls, key: str, error: str) -> "UnitResult":
        return cls(key=key, outcome=UnitOutcome.FAILED, error=error)

    @classmethod
    def skipped(cls, key: str, reason: str) -> "UnitResult":
        return cls(key=key, outcome=UnitOutcome.SKIPPED, error=reason)


@dataclass(frozen=True)
class ProgressDelta:
    """Increment applied to a stage's progress record."""

    completed: int = 0
    failed: int = 0
    skipped: int = 0
    message: Optional[str] = None

    @classmethod
    def for_unit(cls, unit: UnitResult, message: Optional[str] = None) -> "ProgressDelta":
        return cls(
            completed=1 if unit.outcome is UnitOutcome.COMPLETED else 0,
            failed=1 if unit.outcome is UnitOutcome.FAILED else 0,
            skipped=1 if unit.outcome is UnitOutcome.SKIPPED else 0,
            message=message,
        )


@dataclass
class StageProgress:
    """Persisted per-stage progress record (one entry of `stage_progress`)."""

    total_units: int = 0
    completed_units: int = 0
    failed_units: int = 0
    skipped_units: int = 0
    message: str = ""
    started_at: Optional[str] = None
    completed_at: Optional[str] = None

    @property
    def delivered(self) -> bool:
        return self.completed_units >= self.total_units

    @property
    def accounted_units(self) -> int:
        return self.completed_units + self.failed_units + self.skipped_units

    def apply(self, delta: ProgressDelta) -> "StageProgress":
        """Apply `delta`, clamping so counters never exceed `total_units`."""
        room = max(0, self.total_units - self.accounted_units)
        completed = min(max(0, delta.completed), room)
        room -= completed
        failed = min(max(0, delta.failed), room)
        room -= failed
        skipped = min(max(0, delta.skipped), room)
        self.completed_units += completed
        self.failed_units += failed
        self.skipped_units += skipped
        if delta.message is not None:
            self.message = delta.message
        return self

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any] | None) -> "StageProgress":
        raw = raw or {}
        total = max(0, int(raw.get("total_units") or 0))
        completed = min(max(0, int(raw.get("completed_units") or 0)), total)
        return cls(
            total_units=total,
            completed_units=completed,
            failed_units=max(0, int(raw.get("failed_units") or 0)),
            skipped_units=max(0, int(raw.get("skipped_units") or 0)),
            message=str(raw.get("message") or ""),
            started_at=raw.get("started_at"),
            completed_at=raw.get("completed_at"),
        )


@dataclass
class StageOutcome:
    """Counters returned by a stage executor."""

    units_processed: int = 0
    units_failed: int = 0
    units_skipped: int = 0

    @property
    def units_succeeded(self) -> int:
        return self.units_processed - self.units_failed

    def record(self, unit: UnitResult) -> None:
        if unit.outcome is UnitOutcome.SKIPPED:
            self.units_skipped += 1
            return
        self.units_processed += 1
        if unit.outcome is UnitOutcome.FAILED:
            self.units_failed += 1


@dataclass(frozen=True)
class ProgressSnapshot:
    """Externally observable status snapshot for polling and streaming clients."""

    run_id: str
    stage: str
    status: str
    message: str
    total_units: int
    completed_units: int
    updated_at: Optional[str]

    def to_wire(self) -> Dict[str, Any]:
        return {
            "runId": self.run_id,
            "stage": self.stage,
            "status": self.status,
            "message": self.message,
            "totalUnits": self.total_units,
            "completedUnits": self.completed_units,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def error(cls, run_id: str, message: str = "Failed to load progress.") -> "ProgressSnapshot":
        return cls(
            run_id=run_id,
            stage="",
            status="error",
            message=message,
            total_units=0,
            completed_units=0,
            updated_at=None,
        )


@dataclass
class RunResult:
    """Result of one orchestrator invocation.

    Uses string statuses for JSON serialization compatibility.
    """

    run_id: str
    status: str
    completed_stages: List[str] = field(default_factory=list)
    partial: bool = False
    error: Optional[str] = None

    @property
    def is_success(self) -> bool:
        return self.status == "completed"

    @property
    def is_failed(self) -> bool:
        return self.status == "failed"

    @classmethod
    def finished(cls, run_id: str, completed_stages: List[str], *, partial: bool) -> "RunResult":
        return cls(
            run_id=run_id,
            status="partial" if partial else "completed",
            completed_stages=completed_stages,
            partial=partial,
        )

    @classmethod
    def failure(cls, run_id: str, error: str, completed_stages: List[str] | None = None) -> "RunResult":
        return cls(
            run_id=run_id,
            status="failed",
            completed_stages=list(completed_stages or []),
            error=error,
        )

    @classmethod
    def cancelled(cls, run_id: str, completed_stages: List[str]) -> "RunResult":
        return cls(run_id=run_id, status="cancelled", completed_stages=completed_stages)


def iso_now() -> str:
    return datetime.now(timezone.utc).replace(tzinfo=None).isoformat()
