"""Pipeline error taxonomy.

`ProviderUnitError` and `AssetStoreError` are recovered inside a stage (the
unit is recorded as failed); `PreconditionError` and `PersistenceError` are
fatal to the run; `RunCancelled` is a cooperative stop, not a failure.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence
from uuid import UUID

if TYPE_CHECKING:
    from reelforge.providers.base import ProviderFailure


class PipelineError(Exception):
    """Base class for pipeline errors."""


class PreconditionError(PipelineError):
    """A stage's required upstream artifact is missing."""

    def __init__(self, stage: str, reasons: Sequence[str]) -> None:
        self.stage = stage
        self.reasons = list(reasons)
        super().__init__(f"{stage} prerequisites not met: {'; '.join(self.reasons)}")


class ProviderUnitError(PipelineError):
    """One unit's content provider call failed."""

    def __init__(self, stage: str, unit_key: str, failure: "ProviderFailure") -> None:
        self.stage = stage
        self.unit_key = unit_key
        self.failure = failure
        super().__init__(f"{stage}/{unit_key}: {failure.kind} failure in {failure.operation}: {failure.message}")

    @property
    def transient(self) -> bool:
        return self.failure.transient


class AssetStoreError(PipelineError):
    """Persisting a provider artifact into durable storage failed."""


class PersistenceError(PipelineError):
    """The run state store failed to durably record a transition."""


class RunCancelled(PipelineError):
    """Cooperative cancellation observed at a unit or stage boundary."""

    def __init__(self, run_id: UUID, stage: str | None = None) -> None:
        self.run_id = run_id
        self.stage = stage
        super().__init__(f"Run {run_id} cancelled" + (f" during {stage}" if stage else ""))


class RunLockedError(PipelineError):
    """Another orchestrator currently holds the run's ownership lease."""

    def __init__(self, run_id: UUID, owner: str | None = None) -> None:
        self.run_id = run_id
        self.owner = owner
        super().__init__(f"Run {run_id} is leased by another orchestrator")


class RunNotFoundError(PipelineError):
    def __init__(self, run_id: UUID) -> None:
        self.run_id = run_id
        super().__init__(f"Run {run_id} not found")


__all__ = [
    "PipelineError",
    "PreconditionError",
    "ProviderUnitError",
    "AssetStoreError",
    "PersistenceError",
    "RunCancelled",
    "RunLockedError",
    "RunNotFoundError",
]
