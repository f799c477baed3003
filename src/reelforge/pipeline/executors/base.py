"""Stage executor contract and the failure-tolerant unit loop."""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional, Tuple

from reelforge.observability.logging import get_logger
from reelforge.observability.metrics import UNITS_TOTAL
from reelforge.pipeline.context import StageContext
from reelforge.pipeline.errors import AssetStoreError, ProviderUnitError
from reelforge.pipeline.results import StageOutcome, UnitResult
from reelforge.providers.base import FailureKind, ProviderFailure
from reelforge.storage.models import RunStage

logger = get_logger(__name__)

# Called with each unit's result (and a progress message) before the next unit starts.
UnitCallback = Callable[[UnitResult, str], Awaitable[None]]


@dataclass(frozen=True)
class PlannedUnit:
    key: str
    payload: Any = None
    skip_reason: Optional[str] = None


class StageExecutor(ABC):
    """One stage of the pipeline.

    Subclasses describe their work as a list of `PlannedUnit`s and implement
    `run_unit`. Provider and asset-store failures inside a unit are recorded as
    a failed unit; every other exception propagates to the orchestrator.
    """

    stage: RunStage

    async def unmet_prerequisites(self, ctx: StageContext) -> List[str]:
        return []

    async def prerequisites_met(self, ctx: StageContext) -> bool:
        return not await self.unmet_prerequisites(ctx)

    @abstractmethod
    async def count_units(self, ctx: StageContext) -> Tuple[int, int]:
        """Return (total, done) for the stage given what is already persisted."""

    async def already_satisfied(self, ctx: StageContext) -> bool:
        total, done = await self.count_units(ctx)
        return total > 0 and done >= total

    @abstractmethod
    async def plan_units(self, ctx: StageContext) -> List[PlannedUnit]:
        """Units still to do; already persisted units are left out."""

    @abstractmethod
    async def run_unit(self, ctx: StageContext, unit: PlannedUnit) -> None:
        ...

    def unit_message(self, unit: UnitResult) -> str:
        return f"{self.stage.value} {unit.key}: {unit.outcome.value}"

    async def execute(self, ctx: StageContext, on_unit: UnitCallback) -> StageOutcome:
        outcome = StageOutcome()
        for unit in await self.plan_units(ctx):
            await self.attempt(ctx, unit, on_unit, outcome)
        return outcome

    async def attempt(
        self,
        ctx: StageContext,
        unit: PlannedUnit,
        on_unit: UnitCallback,
        outcome: StageOutcome,
    ) -> UnitResult:
        if unit.skip_reason:
            result = UnitResult.skipped(unit.key, unit.skip_reason)
            logger.info("unit_skipped", stage=self.stage.value, unit=unit.key, reason=unit.skip_reason)
        else:
            started = time.perf_counter()
            try:
                await self.run_unit(ctx, unit)
            except (ProviderUnitError, AssetStoreError) as exc:
                result = UnitResult.failed(unit.key, str(exc))
                logger.warning(
                    "unit_failed",
                    stage=self.stage.value,
                    unit=unit.key,
                    error=str(exc),
                    transient=getattr(exc, "transient", None),
                )
            else:
                result = UnitResult.completed(unit.key)
                logger.info(
                    "unit_completed",
                    stage=self.stage.value,
                    unit=unit.key,
                    duration_ms=round((time.perf_counter() - started) * 1000, 2),
                )
        UNITS_TOTAL.labels(stage=self.stage.value, outcome=result.outcome.value).inc()
        outcome.record(result)
        await on_unit(result, self.unit_message(result))
        return result


class SingleUnitExecutor(StageExecutor):
    """A stage whose whole work is one unit, satisfied once its artifact exists."""

    unit_key: str = "main"

    @abstractmethod
    async def is_done(self, ctx: StageContext) -> bool:
        ...

    async def count_units(self, ctx: StageContext) -> Tuple[int, int]:
        return 1, 1 if await self.is_done(ctx) else 0

    async def plan_units(self, ctx: StageContext) -> List[PlannedUnit]:
        if await self.is_done(ctx):
            return []
        return [PlannedUnit(self.unit_key)]


def scene_unit_key(scene_number: int) -> str:
    return f"scene-{scene_number}"


def empty_response(stage: RunStage, unit_key: str, operation: str) -> ProviderUnitError:
    """An empty provider payload counts as a permanent unit failure."""
    failure = ProviderFailure(operation=operation, kind=FailureKind.PERMANENT, message="empty response")
    return ProviderUnitError(stage.value, unit_key, failure)


__all__ = [
    "PlannedUnit",
    "SingleUnitExecutor",
    "StageExecutor",
    "UnitCallback",
    "empty_response",
    "scene_unit_key",
]
