"""Scenes stage: break the selected script into numbered scenes."""

from __future__ import annotations

from typing import List, Tuple

from reelforge.observability.logging import get_logger
from reelforge.pipeline.context import StageContext
from reelforge.pipeline.executors.base import (
    PlannedUnit,
    StageExecutor,
    UnitCallback,
    empty_response,
    scene_unit_key,
)
from reelforge.pipeline.results import StageOutcome
from reelforge.pipeline.styles import target_scene_count
from reelforge.providers.base import SceneDraft
from reelforge.storage.models import RunStage

logger = get_logger(__name__)


class ScenesExecutor(StageExecutor):
    """The breakdown is one provider call; each persisted scene is one unit.

    An interrupted earlier pass (progress started but never completed) leaves
    an unknown subset of scenes behind, so those are dropped and regenerated.
    """

    stage = RunStage.SCENES

    async def unmet_prerequisites(self, ctx: StageContext) -> List[str]:
        if await ctx.artifacts.selected_script(ctx.run_id) is None:
            return ["no selected script"]
        return []

    def _interrupted(self, ctx: StageContext) -> bool:
        record = ctx.progress_for(self.stage.value)
        return record is not None and record.started_at is not None and record.completed_at is None

    async def count_units(self, ctx: StageContext) -> Tuple[int, int]:
        script = await ctx.artifacts.selected_script(ctx.run_id)
        scenes = await ctx.artifacts.scenes(script.id) if script is not None else []
        if scenes and not self._interrupted(ctx):
            return len(scenes), len(scenes)
        return target_scene_count(ctx.duration), 0

    async def plan_units(self, ctx: StageContext) -> List[PlannedUnit]:
        return [PlannedUnit("breakdown")]

    async def execute(self, ctx: StageContext, on_unit: UnitCallback) -> StageOutcome:
        outcome = StageOutcome()
        script = await ctx.artifacts.selected_script(ctx.run_id)
        if script is None:
            return outcome

        removed = await ctx.artifacts.clear_scenes(script.id)
        if removed:
            logger.info("partial_scenes_dropped", run_id=str(ctx.run_id), removed=removed)

        target = target_scene_count(ctx.duration)
        result = await ctx.provider.breakdown_scenes(script.content, target)
        if not result.ok or not result.value:
            unit = PlannedUnit("breakdown", payload=result)
            await self.attempt(ctx, unit, on_unit, outcome)
            return outcome

        drafts: List[SceneDraft] = result.value
        if len(drafts) != target:
            logger.info("scene_count_differs", requested=target, received=len(drafts))
            await ctx.state.begin_stage(
                ctx.run_id, self.stage, total_units=len(drafts), message="Creating scenes"
            )
        for number, draft in enumerate(drafts, start=1):
            unit = PlannedUnit(scene_unit_key(number), payload=(script, draft, number))
            await self.attempt(ctx, unit, on_unit, outcome)
        return outcome

    async def run_unit(self, ctx: StageContext, unit: PlannedUnit) -> None:
        if unit.key == "breakdown":
            result = unit.payload
            result.unwrap(self.stage.value, unit.key)
            raise empty_response(self.stage, unit.key, "breakdown_scenes")
        script, draft, number = unit.payload
        await ctx.artifacts.create_scene(ctx.run_id, script.id, draft, number)
