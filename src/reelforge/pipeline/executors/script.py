"""Script stage: generate candidates and select exactly one."""

from __future__ import annotations

from typing import List, Tuple

from reelforge.observability.logging import get_logger
from reelforge.pipeline.context import StageContext
from reelforge.pipeline.executors.base import PlannedUnit, StageExecutor, empty_response
from reelforge.storage.models import RunStage

logger = get_logger(__name__)

RANKING_CRITERIA = "Most persuasive, on-brand script for a short vertical video ad"


class ScriptExecutor(StageExecutor):
    stage = RunStage.SCRIPT

    async def unmet_prerequisites(self, ctx: StageContext) -> List[str]:
        if ctx.subject is None:
            return ["run has no subject data"]
        return []

    async def count_units(self, ctx: StageContext) -> Tuple[int, int]:
        selected = await ctx.artifacts.selected_script(ctx.run_id)
        return 1, 1 if selected is not None else 0

    async def plan_units(self, ctx: StageContext) -> List[PlannedUnit]:
        if await ctx.artifacts.selected_script(ctx.run_id) is not None:
            return []
        return [PlannedUnit("script")]

    async def run_unit(self, ctx: StageContext, unit: PlannedUnit) -> None:
        count = ctx.config.script_candidate_count
        result = await ctx.provider.generate_script_candidates(
            ctx.subject_brief(), ctx.style, ctx.duration, count
        )
        candidates = [c for c in result.unwrap(self.stage.value, unit.key) if c and c.strip()]
        if not candidates:
            raise empty_response(self.stage, unit.key, "generate_script_candidates")

        chosen = 0
        if ctx.config.script_selection == "ranked" and len(candidates) > 1:
            ranked = await ctx.provider.select_best(candidates, RANKING_CRITERIA)
            chosen = ranked.unwrap(self.stage.value, unit.key)
            if not 0 <= chosen < len(candidates):
                logger.warning("ranked_index_out_of_range", index=chosen, candidates=len(candidates))
                chosen = 0

        script = await ctx.artifacts.save_candidates_and_select(ctx.run_id, candidates, chosen)
        logger.info(
            "script_selected",
            run_id=str(ctx.run_id),
            script_id=str(script.id),
            candidates=len(candidates),
            index=chosen,
        )

