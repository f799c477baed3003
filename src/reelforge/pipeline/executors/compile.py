"""Compile stage: mark the run's assets ready for export.

Final video assembly happens in the compilation service, which picks up runs
flagged `ready_for_export`.
"""

from __future__ import annotations

from typing import List

from reelforge.pipeline.context import StageContext
from reelforge.pipeline.executors.base import PlannedUnit, SingleUnitExecutor
from reelforge.storage.models import MediaKind, RunStage


class CompileExecutor(SingleUnitExecutor):
    stage = RunStage.COMPILE
    unit_key = "export"

    async def unmet_prerequisites(self, ctx: StageContext) -> List[str]:
        script = await ctx.artifacts.selected_script(ctx.run_id)
        if script is None:
            return ["no selected script"]
        if not await ctx.artifacts.scenes(script.id):
            return ["selected script has no scenes"]
        return []

    async def is_done(self, ctx: StageContext) -> bool:
        return bool(ctx.options.get("ready_for_export"))

    async def run_unit(self, ctx: StageContext, unit: PlannedUnit) -> None:
        clips = await ctx.artifacts.assets(ctx.run_id, MediaKind.VIDEO_CLIP)
        merged = await ctx.state.update_settings(
            ctx.run_id, {"ready_for_export": True, "export_clip_count": len(clips)}
        )
        ctx.run.run_settings = merged
