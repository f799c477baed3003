"""Metadata stage: platform description and hashtags (best effort)."""

from __future__ import annotations

from typing import List

from reelforge.pipeline.context import StageContext
from reelforge.pipeline.executors.base import PlannedUnit, SingleUnitExecutor
from reelforge.storage.models import RunStage


class MetadataExecutor(SingleUnitExecutor):
    stage = RunStage.METADATA
    unit_key = "platform"

    async def unmet_prerequisites(self, ctx: StageContext) -> List[str]:
        reasons = []
        if ctx.subject is None:
            reasons.append("run has no subject data")
        if await ctx.artifacts.selected_script(ctx.run_id) is None:
            reasons.append("no selected script")
        return reasons

    async def is_done(self, ctx: StageContext) -> bool:
        return ctx.options.get("platform_metadata") is not None

    async def run_unit(self, ctx: StageContext, unit: PlannedUnit) -> None:
        script = await ctx.artifacts.selected_script(ctx.run_id)
        result = await ctx.provider.generate_metadata(ctx.subject.name, script.content)
        metadata = result.unwrap(self.stage.value, unit.key)
        hashtags = [tag for tag in metadata.hashtags if tag][: ctx.config.metadata_max_hashtags]
        merged = await ctx.state.update_settings(
            ctx.run_id,
            {
                "platform_metadata": {
                    "description": metadata.description,
                    "hashtags": hashtags,
                    "keywords": [],
                }
            },
        )
        ctx.run.run_settings = merged
