"""Music stage: organization preset track, else a synthesized one."""

from __future__ import annotations

from typing import List

from reelforge.assets.base import Placement
from reelforge.observability.logging import get_logger
from reelforge.pipeline.context import StageContext
from reelforge.pipeline.executors.base import PlannedUnit, SingleUnitExecutor
from reelforge.storage.models import MediaKind, RunStage

logger = get_logger(__name__)


def music_prompt(subject_name: str) -> str:
    return f"Upbeat background music for {subject_name}"


class MusicExecutor(SingleUnitExecutor):
    stage = RunStage.MUSIC
    unit_key = "track"

    async def unmet_prerequisites(self, ctx: StageContext) -> List[str]:
        if ctx.subject is None:
            return ["run has no subject data"]
        return []

    async def is_done(self, ctx: StageContext) -> bool:
        return bool(await ctx.artifacts.assets(ctx.run_id, MediaKind.MUSIC))

    async def run_unit(self, ctx: StageContext, unit: PlannedUnit) -> None:
        preset = await ctx.artifacts.music_preset(ctx.organization_id)
        if preset is not None:
            logger.info("music_preset_used", run_id=str(ctx.run_id), track_id=str(preset.id))
            await ctx.artifacts.create_asset(
                run_id=ctx.run_id,
                kind=MediaKind.MUSIC,
                url=preset.url,
                metadata={"source": "preset", "track_id": str(preset.id), "name": preset.name},
            )
            return

        prompt = music_prompt(ctx.subject.name)
        model = ctx.config.music_model
        result = await ctx.provider.synthesize_music(prompt, ctx.duration, model=model)
        audio_url = result.unwrap(self.stage.value, unit.key)
        url = await ctx.asset_store.persist(
            audio_url,
            Placement(
                run_id=str(ctx.run_id),
                kind=MediaKind.MUSIC.value,
                unit_key=unit.key,
                organization_id=ctx.organization_id,
            ),
        )
        await ctx.artifacts.create_asset(
            run_id=ctx.run_id,
            kind=MediaKind.MUSIC,
            url=url,
            metadata={"source": "generated", "prompt": prompt, "model": model},
        )
