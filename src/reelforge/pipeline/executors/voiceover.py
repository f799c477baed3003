"""Voiceover stage: one narration track over the selected script."""

from __future__ import annotations

from typing import List

from reelforge.assets.base import Placement
from reelforge.pipeline.context import StageContext
from reelforge.pipeline.executors.base import PlannedUnit, SingleUnitExecutor
from reelforge.providers.base import VoiceParams
from reelforge.storage.models import MediaKind, RunStage


class VoiceoverExecutor(SingleUnitExecutor):
    stage = RunStage.VOICEOVER
    unit_key = "narration"

    async def unmet_prerequisites(self, ctx: StageContext) -> List[str]:
        if await ctx.artifacts.selected_script(ctx.run_id) is None:
            return ["no selected script"]
        return []

    async def is_done(self, ctx: StageContext) -> bool:
        return bool(await ctx.artifacts.assets(ctx.run_id, MediaKind.VOICEOVER))

    async def run_unit(self, ctx: StageContext, unit: PlannedUnit) -> None:
        script = await ctx.artifacts.selected_script(ctx.run_id)
        preset = ctx.style_settings
        voice = VoiceParams(voice=preset.voice, speed=preset.speed, emotion=preset.emotion)
        result = await ctx.provider.synthesize_voice(script.content, voice)
        audio_url = result.unwrap(self.stage.value, unit.key)
        url = await ctx.asset_store.persist(
            audio_url,
            Placement(
                run_id=str(ctx.run_id),
                kind=MediaKind.VOICEOVER.value,
                unit_key=unit.key,
                organization_id=ctx.organization_id,
            ),
        )
        await ctx.artifacts.create_asset(
            run_id=ctx.run_id,
            kind=MediaKind.VOICEOVER,
            url=url,
            metadata={
                "script_id": str(script.id),
                "voice": voice.voice,
                "speed": voice.speed,
                "emotion": voice.emotion,
            },
        )
