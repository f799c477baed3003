"""Captions stage: seed caption styling and mix defaults into run settings."""

from __future__ import annotations

from typing import Any, Dict

from reelforge.pipeline.context import StageContext
from reelforge.pipeline.executors.base import PlannedUnit, SingleUnitExecutor
from reelforge.pipeline.styles import DEFAULT_MUSIC_VOLUME, default_caption_config
from reelforge.storage.models import RunStage

CAPTION_KEYS = ("captions", "captions_enabled", "music_volume")


def caption_defaults() -> Dict[str, Any]:
    return {
        "captions": default_caption_config(),
        "captions_enabled": True,
        "music_volume": DEFAULT_MUSIC_VOLUME,
    }


class CaptionsExecutor(SingleUnitExecutor):
    """Local computation only; values the user already set are kept."""

    stage = RunStage.CAPTIONS
    unit_key = "config"

    async def is_done(self, ctx: StageContext) -> bool:
        options = ctx.options
        return all(options.get(key) is not None for key in CAPTION_KEYS)

    async def run_unit(self, ctx: StageContext, unit: PlannedUnit) -> None:
        merged = await ctx.state.update_settings(ctx.run_id, caption_defaults(), overwrite=False)
        ctx.run.run_settings = merged
