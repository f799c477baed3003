"""Images stage: one chosen still per scene."""

from __future__ import annotations

from typing import List, Tuple

from reelforge.assets.base import Placement
from reelforge.observability.logging import get_logger
from reelforge.pipeline.context import StageContext
from reelforge.pipeline.executors.base import (
    PlannedUnit,
    StageExecutor,
    empty_response,
    scene_unit_key,
)
from reelforge.storage.models import MediaKind, RunStage, Scene

logger = get_logger(__name__)

SELECTION_CRITERIA = "Best product visual for the scene, sharp and on-style"


class ImagesExecutor(StageExecutor):
    stage = RunStage.IMAGES

    async def _scenes(self, ctx: StageContext) -> List[Scene]:
        script = await ctx.artifacts.selected_script(ctx.run_id)
        if script is None:
            return []
        return await ctx.artifacts.scenes(script.id)

    async def unmet_prerequisites(self, ctx: StageContext) -> List[str]:
        if not await self._scenes(ctx):
            return ["selected script has no scenes"]
        return []

    async def count_units(self, ctx: StageContext) -> Tuple[int, int]:
        scenes = await self._scenes(ctx)
        images = await ctx.artifacts.assets_by_scene([s.id for s in scenes], MediaKind.IMAGE)
        return len(scenes), len(images)

    async def plan_units(self, ctx: StageContext) -> List[PlannedUnit]:
        scenes = await self._scenes(ctx)
        images = await ctx.artifacts.assets_by_scene([s.id for s in scenes], MediaKind.IMAGE)
        return [
            PlannedUnit(scene_unit_key(scene.scene_number), payload=scene)
            for scene in scenes
            if scene.id not in images
        ]

    async def run_unit(self, ctx: StageContext, unit: PlannedUnit) -> None:
        scene: Scene = unit.payload
        width, height = ctx.dimensions
        image_style = ctx.style_settings.image_style
        count = ctx.config.image_candidate_count

        generated = await ctx.provider.generate_image_candidates(
            scene.visual_description, image_style, width, height, count
        )
        candidates = [url for url in generated.unwrap(self.stage.value, unit.key) if url]
        if not candidates:
            raise empty_response(self.stage, unit.key, "generate_image_candidates")

        chosen = 0
        if len(candidates) > 1:
            ranked = await ctx.provider.select_best(candidates, SELECTION_CRITERIA)
            chosen = ranked.unwrap(self.stage.value, unit.key)
            if not 0 <= chosen < len(candidates):
                chosen = 0

        placement = Placement(
            run_id=str(ctx.run_id),
            kind=MediaKind.IMAGE.value,
            unit_key=unit.key,
            organization_id=ctx.organization_id,
            scene_number=scene.scene_number,
        )
        url = await ctx.asset_store.persist(candidates[chosen], placement)
        await ctx.artifacts.create_asset(
            run_id=ctx.run_id,
            kind=MediaKind.IMAGE,
            url=url,
            scene_id=scene.id,
            metadata={
                "preview": False,
                "candidate_count": len(candidates),
                "selected_index": chosen,
                "width": width,
                "height": height,
            },
        )
