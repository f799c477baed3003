"""Video stage: animate each scene's image into a clip."""

from __future__ import annotations

from typing import List, Tuple

from reelforge.assets.base import Placement
from reelforge.pipeline.context import StageContext
from reelforge.pipeline.executors.base import PlannedUnit, StageExecutor, scene_unit_key
from reelforge.storage.models import MediaAsset, MediaKind, RunStage, Scene


class VideoExecutor(StageExecutor):
    """Scenes without an image are reported as skipped units, not failures."""

    stage = RunStage.VIDEO

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
        clips = await ctx.artifacts.assets_by_scene([s.id for s in scenes], MediaKind.VIDEO_CLIP)
        return len(scenes), len(clips)

    async def already_satisfied(self, ctx: StageContext) -> bool:
        scenes = await self._scenes(ctx)
        if not scenes:
            return False
        ids = [s.id for s in scenes]
        images = await ctx.artifacts.assets_by_scene(ids, MediaKind.IMAGE)
        clips = await ctx.artifacts.assets_by_scene(ids, MediaKind.VIDEO_CLIP)
        return all(scene_id in clips for scene_id in images)

    async def plan_units(self, ctx: StageContext) -> List[PlannedUnit]:
        scenes = await self._scenes(ctx)
        ids = [s.id for s in scenes]
        images = await ctx.artifacts.assets_by_scene(ids, MediaKind.IMAGE)
        clips = await ctx.artifacts.assets_by_scene(ids, MediaKind.VIDEO_CLIP)
        units: List[PlannedUnit] = []
        for scene in scenes:
            if scene.id in clips:
                continue
            key = scene_unit_key(scene.scene_number)
            image = images.get(scene.id)
            if image is None:
                units.append(PlannedUnit(key, skip_reason="scene has no image"))
            else:
                units.append(PlannedUnit(key, payload=(scene, image)))
        return units

    async def run_unit(self, ctx: StageContext, unit: PlannedUnit) -> None:
        scene: Scene
        image: MediaAsset
        scene, image = unit.payload
        model = ctx.video_model
        result = await ctx.provider.animate_image(image.url, scene.video_prompt, model=model)
        clip_url = result.unwrap(self.stage.value, unit.key)
        placement = Placement(
            run_id=str(ctx.run_id),
            kind=MediaKind.VIDEO_CLIP.value,
            unit_key=unit.key,
            organization_id=ctx.organization_id,
            scene_number=scene.scene_number,
        )
        url = await ctx.asset_store.persist(clip_url, placement)
        await ctx.artifacts.create_asset(
            run_id=ctx.run_id,
            kind=MediaKind.VIDEO_CLIP,
            url=url,
            scene_id=scene.id,
            metadata={"model": model, "source_image_id": str(image.id)},
        )
