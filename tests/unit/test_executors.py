"""Unit tests for individual stage executors against a SQLite database."""

from __future__ import annotations

from typing import List

import pytest

from reelforge.assets.memory import InMemoryAssetStore
from reelforge.config.settings import get_settings
from reelforge.pipeline.artifacts import RunArtifacts
from reelforge.pipeline.context import StageContext
from reelforge.pipeline.executors.base import PlannedUnit
from reelforge.pipeline.executors.captions import CaptionsExecutor
from reelforge.pipeline.executors.images import ImagesExecutor
from reelforge.pipeline.executors.metadata import MetadataExecutor
from reelforge.pipeline.executors.music import MusicExecutor, music_prompt
from reelforge.pipeline.executors.scenes import ScenesExecutor
from reelforge.pipeline.executors.script import ScriptExecutor
from reelforge.pipeline.executors.video import VideoExecutor
from reelforge.pipeline.results import StageOutcome, UnitOutcome, UnitResult
from reelforge.pipeline.run_state import RunStateStore
from reelforge.providers.base import FailureKind, ProviderResult, SceneDraft
from reelforge.providers.fake import FakeContentProvider
from reelforge.storage.models import MediaKind
from reelforge.storage.repositories import MusicTrackRepository


class _Recorder:
    def __init__(self) -> None:
        self.results: List[UnitResult] = []
        self.messages: List[str] = []

    async def __call__(self, result: UnitResult, message: str) -> None:
        self.results.append(result)
        self.messages.append(message)


async def _context(session_factory, run_id, provider=None, store=None, config=None) -> StageContext:
    state = RunStateStore(session_factory)
    artifacts = RunArtifacts(session_factory)
    run = await state.load(run_id)
    return StageContext(
        run=run,
        subject=await artifacts.subject(run.subject_id),
        provider=provider or FakeContentProvider(),
        asset_store=store or InMemoryAssetStore(),
        artifacts=artifacts,
        state=state,
        config=config or get_settings(),
    )


async def _with_scenes(session_factory, run_id, count: int = 4) -> None:
    artifacts = RunArtifacts(session_factory)
    script = await artifacts.save_candidates_and_select(run_id, ["the script"], 0)
    for n in range(1, count + 1):
        await artifacts.create_scene(
            run_id, script.id, SceneDraft(n, f"line {n}", f"visual {n}"), n
        )


@pytest.mark.asyncio
async def test_script_first_selection_persists_all_candidates(
    session_factory, make_subject, make_run
) -> None:
    subject = await make_subject()
    run = await make_run(subject.id)
    ctx = await _context(session_factory, run.id)
    executor = ScriptExecutor()
    recorder = _Recorder()

    outcome = await executor.execute(ctx, recorder)

    scripts = await ctx.artifacts.scripts(run.id)
    assert len(scripts) == 3
    assert [s.candidate_index for s in scripts if s.is_selected] == [0]
    assert outcome.units_succeeded == 1
    assert recorder.messages == ["script script: completed"]
    assert await executor.count_units(ctx) == (1, 1)
    assert await executor.plan_units(ctx) == []


@pytest.mark.asyncio
async def test_script_ranked_selection_uses_provider_choice(
    session_factory, make_subject, make_run
) -> None:
    subject = await make_subject()
    run = await make_run(subject.id)
    config = get_settings().model_copy(update={"script_selection": "ranked"})
    ctx = await _context(session_factory, run.id, config=config)

    await ScriptExecutor().execute(ctx, _Recorder())

    selected = await ctx.artifacts.selected_script(run.id)
    assert selected is not None
    # The fake ranks the last candidate best.
    assert selected.candidate_index == 2


@pytest.mark.asyncio
async def test_script_without_subject_has_unmet_prerequisite(session_factory, make_run) -> None:
    run = await make_run()
    ctx = await _context(session_factory, run.id)
    assert await ScriptExecutor().unmet_prerequisites(ctx) == ["run has no subject data"]


@pytest.mark.asyncio
async def test_script_provider_failure_is_a_failed_unit(
    session_factory, make_subject, make_run
) -> None:
    subject = await make_subject()
    run = await make_run(subject.id)
    provider = FakeContentProvider(
        failures={("generate_script_candidates", 1): FailureKind.TRANSIENT}
    )
    ctx = await _context(session_factory, run.id, provider=provider)
    recorder = _Recorder()

    outcome = await ScriptExecutor().execute(ctx, recorder)

    assert outcome.units_failed == 1
    assert recorder.results[0].outcome is UnitOutcome.FAILED
    assert await ctx.artifacts.selected_script(run.id) is None


@pytest.mark.asyncio
async def test_scenes_breakdown_creates_numbered_scenes(
    session_factory, make_subject, make_run
) -> None:
    subject = await make_subject()
    run = await make_run(subject.id)
    ctx = await _context(session_factory, run.id)
    await ScriptExecutor().execute(ctx, _Recorder())
    recorder = _Recorder()

    outcome = await ScenesExecutor().execute(ctx, recorder)

    script = await ctx.artifacts.selected_script(run.id)
    scenes = await ctx.artifacts.scenes(script.id)
    assert [s.scene_number for s in scenes] == [1, 2, 3, 4]
    assert scenes[1].video_prompt == "Scene 2 motion"
    assert scenes[0].video_prompt == "Scene 1 visual"
    assert outcome.units_succeeded == 4
    assert [r.key for r in recorder.results] == ["scene-1", "scene-2", "scene-3", "scene-4"]


@pytest.mark.asyncio
async def test_scenes_count_mismatch_retotals_stage(
    session_factory, make_subject, make_run
) -> None:
    subject = await make_subject()
    run = await make_run(subject.id)
    ctx = await _context(session_factory, run.id, provider=FakeContentProvider(scene_count_override=6))
    await ScriptExecutor().execute(ctx, _Recorder())
    await ctx.state.begin_stage(run.id, "scenes", total_units=4)

    await ScenesExecutor().execute(ctx, _Recorder())

    loaded = await ctx.state.load(run.id)
    assert loaded.stage_progress["scenes"]["total_units"] == 6


@pytest.mark.asyncio
async def test_scenes_breakdown_failure_is_one_failed_unit(
    session_factory, make_subject, make_run
) -> None:
    subject = await make_subject()
    run = await make_run(subject.id)
    provider = FakeContentProvider(failures={("breakdown_scenes", 1): FailureKind.PERMANENT})
    ctx = await _context(session_factory, run.id, provider=provider)
    await ScriptExecutor().execute(ctx, _Recorder())
    recorder = _Recorder()

    outcome = await ScenesExecutor().execute(ctx, recorder)

    assert outcome.units_failed == 1
    assert [r.key for r in recorder.results] == ["breakdown"]


@pytest.mark.asyncio
async def test_scenes_empty_breakdown_is_a_failure(session_factory, make_subject, make_run) -> None:
    subject = await make_subject()
    run = await make_run(subject.id)
    ctx = await _context(session_factory, run.id)
    executor = ScenesExecutor()

    with pytest.raises(Exception) as excinfo:
        await executor.run_unit(ctx, PlannedUnit("breakdown", payload=ProviderResult.success([])))
    assert "empty response" in str(excinfo.value)


@pytest.mark.asyncio
async def test_interrupted_scene_pass_is_not_satisfied(
    session_factory, make_subject, make_run
) -> None:
    subject = await make_subject()
    run = await make_run(subject.id)
    await _with_scenes(session_factory, run.id, count=2)
    state = RunStateStore(session_factory)
    await state.begin_stage(run.id, "scenes", total_units=4)
    ctx = await _context(session_factory, run.id)
    executor = ScenesExecutor()

    assert await executor.count_units(ctx) == (4, 0)
    assert await executor.already_satisfied(ctx) is False

    await state.complete_stage(run.id, "scenes")
    await ctx.refresh()
    assert await executor.count_units(ctx) == (2, 2)


@pytest.mark.asyncio
async def test_images_tolerate_one_failed_scene(session_factory, make_subject, make_run) -> None:
    subject = await make_subject()
    run = await make_run(subject.id)
    await _with_scenes(session_factory, run.id)
    provider = FakeContentProvider(failures={("generate_image_candidates", 2): FailureKind.PERMANENT})
    store = InMemoryAssetStore()
    ctx = await _context(session_factory, run.id, provider=provider, store=store)
    executor = ImagesExecutor()

    outcome = await executor.execute(ctx, _Recorder())

    assert (outcome.units_succeeded, outcome.units_failed) == (3, 1)
    images = await ctx.artifacts.assets(run.id, MediaKind.IMAGE)
    assert len(images) == 3
    assert images[0].asset_metadata["candidate_count"] == 2
    assert images[0].asset_metadata["selected_index"] == 1
    assert images[0].asset_metadata["preview"] is False
    assert (images[0].asset_metadata["width"], images[0].asset_metadata["height"]) == (1080, 1920)
    assert await executor.count_units(ctx) == (4, 3)
    assert [u.key for u in await executor.plan_units(ctx)] == ["scene-2"]


@pytest.mark.asyncio
async def test_images_asset_store_failure_is_a_failed_unit(
    session_factory, make_subject, make_run
) -> None:
    subject = await make_subject()
    run = await make_run(subject.id)
    await _with_scenes(session_factory, run.id, count=3)
    ctx = await _context(session_factory, run.id, store=InMemoryAssetStore(fail_units={"scene-3"}))

    outcome = await ImagesExecutor().execute(ctx, _Recorder())

    assert outcome.units_failed == 1
    assert len(await ctx.artifacts.assets(run.id, MediaKind.IMAGE)) == 2


@pytest.mark.asyncio
async def test_video_skips_scenes_without_image(session_factory, make_subject, make_run) -> None:
    subject = await make_subject()
    run = await make_run(subject.id, video_model="veo-3")
    await _with_scenes(session_factory, run.id, count=3)
    provider = FakeContentProvider(failures={("generate_image_candidates", 3): FailureKind.PERMANENT})
    ctx = await _context(session_factory, run.id, provider=provider)
    await ImagesExecutor().execute(ctx, _Recorder())
    executor = VideoExecutor()
    recorder = _Recorder()

    outcome = await executor.execute(ctx, recorder)

    assert (outcome.units_succeeded, outcome.units_skipped) == (2, 1)
    assert recorder.results[-1].outcome is UnitOutcome.SKIPPED
    clips = await ctx.artifacts.assets(run.id, MediaKind.VIDEO_CLIP)
    assert {c.asset_metadata["model"] for c in clips} == {"veo-3"}
    assert await executor.already_satisfied(ctx) is True
    assert provider.calls[-1]["model"] == "veo-3"


@pytest.mark.asyncio
async def test_music_prefers_org_preset(session_factory, make_subject, make_run) -> None:
    subject = await make_subject()
    run = await make_run(subject.id)
    async with session_factory() as session:
        await MusicTrackRepository(session).create_async("org-1", "Anthem", "https://cdn.localhost/a.mp3")
        await session.commit()
    provider = FakeContentProvider()
    ctx = await _context(session_factory, run.id, provider=provider)

    await MusicExecutor().execute(ctx, _Recorder())

    music = await ctx.artifacts.assets(run.id, MediaKind.MUSIC)
    assert [m.url for m in music] == ["https://cdn.localhost/a.mp3"]
    assert music[0].asset_metadata["source"] == "preset"
    assert provider.call_count("synthesize_music") == 0


@pytest.mark.asyncio
async def test_music_generated_without_preset(session_factory, make_subject, make_run) -> None:
    subject = await make_subject()
    run = await make_run(subject.id)
    provider = FakeContentProvider()
    ctx = await _context(session_factory, run.id, provider=provider)

    await MusicExecutor().execute(ctx, _Recorder())

    music = await ctx.artifacts.assets(run.id, MediaKind.MUSIC)
    assert music[0].asset_metadata["prompt"] == music_prompt("Glow Serum")
    assert provider.calls[0]["duration"] == 30


@pytest.mark.asyncio
async def test_captions_keep_user_values(session_factory, make_run) -> None:
    run = await make_run(music_volume=10, captions_enabled=False)
    ctx = await _context(session_factory, run.id)
    executor = CaptionsExecutor()

    await executor.execute(ctx, _Recorder())

    options = (await ctx.state.load(run.id)).run_settings
    assert options["music_volume"] == 10
    assert options["captions_enabled"] is False
    assert options["captions"]["fontFamily"] == "Inter"
    assert await executor.is_done(ctx) is True


@pytest.mark.asyncio
async def test_metadata_truncates_hashtags(session_factory, make_subject, make_run) -> None:
    subject = await make_subject()
    run = await make_run(subject.id)
    await _with_scenes(session_factory, run.id, count=1)
    ctx = await _context(session_factory, run.id)

    await MetadataExecutor().execute(ctx, _Recorder())

    metadata = (await ctx.state.load(run.id)).run_settings["platform_metadata"]
    assert len(metadata["hashtags"]) == 5
    assert metadata["hashtags"][0] == "#glowserum"
    assert metadata["keywords"] == []


@pytest.mark.asyncio
async def test_attempt_records_outcome_before_callback(session_factory, make_run) -> None:
    run = await make_run()
    ctx = await _context(session_factory, run.id)
    outcome = StageOutcome()
    recorder = _Recorder()

    result = await VideoExecutor().attempt(
        ctx, PlannedUnit("scene-9", skip_reason="scene has no image"), recorder, outcome
    )

    assert result.outcome is UnitOutcome.SKIPPED
    assert outcome.units_skipped == 1
    assert recorder.messages == ["video scene-9: skipped"]
