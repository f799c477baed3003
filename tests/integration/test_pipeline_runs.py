"""End-to-end orchestrator scenarios on SQLite with the fake provider."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from sqlalchemy import update

from reelforge.assets.memory import InMemoryAssetStore
from reelforge.pipeline.artifacts import RunArtifacts
from reelforge.pipeline.errors import RunLockedError, RunNotFoundError
from reelforge.pipeline.orchestrator import PipelineOrchestrator, under_delivered_stages
from reelforge.pipeline.run_state import RunStateStore
from reelforge.pipeline.stages import stage_index
from reelforge.providers.base import FailureKind
from reelforge.providers.fake import FakeContentProvider
from reelforge.storage.models import MediaKind, ProductionRun, RunStage, RunStatus

pytestmark = pytest.mark.integration


def _orchestrator(session_factory, provider=None, store=None, owner=None) -> PipelineOrchestrator:
    return PipelineOrchestrator(
        provider=provider or FakeContentProvider(),
        asset_store=store or InMemoryAssetStore(),
        session_factory=session_factory,
        owner=owner,
    )


@pytest.mark.asyncio
async def test_full_run_completes_every_stage(session_factory, make_subject, make_run) -> None:
    subject = await make_subject()
    run = await make_run(subject.id)
    store = InMemoryAssetStore()

    result = await _orchestrator(session_factory, store=store).run(run.id)

    assert result.status == "completed"
    assert result.completed_stages == [
        "script",
        "scenes",
        "images",
        "video",
        "voiceover",
        "music",
        "captions",
        "compile",
        "metadata",
    ]
    state = RunStateStore(session_factory)
    loaded = await state.load(run.id)
    assert loaded.stage == RunStage.COMPLETE.value
    assert loaded.status == RunStatus.COMPLETED.value
    assert loaded.lease_owner is None
    assert loaded.run_settings["ready_for_export"] is True
    assert loaded.run_settings["export_clip_count"] == 4
    assert under_delivered_stages(loaded) == []

    artifacts = RunArtifacts(session_factory)
    assert len(await artifacts.assets(run.id, MediaKind.IMAGE)) == 4
    assert len(await artifacts.assets(run.id, MediaKind.VIDEO_CLIP)) == 4
    assert len(await artifacts.assets(run.id, MediaKind.VOICEOVER)) == 1
    assert len(await artifacts.assets(run.id, MediaKind.MUSIC)) == 1
    assert store.writes == 10

    snapshot = await state.snapshot(run.id)
    assert snapshot.status == "completed"
    assert snapshot.message == "Completed"
    assert snapshot.completed_units == snapshot.total_units


@pytest.mark.asyncio
async def test_one_failed_image_finishes_partial(session_factory, make_subject, make_run) -> None:
    subject = await make_subject()
    run = await make_run(subject.id)
    provider = FakeContentProvider(failures={("generate_image_candidates", 2): FailureKind.PERMANENT})

    result = await _orchestrator(session_factory, provider=provider).run(run.id)

    assert result.status == "partial"
    assert result.partial is True
    loaded = await RunStateStore(session_factory).load(run.id)
    images = loaded.stage_progress["images"]
    assert (images["completed_units"], images["failed_units"], images["total_units"]) == (3, 1, 4)
    video = loaded.stage_progress["video"]
    assert (video["completed_units"], video["skipped_units"]) == (3, 1)
    assert under_delivered_stages(loaded) == ["images", "video"]

    artifacts = RunArtifacts(session_factory)
    assert len(await artifacts.assets(run.id, MediaKind.IMAGE)) == 3
    assert len(await artifacts.assets(run.id, MediaKind.VIDEO_CLIP)) == 3
    assert (await RunStateStore(session_factory).snapshot(run.id)).message == (
        "Completed with missing units"
    )


@pytest.mark.asyncio
async def test_rerun_does_not_duplicate_work(session_factory, make_subject, make_run) -> None:
    subject = await make_subject()
    run = await make_run(subject.id)
    await _orchestrator(session_factory).run(run.id)

    provider = FakeContentProvider()
    result = await _orchestrator(session_factory, provider=provider).run(run.id)

    assert result.status == "completed"
    assert provider.calls == []
    artifacts = RunArtifacts(session_factory)
    scripts = await artifacts.scripts(run.id)
    assert len(scripts) == 3
    assert sum(1 for s in scripts if s.is_selected) == 1
    assert len(await artifacts.assets(run.id, MediaKind.IMAGE)) == 4
    loaded = await RunStateStore(session_factory).load(run.id)
    assert loaded.stage_progress["images"]["message"] == "Already satisfied"


@pytest.mark.asyncio
async def test_terminal_run_is_left_alone_without_reopen(
    session_factory, make_subject, make_run
) -> None:
    subject = await make_subject()
    run = await make_run(subject.id)
    await RunStateStore(session_factory).request_cancel(run.id)
    provider = FakeContentProvider()

    result = await _orchestrator(session_factory, provider=provider).run(
        run.id, reopen_terminal=False
    )

    assert result.status == "cancelled"
    assert provider.calls == []


@pytest.mark.asyncio
async def test_cancel_mid_images_then_resume(session_factory, make_subject, make_run) -> None:
    subject = await make_subject()
    run = await make_run(subject.id)
    state = RunStateStore(session_factory)

    async def cancel_on_second_image(operation: str, number: int) -> None:
        if (operation, number) == ("generate_image_candidates", 2):
            await state.request_cancel(run.id)

    provider = FakeContentProvider(before_call=cancel_on_second_image)
    result = await _orchestrator(session_factory, provider=provider).run(run.id)

    assert result.status == "cancelled"
    assert result.completed_stages == ["script", "scenes"]
    loaded = await state.load(run.id)
    assert loaded.status == RunStatus.CANCELLED.value
    assert loaded.stage == RunStage.IMAGES.value
    assert loaded.stage_progress["images"]["completed_units"] == 2
    artifacts = RunArtifacts(session_factory)
    assert len(await artifacts.assets(run.id, MediaKind.IMAGE)) == 2

    resumed_provider = FakeContentProvider()
    resumed = await _orchestrator(session_factory, provider=resumed_provider).run(run.id)

    assert resumed.status == "completed"
    assert resumed.completed_stages[0] == "images"
    first_image_call = next(
        c for c in resumed_provider.calls if c["operation"] == "generate_image_candidates"
    )
    assert first_image_call["prompt"] == "Scene 3 visual"
    assert resumed_provider.call_count("generate_image_candidates") == 2
    assert resumed_provider.call_count("generate_script_candidates") == 0
    assert len(await artifacts.assets(run.id, MediaKind.IMAGE)) == 4


@pytest.mark.asyncio
async def test_missing_subject_fails_with_precondition(session_factory, make_run) -> None:
    run = await make_run()

    result = await _orchestrator(session_factory).run(run.id)

    assert result.status == "failed"
    assert "script prerequisites not met" in (result.error or "")
    loaded = await RunStateStore(session_factory).load(run.id)
    assert loaded.status == RunStatus.FAILED.value
    assert loaded.lease_owner is None


@pytest.mark.asyncio
async def test_leased_run_is_rejected(session_factory, make_subject, make_run) -> None:
    subject = await make_subject()
    run = await make_run(subject.id)
    state = RunStateStore(session_factory)
    assert await state.acquire_lease(run.id, "other-worker", 300)
    provider = FakeContentProvider()

    with pytest.raises(RunLockedError) as excinfo:
        await _orchestrator(session_factory, provider=provider, owner="me").run(run.id)

    assert excinfo.value.owner == "other-worker"
    assert provider.calls == []
    assert (await state.load(run.id)).lease_owner == "other-worker"


@pytest.mark.asyncio
async def test_unknown_run_raises_not_found(session_factory) -> None:
    with pytest.raises(RunNotFoundError):
        await _orchestrator(session_factory).run(uuid4())


@pytest.mark.asyncio
async def test_metadata_failure_is_partial_not_fatal(session_factory, make_subject, make_run) -> None:
    subject = await make_subject()
    run = await make_run(subject.id)
    provider = FakeContentProvider(failures={("generate_metadata", 1): FailureKind.TRANSIENT})

    result = await _orchestrator(session_factory, provider=provider).run(run.id)

    assert result.status == "partial"
    loaded = await RunStateStore(session_factory).load(run.id)
    assert "platform_metadata" not in loaded.run_settings
    assert under_delivered_stages(loaded) == ["metadata"]


@pytest.mark.asyncio
async def test_resume_after_partial_fills_the_gap(session_factory, make_subject, make_run) -> None:
    subject = await make_subject()
    run = await make_run(subject.id)
    provider = FakeContentProvider(failures={("generate_image_candidates", 4): FailureKind.PERMANENT})
    first = await _orchestrator(session_factory, provider=provider).run(run.id)
    assert first.status == "partial"

    retry_provider = FakeContentProvider()
    second = await _orchestrator(session_factory, provider=retry_provider).run(run.id)

    assert second.status == "completed"
    assert retry_provider.call_count("generate_image_candidates") == 1
    assert retry_provider.call_count("animate_image") == 1
    artifacts = RunArtifacts(session_factory)
    assert len(await artifacts.assets(run.id, MediaKind.VIDEO_CLIP)) == 4


@pytest.mark.asyncio
async def test_metadata_hashtags_are_truncated(session_factory, make_subject, make_run) -> None:
    subject = await make_subject(name="Glow Serum")
    run = await make_run(subject.id)

    await _orchestrator(session_factory).run(run.id)

    loaded = await RunStateStore(session_factory).load(run.id)
    hashtags = loaded.run_settings["platform_metadata"]["hashtags"]
    assert len(hashtags) == 5
    assert hashtags[0] == "#glowserum"


@pytest.mark.asyncio
async def test_stage_never_regresses_and_units_stay_bounded(
    session_factory, make_subject, make_run
) -> None:
    subject = await make_subject()
    run = await make_run(subject.id)
    state = RunStateStore(session_factory)
    observed: list[tuple[str, dict, object]] = []

    async def sample(operation: str, number: int) -> None:
        loaded = await state.load(run.id)
        observed.append((loaded.stage, dict(loaded.stage_progress or {}), await state.snapshot(run.id)))

    provider = FakeContentProvider(
        before_call=sample,
        failures={("generate_image_candidates", 3): FailureKind.TRANSIENT},
    )
    result = await _orchestrator(session_factory, provider=provider).run(run.id)
    final = await state.load(run.id)
    observed.append((final.stage, dict(final.stage_progress or {}), await state.snapshot(run.id)))

    assert result.status == "partial"
    assert len(observed) > 10
    indices = [stage_index(stage) for stage, _, _ in observed]
    assert indices == sorted(indices)
    assert indices[-1] == stage_index(RunStage.COMPLETE)
    for _, progress, snapshot in observed:
        assert snapshot.completed_units <= snapshot.total_units
        for record in progress.values():
            accounted = record["completed_units"] + record["failed_units"] + record["skipped_units"]
            assert record["completed_units"] <= record["total_units"]
            assert accounted <= record["total_units"]


@pytest.mark.asyncio
async def test_orchestrator_stops_when_lease_is_taken_over(
    session_factory, make_subject, make_run
) -> None:
    subject = await make_subject()
    run = await make_run(subject.id)

    async def take_over(operation: str, number: int) -> None:
        if (operation, number) == ("animate_image", 1):
            async with session_factory() as session:
                await session.execute(
                    update(ProductionRun)
                    .where(ProductionRun.id == run.id)
                    .values(
                        lease_owner="other-worker",
                        lease_expires_at=datetime.now(timezone.utc).replace(tzinfo=None)
                        + timedelta(minutes=5),
                    )
                )
                await session.commit()

    provider = FakeContentProvider(before_call=take_over)

    with pytest.raises(RunLockedError) as excinfo:
        await _orchestrator(session_factory, provider=provider, owner="worker-a").run(run.id)

    assert excinfo.value.owner == "other-worker"
    assert provider.call_count("animate_image") == 1
    assert provider.call_count("synthesize_voice") == 0
    assert provider.call_count("synthesize_music") == 0
    loaded = await RunStateStore(session_factory).load(run.id)
    assert loaded.lease_owner == "other-worker"
    assert loaded.status == RunStatus.IN_PROGRESS.value
    assert loaded.stage == RunStage.VIDEO.value
    assert loaded.stage_progress["video"]["completed_units"] == 0


@pytest.mark.asyncio
async def test_failed_lease_renewal_blocks_further_work(session_factory, make_run, monkeypatch) -> None:
    import anyio

    run = await make_run()
    orchestrator = _orchestrator(session_factory, owner="worker-a")
    assert await orchestrator.state.acquire_lease(run.id, "worker-a", 30)
    orchestrator._lease_lost[run.id] = anyio.Event()

    async def renewal_refused(run_id, owner, lease_seconds):  # type: ignore[no-untyped-def]
        return False

    monkeypatch.setattr(orchestrator.state, "renew_lease", renewal_refused)

    with anyio.fail_after(5):
        await orchestrator._lease_heartbeat(run.id, 3.0, anyio.Event())

    with pytest.raises(RunLockedError):
        await orchestrator._ensure_owner(run.id)
