"""Unit tests for the deterministic fake content provider and factory."""

from __future__ import annotations

import pytest

from reelforge.config.settings import Settings
from reelforge.pipeline.errors import ProviderUnitError
from reelforge.providers.base import FailureKind, SubjectBrief
from reelforge.providers.factory import get_content_provider
from reelforge.providers.fake import FakeContentProvider
from reelforge.providers.http import HttpContentProvider


@pytest.mark.asyncio
async def test_fake_provider_is_deterministic() -> None:
    provider = FakeContentProvider()
    brief = SubjectBrief(name="Glow Serum")

    first = await provider.generate_script_candidates(brief, "casual", 30, 3)
    second = await FakeContentProvider().generate_script_candidates(brief, "casual", 30, 3)

    assert first.value == second.value
    assert len(first.value) == 3
    assert provider.call_count("generate_script_candidates") == 1


@pytest.mark.asyncio
async def test_scripted_failure_hits_only_that_call() -> None:
    provider = FakeContentProvider(failures={("generate_image_candidates", 2): FailureKind.PERMANENT})

    ok = await provider.generate_image_candidates("a", "cinematic", 1080, 1920, 2)
    failed = await provider.generate_image_candidates("b", "cinematic", 1080, 1920, 2)

    assert ok.ok and len(ok.value) == 2
    assert not failed.ok
    with pytest.raises(ProviderUnitError) as excinfo:
        failed.unwrap("images", "scene-2")
    assert excinfo.value.transient is False
    assert "scene-2" in str(excinfo.value)


@pytest.mark.asyncio
async def test_before_call_hook_sees_operation_and_number() -> None:
    seen = []

    async def hook(operation: str, number: int) -> None:
        seen.append((operation, number))

    provider = FakeContentProvider(before_call=hook, scene_count_override=2)
    result = await provider.breakdown_scenes("script", 4)

    assert seen == [("breakdown_scenes", 1)]
    assert len(result.value) == 2


def test_factory_returns_fake_in_fake_mode() -> None:
    assert isinstance(get_content_provider(Settings(content_provider_mode="fake")), FakeContentProvider)


def test_factory_requires_url_in_real_mode() -> None:
    cfg = Settings(content_provider_mode="real", use_fake_providers=False, content_provider_url="")
    with pytest.raises(RuntimeError, match="CONTENT_PROVIDER_URL"):
        get_content_provider(cfg)


@pytest.mark.asyncio
async def test_factory_builds_http_client_in_real_mode() -> None:
    cfg = Settings(
        content_provider_mode="real",
        use_fake_providers=False,
        content_provider_url="http://localhost:9000/",
    )
    provider = get_content_provider(cfg)
    assert isinstance(provider, HttpContentProvider)
    await provider.aclose()
