"""Unit tests for the HTTP content provider client (httpx.MockTransport)."""

from __future__ import annotations

import json
from typing import Any, Callable, Dict, List

import httpx
import pytest

from reelforge.providers.base import FailureKind, SubjectBrief, VoiceParams
from reelforge.providers.http import HttpContentProvider
from reelforge.providers.retry import RetryConfig

BASE_URL = "http://localhost:9000"


def _provider(handler: Callable[[httpx.Request], httpx.Response], attempts: int = 3) -> HttpContentProvider:
    client = httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(handler))
    return HttpContentProvider(
        base_url=BASE_URL,
        client=client,
        retry=RetryConfig(max_attempts=attempts, min_wait=0, max_wait=0),
    )


@pytest.mark.asyncio
async def test_script_candidates_payload_and_parse() -> None:
    seen: List[Dict[str, Any]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        assert request.url.path == "/v1/scripts"
        return httpx.Response(200, json={"scripts": ["one", "two"]})

    provider = _provider(handler)
    result = await provider.generate_script_candidates(
        SubjectBrief(name="Glow Serum", price=29.0, original_price=39.0), "energetic", 30, 2
    )
    await provider.aclose()

    assert result.ok
    assert result.value == ["one", "two"]
    assert seen[0]["product"]["originalPrice"] == 39.0
    assert seen[0]["style"] == "energetic"
    assert seen[0]["count"] == 2


@pytest.mark.asyncio
async def test_transient_failure_is_retried_then_succeeds() -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        if calls["n"] < 3:
            return httpx.Response(503)
        return httpx.Response(200, json={"url": "https://cdn.localhost/clip.mp4"})

    provider = _provider(handler)
    result = await provider.animate_image("https://cdn.localhost/a.png", "slow pan", model="kling-v2-5")

    assert result.ok
    assert result.value == "https://cdn.localhost/clip.mp4"
    assert calls["n"] == 3


@pytest.mark.asyncio
async def test_exhausted_transient_failure_is_typed() -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        return httpx.Response(429)

    provider = _provider(handler, attempts=2)
    result = await provider.synthesize_voice("hello", VoiceParams(voice="female-1"))

    assert not result.ok
    assert result.failure.kind is FailureKind.TRANSIENT
    assert result.failure.status_code == 429
    assert calls["n"] == 2


@pytest.mark.asyncio
async def test_client_error_is_permanent_and_not_retried() -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        return httpx.Response(400, json={"error": "prompt rejected"})

    provider = _provider(handler)
    result = await provider.generate_image_candidates("a bottle", "cinematic", 1080, 1920, 2)

    assert result.failure is not None
    assert result.failure.kind is FailureKind.PERMANENT
    assert result.failure.status_code == 400
    assert calls["n"] == 1


@pytest.mark.asyncio
async def test_network_error_is_transient() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    provider = _provider(handler, attempts=1)
    result = await provider.synthesize_music("upbeat", 30, model="lyra-2")

    assert result.failure is not None
    assert result.failure.transient


@pytest.mark.asyncio
async def test_malformed_body_is_permanent() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"scenes": []})

    provider = _provider(handler)
    result = await provider.breakdown_scenes("script", 4)

    assert result.failure is not None
    assert result.failure.kind is FailureKind.PERMANENT
    assert "Malformed" in result.failure.message


@pytest.mark.asyncio
async def test_breakdown_scenes_parses_camel_case() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert json.loads(request.content) == {"script": "script", "sceneCount": 2}
        return httpx.Response(
            200,
            json={
                "scenes": [
                    {"sceneNumber": 1, "scriptText": "Hi", "visualDescription": "bottle"},
                    {"scriptText": "Buy", "visualDescription": "hand", "videoPrompt": "zoom"},
                ]
            },
        )

    provider = _provider(handler)
    result = await provider.breakdown_scenes("script", 2)

    drafts = result.unwrap("scenes", "breakdown")
    assert [d.scene_number for d in drafts] == [1, 2]
    assert drafts[1].video_prompt == "zoom"


@pytest.mark.asyncio
async def test_select_best_out_of_range_is_permanent() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"index": 5})

    provider = _provider(handler)
    result = await provider.select_best(["a", "b"], "best")

    assert result.failure is not None
    assert result.failure.kind is FailureKind.PERMANENT


@pytest.mark.asyncio
async def test_metadata_parse() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"description": "Shine on", "hashtags": ["#glow", "#ad"]})

    provider = _provider(handler)
    result = await provider.generate_metadata("Glow Serum", "script")

    assert result.value is not None
    assert result.value.description == "Shine on"
    assert result.value.hashtags == ["#glow", "#ad"]
