"""HTTP content provider client."""

from __future__ import annotations

from typing import Any, Callable, Dict, List, TypeVar

import httpx

from reelforge.observability.logging import get_logger
from reelforge.observability.metrics import PROVIDER_FAILURES
from reelforge.providers.base import (
    FailureKind,
    PlatformMetadata,
    ProviderResult,
    SceneDraft,
    SubjectBrief,
    VoiceParams,
)
from reelforge.providers.retry import RetryConfig, TransientProviderError, run_with_retry_async

logger = get_logger(__name__)

T = TypeVar("T")

_TRANSIENT_STATUS = {408, 409, 425, 429}


class MalformedResponse(ValueError):
    """Provider answered 2xx with a body we cannot use."""


class HttpContentProvider:
    """Thin async wrapper around the content generation service REST API.

    Transient failures (network errors, timeouts, 429 and 5xx) are retried with
    exponential backoff; whatever is left over is returned as a typed failure.
    """

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str = "",
        timeout: float = 120.0,
        retry: RetryConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"), headers=headers, timeout=timeout
        )
        self._retry = retry or RetryConfig()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        async def _call() -> Dict[str, Any]:
            try:
                response = await self._client.post(path, json=payload)
            except (httpx.TimeoutException, httpx.NetworkError) as exc:
                raise TransientProviderError(f"{type(exc).__name__}: {exc}") from exc
            if response.status_code >= 500 or response.status_code in _TRANSIENT_STATUS:
                raise TransientProviderError(
                    f"HTTP {response.status_code} from {path}", status_code=response.status_code
                )
            response.raise_for_status()
            body = response.json()
            if not isinstance(body, dict):
                raise MalformedResponse(f"Expected JSON object from {path}")
            return body

        return await run_with_retry_async(_call, config=self._retry)

    async def _call(
        self, operation: str, path: str, payload: Dict[str, Any], parse: Callable[[Dict[str, Any]], T]
    ) -> ProviderResult[T]:
        try:
            body = await self._post(path, payload)
            return ProviderResult.success(parse(body))
        except TransientProviderError as exc:
            kind, message, status = FailureKind.TRANSIENT, str(exc), exc.status_code
        except httpx.HTTPStatusError as exc:
            kind, message, status = (
                FailureKind.PERMANENT,
                f"HTTP {exc.response.status_code} from {path}",
                exc.response.status_code,
            )
        except (MalformedResponse, KeyError, TypeError, ValueError) as exc:
            kind, message, status = FailureKind.PERMANENT, f"Malformed response: {exc}", None
        PROVIDER_FAILURES.labels(operation=operation, kind=kind.value).inc()
        logger.warning("provider_call_failed", operation=operation, kind=kind.value, error=message)
        return ProviderResult.fail(operation, kind, message, status_code=status)

    async def generate_script_candidates(
        self, subject: SubjectBrief, style: str, duration: int, count: int
    ) -> ProviderResult[List[str]]:
        payload = {
            "product": {
                "name": subject.name,
                "description": subject.description,
                "price": subject.price,
                "originalPrice": subject.original_price,
                "features": list(subject.features),
                "benefits": list(subject.benefits),
            },
            "style": style,
            "duration": duration,
            "count": count,
        }
        return await self._call(
            "generate_script_candidates", "/v1/scripts", payload, _parse_string_list("scripts")
        )

    async def breakdown_scenes(self, script: str, target_count: int) -> ProviderResult[List[SceneDraft]]:
        def parse(body: Dict[str, Any]) -> List[SceneDraft]:
            scenes = body["scenes"]
            if not isinstance(scenes, list) or not scenes:
                raise MalformedResponse("scenes must be a non-empty list")
            return [
                SceneDraft(
                    scene_number=int(item.get("sceneNumber") or idx),
                    script_text=str(item["scriptText"]),
                    visual_description=str(item["visualDescription"]),
                    video_prompt=item.get("videoPrompt"),
                )
                for idx, item in enumerate(scenes, start=1)
            ]

        return await self._call(
            "breakdown_scenes", "/v1/scenes", {"script": script, "sceneCount": target_count}, parse
        )

    async def generate_image_candidates(
        self, prompt: str, style: str, width: int, height: int, count: int
    ) -> ProviderResult[List[str]]:
        payload = {"prompt": prompt, "style": style, "width": width, "height": height, "count": count}
        return await self._call(
            "generate_image_candidates", "/v1/images", payload, _parse_string_list("urls")
        )

    async def select_best(self, candidates: List[str], criteria: str) -> ProviderResult[int]:
        def parse(body: Dict[str, Any]) -> int:
            index = int(body["index"])
            if not 0 <= index < len(candidates):
                raise MalformedResponse(f"index {index} out of range")
            return index

        return await self._call(
            "select_best", "/v1/rank", {"candidates": candidates, "criteria": criteria}, parse
        )

    async def animate_image(self, image_url: str, prompt: str, *, model: str) -> ProviderResult[str]:
        payload = {"imageUrl": image_url, "prompt": prompt, "model": model}
        return await self._call("animate_image", "/v1/videos", payload, _parse_url)

    async def synthesize_voice(self, text: str, voice: VoiceParams) -> ProviderResult[str]:
        payload = {"text": text, "voice": voice.voice, "speed": voice.speed, "emotion": voice.emotion}
        return await self._call("synthesize_voice", "/v1/voice", payload, _parse_url)

    async def synthesize_music(
        self, prompt: str, duration_seconds: int, *, model: str
    ) -> ProviderResult[str]:
        payload = {"prompt": prompt, "duration": duration_seconds, "model": model}
        return await self._call("synthesize_music", "/v1/music", payload, _parse_url)

    async def generate_metadata(self, subject_name: str, script: str) -> ProviderResult[PlatformMetadata]:
        def parse(body: Dict[str, Any]) -> PlatformMetadata:
            hashtags = body.get("hashtags") or []
            if not isinstance(hashtags, list):
                raise MalformedResponse("hashtags must be a list")
            return PlatformMetadata(
                description=str(body["description"]), hashtags=[str(tag) for tag in hashtags]
            )

        return await self._call(
            "generate_metadata",
            "/v1/metadata",
            {"productName": subject_name, "script": script},
            parse,
        )


def _parse_string_list(key: str) -> Callable[[Dict[str, Any]], List[str]]:
    def parse(body: Dict[str, Any]) -> List[str]:
        items = body[key]
        if not isinstance(items, list) or not items:
            raise MalformedResponse(f"{key} must be a non-empty list")
        return [str(item) for item in items]

    return parse


def _parse_url(body: Dict[str, Any]) -> str:
    url = body["url"]
    if not isinstance(url, str) or not url:
        raise MalformedResponse("url must be a non-empty string")
    return url
