"""Deterministic fake content provider for tests and local runs."""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from reelforge.providers.base import (
    FailureKind,
    PlatformMetadata,
    ProviderResult,
    SceneDraft,
    SubjectBrief,
    VoiceParams,
)

BeforeCall = Callable[[str, int], Awaitable[None]]


def _fake_media_url(kind: str, label: str) -> str:
    payload = base64.b64encode(f"{kind}:{label}".encode()).decode()
    return f"data:text/plain;base64,{payload}"


@dataclass
class FakeContentProvider:
    """Stand-in for HttpContentProvider with deterministic outputs.

    Failures are scripted per operation and 1-based call number, e.g.
    `failures={("generate_image_candidates", 2): FailureKind.PERMANENT}`.
    `before_call` is awaited before every call with the same key, letting
    tests interleave actions such as cancellation.
    """

    failures: Dict[Tuple[str, int], FailureKind] = field(default_factory=dict)
    before_call: Optional[BeforeCall] = None
    scene_count_override: Optional[int] = None
    calls: List[Dict[str, Any]] = field(default_factory=list)
    _counters: Dict[str, int] = field(default_factory=dict)

    def call_count(self, operation: str) -> int:
        return self._counters.get(operation, 0)

    async def _enter(self, operation: str, **kwargs: Any) -> Optional[FailureKind]:
        number = self._counters.get(operation, 0) + 1
        self._counters[operation] = number
        self.calls.append({"operation": operation, "call": number, **kwargs})
        if self.before_call is not None:
            await self.before_call(operation, number)
        return self.failures.get((operation, number))

    async def generate_script_candidates(
        self, subject: SubjectBrief, style: str, duration: int, count: int
    ) -> ProviderResult[List[str]]:
        op = "generate_script_candidates"
        kind = await self._enter(op, subject=subject.name, style=style, duration=duration, count=count)
        if kind:
            return ProviderResult.fail(op, kind, "scripted failure")
        return ProviderResult.success(
            [
                f"[{style}] Meet {subject.name}. Take {n}: {subject.description or 'made for you'}."
                for n in range(1, count + 1)
            ]
        )

    async def breakdown_scenes(self, script: str, target_count: int) -> ProviderResult[List[SceneDraft]]:
        op = "breakdown_scenes"
        kind = await self._enter(op, target_count=target_count)
        if kind:
            return ProviderResult.fail(op, kind, "scripted failure")
        count = self.scene_count_override or target_count
        return ProviderResult.success(
            [
                SceneDraft(
                    scene_number=n,
                    script_text=f"Scene {n} narration",
                    visual_description=f"Scene {n} visual",
                    video_prompt=f"Scene {n} motion" if n % 2 == 0 else None,
                )
                for n in range(1, count + 1)
            ]
        )

    async def generate_image_candidates(
        self, prompt: str, style: str, width: int, height: int, count: int
    ) -> ProviderResult[List[str]]:
        op = "generate_image_candidates"
        kind = await self._enter(op, prompt=prompt, style=style, width=width, height=height, count=count)
        if kind:
            return ProviderResult.fail(op, kind, "scripted failure")
        number = self.call_count(op)
        return ProviderResult.success(
            [_fake_media_url("image", f"{number}-{n}") for n in range(1, count + 1)]
        )

    async def select_best(self, candidates: List[str], criteria: str) -> ProviderResult[int]:
        op = "select_best"
        kind = await self._enter(op, candidates=len(candidates), criteria=criteria)
        if kind:
            return ProviderResult.fail(op, kind, "scripted failure")
        return ProviderResult.success(len(candidates) - 1)

    async def animate_image(self, image_url: str, prompt: str, *, model: str) -> ProviderResult[str]:
        op = "animate_image"
        kind = await self._enter(op, image_url=image_url, prompt=prompt, model=model)
        if kind:
            return ProviderResult.fail(op, kind, "scripted failure")
        return ProviderResult.success(_fake_media_url("video", str(self.call_count(op))))

    async def synthesize_voice(self, text: str, voice: VoiceParams) -> ProviderResult[str]:
        op = "synthesize_voice"
        kind = await self._enter(op, voice=voice.voice, speed=voice.speed, emotion=voice.emotion)
        if kind:
            return ProviderResult.fail(op, kind, "scripted failure")
        return ProviderResult.success(_fake_media_url("voice", voice.voice))

    async def synthesize_music(
        self, prompt: str, duration_seconds: int, *, model: str
    ) -> ProviderResult[str]:
        op = "synthesize_music"
        kind = await self._enter(op, prompt=prompt, duration=duration_seconds, model=model)
        if kind:
            return ProviderResult.fail(op, kind, "scripted failure")
        return ProviderResult.success(_fake_media_url("music", prompt))

    async def generate_metadata(self, subject_name: str, script: str) -> ProviderResult[PlatformMetadata]:
        op = "generate_metadata"
        kind = await self._enter(op, subject_name=subject_name)
        if kind:
            return ProviderResult.fail(op, kind, "scripted failure")
        slug = "".join(ch for ch in subject_name.lower() if ch.isalnum())
        return ProviderResult.success(
            PlatformMetadata(
                description=f"{subject_name}: see it in action.",
                hashtags=[f"#{slug}", "#ad", "#tiktokmademebuyit", "#fyp", "#deal", "#new", "#viral"],
            )
        )

    async def aclose(self) -> None:
        """Parity with the real client."""
        return None
