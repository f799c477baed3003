"""Content provider gateway contract.

Every operation returns a `ProviderResult`: either a value or a typed
`ProviderFailure` (transient or permanent). Expected per-unit failures are
results, not exceptions; `ProviderResult.unwrap` converts a failure into a
`ProviderUnitError` at the stage executor boundary.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Generic, List, Optional, Protocol, TypeVar, runtime_checkable

from reelforge.pipeline.errors import ProviderUnitError

T = TypeVar("T")


class FailureKind(str, Enum):
    TRANSIENT = "transient"  # Timeouts, rate limits, 5xx
    PERMANENT = "permanent"  # Rejected input, malformed response


@dataclass(frozen=True)
class ProviderFailure:
    operation: str
    kind: FailureKind
    message: str
    status_code: Optional[int] = None

    @property
    def transient(self) -> bool:
        return self.kind is FailureKind.TRANSIENT


@dataclass(frozen=True)
class ProviderResult(Generic[T]):
    value: Optional[T] = None
    failure: Optional[ProviderFailure] = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    @classmethod
    def success(cls, value: T) -> "ProviderResult[T]":
        return cls(value=value)

    @classmethod
    def fail(
        cls,
        operation: str,
        kind: FailureKind,
        message: str,
        *,
        status_code: Optional[int] = None,
    ) -> "ProviderResult[T]":
        return cls(failure=ProviderFailure(operation, kind, message, status_code))

    def unwrap(self, stage: str, unit_key: str) -> T:
        if self.failure is not None:
            raise ProviderUnitError(stage, unit_key, self.failure)
        return self.value  # type: ignore[return-value]


@dataclass(frozen=True)
class SubjectBrief:
    """What the provider needs to know about the advertised product."""

    name: str
    description: str = ""
    price: Optional[float] = None
    original_price: Optional[float] = None
    features: List[str] = field(default_factory=list)
    benefits: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class SceneDraft:
    scene_number: int
    script_text: str
    visual_description: str
    video_prompt: Optional[str] = None


@dataclass(frozen=True)
class VoiceParams:
    voice: str
    speed: float = 1.0
    emotion: str = "neutral"


@dataclass(frozen=True)
class PlatformMetadata:
    description: str
    hashtags: List[str] = field(default_factory=list)


@runtime_checkable
class ContentProvider(Protocol):
    """Uniform interface to each generation capability."""

    async def generate_script_candidates(
        self, subject: SubjectBrief, style: str, duration: int, count: int
    ) -> ProviderResult[List[str]]: ...

    async def breakdown_scenes(
        self, script: str, target_count: int
    ) -> ProviderResult[List[SceneDraft]]: ...

    async def generate_image_candidates(
        self, prompt: str, style: str, width: int, height: int, count: int
    ) -> ProviderResult[List[str]]: ...

    async def select_best(self, candidates: List[str], criteria: str) -> ProviderResult[int]: ...

    async def animate_image(
        self, image_url: str, prompt: str, *, model: str
    ) -> ProviderResult[str]: ...

    async def synthesize_voice(self, text: str, voice: VoiceParams) -> ProviderResult[str]: ...

    async def synthesize_music(
        self, prompt: str, duration_seconds: int, *, model: str
    ) -> ProviderResult[str]: ...

    async def generate_metadata(
        self, subject_name: str, script: str
    ) -> ProviderResult[PlatformMetadata]: ...

    async def aclose(self) -> None: ...


__all__ = [
    "ContentProvider",
    "FailureKind",
    "PlatformMetadata",
    "ProviderFailure",
    "ProviderResult",
    "SceneDraft",
    "SubjectBrief",
    "VoiceParams",
]
