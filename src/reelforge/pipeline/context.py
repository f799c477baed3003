"""Per-stage execution context handed to stage executors."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional
from uuid import UUID

from reelforge.assets.base import AssetStore
from reelforge.config.settings import Settings
from reelforge.pipeline.artifacts import RunArtifacts
from reelforge.pipeline.results import StageProgress
from reelforge.pipeline.run_state import RunStateStore
from reelforge.pipeline.styles import StyleSettings, dimensions_for, style_settings
from reelforge.providers.base import ContentProvider, SubjectBrief
from reelforge.storage.models import ProductionRun, Subject


@dataclass
class StageContext:
    run: ProductionRun
    subject: Optional[Subject]
    provider: ContentProvider
    asset_store: AssetStore
    artifacts: RunArtifacts
    state: RunStateStore
    config: Settings

    @property
    def run_id(self) -> UUID:
        return self.run.id

    @property
    def organization_id(self) -> Optional[str]:
        return self.run.organization_id or (self.subject.organization_id if self.subject else None)

    @property
    def options(self) -> Dict[str, Any]:
        return dict(self.run.run_settings or {})

    @property
    def duration(self) -> int:
        return int(self.options.get("duration") or self.config.default_duration_seconds)

    @property
    def aspect_ratio(self) -> str:
        return str(self.options.get("aspect_ratio") or self.config.default_aspect_ratio)

    @property
    def dimensions(self) -> tuple[int, int]:
        return dimensions_for(self.aspect_ratio)

    @property
    def style(self) -> str:
        return str(self.options.get("style") or self.config.default_style)

    @property
    def style_settings(self) -> StyleSettings:
        return style_settings(self.style)

    @property
    def video_model(self) -> str:
        return str(self.options.get("video_model") or self.config.default_video_model)

    def progress_for(self, stage: str) -> Optional[StageProgress]:
        raw = (self.run.stage_progress or {}).get(stage)
        return StageProgress.from_dict(raw) if raw is not None else None

    def subject_brief(self) -> SubjectBrief:
        if self.subject is None:
            raise ValueError("run has no subject")
        return SubjectBrief(
            name=self.subject.name,
            description=self.subject.description or "",
            price=self.subject.price,
            original_price=self.subject.original_price,
            features=list(self.subject.features or []),
            benefits=list(self.subject.benefits or []),
        )

    async def refresh(self) -> None:
        self.run = await self.state.load(self.run_id)
