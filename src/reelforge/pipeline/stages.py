"""Fixed stage order helpers."""

from __future__ import annotations

from reelforge.storage.models import RunStage

STAGE_ORDER: tuple[RunStage, ...] = (
    RunStage.SCRIPT,
    RunStage.SCENES,
    RunStage.IMAGES,
    RunStage.VIDEO,
    RunStage.VOICEOVER,
    RunStage.MUSIC,
    RunStage.CAPTIONS,
    RunStage.COMPILE,
    RunStage.METADATA,
    RunStage.COMPLETE,
)

# Stages with an executor (everything except the terminal marker).
EXECUTABLE_STAGES: tuple[RunStage, ...] = STAGE_ORDER[:-1]


def coerce_stage(value: RunStage | str) -> RunStage:
    if isinstance(value, RunStage):
        return value
    return RunStage(str(value).lower())


def stage_index(value: RunStage | str) -> int:
    return STAGE_ORDER.index(coerce_stage(value))


def is_ahead(candidate: RunStage | str, current: RunStage | str) -> bool:
    """True when `candidate` comes strictly after `current` in the fixed order."""
    return stage_index(candidate) > stage_index(current)
