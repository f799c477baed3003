"""Unit tests for stage ordering and style presets."""

from __future__ import annotations

import pytest

from reelforge.pipeline.stages import EXECUTABLE_STAGES, STAGE_ORDER, coerce_stage, is_ahead
from reelforge.pipeline.styles import (
    dimensions_for,
    style_settings,
    target_scene_count,
)
from reelforge.storage.models import RunStage


def test_stage_order_ends_with_complete() -> None:
    assert STAGE_ORDER[0] is RunStage.SCRIPT
    assert STAGE_ORDER[-1] is RunStage.COMPLETE
    assert RunStage.COMPLETE not in EXECUTABLE_STAGES
    assert len(EXECUTABLE_STAGES) == 9


def test_is_ahead_is_strict() -> None:
    assert is_ahead("images", "scenes")
    assert not is_ahead(RunStage.SCENES, RunStage.SCENES)
    assert not is_ahead("script", "metadata")


def test_coerce_stage_rejects_unknown() -> None:
    assert coerce_stage("VIDEO") is RunStage.VIDEO
    with pytest.raises(ValueError):
        coerce_stage("rendering")


@pytest.mark.parametrize(
    ("duration", "expected"),
    [(30, 4), (60, 8), (10, 3), (7, 3)],
)
def test_target_scene_count(duration: int, expected: int) -> None:
    assert target_scene_count(duration) == expected


def test_unknown_style_and_aspect_fall_back_to_defaults() -> None:
    assert style_settings("unknown") == style_settings("conversational")
    assert style_settings("energetic").speed == 1.1
    assert dimensions_for("landscape") == (1920, 1080)
    assert dimensions_for(None) == (1080, 1920)
