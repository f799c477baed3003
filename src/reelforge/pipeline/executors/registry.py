"""Stage -> executor mapping in pipeline order."""

from __future__ import annotations

from typing import Dict

from reelforge.pipeline.executors.base import StageExecutor
from reelforge.pipeline.executors.captions import CaptionsExecutor
from reelforge.pipeline.executors.compile import CompileExecutor
from reelforge.pipeline.executors.images import ImagesExecutor
from reelforge.pipeline.executors.metadata import MetadataExecutor
from reelforge.pipeline.executors.music import MusicExecutor
from reelforge.pipeline.executors.scenes import ScenesExecutor
from reelforge.pipeline.executors.script import ScriptExecutor
from reelforge.pipeline.executors.video import VideoExecutor
from reelforge.pipeline.executors.voiceover import VoiceoverExecutor
from reelforge.pipeline.stages import EXECUTABLE_STAGES
from reelforge.storage.models import RunStage


def build_executors() -> Dict[RunStage, StageExecutor]:
    executors: Dict[RunStage, StageExecutor] = {
        executor.stage: executor
        for executor in (
            ScriptExecutor(),
            ScenesExecutor(),
            ImagesExecutor(),
            VideoExecutor(),
            VoiceoverExecutor(),
            MusicExecutor(),
            CaptionsExecutor(),
            CompileExecutor(),
            MetadataExecutor(),
        )
    }
    missing = [stage.value for stage in EXECUTABLE_STAGES if stage not in executors]
    if missing:
        raise RuntimeError(f"No executor registered for stages: {missing}")
    return executors
