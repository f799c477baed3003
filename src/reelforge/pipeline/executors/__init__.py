"""Stage executors, one per pipeline stage."""

from reelforge.pipeline.executors.base import PlannedUnit, StageExecutor, UnitCallback
from reelforge.pipeline.executors.registry import build_executors

__all__ = ["PlannedUnit", "StageExecutor", "UnitCallback", "build_executors"]
