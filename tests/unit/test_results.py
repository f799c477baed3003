"""Unit tests for progress value types."""

from __future__ import annotations

from reelforge.pipeline.results import (
    ProgressDelta,
    ProgressSnapshot,
    RunResult,
    StageOutcome,
    StageProgress,
    UnitResult,
)


def test_apply_clamps_to_total_units() -> None:
    record = StageProgress(total_units=2, completed_units=1)
    record.apply(ProgressDelta(completed=5))
    assert record.completed_units == 2
    record.apply(ProgressDelta(failed=1, skipped=1))
    assert record.failed_units == 0
    assert record.skipped_units == 0
    assert record.accounted_units == 2


def test_apply_updates_message_only_when_given() -> None:
    record = StageProgress(total_units=3, message="Running images")
    record.apply(ProgressDelta(completed=1))
    assert record.message == "Running images"
    record.apply(ProgressDelta(failed=1, message="images scene-2: failed"))
    assert record.message == "images scene-2: failed"
    assert record.failed_units == 1


def test_from_dict_repairs_inconsistent_records() -> None:
    record = StageProgress.from_dict({"total_units": 2, "completed_units": 7, "failed_units": -1})
    assert record.completed_units == 2
    assert record.failed_units == 0
    assert StageProgress.from_dict(None).total_units == 0


def test_delta_for_unit_counts_one_outcome() -> None:
    assert ProgressDelta.for_unit(UnitResult.completed("a")).completed == 1
    failed = ProgressDelta.for_unit(UnitResult.failed("b", "boom"))
    assert (failed.completed, failed.failed) == (0, 1)
    assert ProgressDelta.for_unit(UnitResult.skipped("c", "no image")).skipped == 1


def test_stage_outcome_counts() -> None:
    outcome = StageOutcome()
    outcome.record(UnitResult.completed("a"))
    outcome.record(UnitResult.failed("b", "boom"))
    outcome.record(UnitResult.skipped("c", "no image"))
    assert outcome.units_processed == 2
    assert outcome.units_succeeded == 1
    assert outcome.units_failed == 1
    assert outcome.units_skipped == 1


def test_snapshot_wire_shape_is_camel_case() -> None:
    snapshot = ProgressSnapshot(
        run_id="r1",
        stage="images",
        status="in_progress",
        message="Running images",
        total_units=4,
        completed_units=1,
        updated_at=None,
    )
    assert snapshot.to_wire() == {
        "runId": "r1",
        "stage": "images",
        "status": "in_progress",
        "message": "Running images",
        "totalUnits": 4,
        "completedUnits": 1,
        "updatedAt": None,
    }
    error = ProgressSnapshot.error("r1")
    assert error.status == "error"
    assert error.message == "Failed to load progress."


def test_run_result_statuses() -> None:
    assert RunResult.finished("r", ["script"], partial=False).is_success
    partial = RunResult.finished("r", ["script"], partial=True)
    assert partial.status == "partial" and not partial.is_success
    assert RunResult.failure("r", "boom").is_failed
    assert RunResult.cancelled("r", []).status == "cancelled"
