"""Unit tests for the progress publisher."""

from __future__ import annotations

from dataclasses import replace
from typing import List
from uuid import uuid4

import pytest

from reelforge.pipeline.errors import PersistenceError
from reelforge.pipeline.publisher import ProgressPublisher
from reelforge.pipeline.results import ProgressSnapshot


def _snap(status: str = "in_progress", completed: int = 0, updated_at: str = "t0") -> ProgressSnapshot:
    return ProgressSnapshot(
        run_id="r1",
        stage="images",
        status=status,
        message="Running images",
        total_units=4,
        completed_units=completed,
        updated_at=updated_at,
    )


class _ScriptedState:
    """Returns queued snapshots (or raises queued errors), repeating the last one."""

    def __init__(self, items: List[object]) -> None:
        self.items = list(items)
        self.reads = 0

    async def snapshot(self, run_id):  # type: ignore[no-untyped-def]
        self.reads += 1
        item = self.items.pop(0) if len(self.items) > 1 else self.items[0]
        if isinstance(item, Exception):
            raise item
        return item


@pytest.mark.asyncio
async def test_emits_only_changed_snapshots() -> None:
    state = _ScriptedState(
        [
            _snap(completed=0),
            _snap(completed=0, updated_at="t1"),
            _snap(completed=1, updated_at="t2"),
            _snap(status="completed", completed=4, updated_at="t3"),
        ]
    )
    publisher = ProgressPublisher(state, poll_interval=0)  # type: ignore[arg-type]

    seen = [s async for s in publisher.subscribe(uuid4(), stop_on_terminal=True)]

    assert [s.completed_units for s in seen] == [0, 1, 4]
    assert seen[-1].status == "completed"
    assert state.reads == 4


@pytest.mark.asyncio
async def test_read_failure_becomes_error_snapshot() -> None:
    state = _ScriptedState([PersistenceError("db down"), _snap(status="failed")])
    publisher = ProgressPublisher(state, poll_interval=0)  # type: ignore[arg-type]

    seen = [s async for s in publisher.subscribe(uuid4(), stop_on_terminal=True)]

    assert seen[0].status == "error"
    assert seen[0].message == "Failed to load progress."
    assert seen[-1].status == "failed"


@pytest.mark.asyncio
async def test_disconnect_ends_the_stream() -> None:
    state = _ScriptedState([_snap()])
    publisher = ProgressPublisher(state, poll_interval=0)  # type: ignore[arg-type]
    checks = {"n": 0}

    async def is_disconnected() -> bool:
        checks["n"] += 1
        return checks["n"] > 3

    seen = [s async for s in publisher.subscribe(uuid4(), is_disconnected=is_disconnected)]

    assert len(seen) == 1
    assert state.reads == 3


@pytest.mark.asyncio
async def test_subscribers_are_independent() -> None:
    state = _ScriptedState([_snap(status="partial")])
    publisher = ProgressPublisher(state, poll_interval=0)  # type: ignore[arg-type]
    run_id = uuid4()

    first = [s async for s in publisher.subscribe(run_id, stop_on_terminal=True)]
    second = [s async for s in publisher.subscribe(run_id, stop_on_terminal=True)]

    assert first == second == [_snap(status="partial")]


def test_updated_at_alone_is_not_a_change() -> None:
    from reelforge.pipeline.publisher import _content

    assert _content(_snap(updated_at="a")) == _content(_snap(updated_at="b"))
    assert _content(_snap()) != _content(replace(_snap(), message="other"))


@pytest.mark.asyncio
async def test_publisher_reads_real_store(session_factory, make_run) -> None:
    run = await make_run()
    from reelforge.pipeline.run_state import RunStateStore

    state = RunStateStore(session_factory)
    await state.request_cancel(run.id)
    publisher = ProgressPublisher(state, poll_interval=0)

    seen = [s async for s in publisher.subscribe(run.id, stop_on_terminal=True)]

    assert len(seen) == 1
    assert seen[0].status == "cancelled"
    assert seen[0].message == "Cancelled"
