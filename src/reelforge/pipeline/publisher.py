"""Read-only progress publisher with diff-and-emit semantics."""

from __future__ import annotations

from dataclasses import replace
from typing import AsyncIterator, Awaitable, Callable, Optional
from uuid import UUID

import anyio

from reelforge.config.settings import Settings, get_settings
from reelforge.observability.logging import get_logger
from reelforge.pipeline.errors import PipelineError
from reelforge.pipeline.results import ProgressSnapshot
from reelforge.pipeline.run_state import RunStateStore
from reelforge.storage.models import TERMINAL_STATUSES

logger = get_logger(__name__)

DisconnectCheck = Callable[[], Awaitable[bool]]


def _content(snapshot: ProgressSnapshot) -> ProgressSnapshot:
    # Lease renewals bump updated_at without changing anything a client shows.
    return replace(snapshot, updated_at=None)


class ProgressPublisher:
    """Poll the run state store and yield snapshots only when they change.

    Each `subscribe()` call keeps its own "last sent" snapshot, so subscribers
    never influence each other. The publisher never writes.
    """

    def __init__(
        self,
        state: RunStateStore | None = None,
        *,
        poll_interval: float | None = None,
        config: Settings | None = None,
    ) -> None:
        self.state = state or RunStateStore()
        cfg = config or get_settings()
        self.poll_interval = float(
            poll_interval if poll_interval is not None else cfg.progress_poll_interval_seconds
        )

    async def _read(self, run_id: UUID) -> ProgressSnapshot:
        try:
            return await self.state.snapshot(run_id)
        except PipelineError as exc:
            logger.warning("progress_read_failed", run_id=str(run_id), error=str(exc))
            return ProgressSnapshot.error(str(run_id))

    async def subscribe(
        self,
        run_id: UUID,
        *,
        is_disconnected: Optional[DisconnectCheck] = None,
        stop_on_terminal: bool = False,
    ) -> AsyncIterator[ProgressSnapshot]:
        last_sent: Optional[ProgressSnapshot] = None
        while True:
            if is_disconnected is not None and await is_disconnected():
                logger.info("progress_subscriber_disconnected", run_id=str(run_id))
                return
            current = await self._read(run_id)
            if last_sent is None or _content(current) != _content(last_sent):
                last_sent = current
                yield current
                if stop_on_terminal and current.status in TERMINAL_STATUSES:
                    return
            await anyio.sleep(self.poll_interval)
