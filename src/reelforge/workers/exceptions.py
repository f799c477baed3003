"""Worker exception types."""

from __future__ import annotations


class JobReschedule(RuntimeError):
    """Signal that a job should be retried later without treating it as an error.

    Raised when the run is currently owned by another orchestrator (lease held).
    """

    def __init__(self, *, retry_delay_seconds: float, reason: str) -> None:
        super().__init__(reason)
        self.retry_delay_seconds = float(retry_delay_seconds)
        self.reason = reason
