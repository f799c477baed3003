"""Shared CLI UI helpers (Rich formatting)."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from reelforge.pipeline.results import ProgressSnapshot, RunResult
from reelforge.storage.models import RunStatus

console = Console()


def format_status(status: str) -> str:
    """Return colorized status string for terminal output."""
    colors = {
        RunStatus.PENDING.value: "grey62",
        RunStatus.IN_PROGRESS.value: "cyan",
        RunStatus.COMPLETED.value: "green",
        RunStatus.PARTIAL.value: "yellow",
        RunStatus.CANCELLED.value: "magenta",
        RunStatus.FAILED.value: "red",
        "error": "red",
    }
    color = colors.get(status, "white")
    return f"[{color}]{status}[/{color}]"


def format_snapshot(snapshot: ProgressSnapshot) -> str:
    units = f"{snapshot.completed_units}/{snapshot.total_units}"
    return (
        f"{format_status(snapshot.status)} [magenta]{snapshot.stage or '-'}[/magenta] "
        f"{units} {snapshot.message}"
    )


def render_snapshot(snapshot: ProgressSnapshot) -> None:
    console.print(
        Panel(
            "\n".join(
                [
                    f"[bold]Status:[/bold] {format_status(snapshot.status)}",
                    f"[bold]Stage:[/bold] {snapshot.stage}",
                    f"[bold]Units:[/bold] {snapshot.completed_units}/{snapshot.total_units}",
                    f"[bold]Message:[/bold] {snapshot.message or '-'}",
                    f"[bold]Updated:[/bold] {snapshot.updated_at or '-'}",
                ]
            ),
            title=f"Run {snapshot.run_id}",
        )
    )


def render_result(result: RunResult) -> None:
    line = f"Run {result.run_id} finished with {format_status(result.status)}"
    if result.error:
        line += f": {result.error}"
    console.print(line)
    if result.completed_stages:
        console.print(f"   Stages: {', '.join(result.completed_stages)}")


def render_runs_table(runs: Iterable[Any]) -> None:
    """Render a table of runs using Rich."""
    table = Table(title="Recent Runs", show_lines=False)
    table.add_column("Run ID", style="white")
    table.add_column("Subject", style="cyan")
    table.add_column("Status", style="bold")
    table.add_column("Stage", style="magenta")
    table.add_column("Created", style="white")

    for run in runs:
        created = getattr(run, "created_at", None)
        created_str = (
            created.isoformat(timespec="seconds") if isinstance(created, datetime) else "-"
        )
        table.add_row(
            str(getattr(run, "id", "")),
            str(getattr(run, "subject_id", "") or "-"),
            format_status(getattr(run, "status", "")),
            getattr(run, "stage", "") or "-",
            created_str,
        )

    console.print(table)
