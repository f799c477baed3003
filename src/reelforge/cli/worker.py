"""Worker CLI commands."""

from __future__ import annotations

from typing import Optional

import anyio
import click

from reelforge.cli.ui import console


@click.group()
def worker() -> None:
    """Workers that execute queued production runs."""


@worker.command("run")
@click.option("--once", is_flag=True, help="Claim at most one run.execute job, then exit")
@click.option("--worker-id", default=None, help="Lease owner name (default: host:pid)")
@click.option(
    "--concurrency",
    type=click.IntRange(min=1),
    default=None,
    help="Runs executed in parallel (default: WORKER_CONCURRENCY)",
)
def worker_run(once: bool, worker_id: Optional[str], concurrency: Optional[int]) -> None:
    """Claim `run.execute` jobs and drive their runs through the pipeline."""
    from reelforge.storage.database import shutdown_async_db
    from reelforge.workers import run_worker

    async def _run() -> None:
        try:
            await run_worker(once=once, worker_id=worker_id, concurrency=concurrency)
        finally:
            await shutdown_async_db()

    try:
        anyio.run(_run)
    except KeyboardInterrupt:
        console.print("\n[yellow]Worker stopped[/yellow]")
    except Exception as exc:
        raise click.ClickException(str(exc)) from exc


def register(cli: click.Group) -> None:
    cli.add_command(worker)
