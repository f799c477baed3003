"""Runs CLI commands."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Optional, TypeVar
from uuid import UUID

import anyio
import click

from reelforge.cli.ui import (
    console,
    format_snapshot,
    format_status,
    render_result,
    render_runs_table,
    render_snapshot,
)
from reelforge.pipeline.errors import PipelineError
from reelforge.storage.models import RunStatus

T = TypeVar("T")


def _parse_uuid(value: str, what: str = "run_id") -> UUID:
    try:
        return UUID(value)
    except ValueError:
        raise click.ClickException(f"Invalid {what}: {value} (must be a UUID)")


def _run_async(fn: Callable[[], Awaitable[T]]) -> T:
    """Run `fn` on a fresh event loop, disposing engines before the loop closes."""
    from reelforge.storage.database import shutdown_async_db

    async def _wrapped() -> T:
        try:
            return await fn()
        finally:
            await shutdown_async_db()

    try:
        return anyio.run(_wrapped)
    except PipelineError as exc:
        raise click.ClickException(str(exc)) from exc


async def _enqueue(run_id: UUID, *, resume: bool) -> str:
    from reelforge.storage.database import get_async_session_factory
    from reelforge.workers.dispatch import enqueue_run_execute

    SessionLocal = get_async_session_factory()
    async with SessionLocal() as session:
        job = await enqueue_run_execute(session, run_id, resume=resume)
        await session.commit()
        return str(job.id)


async def _execute(run_id: UUID, *, resume: bool) -> Any:
    from reelforge.pipeline.orchestrator import PipelineOrchestrator

    orchestrator = PipelineOrchestrator()
    try:
        return await orchestrator.run(run_id, reopen_terminal=resume)
    finally:
        await orchestrator.aclose()


@click.group()
def runs() -> None:
    """Manage production runs."""


@runs.command()
@click.argument("subject_id")
@click.option("--duration", type=int, default=None, help="Ad duration in seconds")
@click.option(
    "--aspect-ratio",
    type=click.Choice(["portrait", "landscape", "square"], case_sensitive=False),
    default=None,
)
@click.option("--style", default=None, help="Style preset (e.g. conversational, energetic)")
@click.option("--video-model", default=None, help="Video model identifier")
@click.option("--organization-id", default=None, help="Organization owning the run")
@click.option(
    "--enqueue",
    is_flag=True,
    help="Enqueue a run.execute job for a worker instead of running in the foreground",
)
def start(
    subject_id: str,
    duration: Optional[int],
    aspect_ratio: Optional[str],
    style: Optional[str],
    video_model: Optional[str],
    organization_id: Optional[str],
    enqueue: bool,
) -> None:
    """Start a production run for SUBJECT_ID."""
    from reelforge.pipeline.artifacts import RunArtifacts
    from reelforge.pipeline.run_state import RunStateStore

    subject_uuid = _parse_uuid(subject_id, "subject_id")
    options = {
        "duration": duration,
        "aspect_ratio": aspect_ratio.lower() if aspect_ratio else None,
        "style": style,
        "video_model": video_model,
    }

    async def _run() -> None:
        subject = await RunArtifacts().subject(subject_uuid)
        if subject is None:
            raise click.ClickException(f"Subject {subject_id} not found")
        run = await RunStateStore().create_run(
            subject_id=subject_uuid,
            organization_id=organization_id or subject.organization_id,
            run_settings=options,
        )
        console.print(f"[bold]Run created:[/bold] {run.id}")
        if enqueue:
            job_id = await _enqueue(run.id, resume=False)
            console.print(f"Enqueued job {job_id}")
            return
        render_result(await _execute(run.id, resume=False))

    _run_async(_run)


@runs.command()
@click.argument("run_id")
def status(run_id: str) -> None:
    """Show the current progress snapshot of a run."""
    from reelforge.pipeline.run_state import RunStateStore

    run_uuid = _parse_uuid(run_id)

    async def _run() -> Any:
        return await RunStateStore().snapshot(run_uuid)

    render_snapshot(_run_async(_run))


@runs.command()
@click.argument("run_id")
@click.option(
    "--interval",
    default=1.0,
    show_default=True,
    type=float,
    help="Poll interval in seconds",
)
def watch(run_id: str, interval: float) -> None:
    """Stream progress changes until the run reaches a terminal status."""
    from reelforge.pipeline.publisher import ProgressPublisher

    run_uuid = _parse_uuid(run_id)

    async def _run() -> None:
        publisher = ProgressPublisher(poll_interval=interval)
        async for snapshot in publisher.subscribe(run_uuid, stop_on_terminal=True):
            console.print(format_snapshot(snapshot))

    try:
        _run_async(_run)
    except KeyboardInterrupt:
        console.print("\n[yellow]Watch interrupted by user[/yellow]")


@runs.command()
@click.argument("run_id")
def cancel(run_id: str) -> None:
    """Request cooperative cancellation of a run."""
    from reelforge.pipeline.run_state import RunStateStore

    run_uuid = _parse_uuid(run_id)

    async def _run() -> tuple[bool, str]:
        store = RunStateStore()
        accepted = await store.request_cancel(run_uuid)
        run = await store.load(run_uuid)
        return accepted, run.status

    accepted, current = _run_async(_run)
    if not accepted:
        raise click.ClickException(f"Run {run_id} already finished ({current})")
    if current == RunStatus.CANCELLED.value:
        console.print(f"Run {run_id} {format_status(current)}")
    else:
        console.print(f"Cancellation requested; run {run_id} stops at the next unit boundary")


@runs.command()
@click.argument("run_id")
@click.option("--enqueue", is_flag=True, help="Enqueue for a worker instead of running here")
def resume(run_id: str, enqueue: bool) -> None:
    """Resume a failed, partial or cancelled run from its first unsatisfied stage."""
    run_uuid = _parse_uuid(run_id)

    async def _run() -> None:
        if enqueue:
            job_id = await _enqueue(run_uuid, resume=True)
            console.print(f"Enqueued job {job_id}")
            return
        render_result(await _execute(run_uuid, resume=True))

    _run_async(_run)


@runs.command("list")
@click.option("--limit", default=10, show_default=True, type=int)
@click.option(
    "--status",
    "status_filter",
    default=None,
    type=click.Choice([s.value for s in RunStatus], case_sensitive=False),
)
def list_runs(limit: int, status_filter: Optional[str]) -> None:
    """List recent runs."""
    from reelforge.storage.database import get_async_session_factory
    from reelforge.storage.repositories import RunRepository

    async def _run() -> list:
        SessionLocal = get_async_session_factory()
        async with SessionLocal() as session:
            return await RunRepository(session).list_async(limit=limit, status=status_filter)

    render_runs_table(_run_async(_run))


def register(cli: click.Group) -> None:
    cli.add_command(runs)
