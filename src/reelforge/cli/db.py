"""Database CLI commands."""

from __future__ import annotations

import anyio
import click

from reelforge.cli.ui import console


@click.group()
def db() -> None:
    """Database management."""


@db.command("init")
def db_init() -> None:
    """Create tables from the ORM models (use Alembic for managed deployments)."""
    from reelforge.storage.database import init_async_db, shutdown_async_db

    async def _run() -> None:
        try:
            await init_async_db()
        finally:
            await shutdown_async_db()

    try:
        anyio.run(_run)
    except Exception as exc:
        raise click.ClickException(f"Database init failed: {exc}") from exc
    console.print("[green]Database tables ready[/green]")


def register(cli: click.Group) -> None:
    cli.add_command(db)
