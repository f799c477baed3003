"""ReelForge command-line interface.

Commands live in submodules under `reelforge.cli.*`, each exposing
`register(cli)`.
"""

from __future__ import annotations

import click

from reelforge.app_version import get_app_version
from reelforge.observability import init_observability


@click.group()
@click.version_option(version=get_app_version(), prog_name="reelforge")
def cli() -> None:
    """ReelForge - short-form video ad production pipeline."""
    init_observability()


def _register_commands() -> None:
    from reelforge.cli import db, runs, worker

    db.register(cli)
    runs.register(cli)
    worker.register(cli)


_register_commands()


if __name__ == "__main__":
    cli()
