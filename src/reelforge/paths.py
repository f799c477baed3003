"""Path helpers for locating repo resources.

The service runs both as an editable install and straight from a checkout with
`PYTHONPATH=src`; `pyproject.toml` lives outside the package tree, so the repo
root is located by walking up from this file.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path


@lru_cache(maxsize=1)
def get_repo_root() -> Path:
    """Return the directory containing `pyproject.toml` (or the cwd)."""
    start = Path(__file__).resolve()
    for parent in (start, *start.parents):
        if (parent / "pyproject.toml").is_file():
            return parent
    return Path.cwd()
