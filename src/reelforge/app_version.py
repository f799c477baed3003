"""Application version helper.

Reads installed distribution metadata, falling back to pyproject.toml when
running from a source checkout via PYTHONPATH.
"""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version as _dist_version

import tomllib

from reelforge.paths import get_repo_root


def get_app_version(package_name: str = "reelforge") -> str:
    try:
        return _dist_version(package_name)
    except PackageNotFoundError:
        pyproject = get_repo_root() / "pyproject.toml"
        try:
            with pyproject.open("rb") as f:
                data = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError):
            return "0.0.0"
        return str(data.get("project", {}).get("version", "0.0.0"))
