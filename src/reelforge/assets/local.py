"""Filesystem-backed asset store."""

from __future__ import annotations

import asyncio
from pathlib import Path

from reelforge.assets.base import AssetSource, Placement, fetch_source
from reelforge.observability.logging import get_logger
from reelforge.pipeline.errors import AssetStoreError

logger = get_logger(__name__)


class LocalAssetStore:
    """Writes artifacts under `root/<object key>`.

    Returns `<public_base_url>/<key>` when a public base URL is configured,
    otherwise a file:// URI.
    """

    def __init__(self, root: str | Path, *, public_base_url: str = "", download_timeout: float = 60.0):
        self.root = Path(root)
        self.public_base_url = public_base_url.rstrip("/")
        self.download_timeout = download_timeout

    def path_for(self, placement: Placement) -> Path:
        return self.root / placement.object_key

    async def persist(self, source: AssetSource, placement: Placement) -> str:
        data = await fetch_source(source, timeout=self.download_timeout)
        path = self.path_for(placement)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(path.suffix + ".part")
            tmp.write_bytes(data)
            tmp.replace(path)

        try:
            await asyncio.to_thread(_write)
        except OSError as exc:
            raise AssetStoreError(f"Cannot write {path}: {exc}") from exc

        logger.info("asset_persisted", key=placement.object_key, bytes=len(data))
        if self.public_base_url:
            return f"{self.public_base_url}/{placement.object_key}"
        return path.resolve().as_uri()
