"""Asset store gateway contract and source fetching."""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol, Union, runtime_checkable
from urllib.parse import unquote, urlparse

import httpx

from reelforge.pipeline.errors import AssetStoreError

AssetSource = Union[str, bytes]

_EXTENSIONS = {
    "image": ".png",
    "video_clip": ".mp4",
    "voiceover": ".mp3",
    "music": ".mp3",
    "final_video": ".mp4",
}


@dataclass(frozen=True)
class Placement:
    """Where a unit's artifact belongs.

    The object key depends only on unit identity, so persisting the same unit
    twice overwrites the earlier object instead of adding a second one.
    """

    run_id: str
    kind: str
    unit_key: str
    organization_id: Optional[str] = None
    scene_number: Optional[int] = None

    @property
    def object_key(self) -> str:
        org = self.organization_id or "default"
        return f"{org}/{self.run_id}/{self.kind}/{self.unit_key}{_EXTENSIONS.get(self.kind, '.bin')}"


@runtime_checkable
class AssetStore(Protocol):
    async def persist(self, source: AssetSource, placement: Placement) -> str: ...


def _decode_data_uri(uri: str) -> bytes:
    header, _, data = uri.partition(",")
    try:
        if header.endswith(";base64"):
            return base64.b64decode(data, validate=True)
        return unquote(data).encode()
    except (binascii.Error, ValueError) as exc:
        raise AssetStoreError(f"Invalid data URI: {exc}") from exc


async def fetch_source(source: AssetSource, *, timeout: float = 60.0) -> bytes:
    """Resolve an artifact source (bytes, data:, file:// or http(s) URL) to bytes."""
    if isinstance(source, (bytes, bytearray)):
        return bytes(source)
    if source.startswith("data:"):
        return _decode_data_uri(source)

    parsed = urlparse(source)
    if parsed.scheme == "file":
        try:
            return Path(unquote(parsed.path)).read_bytes()
        except OSError as exc:
            raise AssetStoreError(f"Cannot read {source}: {exc}") from exc
    if parsed.scheme not in {"http", "https"}:
        raise AssetStoreError(f"Unsupported asset source scheme: {parsed.scheme or '<none>'}")

    try:
        async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
            response = await client.get(source)
            response.raise_for_status()
            return response.content
    except httpx.HTTPError as exc:
        raise AssetStoreError(f"Download failed for {source}: {exc}") from exc
