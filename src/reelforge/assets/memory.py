"""In-process asset store for tests and dry runs."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Set

from reelforge.assets.base import AssetSource, Placement, fetch_source
from reelforge.pipeline.errors import AssetStoreError


@dataclass
class InMemoryAssetStore:
    """Keeps artifacts in a dict keyed by object key.

    `fail_units` lists unit keys whose persist call raises AssetStoreError.
    """

    objects: Dict[str, bytes] = field(default_factory=dict)
    fail_units: Set[str] = field(default_factory=set)
    writes: int = 0

    async def persist(self, source: AssetSource, placement: Placement) -> str:
        if placement.unit_key in self.fail_units:
            raise AssetStoreError(f"Simulated storage failure for {placement.unit_key}")
        self.objects[placement.object_key] = await fetch_source(source)
        self.writes += 1
        return f"memory://{placement.object_key}"
