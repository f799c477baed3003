"""Factory for asset stores."""

from __future__ import annotations

from reelforge.assets.base import AssetStore
from reelforge.assets.local import LocalAssetStore
from reelforge.assets.s3 import S3AssetStore
from reelforge.config.settings import Settings


def get_asset_store(settings: Settings) -> AssetStore:
    if settings.asset_store_backend == "s3":
        return S3AssetStore(
            bucket=settings.asset_s3_bucket,
            prefix=settings.asset_s3_prefix,
            endpoint_url=settings.asset_s3_endpoint_url or None,
            region_name=settings.asset_s3_region or None,
            download_timeout=settings.asset_download_timeout_seconds,
        )
    return LocalAssetStore(
        settings.asset_local_dir,
        public_base_url=settings.asset_public_base_url,
        download_timeout=settings.asset_download_timeout_seconds,
    )
