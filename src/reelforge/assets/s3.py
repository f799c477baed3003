"""S3-backed asset store (optional `s3` extra).

Default installs do not require boto3; the client is only built when the S3
backend is configured.
"""

from __future__ import annotations

import asyncio
import mimetypes
from typing import Any

from reelforge.assets.base import AssetSource, Placement, fetch_source
from reelforge.observability.logging import get_logger
from reelforge.pipeline.errors import AssetStoreError

logger = get_logger(__name__)


def build_s3_uri(*, bucket: str, key: str) -> str:
    return f"s3://{bucket}/{key.lstrip('/')}"


def _require_boto3() -> Any:
    try:
        import boto3  # type: ignore
    except ImportError as exc:  # pragma: no cover - depends on optional extra
        raise RuntimeError(
            "S3 backend requires boto3. Install with `pip install 'reelforge[s3]'` "
            "or add boto3 to your environment."
        ) from exc
    return boto3


class S3AssetStore:
    """Uploads artifacts to `s3://<bucket>/<prefix>/<object key>`."""

    def __init__(
        self,
        *,
        bucket: str,
        prefix: str = "",
        endpoint_url: str | None = None,
        region_name: str | None = None,
        download_timeout: float = 60.0,
        client: Any = None,
    ) -> None:
        self.bucket = bucket
        self.prefix = prefix.strip("/")
        self.download_timeout = download_timeout
        if client is None:
            boto3 = _require_boto3()
            client = boto3.client("s3", endpoint_url=endpoint_url, region_name=region_name)
        self._client = client

    def key_for(self, placement: Placement) -> str:
        return f"{self.prefix}/{placement.object_key}" if self.prefix else placement.object_key

    async def persist(self, source: AssetSource, placement: Placement) -> str:
        data = await fetch_source(source, timeout=self.download_timeout)
        key = self.key_for(placement)
        content_type = mimetypes.guess_type(key)[0] or "application/octet-stream"

        def _upload() -> None:
            self._client.put_object(Bucket=self.bucket, Key=key, Body=data, ContentType=content_type)

        try:
            await asyncio.to_thread(_upload)
        except Exception as exc:  # botocore raises a wide family of client errors
            raise AssetStoreError(f"S3 upload failed for {key}: {exc}") from exc

        logger.info("asset_uploaded", bucket=self.bucket, key=key, bytes=len(data))
        return build_s3_uri(bucket=self.bucket, key=key)
