"""Unit tests for settings and provider mode helpers."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from reelforge.config.provider_modes import effective_content_provider
from reelforge.config.settings import Settings


def test_use_fake_providers_downgrades_real_mode() -> None:
    cfg = Settings(content_provider_mode="real", use_fake_providers=True)
    assert effective_content_provider(cfg) == "fake"


def test_real_mode_kept_without_fake_switch() -> None:
    cfg = Settings(
        content_provider_mode="real",
        use_fake_providers=False,
        content_provider_url="http://localhost:9000",
    )
    assert effective_content_provider(cfg) == "real"


def test_production_real_mode_requires_provider_url() -> None:
    with pytest.raises(ValidationError, match="CONTENT_PROVIDER_URL"):
        Settings(environment="production", content_provider_mode="real", use_fake_providers=False)


def test_s3_backend_requires_bucket() -> None:
    with pytest.raises(ValidationError, match="ASSET_S3_BUCKET"):
        Settings(asset_store_backend="s3", asset_s3_bucket="")


def test_candidate_counts_must_be_positive() -> None:
    with pytest.raises(ValidationError):
        Settings(script_candidate_count=0)


def test_log_level_is_normalized() -> None:
    assert Settings(log_level="debug").log_level == "DEBUG"


def test_test_environment_defaults() -> None:
    cfg = Settings()
    assert cfg.environment == "test"
    assert cfg.disable_background_workflows is True
    assert effective_content_provider(cfg) == "fake"
