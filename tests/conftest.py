"""Pytest configuration and shared fixtures."""

import os
import sys
import tempfile
from pathlib import Path

import httpx
import pytest

# Ensure source tree is importable without editable install
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))


def pytest_configure(config):
    """Configure pytest markers and environment for tests."""
    config.addinivalue_line("markers", "integration: marks tests as integration tests")

    # These MUST override any developer shell/.env values to keep the test run deterministic.
    os.environ["ENVIRONMENT"] = "test"
    os.environ["USE_FAKE_PROVIDERS"] = "true"
    os.environ["CONTENT_PROVIDER_MODE"] = "fake"
    os.environ["ASSET_STORE_BACKEND"] = "local"
    os.environ["DISABLE_BACKGROUND_WORKFLOWS"] = "true"
    os.environ["FAIL_FAST_ON_STARTUP"] = "false"
    os.environ["PROGRESS_POLL_INTERVAL_SECONDS"] = "0.01"
    # Never write SQLite files into the repo root; use a per-run temp directory.
    run_dir = Path(tempfile.mkdtemp(prefix="reelforge_pytest_"))
    os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{run_dir / 'test_default.db'}"
    os.environ["ASSET_LOCAL_DIR"] = str(run_dir / "assets")


@pytest.fixture(autouse=True)
def block_external_http(monkeypatch):
    """Fail the fast lane if code tries to hit the public internet.

    Allowlist only:
    - ASGI test host ("test") used with httpx.ASGITransport
    - localhost/loopback for local services
    """

    allowed_hosts = {"test", "testserver", "localhost", "127.0.0.1", "0.0.0.0"}

    async def _async_guard(self, method, url, *args, **kwargs):  # type: ignore[no-untyped-def]
        u = httpx.URL(url) if not isinstance(url, httpx.URL) else url
        if u.scheme in {"http", "https"} and (u.host or "") not in allowed_hosts:
            raise RuntimeError(f"External HTTP blocked in tests: {u!s}")
        return await _orig_async_request(self, method, url, *args, **kwargs)

    _orig_async_request = httpx.AsyncClient.request
    monkeypatch.setattr(httpx.AsyncClient, "request", _async_guard, raising=True)

    yield


def pytest_sessionfinish(session, exitstatus):  # noqa: ARG001
    """Best-effort teardown for global DB engines.

    Prevents leaked aiosqlite connections from throwing unraisable exceptions
    after the event loop has been closed.
    """
    try:
        import asyncio

        from reelforge.storage.database import shutdown_async_db

        asyncio.run(shutdown_async_db())
    except Exception:
        # Never fail the test run during teardown.
        return


@pytest.fixture
async def session_factory(tmp_path, monkeypatch):
    """Fresh SQLite database (tables created) for one test."""
    from reelforge.config import reset_settings_cache
    from reelforge.storage.database import (
        get_async_session_factory,
        init_async_db,
        shutdown_async_db,
    )

    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'reelforge.db'}")
    monkeypatch.setenv("ASSET_LOCAL_DIR", str(tmp_path / "assets"))
    reset_settings_cache()
    await init_async_db()
    try:
        yield get_async_session_factory()
    finally:
        await shutdown_async_db()
        reset_settings_cache()


@pytest.fixture
def make_subject(session_factory):
    """Factory fixture: persist a subject and return it."""
    from reelforge.storage.repositories import SubjectRepository

    async def _make(name: str = "Glow Serum", **kwargs):
        kwargs.setdefault("description", "Vitamin C serum for a brighter look")
        kwargs.setdefault("organization_id", "org-1")
        kwargs.setdefault("price", 29.0)
        kwargs.setdefault("features", ["fast absorbing"])
        kwargs.setdefault("benefits", ["brighter skin"])
        async with session_factory() as session:
            subject = await SubjectRepository(session).create_async(name, **kwargs)
            await session.commit()
            return subject

    return _make


@pytest.fixture
def make_run(session_factory):
    """Factory fixture: create a pending run through the run state store."""
    from reelforge.pipeline.run_state import RunStateStore

    async def _make(subject_id=None, **run_settings):
        return await RunStateStore(session_factory).create_run(
            subject_id=subject_id,
            organization_id="org-1",
            run_settings=run_settings,
        )

    return _make


@pytest.fixture
async def async_client(session_factory):
    """httpx AsyncClient wired to the FastAPI app with lifespan enabled."""
    from httpx import ASGITransport, AsyncClient

    from reelforge.api.server import app

    async with app.router.lifespan_context(app):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            yield client
