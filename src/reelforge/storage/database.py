"""Async database engine and session management."""

from __future__ import annotations

import asyncio

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool, StaticPool

from reelforge.config import settings
from reelforge.observability.logging import get_logger
from reelforge.storage.models import Base

logger = get_logger(__name__)

__all__ = [
    "to_async_url",
    "get_async_engine",
    "get_async_session_factory",
    "init_async_db",
    "shutdown_async_db",
]

_async_engine: AsyncEngine | None = None
_async_engine_url: str | None = None
_async_engine_loop_id: int | None = None  # Loop the engine was created on
_AsyncSessionLocal: async_sessionmaker[AsyncSession] | None = None
_async_engines_to_dispose: dict[int, AsyncEngine] = {}


def _stash_async_engine(engine: AsyncEngine) -> None:
    """Keep a strong ref until shutdown to avoid leaked aiosqlite threads in tests."""
    _async_engines_to_dispose[id(engine)] = engine


def _is_sqlite_file(url: str) -> bool:
    return url.startswith("sqlite") and ":memory:" not in url


def to_async_url(url: str) -> str:
    """Rewrite a configured database URL to its async driver (asyncpg/aiosqlite)."""
    if url.startswith("postgresql+psycopg2://"):
        return url.replace("postgresql+psycopg2://", "postgresql+asyncpg://")
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://")
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+asyncpg://")
    if url.startswith("sqlite://") and not url.startswith("sqlite+aiosqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://")
    return url


def get_async_engine() -> AsyncEngine:
    """Get or create the async engine for the current settings and event loop."""
    global _async_engine, _async_engine_url, _AsyncSessionLocal, _async_engine_loop_id

    try:
        curr_loop_id: int | None = id(asyncio.get_running_loop())
    except RuntimeError:
        curr_loop_id = None

    url = to_async_url(settings.database_url)

    # An engine bound to another loop raises "Future attached to a different loop"
    # under asyncpg, so it is discarded and rebuilt.
    loop_mismatch = (
        _async_engine is not None
        and _async_engine_loop_id is not None
        and curr_loop_id is not None
        and curr_loop_id != _async_engine_loop_id
    )
    if _async_engine is not None and (loop_mismatch or _async_engine_url != url):
        _stash_async_engine(_async_engine)
        _async_engine = None
        _AsyncSessionLocal = None
        _async_engine_url = None
        _async_engine_loop_id = None

    if _async_engine is None:
        logger.info("Creating async database engine")
        kw: dict = {"pool_pre_ping": True}

        if url.startswith("sqlite"):
            kw["connect_args"] = {"check_same_thread": False}
            # WAL mode is enabled in init_async_db() via PRAGMA statements
            if ":memory:" in url:
                kw["poolclass"] = StaticPool
            elif settings.environment == "test":
                # Per-test event loops can leak pooled aiosqlite threads.
                kw["poolclass"] = NullPool
        elif settings.async_use_pool and not loop_mismatch:
            kw["pool_size"] = settings.db_pool_size
            kw["max_overflow"] = settings.db_max_overflow
        else:
            kw["poolclass"] = NullPool

        _async_engine = create_async_engine(url, **kw)
        _async_engine_url = url
        _async_engine_loop_id = curr_loop_id
        _AsyncSessionLocal = None
    return _async_engine


def get_async_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get or create async session factory."""
    global _AsyncSessionLocal
    if _AsyncSessionLocal is None:
        _AsyncSessionLocal = async_sessionmaker(
            autoflush=False,
            expire_on_commit=False,
            bind=get_async_engine(),
            class_=AsyncSession,
        )
    return _AsyncSessionLocal


async def init_async_db() -> None:
    """Create tables (idempotent) and apply SQLite pragmas for file databases."""
    await shutdown_async_db()
    engine = get_async_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        if _is_sqlite_file(settings.database_url):
            await conn.execute(text("PRAGMA journal_mode=WAL"))
            await conn.execute(text("PRAGMA synchronous=NORMAL"))
            await conn.execute(text("PRAGMA busy_timeout=3000"))
            logger.info("Enabled WAL mode for SQLite database")
    logger.info("Async database tables created")


async def shutdown_async_db() -> None:
    """Dispose async engines and clear session factory caches.

    Leaked aiosqlite connections raise unraisable exceptions at interpreter
    shutdown once the event loop is closed, so test teardown calls this too.
    """
    global _async_engine, _async_engine_url, _AsyncSessionLocal, _async_engine_loop_id
    global _async_engines_to_dispose

    _AsyncSessionLocal = None
    if _async_engine is not None:
        _stash_async_engine(_async_engine)

    engines = list(_async_engines_to_dispose.values())
    _async_engines_to_dispose = {}
    for engine in engines:
        try:
            await engine.dispose()
        except Exception:  # pragma: no cover - best-effort cleanup
            logger.debug("Failed to dispose async engine", exc_info=True)

    _async_engine = None
    _async_engine_url = None
    _async_engine_loop_id = None
