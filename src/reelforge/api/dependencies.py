"""Async DB/session and pipeline dependencies."""

from typing import AsyncGenerator

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from reelforge.pipeline.publisher import ProgressPublisher
from reelforge.pipeline.run_state import RunStateStore
from reelforge.storage.database import get_async_session_factory
from reelforge.storage.repositories import RunRepository, SubjectRepository


async def get_async_db_session() -> AsyncGenerator[AsyncSession, None]:
    SessionLocal = get_async_session_factory()
    session = SessionLocal()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


async def get_async_run_repo(
    session: AsyncSession = Depends(get_async_db_session),
) -> RunRepository:
    return RunRepository(session)


async def get_async_subject_repo(
    session: AsyncSession = Depends(get_async_db_session),
) -> SubjectRepository:
    return SubjectRepository(session)


def get_run_state_store() -> RunStateStore:
    return RunStateStore()


def get_progress_publisher(
    state: RunStateStore = Depends(get_run_state_store),
) -> ProgressPublisher:
    return ProgressPublisher(state)
