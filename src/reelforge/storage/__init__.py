"""ReelForge storage module - database models and repositories."""

from reelforge.storage.database import (
    get_async_engine,
    get_async_session_factory,
    init_async_db,
    shutdown_async_db,
)
from reelforge.storage.models import (
    Base,
    MediaAsset,
    MediaKind,
    ProductionRun,
    RunStage,
    RunStatus,
    Scene,
    Script,
    Subject,
)
from reelforge.storage.repositories import RunRepository, SubjectRepository

__all__ = [
    "Base",
    "ProductionRun",
    "RunStage",
    "RunStatus",
    "Script",
    "Scene",
    "MediaAsset",
    "MediaKind",
    "Subject",
    "get_async_engine",
    "get_async_session_factory",
    "init_async_db",
    "shutdown_async_db",
    "RunRepository",
    "SubjectRepository",
]
