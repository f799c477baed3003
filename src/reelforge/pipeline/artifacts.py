"""Transactional access to a run's content records (scripts, scenes, media)."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Sequence
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from reelforge.pipeline.errors import PersistenceError
from reelforge.providers.base import SceneDraft
from reelforge.storage.database import get_async_session_factory
from reelforge.storage.models import MediaAsset, MediaKind, MusicTrack, Scene, Script, Subject
from reelforge.storage.repositories import (
    MediaAssetRepository,
    MusicTrackRepository,
    SceneRepository,
    ScriptRepository,
    SubjectRepository,
)


class RunArtifacts:
    """Each method runs in its own short transaction, committed before returning."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
        self._session_factory = session_factory or get_async_session_factory()

    @asynccontextmanager
    async def _tx(self, what: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    yield session
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to {what}: {exc}") from exc

    async def subject(self, subject_id: UUID | None) -> Optional[Subject]:
        if subject_id is None:
            return None
        async with self._tx("load subject") as session:
            return await SubjectRepository(session).get_async(subject_id)

    async def selected_script(self, run_id: UUID) -> Optional[Script]:
        async with self._tx("load selected script") as session:
            return await ScriptRepository(session).get_selected_async(run_id)

    async def scripts(self, run_id: UUID) -> List[Script]:
        async with self._tx("list scripts") as session:
            return await ScriptRepository(session).list_by_run_async(run_id)

    async def save_candidates_and_select(
        self, run_id: UUID, candidates: Sequence[str], chosen_index: int
    ) -> Script:
        """Persist script candidates and select one, all in one transaction."""
        async with self._tx("persist script candidates") as session:
            scripts = ScriptRepository(session)
            created = [
                await scripts.create_async(
                    run_id, content, candidate_index=idx, metadata={"candidate_count": len(candidates)}
                )
                for idx, content in enumerate(candidates)
            ]
            chosen = created[chosen_index]
            await scripts.select_async(run_id, chosen.id)
            await SceneRepository(session).delete_outside_script_async(run_id, chosen.id)
            chosen.is_selected = True
            return chosen

    async def select_script(self, run_id: UUID, script_id: UUID) -> None:
        """Switch the run's selection; scenes of the other scripts are removed."""
        async with self._tx("select script") as session:
            await ScriptRepository(session).select_async(run_id, script_id)
            await SceneRepository(session).delete_outside_script_async(run_id, script_id)

    async def scenes(self, script_id: UUID) -> List[Scene]:
        async with self._tx("list scenes") as session:
            return await SceneRepository(session).list_by_script_async(script_id)

    async def clear_scenes(self, script_id: UUID) -> int:
        async with self._tx("delete scenes") as session:
            return await SceneRepository(session).delete_for_script_async(script_id)

    async def create_scene(self, run_id: UUID, script_id: UUID, draft: SceneDraft, number: int) -> Scene:
        metadata: Dict[str, Any] = {}
        if draft.video_prompt:
            metadata["video_prompt"] = draft.video_prompt
        async with self._tx("create scene") as session:
            return await SceneRepository(session).create_async(
                run_id=run_id,
                script_id=script_id,
                scene_number=number,
                script_text=draft.script_text,
                visual_description=draft.visual_description,
                metadata=metadata,
            )

    async def assets(self, run_id: UUID, kind: MediaKind | None = None) -> List[MediaAsset]:
        async with self._tx("list media assets") as session:
            return await MediaAssetRepository(session).list_by_run_async(run_id, kind)

    async def assets_by_scene(self, scene_ids: Iterable[UUID], kind: MediaKind) -> Dict[UUID, MediaAsset]:
        async with self._tx("list scene media") as session:
            return await MediaAssetRepository(session).by_scene_async(scene_ids, kind)

    async def create_asset(
        self,
        *,
        run_id: UUID,
        kind: MediaKind,
        url: str,
        scene_id: UUID | None = None,
        metadata: Dict[str, Any] | None = None,
    ) -> MediaAsset:
        async with self._tx("create media asset") as session:
            return await MediaAssetRepository(session).create_async(
                run_id=run_id, kind=kind, url=url, scene_id=scene_id, metadata=metadata
            )

    async def music_preset(self, organization_id: str | None) -> Optional[MusicTrack]:
        if not organization_id:
            return None
        async with self._tx("load music preset") as session:
            return await MusicTrackRepository(session).first_preset_async(organization_id)
