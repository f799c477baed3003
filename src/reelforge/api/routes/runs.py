"""Production run endpoints.

Runs are dispatched to the DB job queue (`workflow_dispatcher=db`) or executed
in-process as a background task (dev).
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import AsyncIterator, Optional
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from reelforge.api.dependencies import (
    get_async_db_session,
    get_progress_publisher,
    get_run_state_store,
)
from reelforge.api.errors import ConflictError, NotFoundError, ValidationError
from reelforge.api.schemas import (
    ErrorResponse,
    ProgressResponse,
    RunCommandResponse,
    RunDetailResponse,
    RunListItem,
    RunListResponse,
    StartRunRequest,
)
from reelforge.config import settings
from reelforge.observability.logging import get_logger
from reelforge.pipeline.orchestrator import under_delivered_stages
from reelforge.pipeline.publisher import ProgressPublisher
from reelforge.pipeline.run_state import RunStateStore, default_run_settings
from reelforge.pipeline.results import ProgressSnapshot
from reelforge.storage.models import ProductionRun, RunStatus
from reelforge.storage.repositories import (
    MediaAssetRepository,
    RunRepository,
    SceneRepository,
    ScriptRepository,
    SubjectRepository,
)
from reelforge.workers.dispatch import enqueue_run_execute, run_in_process

logger = get_logger(__name__)

router = APIRouter(tags=["Runs"])


def _progress(snapshot: ProgressSnapshot) -> ProgressResponse:
    return ProgressResponse(**snapshot.to_wire())


def _parse_uuid(value: str, what: str) -> UUID:
    try:
        return UUID(value)
    except ValueError as exc:
        raise ValidationError(f"Invalid {what}: {value}") from exc


async def _dispatch(
    session: AsyncSession,
    background_tasks: BackgroundTasks,
    run_id: UUID,
    *,
    resume: bool,
) -> tuple[bool, Optional[str]]:
    """Hand the run to an executor. The caller commits afterwards."""
    if settings.disable_background_workflows:
        return False, None
    if settings.workflow_dispatcher == "db":
        job = await enqueue_run_execute(session, run_id, resume=resume)
        return True, str(job.id)
    background_tasks.add_task(run_in_process, run_id, resume=resume)
    return True, None


@router.post(
    "",
    response_model=RunCommandResponse,
    status_code=202,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def start_run(
    body: StartRunRequest,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_async_db_session),
) -> RunCommandResponse:
    """Create a pending run for a subject and dispatch it.

    Returns immediately; progress is available from the status and stream
    endpoints.
    """
    subject_id = _parse_uuid(body.subject_id, "subject_id")
    subject = await SubjectRepository(session).get_async(subject_id)
    if subject is None:
        raise NotFoundError(f"Subject {subject_id} not found")

    options = body.model_dump(exclude={"subject_id", "organization_id"}, exclude_none=True)
    run = await RunRepository(session).create_async(
        subject_id=subject_id,
        organization_id=body.organization_id or subject.organization_id,
        run_settings=default_run_settings(options),
    )
    run_id = run.id

    # Commit run (+ job) together so workers never see one without the other.
    dispatched, job_id = await _dispatch(session, background_tasks, run_id, resume=False)
    await session.commit()
    logger.info("run_started", run_id=str(run_id), dispatched=dispatched, job_id=job_id)
    return RunCommandResponse(
        run_id=str(run_id), status=RunStatus.PENDING.value, dispatched=dispatched, job_id=job_id
    )


@router.get("", response_model=RunListResponse)
async def list_runs(
    limit: int = Query(10, ge=1, le=100),
    status: Optional[RunStatus] = Query(None),
    session: AsyncSession = Depends(get_async_db_session),
) -> RunListResponse:
    runs = await RunRepository(session).list_async(limit=limit, status=status)
    return RunListResponse(
        runs=[
            RunListItem(
                run_id=str(run.id),
                subject_id=str(run.subject_id) if run.subject_id else None,
                stage=run.stage,
                status=run.status,
                created_at=run.created_at.isoformat() if run.created_at else None,
            )
            for run in runs
        ]
    )


@router.get(
    "/{run_id}", response_model=ProgressResponse, responses={404: {"model": ErrorResponse}}
)
async def get_run_status(
    run_id: UUID,
    state: RunStateStore = Depends(get_run_state_store),
) -> ProgressResponse:
    """Current progress snapshot (camelCase wire shape)."""
    return _progress(await state.snapshot(run_id))


@router.get(
    "/{run_id}/detail",
    response_model=RunDetailResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_run_detail(
    run_id: UUID,
    session: AsyncSession = Depends(get_async_db_session),
) -> RunDetailResponse:
    """Stage progress plus every artifact persisted so far."""
    run: ProductionRun | None = await RunRepository(session).get_async(run_id)
    if run is None:
        raise NotFoundError(f"Run {run_id} not found", error="run_not_found")

    scripts = await ScriptRepository(session).list_by_run_async(run_id)
    selected = next((s for s in scripts if s.is_selected), None)
    scenes = await SceneRepository(session).list_by_script_async(selected.id) if selected else []
    assets = await MediaAssetRepository(session).list_by_run_async(run_id)
    return RunDetailResponse(
        run=run.to_dict(),
        stage_progress=dict(run.stage_progress or {}),
        scripts=[s.to_dict() for s in scripts],
        scenes=[s.to_dict() for s in scenes],
        assets=[a.to_dict() for a in assets],
        under_delivered=under_delivered_stages(run) if run.is_terminal else [],
    )


@router.get("/{run_id}/stream", responses={404: {"model": ErrorResponse}})
async def stream_run_progress(
    run_id: UUID,
    request: Request,
    state: RunStateStore = Depends(get_run_state_store),
    publisher: ProgressPublisher = Depends(get_progress_publisher),
) -> StreamingResponse:
    """Server-Sent Events: one `data:` frame per changed snapshot.

    The stream ends when the client disconnects or the run reaches a terminal
    status.
    """
    await state.load(run_id)

    async def event_stream() -> AsyncIterator[str]:
        async for snapshot in publisher.subscribe(
            run_id, is_disconnected=request.is_disconnected, stop_on_terminal=True
        ):
            yield f"data: {json.dumps(snapshot.to_wire(), separators=(',', ':'))}\n\n"

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.post(
    "/{run_id}/cancel",
    response_model=RunCommandResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def cancel_run(
    run_id: UUID,
    state: RunStateStore = Depends(get_run_state_store),
) -> RunCommandResponse:
    """Request cooperative cancellation (immediate when nobody is executing the run)."""
    if not await state.request_cancel(run_id):
        run = await state.load(run_id)
        raise ConflictError(f"Run {run_id} already finished with status {run.status}")
    run = await state.load(run_id)
    return RunCommandResponse(run_id=str(run_id), status=run.status)


@router.post(
    "/{run_id}/resume",
    response_model=RunCommandResponse,
    status_code=202,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def resume_run(
    run_id: UUID,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_async_db_session),
) -> RunCommandResponse:
    """Re-run a run from its first unsatisfied stage; finished work is kept."""
    run = await RunRepository(session).get_async(run_id)
    if run is None:
        raise NotFoundError(f"Run {run_id} not found", error="run_not_found")
    now = datetime.now(timezone.utc).replace(tzinfo=None)
    if run.lease_owner and run.lease_expires_at and run.lease_expires_at > now:
        raise ConflictError(f"Run {run_id} is currently executing", error="run_locked")

    dispatched, job_id = await _dispatch(session, background_tasks, run_id, resume=True)
    await session.commit()
    logger.info("run_resume_requested", run_id=str(run_id), dispatched=dispatched, job_id=job_id)
    return RunCommandResponse(
        run_id=str(run_id), status=run.status, dispatched=dispatched, job_id=job_id
    )


__all__ = ["router"]
