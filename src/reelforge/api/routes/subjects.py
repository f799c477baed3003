"""Subject (advertised product) and music preset endpoints."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends

from reelforge.api.dependencies import get_async_subject_repo
from reelforge.api.errors import NotFoundError, ValidationError
from reelforge.api.schemas import (
    ErrorResponse,
    MusicTrackCreate,
    MusicTrackResponse,
    SubjectCreate,
    SubjectResponse,
)
from reelforge.storage.repositories import MusicTrackRepository, SubjectRepository

router = APIRouter(tags=["Subjects"])


@router.post("", response_model=SubjectResponse, status_code=201)
async def create_subject(
    body: SubjectCreate,
    subject_repo: SubjectRepository = Depends(get_async_subject_repo),
) -> SubjectResponse:
    subject = await subject_repo.create_async(
        body.name,
        description=body.description,
        organization_id=body.organization_id,
        price=body.price,
        original_price=body.original_price,
        features=body.features,
        benefits=body.benefits,
    )
    await subject_repo.session.commit()
    return SubjectResponse(**subject.to_dict())


@router.get(
    "/{subject_id}", response_model=SubjectResponse, responses={404: {"model": ErrorResponse}}
)
async def get_subject(
    subject_id: UUID,
    subject_repo: SubjectRepository = Depends(get_async_subject_repo),
) -> SubjectResponse:
    subject = await subject_repo.get_async(subject_id)
    if subject is None:
        raise NotFoundError(f"Subject {subject_id} not found")
    return SubjectResponse(**subject.to_dict())


@router.post(
    "/{subject_id}/music-tracks",
    response_model=MusicTrackResponse,
    status_code=201,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def add_music_track(
    subject_id: UUID,
    body: MusicTrackCreate,
    subject_repo: SubjectRepository = Depends(get_async_subject_repo),
) -> MusicTrackResponse:
    """Register a preset track for the subject's organization."""
    subject = await subject_repo.get_async(subject_id)
    if subject is None:
        raise NotFoundError(f"Subject {subject_id} not found")
    if not subject.organization_id:
        raise ValidationError("Subject has no organization; music presets are per organization")
    track = await MusicTrackRepository(subject_repo.session).create_async(
        subject.organization_id, body.name, body.url
    )
    await subject_repo.session.commit()
    return MusicTrackResponse(
        id=str(track.id),
        organization_id=track.organization_id,
        name=track.name,
        url=track.url,
    )


__all__ = ["router"]
