from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ErrorResponse(BaseModel):
    error: str = Field(..., description="Machine-readable error code")
    detail: Optional[str | Dict[str, Any]] = Field(
        default=None, description="Human-readable error detail"
    )


class HealthResponse(BaseModel):
    status: str
    version: str
    database_ready: Optional[bool] = None
    provider_mode: str
    asset_store_backend: str
    workflow_dispatcher: str


class SubjectCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=10000)
    organization_id: Optional[str] = Field(default=None, max_length=128)
    price: Optional[float] = Field(default=None, ge=0)
    original_price: Optional[float] = Field(default=None, ge=0)
    features: List[str] = Field(default_factory=list)
    benefits: List[str] = Field(default_factory=list)


class SubjectResponse(BaseModel):
    id: str
    organization_id: Optional[str] = None
    name: str
    description: Optional[str] = None
    price: Optional[float] = None
    original_price: Optional[float] = None
    features: List[str] = Field(default_factory=list)
    benefits: List[str] = Field(default_factory=list)
    created_at: Optional[str] = None


class MusicTrackCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    url: str = Field(..., min_length=1, max_length=1024)


class MusicTrackResponse(BaseModel):
    id: str
    organization_id: str
    name: str
    url: str


class StartRunRequest(BaseModel):
    """Start a production run for a subject; omitted options use configured defaults."""

    subject_id: str
    organization_id: Optional[str] = Field(default=None, max_length=128)
    duration: Optional[int] = Field(default=None, gt=0, le=600)
    aspect_ratio: Optional[Literal["portrait", "landscape", "square"]] = None
    style: Optional[str] = Field(default=None, max_length=64)
    video_model: Optional[str] = Field(default=None, max_length=64)
    captions_enabled: Optional[bool] = None
    music_volume: Optional[int] = Field(default=None, ge=0, le=100)


class RunCommandResponse(BaseModel):
    run_id: str
    status: str
    dispatched: bool = False
    job_id: Optional[str] = None


class ProgressResponse(BaseModel):
    """Progress snapshot; serialized with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    run_id: str
    stage: str
    status: str
    message: str
    total_units: int
    completed_units: int
    updated_at: Optional[str] = None


class RunDetailResponse(BaseModel):
    run: Dict[str, Any]
    stage_progress: Dict[str, Any] = Field(default_factory=dict)
    scripts: List[Dict[str, Any]] = Field(default_factory=list)
    scenes: List[Dict[str, Any]] = Field(default_factory=list)
    assets: List[Dict[str, Any]] = Field(default_factory=list)
    under_delivered: List[str] = Field(default_factory=list)


class RunListItem(BaseModel):
    run_id: str
    subject_id: Optional[str] = None
    stage: str
    status: str
    created_at: Optional[str] = None


class RunListResponse(BaseModel):
    runs: List[RunListItem]
