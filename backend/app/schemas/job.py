"""Cleaning job schemas."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import Field

from app.schemas.base import BaseSchema, IDMixin, TimestampMixin
from app.models.enums import (
    ActivityAction,
    CategoryGroup,
    JobStatus,
    PhotoPhase,
    UnitType,
)


class JobCreate(BaseSchema):
    """Create a job (starts in pending)."""

    id: Optional[UUID] = None
    unit_type: Optional[UnitType] = None
    features: list[str] = Field(default_factory=list, max_length=50)
    assigned_worker_id: Optional[str] = Field(None, max_length=128)
    requester_id: Optional[str] = Field(None, max_length=128)
    notes: Optional[str] = None


class JobAttributesUpdate(BaseSchema):
    """Edit the attributes the required photo set is derived from."""

    unit_type: Optional[UnitType] = None
    features: Optional[list[str]] = Field(None, max_length=50)


class StartRequest(BaseSchema):
    """Start checklist selection; omitted fields keep the stored values."""

    unit_type: Optional[UnitType] = None
    features: Optional[list[str]] = Field(None, max_length=50)


class ResetRequest(BaseSchema):
    confirm: bool = False


class DurationUpdate(BaseSchema):
    """Administrator correction of a completed job's worked minutes."""

    duration_minutes: int = Field(..., ge=0)


class PhotoCounts(BaseSchema):
    before: dict[str, int] = Field(default_factory=dict)
    after: dict[str, int] = Field(default_factory=dict)


class JobResponse(BaseSchema, IDMixin, TimestampMixin):
    """Job response."""

    status: JobStatus
    unit_type: Optional[UnitType] = None
    features: list[str] = Field(default_factory=list)
    assigned_worker_id: Optional[str] = None
    requester_id: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_minutes: Optional[int] = None
    duration_edited_at: Optional[datetime] = None
    notes: Optional[str] = None
    photo_counts: Optional[PhotoCounts] = None


class CategoryResponse(BaseSchema):
    key: str
    label: str
    group: CategoryGroup
    photo_count: int = 0


class GateResponse(BaseSchema):
    """Whether the confirmation action for `phase` may be enabled."""

    phase: PhotoPhase
    allowed: bool
    reason: Optional[str] = None
    unit_type_required: bool = False
    missing: list[str] = Field(default_factory=list)
    categories: list[CategoryResponse] = Field(default_factory=list)


class PhotoResponse(BaseSchema, IDMixin):
    """Photo response."""

    job_id: UUID
    category_key: str
    phase: PhotoPhase
    object_path: str
    mime_type: str
    file_size_bytes: int
    original_filename: Optional[str] = None
    uploaded_at: datetime
    uploaded_by_id: Optional[str] = None
    download_url: Optional[str] = None


class JobPhotosResponse(BaseSchema):
    before: list[PhotoResponse] = Field(default_factory=list)
    after: list[PhotoResponse] = Field(default_factory=list)


class UploadOutcomeResponse(BaseSchema):
    """Outcome of one file in a batch upload."""

    filename: str
    category_key: str
    phase: PhotoPhase
    ok: bool
    photo_id: Optional[UUID] = None
    object_path: Optional[str] = None
    error: Optional[str] = None
    timed_out: bool = False


class UploadBatchResponse(BaseSchema):
    uploaded: int
    failed: int
    results: list[UploadOutcomeResponse]


class ActivityResponse(BaseSchema, IDMixin):
    """Activity ledger entry."""

    action: ActivityAction
    at: datetime
    notes: Optional[str] = None
    duration_seconds: Optional[int] = None
    actor_id: Optional[str] = None


class TimerResponse(BaseSchema):
    """Enough to redraw the running timer after a reload."""

    job_id: UUID
    status: JobStatus
    running: bool
    started_at: Optional[datetime] = None
    elapsed_seconds: int = 0
    duration_minutes: Optional[int] = None


class FeatureResponse(BaseSchema):
    key: str
    label: str
    compare_category: Optional[str] = None
    general_category: Optional[str] = None


class CatalogResponse(BaseSchema):
    unit_types: list[UnitType]
    features: list[FeatureResponse]
