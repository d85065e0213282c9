"""Jobs router - cleaning job lifecycle, photo evidence and timer."""

import logging
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Response, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings, get_settings
from app.core.database import get_db
from app.core.exceptions import (
    AuthorizationRejection,
    ConflictRejection,
    JobNotFound,
    JobWorkflowError,
    PersistenceFailure,
    PhotoNotFound,
    ValidationRejection,
)
from app.core.security import AuthenticatedUser, get_current_user
from app.models.enums import ActorRole, JobStatus, PhotoPhase
from app.models.job import CleaningJob, JobPhoto
from app.schemas.job import (
    ActivityResponse,
    CategoryResponse,
    DurationUpdate,
    GateResponse,
    JobAttributesUpdate,
    JobCreate,
    JobPhotosResponse,
    JobResponse,
    PhotoCounts,
    PhotoResponse,
    ResetRequest,
    StartRequest,
    TimerResponse,
    UploadBatchResponse,
    UploadOutcomeResponse,
)
from app.services.access import require_job_access
from app.services.activity_ledger import ActivityLedger
from app.services.categories import derive_categories
from app.services.job_store import JobStore
from app.services.notifications import JobEventPublisher, get_event_publisher
from app.services.state_machine import JobStateMachine
from app.services.storage import StorageService, get_storage_service
from app.services.uploads import IncomingFile, UploadPipeline

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/jobs", tags=["jobs"])


# === Dependencies ===

def get_job_store(db: AsyncSession = Depends(get_db)) -> JobStore:
    return JobStore(db)


def get_state_machine(
    store: JobStore = Depends(get_job_store),
    publisher: JobEventPublisher = Depends(get_event_publisher),
    storage: StorageService = Depends(get_storage_service),
) -> JobStateMachine:
    return JobStateMachine(store, publisher, storage)


def get_upload_pipeline(
    store: JobStore = Depends(get_job_store),
    storage: StorageService = Depends(get_storage_service),
    publisher: JobEventPublisher = Depends(get_event_publisher),
    settings: Settings = Depends(get_settings),
) -> UploadPipeline:
    return UploadPipeline(store, storage, publisher, settings)


# === Helper Functions ===

def http_error(error: JobWorkflowError) -> HTTPException:
    """Translate a workflow error into the HTTP response the client sees."""
    if isinstance(error, (JobNotFound, PhotoNotFound)):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=error.message)
    if isinstance(error, AuthorizationRejection):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=error.message)
    if isinstance(error, ValidationRejection):
        return HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={
                "message": error.message,
                "reason": error.reason,
                "missing": error.missing,
            },
        )
    if isinstance(error, ConflictRejection):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "message": f"{error.message}. The job changed, please refresh.",
                "current_status": error.current_status,
            },
        )
    if isinstance(error, PersistenceFailure):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=error.message,
            headers={"Retry-After": "1"},
        )
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=error.message)


async def get_job_with_auth(
    job_id: UUID,
    store: JobStore,
    current_user: AuthenticatedUser,
) -> CleaningJob:
    """Get job with authorization check."""
    try:
        job = await store.read_job(job_id)
        require_job_access(job, current_user)
    except JobWorkflowError as e:
        raise http_error(e)
    return job


async def build_job_response(job: CleaningJob, store: JobStore) -> JobResponse:
    response = JobResponse.model_validate(job)
    response.photo_counts = PhotoCounts(
        before=await store.read_photo_counts(job.id, PhotoPhase.BEFORE),
        after=await store.read_photo_counts(job.id, PhotoPhase.AFTER),
    )
    return response


# === Endpoints ===

@router.post("", response_model=JobResponse, status_code=status.HTTP_201_CREATED)
async def create_job(
    data: JobCreate,
    machine: JobStateMachine = Depends(get_state_machine),
    current_user: AuthenticatedUser = Depends(get_current_user),
):
    """Create a job in pending.

    Administrators assign workers; a requester's job is always their own.
    """
    try:
        job = await machine.create_job(
            current_user,
            job_id=data.id,
            unit_type=data.unit_type,
            features=data.features,
            assigned_worker_id=data.assigned_worker_id,
            requester_id=data.requester_id,
            notes=data.notes,
        )
    except JobWorkflowError as e:
        raise http_error(e)

    return await build_job_response(job, machine.store)


@router.get("", response_model=List[JobResponse])
async def list_jobs(
    status_filter: Optional[JobStatus] = Query(None, alias="status"),
    assigned_worker_id: Optional[str] = None,
    store: JobStore = Depends(get_job_store),
    current_user: AuthenticatedUser = Depends(get_current_user),
):
    """List jobs visible to the caller.

    Workers see their assignments, requesters their own requests.
    """
    requester_id = None
    if current_user.role == ActorRole.WORKER:
        assigned_worker_id = current_user.uid
    elif current_user.role == ActorRole.REQUESTER:
        assigned_worker_id = None
        requester_id = current_user.uid

    jobs = await store.list_jobs(
        status=status_filter,
        assigned_worker_id=assigned_worker_id,
        requester_id=requester_id,
    )
    return [await build_job_response(job, store) for job in jobs]


@router.get("/{job_id}", response_model=JobResponse)
async def get_job(
    job_id: UUID,
    store: JobStore = Depends(get_job_store),
    current_user: AuthenticatedUser = Depends(get_current_user),
):
    job = await get_job_with_auth(job_id, store, current_user)
    return await build_job_response(job, store)


@router.patch("/{job_id}/attributes", response_model=JobResponse)
async def update_job_attributes(
    job_id: UUID,
    data: JobAttributesUpdate,
    machine: JobStateMachine = Depends(get_state_machine),
    current_user: AuthenticatedUser = Depends(get_current_user),
):
    """Edit unit type and features.

    Administrators at any time; the assigned worker only before starting.
    """
    try:
        job = await machine.update_attributes(
            job_id,
            current_user,
            unit_type=data.unit_type,
            features=data.features,
        )
    except JobWorkflowError as e:
        raise http_error(e)

    return await build_job_response(job, machine.store)


@router.get("/{job_id}/requirements", response_model=GateResponse)
async def get_requirements(
    job_id: UUID,
    phase: PhotoPhase = PhotoPhase.BEFORE,
    machine: JobStateMachine = Depends(get_state_machine),
    current_user: AuthenticatedUser = Depends(get_current_user),
):
    """Required categories for a phase and whether the transition may proceed."""
    job = await get_job_with_auth(job_id, machine.store, current_user)
    result = await machine.check_gate(job, phase)
    counts = await machine.store.read_photo_counts(job_id, phase)

    return GateResponse(
        phase=phase,
        allowed=result.allowed,
        reason=result.reason,
        unit_type_required=result.unit_type_required,
        missing=result.missing,
        categories=[
            CategoryResponse(
                key=c.key,
                label=c.label,
                group=c.group,
                photo_count=counts.get(c.key, 0),
            )
            for c in derive_categories(job.unit_type, job.features or [], phase)
        ],
    )


# === Job Workflow ===

@router.post("/{job_id}/start", response_model=JobResponse)
async def start_job(
    job_id: UUID,
    data: Optional[StartRequest] = None,
    machine: JobStateMachine = Depends(get_state_machine),
    current_user: AuthenticatedUser = Depends(get_current_user),
):
    """Start a job (worker on site, before photos taken).

    Repeating the call on a started job returns it unchanged.
    """
    data = data or StartRequest()
    try:
        job = await machine.start(
            job_id,
            current_user,
            unit_type=data.unit_type,
            features=data.features,
        )
    except JobWorkflowError as e:
        raise http_error(e)

    return await build_job_response(job, machine.store)


@router.post("/{job_id}/complete", response_model=JobResponse)
async def complete_job(
    job_id: UUID,
    machine: JobStateMachine = Depends(get_state_machine),
    current_user: AuthenticatedUser = Depends(get_current_user),
):
    """Complete a job (after photos taken for every category)."""
    try:
        job = await machine.complete(job_id, current_user)
    except JobWorkflowError as e:
        raise http_error(e)

    return await build_job_response(job, machine.store)


@router.post("/{job_id}/reset", response_model=JobResponse)
async def reset_job(
    job_id: UUID,
    data: ResetRequest,
    machine: JobStateMachine = Depends(get_state_machine),
    current_user: AuthenticatedUser = Depends(get_current_user),
):
    """Reset a job to pending, deleting its photos and activity.

    Destructive: requires `{"confirm": true}`.
    """
    if not data.confirm:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Reset deletes all photos and activity; send confirm=true",
        )
    try:
        job = await machine.reset(job_id, current_user)
    except JobWorkflowError as e:
        raise http_error(e)

    return await build_job_response(job, machine.store)


@router.patch("/{job_id}/duration", response_model=JobResponse)
async def edit_job_duration(
    job_id: UUID,
    data: DurationUpdate,
    machine: JobStateMachine = Depends(get_state_machine),
    current_user: AuthenticatedUser = Depends(get_current_user),
):
    """Correct the worked minutes of a completed job (administrators only)."""
    try:
        job = await machine.edit_duration(job_id, current_user, data.duration_minutes)
    except JobWorkflowError as e:
        raise http_error(e)

    return await build_job_response(job, machine.store)


# === Photos ===

@router.post("/{job_id}/photos", response_model=UploadBatchResponse)
async def upload_photos(
    job_id: UUID,
    phase: PhotoPhase = Form(...),
    category_key: str = Form(...),
    files: List[UploadFile] = File(...),
    pipeline: UploadPipeline = Depends(get_upload_pipeline),
    current_user: AuthenticatedUser = Depends(get_current_user),
):
    """Upload one or more photos for a category.

    Each file succeeds or fails on its own; failures are listed in the
    result rather than failing the request.
    """
    incoming = [
        IncomingFile(
            filename=f.filename or "photo.jpg",
            data=await f.read(),
            content_type=f.content_type,
        )
        for f in files
    ]
    try:
        outcomes = await pipeline.upload_many(job_id, phase, category_key, incoming, current_user)
    except JobWorkflowError as e:
        raise http_error(e)

    results = [UploadOutcomeResponse.model_validate(o) for o in outcomes]
    uploaded = sum(1 for r in results if r.ok)
    return UploadBatchResponse(uploaded=uploaded, failed=len(results) - uploaded, results=results)


@router.get("/{job_id}/photos", response_model=JobPhotosResponse)
async def list_photos(
    job_id: UUID,
    include_urls: bool = False,
    pipeline: UploadPipeline = Depends(get_upload_pipeline),
    current_user: AuthenticatedUser = Depends(get_current_user),
):
    """Photos grouped by phase, optionally with presigned download URLs."""
    await get_job_with_auth(job_id, pipeline.store, current_user)
    grouped = await pipeline.list_photos(job_id)

    async def to_response(photo: JobPhoto) -> PhotoResponse:
        response = PhotoResponse.model_validate(photo)
        if include_urls:
            response.download_url = await pipeline.storage.get_download_url(photo.object_path)
        return response

    return JobPhotosResponse(
        before=[await to_response(p) for p in grouped[PhotoPhase.BEFORE]],
        after=[await to_response(p) for p in grouped[PhotoPhase.AFTER]],
    )


@router.delete("/{job_id}/photos/{photo_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_photo(
    job_id: UUID,
    photo_id: UUID,
    pipeline: UploadPipeline = Depends(get_upload_pipeline),
    current_user: AuthenticatedUser = Depends(get_current_user),
):
    """Remove a photo while the job is not completed."""
    try:
        await pipeline.delete_photo(job_id, photo_id, current_user)
    except JobWorkflowError as e:
        raise http_error(e)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# === Activity ===

@router.get("/{job_id}/activity", response_model=List[ActivityResponse])
async def list_activity(
    job_id: UUID,
    store: JobStore = Depends(get_job_store),
    current_user: AuthenticatedUser = Depends(get_current_user),
):
    """Start/stop history, oldest first."""
    await get_job_with_auth(job_id, store, current_user)
    entries = await ActivityLedger(store).list_entries(job_id)
    return [ActivityResponse.model_validate(e) for e in entries]


@router.get("/{job_id}/timer", response_model=TimerResponse)
async def get_timer(
    job_id: UUID,
    store: JobStore = Depends(get_job_store),
    current_user: AuthenticatedUser = Depends(get_current_user),
):
    """Current timer state, rebuilt from the activity ledger."""
    job = await get_job_with_auth(job_id, store, current_user)
    snapshot = await ActivityLedger(store).timer(job)
    return TimerResponse(
        job_id=snapshot.job_id,
        status=job.status,
        running=snapshot.running,
        started_at=snapshot.started_at,
        elapsed_seconds=snapshot.elapsed_seconds,
        duration_minutes=snapshot.duration_minutes,
    )
