"""Job state machine: pending -> in_progress -> completed, plus reset.

Each transition runs under a per-job lock and a row lock, re-checks the
documentation gate against confirmed photo rows, and commits every effect
(status, timestamps, ledger entry, audit entry) in one transaction. Events
go out only after the commit.

Reset is not coordinated with in-flight transitions beyond the per-job
lock: whichever commits last wins, and a reset destroys what came before.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Iterable, Optional, Union
from uuid import UUID

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from app.core.database import utcnow
from app.core.exceptions import (
    AuthorizationRejection,
    ConflictRejection,
    JobWorkflowError,
    PersistenceFailure,
    ValidationRejection,
)
from app.models.enums import (
    ActorRole,
    AuditAction,
    JobEventType,
    JobStatus,
    PhotoPhase,
    UnitType,
)
from app.models.job import CleaningJob
from app.services.access import (
    is_administrator,
    require_administrator,
    require_assigned_worker,
)
from app.services.activity_ledger import ActivityLedger, minutes_from_seconds
from app.services.audit import AuditService
from app.services.catalog import is_known_feature
from app.services.gate import GateResult, can_transition
from app.services.job_store import JobStore
from app.services.notifications import JobEventPublisher
from app.services.storage import StorageService

if TYPE_CHECKING:
    from app.core.security import AuthenticatedUser

logger = logging.getLogger(__name__)

_job_locks: dict[UUID, asyncio.Lock] = {}
_job_lock_users: dict[UUID, int] = {}


@asynccontextmanager
async def job_lock(job_id: UUID):
    """In-process serialization point for one job's transitions.

    The lock is dropped from the registry once nobody holds or waits on it.
    """
    lock = _job_locks.setdefault(job_id, asyncio.Lock())
    _job_lock_users[job_id] = _job_lock_users.get(job_id, 0) + 1
    try:
        async with lock:
            yield
    finally:
        _job_lock_users[job_id] -= 1
        if not _job_lock_users[job_id]:
            del _job_lock_users[job_id]
            _job_locks.pop(job_id, None)


@dataclass
class JobAttributes:
    """The two inputs of the category deriver."""

    unit_type: Optional[UnitType]
    features: list[str] = field(default_factory=list)


def parse_unit_type(value: Union[UnitType, str, None]) -> Optional[UnitType]:
    if value is None or isinstance(value, UnitType):
        return value
    try:
        return UnitType(value)
    except ValueError:
        raise ValidationRejection(
            f"Unknown unit type '{value}'",
            reason="invalid_unit_type",
        )


def normalize_features(features: Optional[Iterable[str]]) -> list[str]:
    """Drop blanks and duplicates, keep first-seen order.

    Unknown keys are kept; the deriver ignores them.
    """
    result: list[str] = []
    for key in features or ():
        key = (key or "").strip()
        if key and key not in result:
            result.append(key)
    unknown = [key for key in result if not is_known_feature(key)]
    if unknown:
        logger.info(f"[JOBS] Storing unknown feature keys {unknown}; they add no categories")
    return result


class JobStateMachine:
    """The only writer of job status and lifecycle timestamps."""

    def __init__(
        self,
        store: JobStore,
        publisher: JobEventPublisher,
        storage: Optional[StorageService] = None,
    ):
        self.store = store
        self.publisher = publisher
        self.storage = storage
        self.ledger = ActivityLedger(store)
        self.audit = AuditService(store.db)

    @asynccontextmanager
    async def _transaction(self, job_id: UUID, operation: str):
        """Serialize on the job, commit once, undo everything on failure."""
        async with job_lock(job_id):
            try:
                yield
                await self.store.commit()
            except ConflictRejection as e:
                await self.store.rollback()
                logger.warning(f"[JOBS] {operation} on {job_id} rejected: {e.message}")
                raise
            except ValidationRejection as e:
                await self.store.rollback()
                logger.info(f"[JOBS] {operation} on {job_id} blocked: {e.message}")
                raise
            except JobWorkflowError:
                await self.store.rollback()
                raise
            except SQLAlchemyError as e:
                await self.store.rollback()
                logger.error(f"[JOBS] {operation} on {job_id} failed to persist: {e}")
                raise PersistenceFailure(
                    f"Could not save {operation} for job {job_id}"
                ) from e
            except asyncio.CancelledError:
                await self.store.rollback()
                logger.warning(f"[JOBS] {operation} on {job_id} cancelled, rolled back")
                raise

    # === Gate ===

    async def check_gate(
        self,
        job: CleaningJob,
        phase: PhotoPhase,
        attributes: Optional[JobAttributes] = None,
    ) -> GateResult:
        """Gate result from confirmed photo rows only."""
        captured = await self.store.read_photo_category_keys(job.id, phase)
        subject = attributes or JobAttributes(job.unit_type, list(job.features or []))
        return can_transition(subject, phase, captured)

    def _reject(self, result: GateResult, transition: str) -> ValidationRejection:
        if result.unit_type_required:
            message = f"Select a unit type before you {transition} the job"
        else:
            message = f"Missing photos: {', '.join(result.missing)}"
        return ValidationRejection(message, missing=result.missing, reason=result.reason)

    # === Creation and attributes ===

    async def create_job(
        self,
        actor: "AuthenticatedUser",
        job_id: Optional[UUID] = None,
        unit_type: Union[UnitType, str, None] = None,
        features: Optional[Iterable[str]] = None,
        assigned_worker_id: Optional[str] = None,
        requester_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> CleaningJob:
        """Create a job in `pending` and announce it to the assigning role."""
        if actor.role == ActorRole.REQUESTER:
            requester_id = actor.uid
        elif not is_administrator(actor):
            raise AuthorizationRejection("Only administrators and requesters can create jobs")

        values: dict[str, Any] = {
            "unit_type": parse_unit_type(unit_type),
            "features": normalize_features(features),
            "assigned_worker_id": assigned_worker_id,
            "requester_id": requester_id,
            "notes": notes,
        }
        if job_id is not None:
            values["id"] = job_id

        try:
            job = await self.store.create_job(**values)
            await self.audit.log_job_transition(
                AuditAction.JOB_CREATED,
                job.id,
                actor,
                {"assigned_worker_id": assigned_worker_id, "requester_id": requester_id},
            )
            await self.store.commit()
        except IntegrityError as e:
            await self.store.rollback()
            raise ConflictRejection(f"Job {job_id} already exists") from e
        except SQLAlchemyError as e:
            await self.store.rollback()
            logger.error(f"[JOBS] Could not create job: {e}")
            raise PersistenceFailure("Could not create job") from e

        logger.info(f"[JOBS] Job {job.id} created by {actor.uid}")
        await self.publisher.publish(JobEventType.CREATED, job)
        return job

    async def update_attributes(
        self,
        job_id: UUID,
        actor: "AuthenticatedUser",
        unit_type: Union[UnitType, str, None] = None,
        features: Optional[Iterable[str]] = None,
    ) -> CleaningJob:
        """Edit unit type and/or features.

        Administrators may edit at any state. The assigned worker may edit
        only while the job is pending. A `None` argument leaves that field
        unchanged.
        """
        async with self._transaction(job_id, "update_attributes"):
            job = await self.store.read_job(job_id, for_update=True)
            if not is_administrator(actor):
                require_assigned_worker(job, actor)
                if job.status != JobStatus.PENDING:
                    raise ConflictRejection(
                        "Job attributes are locked once the job has started",
                        current_status=job.status.value,
                    )

            patch: dict[str, Any] = {}
            if unit_type is not None:
                patch["unit_type"] = parse_unit_type(unit_type)
            if features is not None:
                patch["features"] = normalize_features(features)

            if patch:
                before = {
                    "unit_type": job.unit_type.value if job.unit_type else None,
                    "features": list(job.features or []),
                }
                await self.store.write_job(job, **patch)
                await self.audit.log_job_transition(
                    AuditAction.JOB_ATTRIBUTES_EDITED,
                    job_id,
                    actor,
                    {
                        "before": before,
                        "after": {
                            "unit_type": job.unit_type.value if job.unit_type else None,
                            "features": list(job.features or []),
                        },
                    },
                )

        if patch:
            await self.publisher.publish(JobEventType.UPDATED, job)
        return job

    # === Transitions ===

    async def start(
        self,
        job_id: UUID,
        actor: "AuthenticatedUser",
        unit_type: Union[UnitType, str, None] = None,
        features: Optional[Iterable[str]] = None,
    ) -> CleaningJob:
        """pending -> in_progress.

        `unit_type` and `features`, when given, are the worker's selection
        from the start checklist and are saved together with the transition.
        """
        changed = False
        async with self._transaction(job_id, "start"):
            job = await self.store.read_job(job_id, for_update=True)
            require_assigned_worker(job, actor)

            if job.status == JobStatus.IN_PROGRESS:
                logger.info(f"[JOBS] Duplicate start for job {job_id} ignored")
                return job
            if job.status != JobStatus.PENDING:
                raise ConflictRejection(
                    f"Cannot start a job that is {job.status.value}",
                    current_status=job.status.value,
                )

            attributes = JobAttributes(
                unit_type=parse_unit_type(unit_type) if unit_type is not None else job.unit_type,
                features=(
                    normalize_features(features)
                    if features is not None
                    else list(job.features or [])
                ),
            )
            result = await self.check_gate(job, PhotoPhase.BEFORE, attributes)
            if not result.allowed:
                raise self._reject(result, "start")

            now = utcnow()
            await self.store.write_job(
                job,
                status=JobStatus.IN_PROGRESS,
                unit_type=attributes.unit_type,
                features=attributes.features,
                started_at=now,
                completed_at=None,
                duration_minutes=None,
                duration_edited_at=None,
            )
            await self.ledger.record_start(job_id, at=now, actor_id=actor.uid)
            await self.audit.log_job_transition(
                AuditAction.JOB_STARTED,
                job_id,
                actor,
                {"unit_type": attributes.unit_type.value, "features": attributes.features},
            )
            changed = True

        if changed:
            logger.info(f"[JOBS] Job {job_id} started by {actor.uid}")
            await self.publisher.publish(JobEventType.STARTED, job)
        return job

    async def complete(self, job_id: UUID, actor: "AuthenticatedUser") -> CleaningJob:
        """in_progress -> completed, snapshotting the worked minutes."""
        changed = False
        async with self._transaction(job_id, "complete"):
            job = await self.store.read_job(job_id, for_update=True)
            require_assigned_worker(job, actor)

            if job.status == JobStatus.COMPLETED:
                logger.info(f"[JOBS] Duplicate complete for job {job_id} ignored")
                return job
            if job.status != JobStatus.IN_PROGRESS:
                raise ConflictRejection(
                    "Job has not been started",
                    current_status=job.status.value,
                )

            result = await self.check_gate(job, PhotoPhase.AFTER)
            if not result.allowed:
                raise self._reject(result, "complete")

            now = utcnow()
            await self.ledger.record_stop(job_id, at=now, actor_id=actor.uid)
            duration = await self.ledger.compute_duration_minutes(job_id)
            if duration is None and job.started_at is not None:
                duration = minutes_from_seconds(int((now - job.started_at).total_seconds()))

            await self.store.write_job(
                job,
                status=JobStatus.COMPLETED,
                completed_at=now,
                duration_minutes=duration,
            )
            await self.audit.log_job_transition(
                AuditAction.JOB_COMPLETED,
                job_id,
                actor,
                {"duration_minutes": duration},
            )
            changed = True

        if changed:
            logger.info(f"[JOBS] Job {job_id} completed in {job.duration_minutes} min")
            await self.publisher.publish(JobEventType.COMPLETED, job)
        return job

    async def edit_duration(
        self,
        job_id: UUID,
        actor: "AuthenticatedUser",
        minutes: int,
    ) -> CleaningJob:
        """Administrator correction of a completed job's worked minutes.

        The activity ledger is left alone. The corrected value replaces the
        completion snapshot and `duration_edited_at` marks it as manual.
        """
        require_administrator(actor)
        if isinstance(minutes, bool) or not isinstance(minutes, int) or minutes < 0:
            raise ValidationRejection(
                "Duration must be a whole number of minutes, zero or more",
                reason="invalid_duration",
            )

        async with self._transaction(job_id, "edit_duration"):
            job = await self.store.read_job(job_id, for_update=True)
            if job.status != JobStatus.COMPLETED:
                raise ConflictRejection(
                    "Only completed jobs have a duration to edit",
                    current_status=job.status.value,
                )

            previous = job.duration_minutes
            await self.store.write_job(
                job,
                duration_minutes=minutes,
                duration_edited_at=utcnow(),
            )
            await self.audit.log_job_transition(
                AuditAction.JOB_DURATION_EDITED,
                job_id,
                actor,
                {"before": previous, "after": minutes},
            )

        logger.info(f"[JOBS] Job {job_id} duration set to {minutes} min (was {previous}) by {actor.uid}")
        await self.publisher.publish(JobEventType.UPDATED, job, {"duration_edited": True})
        return job

    async def reset(self, job_id: UUID, actor: "AuthenticatedUser") -> CleaningJob:
        """Any status -> pending, wiping photos and the activity ledger.

        Destructive and administrator-only. Stored photo files are removed
        after the commit; a file that cannot be removed is logged and left.
        """
        require_administrator(actor)
        async with self._transaction(job_id, "reset"):
            job = await self.store.read_job(job_id, for_update=True)
            previous_status = job.status.value

            object_paths = await self.store.delete_photos(job_id)
            activities_deleted = await self.store.delete_activities(job_id)
            await self.store.write_job(
                job,
                status=JobStatus.PENDING,
                started_at=None,
                completed_at=None,
                duration_minutes=None,
                duration_edited_at=None,
            )
            await self.audit.log_job_reset(
                job_id,
                actor,
                previous_status=previous_status,
                photos_deleted=len(object_paths),
                activities_deleted=activities_deleted,
            )

        logger.warning(
            f"[JOBS] Job {job_id} reset from {previous_status} by {actor.uid}: "
            f"{len(object_paths)} photos, {activities_deleted} activity entries removed"
        )
        await self.publisher.publish(
            JobEventType.RESET,
            job,
            {"previous_status": previous_status},
        )
        await self._remove_blobs(object_paths)
        return job

    async def _remove_blobs(self, object_paths: list[str]) -> None:
        if self.storage is None or not object_paths:
            return
        results = await asyncio.gather(
            *(self.storage.delete(path) for path in object_paths),
            return_exceptions=True,
        )
        for path, outcome in zip(object_paths, results):
            if isinstance(outcome, Exception):
                logger.warning(f"[JOBS] Could not remove {path} after reset: {outcome}")
