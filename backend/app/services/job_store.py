"""Persistence for jobs, photos and activity entries.

Thin wrapper over an AsyncSession. Nothing here commits on its own except
`commit()`; callers decide the transaction boundary.
"""

import uuid
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import utcnow
from app.core.exceptions import JobNotFound
from app.models.enums import ActivityAction, JobStatus, PhotoPhase
from app.models.job import CleaningJob, JobActivity, JobPhoto


class JobStore:
    """Data access for the job workflow."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # === Jobs ===

    async def create_job(self, **values: Any) -> CleaningJob:
        job = CleaningJob(
            id=values.pop("id", None) or uuid.uuid4(),
            status=JobStatus.PENDING,
            features=list(values.pop("features", None) or []),
            **values,
        )
        self.db.add(job)
        await self.db.flush()
        return job

    async def read_job(self, job_id: UUID, for_update: bool = False) -> CleaningJob:
        """Load a job or raise JobNotFound.

        `for_update` takes a row lock on backends that support it.
        """
        query = select(CleaningJob).where(CleaningJob.id == job_id)
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        job = result.scalar_one_or_none()
        if job is None:
            raise JobNotFound(job_id)
        return job

    async def refresh_job(self, job: CleaningJob) -> CleaningJob:
        await self.db.refresh(job)
        return job

    async def write_job(self, job: CleaningJob, **patch: Any) -> CleaningJob:
        for field, value in patch.items():
            setattr(job, field, value)
        job.updated_at = utcnow()
        await self.db.flush()
        return job

    async def list_jobs(
        self,
        status: Optional[JobStatus] = None,
        assigned_worker_id: Optional[str] = None,
        requester_id: Optional[str] = None,
    ) -> list[CleaningJob]:
        query = select(CleaningJob).order_by(CleaningJob.created_at.desc())
        if status:
            query = query.where(CleaningJob.status == status)
        if assigned_worker_id:
            query = query.where(CleaningJob.assigned_worker_id == assigned_worker_id)
        if requester_id:
            query = query.where(CleaningJob.requester_id == requester_id)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    # === Activity ===

    async def append_activity(
        self,
        job_id: UUID,
        action: ActivityAction,
        at=None,
        notes: Optional[str] = None,
        duration_seconds: Optional[int] = None,
        actor_id: Optional[str] = None,
    ) -> JobActivity:
        entry = JobActivity(
            job_id=job_id,
            action=action,
            at=at or utcnow(),
            notes=notes,
            duration_seconds=duration_seconds,
            actor_id=actor_id,
        )
        self.db.add(entry)
        await self.db.flush()
        return entry

    async def read_activities(self, job_id: UUID) -> list[JobActivity]:
        """Entries for a job, oldest first."""
        result = await self.db.execute(
            select(JobActivity)
            .where(JobActivity.job_id == job_id)
            .order_by(JobActivity.at)
        )
        return list(result.scalars().all())

    async def delete_activities(self, job_id: UUID) -> int:
        result = await self.db.execute(
            delete(JobActivity).where(JobActivity.job_id == job_id)
        )
        return result.rowcount or 0

    # === Photos ===

    async def write_photo(self, photo: JobPhoto) -> JobPhoto:
        self.db.add(photo)
        await self.db.flush()
        return photo

    async def read_photo(self, job_id: UUID, photo_id: UUID) -> Optional[JobPhoto]:
        result = await self.db.execute(
            select(JobPhoto).where(JobPhoto.id == photo_id, JobPhoto.job_id == job_id)
        )
        return result.scalar_one_or_none()

    async def list_photos(
        self,
        job_id: UUID,
        phase: Optional[PhotoPhase] = None,
    ) -> list[JobPhoto]:
        query = (
            select(JobPhoto)
            .where(JobPhoto.job_id == job_id)
            .order_by(JobPhoto.uploaded_at)
        )
        if phase:
            query = query.where(JobPhoto.phase == phase)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def read_photo_counts(self, job_id: UUID, phase: PhotoPhase) -> dict[str, int]:
        """Photo count per category key for one phase."""
        result = await self.db.execute(
            select(JobPhoto.category_key, func.count(JobPhoto.id))
            .where(JobPhoto.job_id == job_id, JobPhoto.phase == phase)
            .group_by(JobPhoto.category_key)
        )
        return {key: count for key, count in result.all()}

    async def read_photo_category_keys(self, job_id: UUID, phase: PhotoPhase) -> set[str]:
        """Category keys with at least one photo for the phase."""
        return set(await self.read_photo_counts(job_id, phase))

    async def delete_photo(self, photo: JobPhoto) -> None:
        await self.db.delete(photo)
        await self.db.flush()

    async def delete_photos(self, job_id: UUID) -> list[str]:
        """Delete every photo record of a job, returning their object paths."""
        paths = [p.object_path for p in await self.list_photos(job_id)]
        await self.db.execute(delete(JobPhoto).where(JobPhoto.job_id == job_id))
        return paths

    # === Transaction ===

    async def commit(self) -> None:
        await self.db.commit()

    async def rollback(self) -> None:
        await self.db.rollback()
