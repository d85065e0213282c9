"""Audit logging service."""

from typing import TYPE_CHECKING, Any, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.audit import AuditLog
from app.models.enums import AuditAction

if TYPE_CHECKING:
    from app.core.security import AuthenticatedUser


class AuditService:
    """Service for creating audit log entries.

    Entries join the caller's transaction; they are committed (or rolled
    back) together with the change they describe.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def log(
        self,
        action: AuditAction,
        resource_type: str,
        resource_id: UUID,
        actor: Optional["AuthenticatedUser"] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> AuditLog:
        """Create an audit log entry."""
        entry = AuditLog(
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            actor_id=actor.uid if actor else None,
            actor_role=actor.role.value if actor and actor.role else None,
            details=details or {},
        )
        self.db.add(entry)
        await self.db.flush()
        return entry

    async def log_job_transition(
        self,
        action: AuditAction,
        job_id: UUID,
        actor: "AuthenticatedUser",
        details: Optional[dict[str, Any]] = None,
    ) -> AuditLog:
        """Log a start, complete or attribute edit."""
        return await self.log(
            action=action,
            resource_type="cleaning_job",
            resource_id=job_id,
            actor=actor,
            details=details,
        )

    async def log_job_reset(
        self,
        job_id: UUID,
        actor: "AuthenticatedUser",
        previous_status: str,
        photos_deleted: int,
        activities_deleted: int,
    ) -> AuditLog:
        """Log a destructive reset back to pending."""
        return await self.log(
            action=AuditAction.JOB_RESET,
            resource_type="cleaning_job",
            resource_id=job_id,
            actor=actor,
            details={
                "previous_status": previous_status,
                "photos_deleted": photos_deleted,
                "activities_deleted": activities_deleted,
            },
        )

    async def log_photo_deleted(
        self,
        photo_id: UUID,
        job_id: UUID,
        actor: "AuthenticatedUser",
        category_key: str,
        object_path: str,
    ) -> AuditLog:
        """Log removal of a single photo."""
        return await self.log(
            action=AuditAction.PHOTO_DELETED,
            resource_type="job_photo",
            resource_id=photo_id,
            actor=actor,
            details={
                "job_id": str(job_id),
                "category_key": category_key,
                "object_path": object_path,
            },
        )
