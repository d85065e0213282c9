"""Role and assignment checks shared by the job services."""

from typing import TYPE_CHECKING

from app.core.exceptions import AuthorizationRejection
from app.models.enums import ActorRole
from app.models.job import CleaningJob

if TYPE_CHECKING:
    from app.core.security import AuthenticatedUser


def is_administrator(actor: "AuthenticatedUser") -> bool:
    return actor.role == ActorRole.ADMINISTRATOR


def is_assigned_worker(job: CleaningJob, actor: "AuthenticatedUser") -> bool:
    return (
        actor.role == ActorRole.WORKER
        and job.assigned_worker_id is not None
        and job.assigned_worker_id == actor.uid
    )


def require_administrator(actor: "AuthenticatedUser") -> None:
    if not is_administrator(actor):
        raise AuthorizationRejection("Administrator role required")


def require_assigned_worker(job: CleaningJob, actor: "AuthenticatedUser") -> None:
    """Only the assigned worker drives start and complete."""
    if not is_assigned_worker(job, actor):
        raise AuthorizationRejection("You are not assigned to this job")


def require_job_access(job: CleaningJob, actor: "AuthenticatedUser") -> None:
    """Workers see their assignments, requesters their requests, admins all."""
    if is_administrator(actor):
        return
    if actor.role == ActorRole.WORKER and job.assigned_worker_id == actor.uid:
        return
    if actor.role == ActorRole.REQUESTER and job.requester_id == actor.uid:
        return
    raise AuthorizationRejection("Access denied")
