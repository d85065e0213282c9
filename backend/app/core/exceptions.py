"""Domain exceptions for the job workflow.

Services raise these; routers translate them to HTTP responses. Only
ConflictRejection and PersistenceFailure are worth a warning or error log,
the others are part of the guided workflow.
"""

from typing import Optional, Sequence
from uuid import UUID


class JobWorkflowError(Exception):
    """Base exception for the job workflow."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class JobNotFound(JobWorkflowError):
    def __init__(self, job_id: UUID):
        self.job_id = job_id
        super().__init__(f"Job {job_id} not found")


class PhotoNotFound(JobWorkflowError):
    def __init__(self, photo_id: UUID):
        self.photo_id = photo_id
        super().__init__(f"Photo {photo_id} not found")


class AuthorizationRejection(JobWorkflowError):
    """The caller's role or assignment does not allow the action."""


class ValidationRejection(JobWorkflowError):
    """A transition was attempted before its documentation was complete.

    `missing` lists the category keys that still need a photo. `reason` is a
    short machine-readable code (e.g. "missing_photos", "unit_type_required").
    """

    def __init__(
        self,
        message: str,
        missing: Sequence[str] = (),
        reason: str = "missing_photos",
    ):
        self.missing = list(missing)
        self.reason = reason
        super().__init__(message)


class ConflictRejection(JobWorkflowError):
    """The job's state no longer matches the caller's precondition."""

    def __init__(self, message: str, current_status: Optional[str] = None):
        self.current_status = current_status
        super().__init__(message)


class PersistenceFailure(JobWorkflowError):
    """Writing the new state failed after validation passed.

    The caller must re-fetch the job before retrying.
    """


class UploadFailure(JobWorkflowError):
    """A single file failed to normalize or reach storage."""

    def __init__(
        self,
        message: str,
        category_key: Optional[str] = None,
        filename: Optional[str] = None,
        timed_out: bool = False,
    ):
        self.category_key = category_key
        self.filename = filename
        self.timed_out = timed_out
        super().__init__(message)
