"""SQLAlchemy models for the field job service."""

from app.models.audit import AuditLog
from app.models.job import CleaningJob, JobPhoto, JobActivity

__all__ = [
    "AuditLog",
    "CleaningJob",
    "JobPhoto",
    "JobActivity",
]
