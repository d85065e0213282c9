"""Enumeration types for the field job domain model."""

from enum import Enum


class ActorRole(str, Enum):
    """Role supplied by the identity provider."""
    WORKER = "worker"                # Executes the job on-site
    ADMINISTRATOR = "administrator"  # Schedules, assigns, resets
    REQUESTER = "requester"          # Asked for the job


class JobStatus(str, Enum):
    """Status of a cleaning job within this subsystem."""
    PENDING = "pending"          # Scheduled, not started
    IN_PROGRESS = "in_progress"  # Worker on-site, timer running
    COMPLETED = "completed"      # All after photos submitted


class UnitType(str, Enum):
    """Dwelling shape; drives bedroom categories."""
    BACHELOR = "bachelor"
    STUDIO = "studio"
    ONE_BED = "1_bed"
    TWO_BEDS = "2_beds"
    THREE_BEDS = "3_beds"
    FOUR_BEDS = "4_beds"
    HOUSE = "house"


class PhotoPhase(str, Enum):
    """When a photo was taken relative to the work."""
    BEFORE = "before"
    AFTER = "after"


class CategoryGroup(str, Enum):
    """Documentation checkpoint kind."""
    COMPARE = "compare"  # Before and after of the same item
    GENERAL = "general"  # Whole-area condition, after only


class ActivityAction(str, Enum):
    """Timer ledger actions."""
    START = "start"
    STOP = "stop"


class JobEventType(str, Enum):
    """Events broadcast to observers."""
    CREATED = "job.created"
    UPDATED = "job.updated"
    STARTED = "job.started"
    COMPLETED = "job.completed"
    RESET = "job.reset"
    PHOTO_UPLOADED = "photo.uploaded"
    PHOTO_DELETED = "photo.deleted"


class AuditAction(str, Enum):
    """Actions tracked in audit log."""
    JOB_CREATED = "job_created"
    JOB_ATTRIBUTES_EDITED = "job_attributes_edited"
    JOB_STARTED = "job_started"
    JOB_COMPLETED = "job_completed"
    JOB_DURATION_EDITED = "job_duration_edited"
    JOB_RESET = "job_reset"
    PHOTO_DELETED = "photo_deleted"
