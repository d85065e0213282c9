"""Cleaning job model with its photo evidence and activity ledger."""

import uuid
from datetime import datetime
from typing import Optional, List

from sqlalchemy import (
    JSON,
    String,
    DateTime,
    ForeignKey,
    Enum as SQLEnum,
    Text,
    Integer,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base, utcnow
from app.models.enums import ActivityAction, JobStatus, PhotoPhase, UnitType


def _enum_values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


class CleaningJob(Base):
    """A schedulable unit of field work with before/after documentation.

    Created in `pending` by the scheduling side. Status and the timestamps
    below are only ever written by the job state machine.
    """

    __tablename__ = "cleaning_jobs"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    status: Mapped[JobStatus] = mapped_column(
        SQLEnum(JobStatus, name="jobstatus", values_callable=_enum_values),
        default=JobStatus.PENDING,
        nullable=False,
        index=True,
    )

    # Dwelling shape and amenities; together they decide which photos are required
    unit_type: Mapped[Optional[UnitType]] = mapped_column(
        SQLEnum(UnitType, name="unittype", values_callable=_enum_values),
        nullable=True,
    )
    features: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)

    # Assignment (identities come from the auth provider)
    assigned_worker_id: Mapped[Optional[str]] = mapped_column(
        String(128), nullable=True, index=True
    )
    requester_id: Mapped[Optional[str]] = mapped_column(
        String(128), nullable=True, index=True
    )

    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    # Snapshot taken once at completion, corrected by an administrator
    duration_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    duration_edited_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )

    # Relationships
    photos: Mapped[List["JobPhoto"]] = relationship(
        "JobPhoto",
        back_populates="job",
        cascade="all, delete-orphan",
        order_by="JobPhoto.uploaded_at",
    )
    activities: Mapped[List["JobActivity"]] = relationship(
        "JobActivity",
        back_populates="job",
        cascade="all, delete-orphan",
        order_by="JobActivity.at",
    )


class JobPhoto(Base):
    """A confirmed photo for one documentation category.

    Rows only exist for uploads that reached storage; pending client-side
    previews never get here.
    """

    __tablename__ = "job_photos"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    job_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("cleaning_jobs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    category_key: Mapped[str] = mapped_column(String(64), nullable=False)
    phase: Mapped[PhotoPhase] = mapped_column(
        SQLEnum(PhotoPhase, name="photophase", values_callable=_enum_values),
        nullable=False,
    )

    # Storage
    object_path: Mapped[str] = mapped_column(String(500), nullable=False)
    storage_ref: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    file_hash: Mapped[str] = mapped_column(String(64), nullable=False)  # SHA-256
    mime_type: Mapped[str] = mapped_column(String(100), default="image/jpeg")
    file_size_bytes: Mapped[int] = mapped_column(Integer, nullable=False)
    original_filename: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    uploaded_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    uploaded_by_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    # Relationships
    job: Mapped["CleaningJob"] = relationship("CleaningJob", back_populates="photos")


class JobActivity(Base):
    """Append-only start/stop entry for the job timer."""

    __tablename__ = "job_activity_log"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    job_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("cleaning_jobs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    action: Mapped[ActivityAction] = mapped_column(
        SQLEnum(ActivityAction, name="activityaction", values_callable=_enum_values),
        nullable=False,
    )
    at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # Only set on stop entries: seconds since the matching start
    duration_seconds: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    actor_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    # Relationships
    job: Mapped["CleaningJob"] = relationship("CleaningJob", back_populates="activities")
