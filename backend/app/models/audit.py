"""AuditLog model."""

import uuid
from datetime import datetime
from typing import Optional, Any

from sqlalchemy import JSON, String, DateTime, Enum as SQLEnum, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base, utcnow
from app.models.enums import AuditAction


class AuditLog(Base):
    """Immutable audit log for job workflow actions.

    Outlives the rows it describes: a reset wipes photos and activity but
    the record of who reset the job stays here.
    """

    __tablename__ = "audit_log"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    actor_id: Mapped[Optional[str]] = mapped_column(
        String(128),
        nullable=True,
        index=True,
    )
    actor_role: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    action: Mapped[AuditAction] = mapped_column(
        SQLEnum(AuditAction, name="auditaction", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        index=True,
    )

    # Resource being acted upon
    resource_type: Mapped[str] = mapped_column(String(50), nullable=False)
    resource_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)

    # Details
    details: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
