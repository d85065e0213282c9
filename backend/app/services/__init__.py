"""Services for Field Jobs."""

from app.services.storage import StorageService, get_storage_service
from app.services.audit import AuditService
from app.services.job_store import JobStore
from app.services.activity_ledger import ActivityLedger
from app.services.notifications import JobEventPublisher, get_event_publisher
from app.services.state_machine import JobStateMachine
from app.services.uploads import UploadPipeline

__all__ = [
    "StorageService",
    "get_storage_service",
    "AuditService",
    "JobStore",
    "ActivityLedger",
    "JobEventPublisher",
    "get_event_publisher",
    "JobStateMachine",
    "UploadPipeline",
]
