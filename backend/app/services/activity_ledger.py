"""Activity ledger: start/stop log behind the job timer.

Elapsed time is never stored. It is recomputed from the most recent
unmatched start, so a client that reloads (or switches device) rebuilds the
running timer from the job id alone. The only stored duration is the
`duration_minutes` snapshot the state machine takes at completion.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional, Protocol
from uuid import UUID

from app.core.database import utcnow
from app.models.enums import ActivityAction, JobStatus
from app.models.job import CleaningJob, JobActivity
from app.services.job_store import JobStore

logger = logging.getLogger(__name__)


class LedgerEntry(Protocol):
    action: ActivityAction
    at: datetime


def _ordered(entries: Iterable[LedgerEntry]) -> list[LedgerEntry]:
    return sorted(entries, key=lambda e: e.at)


def unmatched_start(entries: Iterable[LedgerEntry]) -> Optional[datetime]:
    """Timestamp of the most recent start with no later stop."""
    open_start = None
    for entry in _ordered(entries):
        if entry.action == ActivityAction.START:
            open_start = entry.at
        elif entry.action == ActivityAction.STOP:
            open_start = None
    return open_start


def elapsed_seconds_from(entries: Iterable[LedgerEntry], now: datetime) -> int:
    """Seconds since the running start, or 0 when the timer is not running."""
    started = unmatched_start(entries)
    if started is None:
        return 0
    return max(0, int((now - started).total_seconds()))


def total_duration_seconds_from(entries: Iterable[LedgerEntry]) -> Optional[int]:
    """Sum of every start/stop pair.

    A start followed by another start restarts the open interval; a stop
    with no open start is ignored. Returns None when no pair was closed.
    """
    total = 0
    closed = 0
    open_start = None
    for entry in _ordered(entries):
        if entry.action == ActivityAction.START:
            open_start = entry.at
        elif entry.action == ActivityAction.STOP and open_start is not None:
            total += max(0, int((entry.at - open_start).total_seconds()))
            closed += 1
            open_start = None
    return total if closed else None


def minutes_from_seconds(seconds: Optional[int]) -> Optional[int]:
    """Truncate to whole minutes, never below one for a worked job."""
    if seconds is None:
        return None
    return max(seconds // 60, 1)


@dataclass(frozen=True)
class TimerSnapshot:
    job_id: UUID
    running: bool
    started_at: Optional[datetime]
    elapsed_seconds: int
    duration_minutes: Optional[int]


class ActivityLedger:
    """Append-only start/stop record per job."""

    def __init__(self, store: JobStore):
        self.store = store

    async def record_start(
        self,
        job_id: UUID,
        at: Optional[datetime] = None,
        notes: Optional[str] = "Job started",
        actor_id: Optional[str] = None,
    ) -> JobActivity:
        return await self.store.append_activity(
            job_id,
            ActivityAction.START,
            at=at or utcnow(),
            notes=notes,
            actor_id=actor_id,
        )

    async def record_stop(
        self,
        job_id: UUID,
        at: Optional[datetime] = None,
        actor_id: Optional[str] = None,
    ) -> JobActivity:
        """Close the running interval, noting how long it lasted."""
        at = at or utcnow()
        started = unmatched_start(await self.store.read_activities(job_id))
        duration_seconds = None
        notes = None
        if started is not None:
            duration_seconds = max(0, int((at - started).total_seconds()))
            notes = f"Job completed in {minutes_from_seconds(duration_seconds)} min."
        else:
            logger.warning(f"[LEDGER] Stop recorded for job {job_id} with no open start")

        return await self.store.append_activity(
            job_id,
            ActivityAction.STOP,
            at=at,
            notes=notes,
            duration_seconds=duration_seconds,
            actor_id=actor_id,
        )

    async def list_entries(self, job_id: UUID) -> list[JobActivity]:
        return await self.store.read_activities(job_id)

    async def last_start(self, job_id: UUID) -> Optional[datetime]:
        return unmatched_start(await self.store.read_activities(job_id))

    async def elapsed_seconds(self, job_id: UUID, now: Optional[datetime] = None) -> int:
        entries = await self.store.read_activities(job_id)
        return elapsed_seconds_from(entries, now or utcnow())

    async def compute_duration_minutes(self, job_id: UUID) -> Optional[int]:
        """Fresh projection over the ledger, used when completing."""
        entries = await self.store.read_activities(job_id)
        return minutes_from_seconds(total_duration_seconds_from(entries))

    async def total_duration_minutes(self, job_id: UUID) -> Optional[int]:
        """Completion snapshot if taken, otherwise the ledger projection.

        Once a job is completed the snapshot wins, so entries appended
        afterwards never change what is reported.
        """
        job = await self.store.read_job(job_id)
        if job.status == JobStatus.COMPLETED and job.duration_minutes is not None:
            return job.duration_minutes
        return await self.compute_duration_minutes(job_id)

    async def timer(self, job: CleaningJob, now: Optional[datetime] = None) -> TimerSnapshot:
        """Everything a client needs to redraw the timer after a reload."""
        entries = await self.store.read_activities(job.id)
        started = unmatched_start(entries)
        running = job.status == JobStatus.IN_PROGRESS and started is not None
        return TimerSnapshot(
            job_id=job.id,
            running=running,
            started_at=started if running else job.started_at,
            elapsed_seconds=elapsed_seconds_from(entries, now or utcnow()) if running else 0,
            duration_minutes=job.duration_minutes,
        )
