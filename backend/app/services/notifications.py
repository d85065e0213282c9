"""Sync/notification layer: fan job changes out to observers.

Events are low-latency hints, not a delivery log. Observers apply them
optimistically and refetch the job when a `sequence` gap shows they missed
one. Per channel, events arrive in emission order; nothing is promised
across different jobs.
"""

import asyncio
import itertools
import logging
from abc import ABC, abstractmethod
from collections import OrderedDict, defaultdict
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, AsyncIterator, Optional
from uuid import UUID

import httpx

from app.core.config import get_settings
from app.core.database import utcnow
from app.models.enums import ActorRole, JobEventType, JobStatus

logger = logging.getLogger(__name__)

ADMIN_CHANNEL = "role:administrator"


def job_channel(job_id: UUID) -> str:
    return f"job:{job_id}"


def worker_channel(worker_id: str) -> str:
    return f"worker:{worker_id}"


def requester_channel(requester_id: str) -> str:
    return f"requester:{requester_id}"


@dataclass(frozen=True)
class JobEvent:
    """A change to one job, as observers see it."""

    type: JobEventType
    job_id: UUID
    sequence: int
    status: Optional[JobStatus] = None
    occurred_at: datetime = field(default_factory=utcnow)
    payload: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "job_id": str(self.job_id),
            "sequence": self.sequence,
            "status": self.status.value if self.status else None,
            "occurred_at": self.occurred_at.isoformat() + "Z",
            "payload": self.payload,
        }


class NotificationTransport(ABC):
    """Publish/subscribe capability the core depends on."""

    @abstractmethod
    async def publish(self, channel: str, event: dict[str, Any]) -> None:
        """Deliver an event to the channel's current subscribers."""
        pass

    @abstractmethod
    def subscribe(self, channel: str):
        """Async context manager yielding a Subscription."""
        pass


class Subscription:
    """One observer's view of a channel."""

    def __init__(self, channel: str, queue: asyncio.Queue):
        self.channel = channel
        self._queue = queue

    async def next_event(self, timeout: Optional[float] = None) -> Optional[dict[str, Any]]:
        """Next event, or None if nothing arrived within `timeout` seconds."""
        try:
            return await asyncio.wait_for(self._queue.get(), timeout)
        except asyncio.TimeoutError:
            return None

    def __aiter__(self):
        return self

    async def __anext__(self) -> dict[str, Any]:
        return await self._queue.get()


class InMemoryTransport(NotificationTransport):
    """Process-local fan-out with one bounded queue per subscriber.

    A subscriber that falls behind loses its oldest pending events rather
    than blocking publishers.
    """

    def __init__(self, queue_size: int = 100):
        self.queue_size = queue_size
        self._subscribers: dict[str, set[asyncio.Queue]] = defaultdict(set)

    def subscriber_count(self, channel: str) -> int:
        return len(self._subscribers.get(channel, ()))

    async def publish(self, channel: str, event: dict[str, Any]) -> None:
        for queue in list(self._subscribers.get(channel, ())):
            if queue.full():
                queue.get_nowait()
                logger.debug(f"[SYNC] Dropped oldest event for slow subscriber on {channel}")
            queue.put_nowait(event)

    @asynccontextmanager
    async def subscribe(self, channel: str) -> AsyncIterator[Subscription]:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        self._subscribers[channel].add(queue)
        logger.debug(f"[SYNC] Subscriber joined {channel}")
        try:
            yield Subscription(channel, queue)
        finally:
            self._subscribers[channel].discard(queue)
            if not self._subscribers[channel]:
                self._subscribers.pop(channel, None)
            logger.debug(f"[SYNC] Subscriber left {channel}")


class WebhookRelayTransport(InMemoryTransport):
    """Local fan-out plus a POST to an external realtime relay."""

    def __init__(self, relay_url: str, queue_size: int = 100, timeout: float = 5.0):
        super().__init__(queue_size=queue_size)
        self.relay_url = relay_url
        self.timeout = timeout

    async def publish(self, channel: str, event: dict[str, Any]) -> None:
        await super().publish(channel, event)
        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    self.relay_url,
                    json={"channel": channel, "event": event},
                    timeout=self.timeout,
                )
                if response.status_code not in (200, 201, 202, 204):
                    logger.warning(f"[SYNC] Relay rejected event: {response.status_code}")
        except httpx.HTTPError as e:
            logger.warning(f"[SYNC] Relay error: {e}")


def can_subscribe(
    role: ActorRole,
    actor_id: str,
    channel: str,
    assigned_worker_id: Optional[str] = None,
    requester_id: Optional[str] = None,
) -> bool:
    """Which scopes a caller may observe.

    Administrators see everything. Workers and requesters see their own
    scope and the jobs they are attached to.
    """
    if role == ActorRole.ADMINISTRATOR:
        return True
    if channel == ADMIN_CHANNEL:
        return False
    if role == ActorRole.WORKER and channel == worker_channel(actor_id):
        return True
    if role == ActorRole.REQUESTER and channel == requester_channel(actor_id):
        return True
    if channel.startswith("job:"):
        return actor_id in {assigned_worker_id, requester_id}
    return False


class JobEventPublisher:
    """Builds job events and publishes them to every interested scope.

    Sequence counters are kept for the `max_tracked_jobs` most recently
    active jobs. A job that falls out starts again at 1; observers treat
    any sequence that does not follow the last one as a gap and refetch.
    """

    def __init__(self, transport: NotificationTransport, max_tracked_jobs: int = 10_000):
        self.transport = transport
        self.max_tracked_jobs = max_tracked_jobs
        self._sequences: OrderedDict[UUID, itertools.count] = OrderedDict()

    def _next_sequence(self, job_id: UUID) -> int:
        counter = self._sequences.get(job_id)
        if counter is None:
            counter = self._sequences[job_id] = itertools.count(1)
            while len(self._sequences) > self.max_tracked_jobs:
                self._sequences.popitem(last=False)
        else:
            self._sequences.move_to_end(job_id)
        return next(counter)

    def tracked_jobs(self) -> int:
        return len(self._sequences)

    def channels_for(self, event_type: JobEventType, job) -> list[str]:
        channels = [job_channel(job.id), ADMIN_CHANNEL]
        if event_type == JobEventType.CREATED:
            # Creation is announced to the assigning role only
            return channels
        if job.assigned_worker_id:
            channels.append(worker_channel(job.assigned_worker_id))
        if job.requester_id:
            channels.append(requester_channel(job.requester_id))
        return channels

    async def publish(
        self,
        event_type: JobEventType,
        job,
        payload: Optional[dict[str, Any]] = None,
    ) -> JobEvent:
        """Publish after commit. Transport failures are logged, never raised."""
        event = JobEvent(
            type=event_type,
            job_id=job.id,
            sequence=self._next_sequence(job.id),
            status=job.status,
            payload={
                "unit_type": job.unit_type.value if job.unit_type else None,
                "duration_minutes": job.duration_minutes,
                **(payload or {}),
            },
        )
        message = event.to_dict()
        for channel in self.channels_for(event_type, job):
            try:
                await self.transport.publish(channel, message)
            except Exception as e:
                logger.warning(f"[SYNC] Publish to {channel} failed: {e}")
        return event


# Singleton
_transport_instance: Optional[NotificationTransport] = None
_publisher_instance: Optional[JobEventPublisher] = None


def get_notification_transport() -> NotificationTransport:
    """Get the notification transport for this process."""
    global _transport_instance
    if _transport_instance is None:
        settings = get_settings()
        if settings.realtime_webhook_url:
            _transport_instance = WebhookRelayTransport(
                settings.realtime_webhook_url,
                queue_size=settings.realtime_queue_size,
            )
        else:
            _transport_instance = InMemoryTransport(queue_size=settings.realtime_queue_size)
    return _transport_instance


def get_event_publisher() -> JobEventPublisher:
    """Get the job event publisher for this process."""
    global _publisher_instance
    if _publisher_instance is None:
        _publisher_instance = JobEventPublisher(get_notification_transport())
    return _publisher_instance
