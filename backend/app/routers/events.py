"""Server-Sent Events streams of job changes."""

import json
import logging
from typing import Any, AsyncGenerator
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import StreamingResponse

from app.core.security import AuthenticatedUser, get_current_user
from app.models.enums import ActorRole
from app.routers.jobs import get_job_store, get_job_with_auth
from app.services.job_store import JobStore
from app.services.notifications import (
    ADMIN_CHANNEL,
    NotificationTransport,
    can_subscribe,
    get_notification_transport,
    job_channel,
    requester_channel,
    worker_channel,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["events"])

KEEPALIVE_SECONDS = 15.0

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "X-Accel-Buffering": "no",  # Disable nginx buffering
    "Connection": "keep-alive",
}


def format_event(event: dict[str, Any]) -> str:
    return f"id: {event['sequence']}\nevent: {event['type']}\ndata: {json.dumps(event)}\n\n"


async def event_stream(
    request: Request,
    transport: NotificationTransport,
    channel: str,
) -> AsyncGenerator[str, None]:
    """Yield SSE frames for one channel until the client goes away."""
    async with transport.subscribe(channel) as subscription:
        logger.info(f"[SYNC] SSE subscriber connected ({channel})")
        yield f"event: connected\ndata: {json.dumps({'channel': channel})}\n\n"

        while not await request.is_disconnected():
            event = await subscription.next_event(timeout=KEEPALIVE_SECONDS)
            if event is None:
                yield ": keepalive\n\n"
            else:
                yield format_event(event)

    logger.info(f"[SYNC] SSE subscriber disconnected ({channel})")


def scope_channel(current_user: AuthenticatedUser) -> str:
    """The caller's own scope: everything for admins, assignments or requests otherwise."""
    if current_user.role == ActorRole.ADMINISTRATOR:
        return ADMIN_CHANNEL
    if current_user.role == ActorRole.WORKER:
        return worker_channel(current_user.uid)
    return requester_channel(current_user.uid)


@router.get("/events")
async def stream_scope_events(
    request: Request,
    transport: NotificationTransport = Depends(get_notification_transport),
    current_user: AuthenticatedUser = Depends(get_current_user),
):
    """Stream changes to every job in the caller's scope."""
    channel = scope_channel(current_user)
    return StreamingResponse(
        event_stream(request, transport, channel),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.get("/jobs/{job_id}/events")
async def stream_job_events(
    job_id: UUID,
    request: Request,
    store: JobStore = Depends(get_job_store),
    transport: NotificationTransport = Depends(get_notification_transport),
    current_user: AuthenticatedUser = Depends(get_current_user),
):
    """Stream changes to one job."""
    job = await get_job_with_auth(job_id, store, current_user)
    channel = job_channel(job.id)
    if not can_subscribe(
        current_user.role,
        current_user.uid,
        channel,
        assigned_worker_id=job.assigned_worker_id,
        requester_id=job.requester_id,
    ):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")

    return StreamingResponse(
        event_stream(request, transport, channel),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
