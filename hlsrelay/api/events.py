"""
Lifecycle event stream (Server-Sent Events).

Each connected observer gets its own bus subscription for as long as the
HTTP connection stays open. When the client disconnects Starlette cancels
the response generator, which releases the subscription before anything
else happens.
"""

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse

from hlsrelay.events.bus import EventBus
from hlsrelay.events.models import LifecycleEvent

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Events"])

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def format_sse(event: LifecycleEvent) -> str:
    """Encode one lifecycle event as an SSE frame."""
    return f"event: {event.kind.value}\ndata: {json.dumps(event.to_dict())}\n\n"


async def event_stream(
    bus: EventBus,
    label: str,
    keepalive_seconds: float = 15.0,
) -> AsyncIterator[str]:
    """
    Yield SSE frames for one observer until its subscription closes.

    A comment frame is sent whenever ``keepalive_seconds`` pass without an
    event so proxies keep the connection open.
    """
    async with bus.listen(label=label) as subscription:
        yield ": connected\n\n"
        while True:
            try:
                event = await subscription.get(timeout=keepalive_seconds)
            except asyncio.TimeoutError:
                yield ": keepalive\n\n"
                continue
            if event is None:
                logger.info(f"[SSE] Client channel closed for {label}")
                break
            logger.debug(
                f"[SSE] Sending event to client {label}: "
                f"type={event.kind.value}, channelId={event.channel_id}"
            )
            yield format_sse(event)


@router.get("/events")
async def stream_events(request: Request) -> StreamingResponse:
    """Stream channel lifecycle events (SSE)."""
    bus: EventBus = request.app.state.bus
    config = request.app.state.config

    if request.client:
        label = f"{request.client.host}:{request.client.port}"
    else:
        label = "unknown"
    logger.info(f"[SSE] New client connecting from {label}")

    return StreamingResponse(
        event_stream(bus, label, config.events.keepalive_seconds),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.get("/api/events/stats")
async def event_stats(request: Request) -> dict[str, Any]:
    """Subscriber and delivery statistics."""
    return request.app.state.bus.get_stats()
