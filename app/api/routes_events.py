"""Event Route - SSE-Stream der Änderungs-Events für das Dashboard."""

import asyncio
import json

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from app.api.dependencies import get_broadcaster
from app.config import limits
from app.services.event_bus import ChangeBroadcaster

router = APIRouter(tags=["Events"])


@router.get("/events")
async def sse_events(
    request: Request,
    broadcaster: ChangeBroadcaster = Depends(get_broadcaster),
):
    """SSE-Stream mit `<resource>_<action>` Events (z.B. call_log_created)."""
    queue = broadcaster.subscribe()

    async def event_generator():
        try:
            while True:
                # Client-Disconnect pruefen
                if await request.is_disconnected():
                    break

                try:
                    event = await asyncio.wait_for(
                        queue.get(), timeout=limits.EVENT_HEARTBEAT_SECONDS
                    )
                    event_type = event.get("event", "message")
                    data = json.dumps(event.get("data", {}), ensure_ascii=False, default=str)
                    yield f"event: {event_type}\ndata: {data}\n\n"
                except asyncio.TimeoutError:
                    # Heartbeat haelt die Connection offen
                    yield ": heartbeat\n\n"
        finally:
            broadcaster.unsubscribe(queue)

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
