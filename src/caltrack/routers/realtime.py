"""Real-time ``records-updated`` channel.

Two transports carry the same events:
- WebSocket ``/ws``: JSON frames ``{"event": "records-updated", "data": {...}}``
- Server-Sent Events ``/api/events``: event name ``records-updated``

Events only say what changed; viewers re-fetch ``/api/records``.
"""

import asyncio
import json
import logging

from fastapi import APIRouter, Depends, Request, WebSocket
from sse_starlette.sse import EventSourceResponse

from ..dependencies import get_broadcaster, get_ws_broadcaster
from ..services.broadcaster import RECORDS_UPDATED, ChangeBroadcaster, Subscription

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])

# Seconds between SSE keep-alive comments
SSE_PING_INTERVAL = 15

# Close codes: going away (shutdown) / try again later (viewer fell behind)
WS_CLOSE_SHUTDOWN = 1001
WS_CLOSE_OVERFLOW = 1013


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    """Consume client frames until the socket closes; viewers never send anything meaningful."""
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return


@router.websocket("/ws")
async def records_socket(
    websocket: WebSocket,
    broadcaster: ChangeBroadcaster = Depends(get_ws_broadcaster)
):
    await websocket.accept()
    subscription = broadcaster.subscribe()
    disconnected = asyncio.ensure_future(_wait_for_disconnect(websocket))
    client_gone = False

    try:
        # Subscribed before this frame goes out, so nothing published after it is missed
        await websocket.send_json({"event": "connected"})

        while True:
            next_event = asyncio.ensure_future(subscription.get())
            await asyncio.wait({next_event, disconnected}, return_when=asyncio.FIRST_COMPLETED)

            if disconnected.done():
                next_event.cancel()
                client_gone = True
                break

            event = next_event.result()
            if event is None:
                break
            await websocket.send_json({"event": RECORDS_UPDATED, "data": event})
    finally:
        subscription.close()
        disconnected.cancel()

    if not client_gone:
        code = WS_CLOSE_OVERFLOW if subscription.overflowed else WS_CLOSE_SHUTDOWN
        logger.info(f"Closing viewer socket (code {code})")
        await websocket.close(code=code)


async def sse_event_stream(request: Request, subscription: Subscription):
    """Yield one ``records-updated`` SSE message per broadcast until the client leaves."""
    try:
        async for event in subscription:
            if await request.is_disconnected():
                break
            yield {"event": RECORDS_UPDATED, "data": json.dumps(event)}
    finally:
        subscription.close()


@router.get("/api/events")
async def records_events(
    request: Request,
    broadcaster: ChangeBroadcaster = Depends(get_broadcaster)
):
    """Server-Sent Events stream of record changes."""
    subscription = broadcaster.subscribe()
    return EventSourceResponse(sse_event_stream(request, subscription), ping=SSE_PING_INTERVAL)
