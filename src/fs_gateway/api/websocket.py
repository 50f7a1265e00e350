# src/fs_gateway/api/websocket.py
"""
WebSocket route streaming unsolicited switch events to clients.
Each client gets its own subscription on the event dispatcher and receives
events as JSON objects ``{name, headers, body}``.
"""

import asyncio
from typing import List, Optional

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from .dependencies import get_dispatcher
from ..events.dispatcher import EventDispatcher
from ..utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()

def _event_filter(raw: Optional[str]) -> Optional[List[str]]:
    if not raw:
        return None
    names = [name.strip() for name in raw.split(",") if name.strip()]
    return names or None

@router.websocket("/ws/events")
async def event_stream(
    websocket: WebSocket,
    events: Optional[str] = None,
    dispatcher: EventDispatcher = Depends(get_dispatcher)
):
    """
    Stream switch events.

    Args:
        websocket: The WebSocket connection
        events: Optional comma separated Event-Name filter, e.g. ``CHANNEL_CREATE,CHANNEL_HANGUP``
        dispatcher: Event dispatcher created at startup
    """
    await websocket.accept()
    subscription = dispatcher.subscribe(_event_filter(events))
    logger.info("Event stream client connected",
                client=websocket.client.host if websocket.client else None,
                events=events or "all")

    # Detects the client going away while we are blocked on the next event
    async def _watch_disconnect() -> None:
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            pass
        finally:
            subscription.close()

    watcher = asyncio.create_task(_watch_disconnect())
    try:
        async for event in subscription:
            await websocket.send_json(event.to_dict())
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error("Event stream failed", error=str(e), exc_info=True)
    finally:
        subscription.close()
        watcher.cancel()
        try:
            await watcher
        except asyncio.CancelledError:
            pass
        if websocket.client_state == WebSocketState.CONNECTED:
            await websocket.close()
        logger.info("Event stream client disconnected")
