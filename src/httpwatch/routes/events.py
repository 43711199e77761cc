"""Websocket endpoint streaming file change notifications."""

from fastapi import APIRouter, WebSocket

from httpwatch.config import Settings
from httpwatch.events.delivery import DeliveryLoop

router = APIRouter(tags=["events"])

EVENTS_PATH = "/_/events"


@router.websocket(EVENTS_PATH)
async def events_websocket(websocket: WebSocket) -> None:
    """Push a ``file.change`` frame for every change the client sees.

    Frames are JSON text: ``{"type": "file.change", "data": "<path>"}``
    with the path relative to the watched directory, plus
    ``{"type": "ping"}`` keepalives. Frames sent by the client are read
    and ignored.

    Args:
        websocket: Incoming websocket connection.
    """
    state = websocket.app.state
    settings: Settings = state.settings

    loop = DeliveryLoop(
        websocket,
        state.broadcaster,
        keepalive_interval=settings.keepalive_interval,
        shutdown=state.shutdown,
    )
    await loop.run()
