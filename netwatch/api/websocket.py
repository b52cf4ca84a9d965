"""WebSocket endpoint streaming device snapshots to subscribers."""

import logging

from fastapi import APIRouter, WebSocket
from starlette.websockets import WebSocketState

from netwatch.core.exceptions import BroadcastSendError, StorageError

logger = logging.getLogger(__name__)

router = APIRouter()


class WebSocketSubscriber:
    """Adapts a FastAPI WebSocket to the broadcast hub's subscriber interface."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket

    @property
    def is_open(self) -> bool:
        return (
            self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    async def send_text(self, data: str) -> None:
        try:
            await self.websocket.send_text(data)
        except Exception as e:
            raise BroadcastSendError(f"Send to {self.websocket.client} failed: {e}") from e

    def __repr__(self) -> str:
        return f"WebSocketSubscriber({self.websocket.client})"


@router.websocket("/ws")
async def device_stream(websocket: WebSocket):
    hub = websocket.app.state.hub
    await websocket.accept()
    subscriber = WebSocketSubscriber(websocket)
    logger.info(f"WebSocket client connected: {websocket.client}")

    try:
        if not await hub.subscribe(subscriber):
            return
    except StorageError as e:
        logger.error(f"Could not load snapshot for new subscriber: {e}")
        await websocket.close(code=1011)
        return

    try:
        # Text and binary frames are both ignored; only the disconnect matters
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
        logger.info(f"WebSocket client disconnected: {websocket.client}")
    finally:
        await hub.unsubscribe(subscriber)
