import logging
from typing import Any

from fastapi import WebSocket

logger = logging.getLogger(__name__)

ATTENDANCE_UPDATED = "attendance-updated"
OTP_ENABLED = "otp-enabled"


class EventBroadcaster:
    """
    Fan-out of change notifications to connected clients.

    Messages carry no state of their own; clients re-poll the API when they
    receive one.
    """

    def __init__(self) -> None:
        self._connections: set[WebSocket] = set()

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self._connections.add(websocket)
        logger.info("Client connected (%s open)", len(self._connections))

    def disconnect(self, websocket: WebSocket) -> None:
        self._connections.discard(websocket)
        logger.info("Client disconnected (%s open)", len(self._connections))

    async def broadcast(self, event: str, data: dict[str, Any] | None = None) -> int:
        message = {"event": event, "data": data or {}}
        delivered = 0
        for websocket in list(self._connections):
            try:
                await websocket.send_json(message)
                delivered += 1
            except Exception as e:
                logger.warning("Dropping client after failed send of %s: %s", event, e)
                self._connections.discard(websocket)
        return delivered


broadcaster = EventBroadcaster()
