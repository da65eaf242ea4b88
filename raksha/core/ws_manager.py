"""WebSocket connections used to push check-in events to the owner's devices."""

import json
import logging
from typing import Any

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Tracks open WebSocket connections per owner and pushes JSON events."""

    def __init__(self) -> None:
        self._connections: dict[int, set[WebSocket]] = {}

    async def connect(self, websocket: WebSocket, owner_id: int) -> None:
        await websocket.accept()
        self._connections.setdefault(owner_id, set()).add(websocket)
        logger.info("WS connected: owner=%s (total=%s)", owner_id, self.total_connections)

    def disconnect(self, websocket: WebSocket, owner_id: int) -> None:
        conns = self._connections.get(owner_id)
        if conns:
            conns.discard(websocket)
            if not conns:
                del self._connections[owner_id]
        logger.info("WS disconnected: owner=%s (total=%s)", owner_id, self.total_connections)

    def is_connected(self, owner_id: int) -> bool:
        return bool(self._connections.get(owner_id))

    async def send_to_user(self, owner_id: int, event: str, data: Any) -> int:
        """Push an event to every device of the owner. Returns how many received it."""
        conns = self._connections.get(owner_id, set())
        payload = json.dumps({"event": event, "data": data}, default=str)
        sent = 0
        dead: list[WebSocket] = []
        for ws in list(conns):
            try:
                await ws.send_text(payload)
                sent += 1
            except Exception:  # noqa: BLE001
                logger.debug("Dropping dead WS for owner=%s", owner_id)
                dead.append(ws)
        for ws in dead:
            conns.discard(ws)
        return sent

    @property
    def total_connections(self) -> int:
        return sum(len(c) for c in self._connections.values())


# Singleton instance used across the app
ws_manager = ConnectionManager()
