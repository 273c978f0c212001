import json
import logging
from collections import defaultdict

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Manages active WebSocket connections per user.

    Connections are stored as {user_id: [WebSocket, ...]} so a user with
    several tabs or devices open receives every event on each of them.
    Chat events are addressed to users, never to chats: membership is
    resolved by the service layer before anything is pushed.
    """

    def __init__(self) -> None:
        self._connections: dict[int, list[WebSocket]] = defaultdict(list)

    async def connect(self, websocket: WebSocket, user_id: int) -> None:
        """Register an already-accepted WebSocket connection."""
        self._connections[user_id].append(websocket)
        logger.info("WebSocket connected (user %s)", user_id)

    def disconnect(self, websocket: WebSocket, user_id: int) -> None:
        sockets = self._connections.get(user_id, [])
        if websocket in sockets:
            sockets.remove(websocket)
        if not sockets:
            self._connections.pop(user_id, None)
        logger.info("WebSocket disconnected (user %s)", user_id)

    async def send_to_user(self, user_id: int, payload: dict) -> bool:
        """Send a JSON payload to every socket of a user.

        Returns True if at least one socket received it, False if the user
        isn't connected here.
        """
        delivered = False
        dead: list[WebSocket] = []
        for ws in list(self._connections.get(user_id, [])):
            try:
                await ws.send_text(json.dumps(payload, default=str))
                delivered = True
            except Exception:
                dead.append(ws)
        for ws in dead:
            self.disconnect(ws, user_id)
        return delivered

    def is_connected(self, user_id: int) -> bool:
        return bool(self._connections.get(user_id))


manager = ConnectionManager()
