"""
WebSocket connection manager for bulk operation progress.

Keeps the open connections of this process grouped by operator id so that
progress snapshots reach only the operator who started the operation.
Connections are local to the worker; there is no cross-worker fan-out.
"""

import logging

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Tracks WebSocket connections per operator and pushes JSON messages to them."""

    def __init__(self):
        # Active connections by operator id
        self.active_connections: dict[str, list[WebSocket]] = {}
        self._all_connections: set[WebSocket] = set()

    async def connect(self, websocket: WebSocket, user_id: str):
        """
        Register a new WebSocket connection.

        Note: The WebSocket should already be accepted before calling this method.
        """
        self._all_connections.add(websocket)
        self.active_connections.setdefault(user_id, []).append(websocket)

        logger.info(f"WebSocket connected for user {user_id}. Total connections: {len(self._all_connections)}")

    def disconnect(self, websocket: WebSocket, user_id: str):
        self._all_connections.discard(websocket)

        if user_id in self.active_connections:
            self.active_connections[user_id] = [
                conn for conn in self.active_connections[user_id] if conn != websocket
            ]
            # Clean up empty user lists
            if not self.active_connections[user_id]:
                del self.active_connections[user_id]

        logger.info(f"WebSocket disconnected for user {user_id}. Total connections: {len(self._all_connections)}")

    async def broadcast_to_user(self, user_id: str, message: dict):
        """
        Send a message to every connection of one operator.

        Connections that fail to receive are dropped.
        """
        connections = list(self.active_connections.get(user_id, []))
        if not connections:
            return

        disconnected = []
        for connection in connections:
            try:
                await connection.send_json(message)
            except Exception as e:
                logger.warning(f"Failed to send WebSocket message: {e}")
                disconnected.append(connection)

        for conn in disconnected:
            self.disconnect(conn, user_id)

    def get_connection_count(self) -> int:
        return len(self._all_connections)

    def get_user_connection_count(self, user_id: str) -> int:
        return len(self.active_connections.get(user_id, []))


# Global connection manager instance
manager = ConnectionManager()
