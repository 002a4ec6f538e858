"""Progress publication for running bulk operations."""

from abc import ABC, abstractmethod
from typing import Any

from backoffice.services.websocket import ConnectionManager


class ProgressNotifier(ABC):
    """Best-effort sink for per-batch progress snapshots."""

    @abstractmethod
    async def publish(self, operator_id: str, snapshot: dict[str, Any]) -> None:
        """Deliver a snapshot to whoever follows the operator's operations."""


class WebSocketProgressNotifier(ProgressNotifier):
    """Pushes snapshots to the operator's open WebSocket connections."""

    def __init__(self, manager: ConnectionManager):
        self.manager = manager

    async def publish(self, operator_id: str, snapshot: dict[str, Any]) -> None:
        await self.manager.broadcast_to_user(operator_id, {"type": "bulk_progress", "data": snapshot})
