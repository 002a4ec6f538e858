"""
WebSocket API endpoint for bulk operation progress.

Operators connect with their bearer token in the ``token`` query parameter
and receive a progress snapshot after every finished batch of their own
operations.
"""

import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.api.deps import get_current_user_websocket, get_db
from backoffice.models.user import UserRole
from backoffice.services.websocket import manager

router = APIRouter(prefix="/ws", tags=["websocket"])
logger = logging.getLogger(__name__)


@router.websocket("/bulk-operations")
async def websocket_bulk_progress(
    websocket: WebSocket,
    db: AsyncSession = Depends(get_db),
):
    """
    Stream bulk operation progress to the authenticated operator.

    Message format:
        {
            "type": "bulk_progress",
            "data": {
                "operation_id": "...",
                "processed": 50,
                "failed": 0,
                "total": 120,
                "current_batch": 1,
                "total_batches": 3,
                "percentage": 42,
                "status": "running"
            }
        }
    """
    client_host = websocket.client
    logger.info("WebSocket connection attempt from %s", client_host)

    # Authenticate before accepting
    user = await get_current_user_websocket(websocket, db)
    if not user or user.role != UserRole.ADMIN.value:
        logger.warning("WebSocket authentication failed from %s", client_host)
        await websocket.close(code=1008, reason="Authentication failed")
        return

    user_id = str(user.id)
    await websocket.accept()
    await manager.connect(websocket, user_id)

    try:
        await websocket.send_json({"type": "connected", "message": "WebSocket connected successfully"})

        while True:
            data = await websocket.receive_text()
            if data == "ping":
                await websocket.send_json({"type": "pong"})
            else:
                logger.debug("Received WebSocket message from %s: %s", user.email, data)

    except WebSocketDisconnect:
        logger.info("WebSocket disconnected for user %s", user.email)
        manager.disconnect(websocket, user_id)
    except Exception as e:
        logger.error("WebSocket error for user %s: %s", user.email, e, exc_info=True)
        manager.disconnect(websocket, user_id)
