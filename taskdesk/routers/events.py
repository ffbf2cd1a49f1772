import asyncio
import contextlib
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status

from taskdesk.core.errors import AuthenticationError
from taskdesk.dependencies import principal_from_token

logger = logging.getLogger(__name__)

router = APIRouter(tags=["events"])


@router.websocket("/ws")
async def task_events(websocket: WebSocket, token: str | None = None):
    """Stream ``task:*`` events to an authenticated client."""
    try:
        user = principal_from_token(token)
    except AuthenticationError:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    broadcaster = websocket.app.state.broadcaster
    # Subscribed before the handshake completes, so no event after it is missed
    queue = broadcaster.subscribe()
    sender = None
    try:
        await websocket.accept()
        logger.info(f"Live client connected for user {user.id}")

        async def pump():
            while True:
                message = await queue.get()
                await websocket.send_json(message)

        sender = asyncio.create_task(pump())
        # Incoming frames are ignored; receiving only detects disconnects
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        if sender is not None:
            sender.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                try:
                    await sender
                except Exception:
                    logger.exception(f"Live event delivery failed for user {user.id}")
        broadcaster.unsubscribe(queue)
        logger.info(f"Live client disconnected for user {user.id}")
