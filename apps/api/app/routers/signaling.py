"""WebSocket transport for the signaling protocol."""
from __future__ import annotations

import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from ..services.signaling import SignalingHub

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws")
async def signaling_endpoint(websocket: WebSocket) -> None:
    """Register the socket, feed its frames to the hub and clean up on disconnect."""

    hub: SignalingHub = websocket.app.state.hub
    await websocket.accept()
    connection_id = hub.connect(websocket.send_json)

    try:
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(frame.get("code", 1000))
            text = frame.get("text")
            if text is None:
                logger.warning("Dropping binary frame from %s", connection_id)
                continue
            try:
                message = json.loads(text)
            except json.JSONDecodeError:
                logger.warning("Dropping non-JSON frame from %s", connection_id)
                continue
            try:
                await hub.handle_message(connection_id, message)
            except Exception:  # noqa: BLE001 - one bad frame must not end the session
                logger.exception("Handler failed for %s", connection_id)
    except WebSocketDisconnect:
        pass
    finally:
        await hub.disconnect(connection_id)
