"""WebSocket endpoint for real-time direct messaging.

Protocol Flow:
    1. Client connects to ``/ws/chat?token=<access token>`` (or sends
       ``Authorization: Bearer <token>`` with the upgrade request)
       -> Server sends: {event: "connected", data: {userId}}
       -> Others receive: {event: "user:online", data: {userId}}
       A missing or invalid token yields {event: "connect_error"} and a
       close with code 1008.
    2. Client sends: {event: "send:message", data: {receiverId, content}}
       -> Receiver gets "receive:message", sender gets "message:sent"
    3. Client sends: {event: "typing:start" | "typing:stop", data: {receiverId}}
    4. Client sends: {event: "messages:read", data: {conversationId, senderId}}
    5. Client sends: {event: "get:online_users"}
    6. On disconnect -> Others receive: {event: "user:offline", data: {userId}}

Frames from one connection are handled one at a time, in arrival order.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from connecthub.auth.dependencies import extract_bearer

from .gateway import get_gateway

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws/chat")
async def websocket_chat_endpoint(
    websocket: WebSocket,
    token: Optional[str] = Query(None, description="Access token"),
) -> None:
    """Serve one chat client for the lifetime of its socket.

    Args:
        websocket: The WebSocket connection.
        token: Access token (falls back to the Authorization header).
    """
    gateway = get_gateway()
    credential = token or extract_bearer(websocket.headers.get("authorization"))
    logger.info(f"[WS] New connection from {websocket.client}")

    connection = await gateway.connect(websocket, credential)
    if connection is None:
        return

    try:
        # Main message loop
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000), message.get("reason"))
            raw = message.get("text")
            if raw is None:
                # Binary frame; handle_frame answers with message:error
                raw = message.get("bytes") or b""
            logger.debug("[WS] %s received %d bytes", connection.user_id, len(raw))
            await gateway.handle_frame(connection, raw)
    except WebSocketDisconnect as e:
        logger.info(f"[WS] {connection.user_id} disconnected (code={e.code})")
    finally:
        await gateway.disconnect(connection)
