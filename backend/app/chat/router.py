"""WebSocket endpoint for the realtime chat core.

WebSocket /ws: one persistent connection per client.

Protocol Flow:
    1. Client connects with ``?token=<jwt>`` (or ``Authorization: Bearer``)
       → on failure: {type: "error", message: "Authentication error"}, close 1008
    2. Server joins the user's personal room and every active chat room
       → other clients: {type: "user_online", userId, user}
       → this client:   {type: "online_users", users: [...]}
    3. Client sends commands ({type: "send_message", chatId, content}, ...)
       → room members receive the resulting events
       → errors go to this client only: {type: "error", message}
    4. On disconnect → other clients: {type: "user_offline", userId, lastSeen}
"""
import json
import logging
from typing import Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from app.auth.service import extract_bearer

from . import events
from .connection import ClientConnection, ConnectionState
from .manager import get_hub

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    token: Optional[str] = Query(None, description="Bearer token (JWT)"),
) -> None:
    """Run one client connection from handshake to close.

    Args:
        websocket: The WebSocket connection.
        token: Bearer token from the query string; the Authorization header
            is used when absent.
    """
    hub = get_hub()
    await websocket.accept()

    connection = ClientConnection(websocket)
    token = token or extract_bearer(websocket.headers.get("authorization"))
    logger.debug(f"[WS] New connection {connection.sid}")

    if not await hub.lifecycle.authenticate(connection, token):
        return

    try:
        await hub.lifecycle.activate(connection)

        # Main message loop; ends early if another session replaces this one
        while connection.state != ConnectionState.DISCONNECTED:
            raw = await websocket.receive_text()
            try:
                frame = json.loads(raw)
            except json.JSONDecodeError:
                await connection.send(events.error("Invalid message format: expected JSON"))
                continue

            logger.debug(
                f"[WS] {connection.user_id} sent: "
                f"type={frame.get('type', '?') if isinstance(frame, dict) else '?'}"
            )
            await hub.fanout.dispatch(connection, frame)

    except WebSocketDisconnect:
        logger.info(f"[WS] User disconnected: {connection.user_id} ({connection.sid})")
    except Exception:
        logger.exception(f"[WS] Connection {connection.sid} failed")
    finally:
        await hub.lifecycle.disconnect(connection)
