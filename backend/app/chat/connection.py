"""Server-side handle for one live WebSocket client."""
import asyncio
import logging
import uuid
from enum import Enum
from typing import Optional

from fastapi import WebSocket

from app.storage.schemas import User

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    """Lifecycle of a connection.

    ``connecting → authenticated → active → disconnected``; a failed
    authentication jumps straight to ``disconnected``, which is terminal.
    """
    CONNECTING = "connecting"
    AUTHENTICATED = "authenticated"
    ACTIVE = "active"
    DISCONNECTED = "disconnected"


class ClientConnection:
    """A connection handle: the socket, its id and the user behind it.

    Handles hash by identity, so they can be used directly as members of room
    sets. Anything with an async ``send_json``/``close`` works as the socket,
    which lets tests drive the core without a transport.
    """

    def __init__(self, websocket: WebSocket, sid: Optional[str] = None) -> None:
        self.sid = sid or uuid.uuid4().hex
        self.websocket = websocket
        self.state = ConnectionState.CONNECTING
        self.user: Optional[User] = None
        self._send_lock = asyncio.Lock()

    @property
    def user_id(self) -> Optional[str]:
        return self.user.id if self.user else None

    @property
    def is_active(self) -> bool:
        return self.state == ConnectionState.ACTIVE

    async def send(self, payload: dict) -> bool:
        """Send a JSON frame.

        Sends on one connection are serialised, so overlapping broadcasts
        never write to the socket at the same time.

        Returns:
            True if successful, False if the socket is gone.
        """
        async with self._send_lock:
            try:
                await self.websocket.send_json(payload)
                return True
            except Exception as e:
                logger.warning(
                    "[WS] Failed to send %s to connection %s: %s",
                    payload.get("type", "?"), self.sid, e,
                )
                return False

    async def close(self, code: int = 1000) -> None:
        async with self._send_lock:
            try:
                await self.websocket.close(code=code)
            except Exception as e:
                logger.debug("[WS] Close of connection %s failed: %s", self.sid, e)

    def __repr__(self) -> str:
        return f"<ClientConnection {self.sid} user={self.user_id} state={self.state.value}>"
