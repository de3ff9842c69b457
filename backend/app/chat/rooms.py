"""Room membership and broadcasting.

Every active connection sits in its user's personal room and in one room
per conversation it has joined. Rooms exist only in memory and only for the
lifetime of their connections.

Performance Notes:
    - Broadcasting uses asyncio.gather() for concurrent message delivery
    - A failed send is logged and otherwise ignored; the dead connection is
      released by the lifecycle controller when its transport closes, never
      here, so room membership and presence change together.
"""
import asyncio
import logging
from typing import Dict, Iterable, List, Optional, Set

from .connection import ClientConnection

logger = logging.getLogger(__name__)


def room_for_user(user_id: str) -> str:
    return f"user:{user_id}"


def room_for_chat(chat_id: str) -> str:
    return f"chat:{chat_id}"


class RoomManager:
    """Many-to-many relation between connection handles and room ids."""

    def __init__(self) -> None:
        # room_id -> connections currently joined
        self._rooms: Dict[str, Set[ClientConnection]] = {}
        # connection -> room ids it has joined
        self._memberships: Dict[ClientConnection, Set[str]] = {}

    # -----------------------------------------------------------------------
    # Membership
    # -----------------------------------------------------------------------

    def register(self, connection: ClientConnection) -> None:
        """Make ``connection`` reachable by server-wide broadcasts."""
        self._memberships.setdefault(connection, set())

    def join(self, connection: ClientConnection, room_id: str) -> bool:
        """Add ``connection`` to ``room_id``.

        Returns:
            True if newly joined, False if it was already a member.
        """
        rooms = self._memberships.setdefault(connection, set())
        if room_id in rooms:
            return False
        rooms.add(room_id)
        self._rooms.setdefault(room_id, set()).add(connection)
        return True

    def leave(self, connection: ClientConnection, room_id: str) -> bool:
        """Remove ``connection`` from ``room_id`` (no-op if it is not a member)."""
        rooms = self._memberships.get(connection)
        if not rooms or room_id not in rooms:
            return False
        rooms.discard(room_id)
        members = self._rooms.get(room_id)
        if members is not None:
            members.discard(connection)
            if not members:
                del self._rooms[room_id]
        return True

    def join_personal_room(self, connection: ClientConnection, user_id: str) -> bool:
        return self.join(connection, room_for_user(user_id))

    def join_conversation_room(self, connection: ClientConnection, chat_id: str) -> bool:
        return self.join(connection, room_for_chat(chat_id))

    def leave_conversation_room(self, connection: ClientConnection, chat_id: str) -> bool:
        return self.leave(connection, room_for_chat(chat_id))

    def release(self, connection: ClientConnection) -> Set[str]:
        """Drop every membership of ``connection`` in one step.

        Returns:
            The room ids it was in.
        """
        rooms = self._memberships.pop(connection, set())
        for room_id in rooms:
            members = self._rooms.get(room_id)
            if members is None:
                continue
            members.discard(connection)
            if not members:
                del self._rooms[room_id]
        return rooms

    # -----------------------------------------------------------------------
    # Queries
    # -----------------------------------------------------------------------

    def members(self, room_id: str) -> Set[ClientConnection]:
        return set(self._rooms.get(room_id, ()))

    def broadcast_targets(self, chat_id: str) -> Set[ClientConnection]:
        """Connections currently joined to the chat's room."""
        return self.members(room_for_chat(chat_id))

    def rooms_of(self, connection: ClientConnection) -> Set[str]:
        return set(self._memberships.get(connection, ()))

    def is_member(self, connection: ClientConnection, room_id: str) -> bool:
        return room_id in self._memberships.get(connection, ())

    def connections(self) -> List[ClientConnection]:
        return list(self._memberships)

    def room_size(self, room_id: str) -> int:
        return len(self._rooms.get(room_id, ()))

    def clear(self) -> None:
        self._rooms.clear()
        self._memberships.clear()

    # -----------------------------------------------------------------------
    # Broadcasting
    # -----------------------------------------------------------------------

    async def broadcast(
        self,
        room_id: str,
        payload: dict,
        exclude: Optional[ClientConnection] = None,
    ) -> int:
        """Send ``payload`` to every member of ``room_id`` except ``exclude``.

        Returns:
            Number of connections the frame was delivered to.
        """
        targets = [c for c in self._rooms.get(room_id, ()) if c is not exclude]
        return await self._deliver(targets, payload)

    async def broadcast_all(
        self, payload: dict, exclude: Optional[ClientConnection] = None
    ) -> int:
        """Send ``payload`` to every registered connection except ``exclude``."""
        targets = [c for c in self._memberships if c is not exclude]
        return await self._deliver(targets, payload)

    async def _deliver(self, targets: Iterable[ClientConnection], payload: dict) -> int:
        targets = list(targets)
        if not targets:
            return 0

        # Send to all connections concurrently
        results = await asyncio.gather(
            *[conn.send(payload) for conn in targets],
            return_exceptions=True,
        )
        delivered = sum(1 for ok in results if ok is True)
        if delivered < len(targets):
            logger.warning(
                "[Rooms] %s delivered to %d/%d connections",
                payload.get("type", "?"), delivered, len(targets),
            )
        return delivered
