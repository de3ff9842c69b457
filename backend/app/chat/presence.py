"""Process-wide presence table: which users are reachable, and on which connection.

Only the event loop thread mutates the table, so it needs no lock; the
reconciliation sweep reads it from the database thread through
``owns_socket``, a single dict lookup. A multi-threaded server would have to
wrap it (and the room manager) in a single-writer task or per-user locks.
"""
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from app.storage.schemas import PublicProfile

from .connection import ClientConnection

logger = logging.getLogger(__name__)


@dataclass
class PresenceEntry:
    connection: ClientConnection
    profile:    PublicProfile


class PresenceTable:
    """user id -> (connection, public profile snapshot).

    A user without an entry is simply offline; nothing here raises.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, PresenceEntry] = {}

    def upsert(
        self, user_id: str, connection: ClientConnection, profile: PublicProfile
    ) -> Optional[PresenceEntry]:
        """Record ``connection`` for the user, overwriting any earlier one.

        Returns:
            The entry that was replaced, if any.
        """
        previous = self._entries.get(user_id)
        self._entries[user_id] = PresenceEntry(connection=connection, profile=profile)
        logger.debug("[Presence] %s online via %s", user_id, connection.sid)
        return previous

    def remove(self, user_id: str, connection: Optional[ClientConnection] = None) -> bool:
        """Drop the user's entry.

        With ``connection`` the entry is only dropped while that connection
        still owns it.

        Returns:
            True if an entry was removed.
        """
        entry = self._entries.get(user_id)
        if entry is None:
            return False
        if connection is not None and entry.connection is not connection:
            return False
        del self._entries[user_id]
        logger.debug("[Presence] %s offline", user_id)
        return True

    def get(self, user_id: str) -> Optional[PresenceEntry]:
        return self._entries.get(user_id)

    def connection_for(self, user_id: str) -> Optional[ClientConnection]:
        entry = self._entries.get(user_id)
        return entry.connection if entry else None

    def is_online(self, user_id: str) -> bool:
        return user_id in self._entries

    def snapshot(self) -> List[PublicProfile]:
        return [entry.profile for entry in self._entries.values()]

    def user_ids(self) -> List[str]:
        return list(self._entries)

    def sockets(self) -> Dict[str, str]:
        """user id -> sid of the connection that owns the entry."""
        return {user_id: entry.connection.sid for user_id, entry in self._entries.items()}

    def owns_socket(self, user_id: str, sid: str) -> bool:
        entry = self._entries.get(user_id)
        return entry is not None and entry.connection.sid == sid

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
