"""Connection lifecycle: authenticate, activate, disconnect.

State machine per connection::

    connecting ──verify ok──▶ authenticated ──activate──▶ active ──close──▶ disconnected
        └──────────────verify failed────────────────────────────────────────▲

Presence and room membership always change together, in one synchronous
step with no ``await`` between them, so a broadcast can never see a
connection that is in a room but absent from presence (or the reverse).

Last connection wins: when a user connects again while an older connection
is still registered, the older one is evicted (memberships released,
``session_replaced`` sent, socket closed) before the new one goes live.
"""
import asyncio
import logging
from typing import List, Optional, Tuple

from app.auth.service import IdentityVerifier
from app.errors import AuthenticationError
from app.storage import Storage
from app.storage.users import UserRepository

from . import events
from .connection import ClientConnection, ConnectionState
from .presence import PresenceTable
from .rooms import RoomManager

logger = logging.getLogger(__name__)

# 1008 = Policy Violation
POLICY_VIOLATION = 1008


class LifecycleController:
    """Drives one connection through its states."""

    def __init__(
        self,
        storage: Storage,
        presence: PresenceTable,
        rooms: RoomManager,
        verifier: IdentityVerifier,
    ) -> None:
        self._storage = storage
        self._presence = presence
        self._rooms = rooms
        self._verifier = verifier

    async def authenticate(self, connection: ClientConnection, token: Optional[str]) -> bool:
        """Resolve the handshake token to a user.

        On failure the client gets ``error{"Authentication error"}``, the
        socket is closed and the connection is terminal.
        """
        try:
            connection.user = await self._verifier.verify(token)
        except AuthenticationError as e:
            logger.info("[WS] Connection %s rejected: %s", connection.sid, e.message)
            connection.state = ConnectionState.DISCONNECTED
            await connection.send(events.error("Authentication error"))
            await connection.close(code=POLICY_VIOLATION)
            return False

        connection.state = ConnectionState.AUTHENTICATED
        logger.info("[WS] User connected: %s (%s)", connection.user.name, connection.user_id)
        return True

    async def activate(self, connection: ClientConnection) -> None:
        """Register the connection, join its rooms and announce it."""
        user = connection.user
        profile = user.public_profile()
        profile.isOnline = True

        previous = self._presence.upsert(user.id, connection, profile)
        self._rooms.register(connection)
        self._rooms.join_personal_room(connection, user.id)
        evicted = None
        if previous is not None and previous.connection is not connection:
            evicted = self._detach(previous.connection)

        if evicted is not None:
            await self._notify_evicted(evicted)

        await self._storage.users.mark_online(user.id, connection.sid)

        chats = await self._storage.chats.list_for_user(user.id)
        if connection.state == ConnectionState.DISCONNECTED:
            # closed (or itself replaced) while we were waiting on storage
            return
        for chat in chats:
            self._rooms.join_conversation_room(connection, chat.id)

        connection.state = ConnectionState.ACTIVE
        logger.info(
            "[Presence] %s online (%d chats, %d users online)",
            user.id, len(chats), len(self._presence),
        )

        await self._rooms.broadcast_all(events.user_online(profile), exclude=connection)
        await connection.send(events.online_users(self._presence.snapshot()))

    def _detach(self, old: ClientConnection) -> ClientConnection:
        self._rooms.release(old)
        old.state = ConnectionState.DISCONNECTED
        logger.info("[Presence] %s replaced connection %s", old.user_id, old.sid)
        return old

    async def _notify_evicted(self, old: ClientConnection) -> None:
        await old.send(events.session_replaced())
        await old.close(code=POLICY_VIOLATION)

    async def disconnect(self, connection: ClientConnection) -> None:
        """Tear down a connection. Safe to call more than once."""
        if connection.state == ConnectionState.DISCONNECTED:
            return

        was_live = connection.state in (ConnectionState.AUTHENTICATED, ConnectionState.ACTIVE)
        connection.state = ConnectionState.DISCONNECTED
        self._rooms.release(connection)
        if not was_live or connection.user is None:
            return

        user_id = connection.user_id
        if not self._presence.remove(user_id, connection):
            # a newer connection owns the user's presence now
            return

        try:
            last_seen = await self._storage.users.mark_offline(user_id, connection.sid)
        except Exception:
            logger.exception("[Presence] Failed to persist offline state for %s", user_id)
            return

        logger.info("[Presence] %s offline", user_id)
        await self._rooms.broadcast_all(events.user_offline(user_id, last_seen))


class PresenceReconciler:
    """Periodically corrects persisted online flags against the presence table.

    Two directions per sweep: users flagged online in storage with no
    presence entry are cleared (missed disconnects, crashes), and presence
    entries whose stored flag is clear are set again.
    """

    def __init__(
        self,
        users: UserRepository,
        presence: PresenceTable,
        interval_seconds: int = 60,
    ) -> None:
        self._users = users
        self._presence = presence
        self._interval = interval_seconds
        self._sweep_task: Optional[asyncio.Task] = None  # type: ignore[type-arg]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start background sweep task."""
        self._sweep_task = asyncio.create_task(self._sweep_loop())
        logger.info("[Presence] Reconciliation started (every %ss)", self._interval)

    async def stop(self) -> None:
        if self._sweep_task:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None
        logger.info("[Presence] Reconciliation stopped")

    # ------------------------------------------------------------------
    # Background sweep
    # ------------------------------------------------------------------

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.sweep_once()
            except Exception:
                logger.exception("[Presence] Reconciliation sweep failed")

    async def sweep_once(self) -> Tuple[List[str], List[str]]:
        """Run one reconciliation pass.

        Returns:
            ``(cleared, restored)`` user ids.
        """
        cleared = await self._users.clear_stale_online(
            self._presence.user_ids(), is_live=self._presence.owns_socket
        )
        # Re-read after the clear: users may have connected while it ran.
        restored = await self._users.restore_online(self._presence.sockets())
        if cleared or restored:
            logger.info(
                "[Presence] Sweep cleared %d stale and restored %d online flags",
                len(cleared), len(restored),
            )
        return cleared, restored
