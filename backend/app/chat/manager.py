"""Process-wide wiring of the realtime core.

Holds the single presence table and room manager for this process and the
services built on top of them. The WebSocket router, the HTTP API and the
application lifespan all reach the core through :func:`get_hub`.

Thread Safety:
    This implementation is designed for async/await usage with a single event loop.
    It is NOT thread-safe for concurrent access from multiple threads.
"""
import logging
from typing import Optional

from app.auth.service import IdentityVerifier
from app.config import get_config
from app.storage import Storage

from .fanout import FanoutEngine
from .lifecycle import LifecycleController, PresenceReconciler
from .presence import PresenceTable
from .rooms import RoomManager

logger = logging.getLogger(__name__)


class ChatHub:
    """Presence, rooms, fan-out and lifecycle over one storage instance."""

    def __init__(self, storage: Storage, reconcile_interval_seconds: int = 60) -> None:
        self.storage = storage
        self.presence = PresenceTable()
        self.rooms = RoomManager()
        self.verifier = IdentityVerifier(storage.users)
        self.fanout = FanoutEngine(storage, self.rooms, self.presence)
        self.lifecycle = LifecycleController(storage, self.presence, self.rooms, self.verifier)
        self.reconciler = PresenceReconciler(
            storage.users, self.presence, interval_seconds=reconcile_interval_seconds
        )

    async def start(self) -> None:
        await self.reconciler.start()

    async def stop(self) -> None:
        await self.reconciler.stop()
        self.rooms.clear()
        self.presence.clear()


_hub: Optional[ChatHub] = None


def get_hub() -> ChatHub:
    """Return the process-wide hub, creating it on first use."""
    global _hub
    if _hub is None:
        config = get_config()
        _hub = ChatHub(
            Storage.get_instance(config.storage.db_path),
            reconcile_interval_seconds=config.presence.reconcile_interval_seconds,
        )
        logger.info("[Hub] Chat hub initialised (db=%s)", config.storage.db_path)
    return _hub


def reset_hub() -> None:
    """Drop the hub (tests)."""
    global _hub
    _hub = None
