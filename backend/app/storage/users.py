"""UserRepository: persisted accounts and their last-known online state."""
import logging
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional

from .database import Database
from .schemas import User, new_id, utcnow

logger = logging.getLogger(__name__)

_COLUMNS = (
    "id, google_id, email, name, avatar, is_online, last_seen, socket_id, "
    "status, phone, created_at, updated_at"
)


def _row_to_user(row: tuple) -> User:
    return User(
        id=row[0],
        googleId=row[1],
        email=row[2],
        name=row[3],
        avatar=row[4],
        isOnline=row[5],
        lastSeen=row[6],
        socketId=row[7],
        status=row[8],
        phone=row[9],
        createdAt=row[10],
        updatedAt=row[11],
    )


def _placeholders(values: List[str]) -> str:
    return ", ".join("?" for _ in values)


class UserRepository:
    """CRUD for ``users`` plus the online-flag bookkeeping used by presence."""

    def __init__(self, db: Database) -> None:
        self._db = db

    async def create(
        self,
        email: str,
        name: str,
        avatar: str = "",
        google_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> User:
        user = User(
            id=user_id or new_id(),
            googleId=google_id,
            email=email,
            name=name,
            avatar=avatar,
        )
        await self._db.execute(
            f"INSERT INTO users ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            [
                user.id, user.googleId, user.email, user.name, user.avatar,
                user.isOnline, user.lastSeen, user.socketId, user.status,
                user.phone, user.createdAt, user.updatedAt,
            ],
        )
        logger.info("[Users] Created user %s (%s)", user.id, user.email)
        return user

    async def get(self, user_id: str) -> Optional[User]:
        row = await self._db.fetchone(
            f"SELECT {_COLUMNS} FROM users WHERE id = ?", [user_id]
        )
        return _row_to_user(row) if row else None

    async def get_many(self, user_ids: Iterable[str]) -> Dict[str, User]:
        ids = list(dict.fromkeys(user_ids))
        if not ids:
            return {}
        rows = await self._db.fetchall(
            f"SELECT {_COLUMNS} FROM users WHERE id IN ({_placeholders(ids)})", ids
        )
        return {row[0]: _row_to_user(row) for row in rows}

    async def get_by_google_id(self, google_id: str) -> Optional[User]:
        row = await self._db.fetchone(
            f"SELECT {_COLUMNS} FROM users WHERE google_id = ?", [google_id]
        )
        return _row_to_user(row) if row else None

    async def upsert_google_user(
        self, google_id: str, email: str, name: str, avatar: str = ""
    ) -> User:
        """Find the account for a Google identity, refreshing its profile, or create it."""
        existing = await self.get_by_google_id(google_id)
        if existing is None:
            return await self.create(email=email, name=name, avatar=avatar, google_id=google_id)

        await self._db.execute(
            "UPDATE users SET email = ?, name = ?, avatar = ?, updated_at = ? WHERE id = ?",
            [email, name, avatar, utcnow(), existing.id],
        )
        return await self.get(existing.id)

    async def search(
        self,
        exclude_id: str,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> List[User]:
        """Other users, optionally filtered by a case-insensitive name/email match."""
        where, params = self._search_filter(exclude_id, search)
        params += [limit, (page - 1) * limit]
        rows = await self._db.fetchall(
            f"SELECT {_COLUMNS} FROM users WHERE {where} "
            "ORDER BY is_online DESC, name ASC LIMIT ? OFFSET ?",
            params,
        )
        return [_row_to_user(r) for r in rows]

    async def count(self) -> int:
        row = await self._db.fetchone("SELECT count(*) FROM users")
        return row[0]

    async def count_search(self, exclude_id: str, search: Optional[str] = None) -> int:
        where, params = self._search_filter(exclude_id, search)
        row = await self._db.fetchone(f"SELECT count(*) FROM users WHERE {where}", params)
        return row[0]

    @staticmethod
    def _search_filter(exclude_id: str, search: Optional[str]):
        params: list = [exclude_id]
        where = "id <> ?"
        if search:
            where += " AND (name ILIKE ? OR email ILIKE ?)"
            pattern = f"%{search}%"
            params += [pattern, pattern]
        return where, params

    async def update_status(self, user_id: str, status: str) -> Optional[User]:
        await self._db.execute(
            "UPDATE users SET status = ?, updated_at = ? WHERE id = ?",
            [status, utcnow(), user_id],
        )
        return await self.get(user_id)

    # -----------------------------------------------------------------------
    # Online state
    # -----------------------------------------------------------------------

    async def mark_online(self, user_id: str, socket_id: str) -> None:
        """Record ``socket_id`` as the user's current connection (last connect wins)."""
        now = utcnow()
        await self._db.execute(
            "UPDATE users SET is_online = TRUE, socket_id = ?, last_seen = ?, "
            "updated_at = ? WHERE id = ?",
            [socket_id, now, now, user_id],
        )

    async def mark_offline(self, user_id: str, socket_id: Optional[str] = None) -> datetime:
        """Clear the online flag and stamp ``last_seen``.

        With ``socket_id`` the update only applies while that connection is still
        the recorded one, so a late disconnect of a replaced connection cannot
        knock the newer one offline.
        """
        now = utcnow()
        if socket_id is None:
            await self._db.execute(
                "UPDATE users SET is_online = FALSE, socket_id = '', last_seen = ?, "
                "updated_at = ? WHERE id = ?",
                [now, now, user_id],
            )
        else:
            await self._db.execute(
                "UPDATE users SET is_online = FALSE, socket_id = '', last_seen = ?, "
                "updated_at = ? WHERE id = ? AND socket_id = ?",
                [now, now, user_id, socket_id],
            )
        return now

    async def clear_stale_online(
        self,
        online_ids: Iterable[str],
        is_live: Optional[Callable[[str, str], bool]] = None,
    ) -> List[str]:
        """Clear the online flag of every user not in ``online_ids``.

        Args:
            online_ids: Users known to be connected when the sweep started.
            is_live: ``(user_id, socket_id) -> bool`` checked inside the
                transaction; rows it reports live are kept, which covers users
                that connected after ``online_ids`` was taken.

        Returns:
            Ids of the users that were corrected.
        """
        ids = list(online_ids)
        where = "is_online"
        if ids:
            where += f" AND id NOT IN ({_placeholders(ids)})"

        def _clear(conn) -> List[str]:
            rows = conn.execute(f"SELECT id, socket_id FROM users WHERE {where}", ids).fetchall()
            stale = [r[0] for r in rows if is_live is None or not is_live(r[0], r[1])]
            if stale:
                conn.execute(
                    f"UPDATE users SET is_online = FALSE, socket_id = '' "
                    f"WHERE id IN ({_placeholders(stale)})",
                    stale,
                )
            return stale

        return await self._db.run(_clear)

    async def restore_online(self, sockets: Dict[str, str]) -> List[str]:
        """Set the online flag, and the recorded socket, for users whose flag is clear.

        Args:
            sockets: user id -> socket id of the live connection.
        """
        if not sockets:
            return []
        ids = list(sockets)

        def _restore(conn) -> List[str]:
            missing = [r[0] for r in conn.execute(
                f"SELECT id FROM users WHERE NOT is_online AND id IN ({_placeholders(ids)})",
                ids,
            ).fetchall()]
            for user_id in missing:
                conn.execute(
                    "UPDATE users SET is_online = TRUE, socket_id = ? WHERE id = ?",
                    [sockets[user_id], user_id],
                )
            return missing

        return await self._db.run(_restore)
