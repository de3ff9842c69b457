"""ChatRepository: private and group conversations.

Private chats are unique per unordered pair of users. There is no unique
index behind that rule: ``find_or_create_private_chat`` looks the pair up,
creates a chat when none exists, and then converges. Every active private
chat for the pair is ranked by insertion sequence, the first one is kept,
and any later duplicates are deactivated. Two racing callers therefore both
return the same chat.
"""
import logging
from datetime import datetime
from typing import Dict, List, Optional

from app.errors import ValidationError

from .database import Database
from .schemas import Chat, ChatType, utcnow

logger = logging.getLogger(__name__)

_COLUMNS = (
    "id, chat_type, chat_name, last_message_id, last_activity, created_by, "
    "is_active, created_at, updated_at"
)
_JOINED_COLUMNS = (
    "c.id, c.chat_type, c.chat_name, c.last_message_id, c.last_activity, "
    "c.created_by, c.is_active, c.created_at, c.updated_at"
)


def pair_key(user_a: str, user_b: str) -> str:
    return "|".join(sorted((user_a, user_b)))


def _row_to_chat(row: tuple, participants: List[str]) -> Chat:
    return Chat(
        id=row[0],
        chatType=ChatType(row[1]),
        chatName=row[2],
        lastMessageId=row[3],
        lastActivity=row[4],
        createdBy=row[5],
        isActive=row[6],
        createdAt=row[7],
        updatedAt=row[8],
        participants=participants,
    )


class ChatRepository:
    """CRUD for ``chats`` and ``chat_participants``."""

    def __init__(self, db: Database) -> None:
        self._db = db

    async def _participants_for(self, chat_ids: List[str]) -> Dict[str, List[str]]:
        if not chat_ids:
            return {}
        placeholders = ", ".join("?" for _ in chat_ids)
        rows = await self._db.fetchall(
            f"SELECT chat_id, user_id FROM chat_participants "
            f"WHERE chat_id IN ({placeholders}) ORDER BY chat_id, position",
            chat_ids,
        )
        result: Dict[str, List[str]] = {cid: [] for cid in chat_ids}
        for chat_id, user_id in rows:
            result[chat_id].append(user_id)
        return result

    async def _hydrate(self, rows: List[tuple]) -> List[Chat]:
        participants = await self._participants_for([r[0] for r in rows])
        return [_row_to_chat(r, participants.get(r[0], [])) for r in rows]

    async def create(
        self,
        participants: List[str],
        chat_type: ChatType,
        created_by: str,
        chat_name: str = "",
    ) -> Chat:
        members = list(dict.fromkeys(participants))
        chat = Chat(
            participants=members,
            chatType=chat_type,
            chatName=chat_name,
            createdBy=created_by,
        )
        key = pair_key(members[0], members[1]) if chat_type == ChatType.PRIVATE else None

        def _insert(conn) -> None:
            conn.execute(
                "INSERT INTO chats (id, chat_type, chat_name, pair_key, last_message_id, "
                "last_activity, created_by, is_active, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, NULL, ?, ?, TRUE, ?, ?)",
                [
                    chat.id, chat.chatType.value, chat.chatName, key,
                    chat.lastActivity, chat.createdBy, chat.createdAt, chat.updatedAt,
                ],
            )
            conn.executemany(
                "INSERT INTO chat_participants (chat_id, user_id, position) VALUES (?, ?, ?)",
                [[chat.id, user_id, i] for i, user_id in enumerate(members)],
            )

        await self._db.run(_insert)
        logger.info(
            "[Chats] Created %s chat %s with %d participants",
            chat.chatType.value, chat.id, len(members),
        )
        return chat

    async def get(self, chat_id: str) -> Optional[Chat]:
        row = await self._db.fetchone(
            f"SELECT {_COLUMNS} FROM chats WHERE id = ?", [chat_id]
        )
        if not row:
            return None
        return (await self._hydrate([row]))[0]

    async def count_for_user(self, user_id: str) -> int:
        """Number of active chats ``user_id`` takes part in."""
        row = await self._db.fetchone(
            "SELECT count(*) FROM chats c JOIN chat_participants p ON p.chat_id = c.id "
            "WHERE c.is_active AND p.user_id = ?",
            [user_id],
        )
        return row[0]

    async def list_for_user(
        self,
        user_id: str,
        chat_type: Optional[ChatType] = None,
        page: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[Chat]:
        """Active chats of ``user_id``, most recently active first."""
        params: list = [user_id]
        where = "c.is_active AND p.user_id = ?"
        if chat_type is not None:
            where += " AND c.chat_type = ?"
            params.append(chat_type.value)
        sql = (
            f"SELECT {_JOINED_COLUMNS} "
            f"FROM chats c JOIN chat_participants p ON p.chat_id = c.id "
            f"WHERE {where} ORDER BY c.last_activity DESC, c.seq DESC"
        )
        if limit is not None:
            sql += " LIMIT ? OFFSET ?"
            params += [limit, ((page or 1) - 1) * limit]
        rows = await self._db.fetchall(sql, params)
        return await self._hydrate(rows)

    async def find_private_chat(self, user_a: str, user_b: str) -> Optional[Chat]:
        row = await self._db.fetchone(
            f"SELECT {_COLUMNS} FROM chats WHERE pair_key = ? AND is_active "
            "ORDER BY seq ASC LIMIT 1",
            [pair_key(user_a, user_b)],
        )
        if not row:
            return None
        return (await self._hydrate([row]))[0]

    async def find_or_create_private_chat(self, user_a: str, user_b: str) -> Chat:
        if user_a == user_b:
            raise ValidationError("Cannot start chat with yourself")

        existing = await self.find_private_chat(user_a, user_b)
        if existing is not None:
            return existing

        await self.create([user_a, user_b], ChatType.PRIVATE, created_by=user_a)
        return await self._converge_private(user_a, user_b)

    async def _converge_private(self, user_a: str, user_b: str) -> Chat:
        """Keep the first-inserted active chat for the pair; deactivate the rest."""
        key = pair_key(user_a, user_b)

        def _converge(conn) -> str:
            ids = [r[0] for r in conn.execute(
                "SELECT id FROM chats WHERE pair_key = ? AND is_active ORDER BY seq ASC",
                [key],
            ).fetchall()]
            duplicates = ids[1:]
            if duplicates:
                conn.execute(
                    f"UPDATE chats SET is_active = FALSE "
                    f"WHERE id IN ({', '.join('?' for _ in duplicates)})",
                    duplicates,
                )
            return ids[0]

        canonical_id = await self._db.run(_converge)
        return await self.get(canonical_id)

    async def touch(self, chat_id: str, message_id: str, at: datetime) -> None:
        """Point the chat at its newest message and bump its activity time."""
        await self._db.execute(
            "UPDATE chats SET last_message_id = ?, last_activity = ?, updated_at = ? "
            "WHERE id = ?",
            [message_id, at, utcnow(), chat_id],
        )

    async def deactivate(self, chat_id: str) -> None:
        await self._db.execute(
            "UPDATE chats SET is_active = FALSE, updated_at = ? WHERE id = ?",
            [utcnow(), chat_id],
        )

    async def count_active_private(self, user_a: str, user_b: str) -> int:
        row = await self._db.fetchone(
            "SELECT count(*) FROM chats WHERE pair_key = ? AND is_active",
            [pair_key(user_a, user_b)],
        )
        return row[0]
