"""MessageRepository: chat messages, read receipts and reactions.

Messages are ordered by the ``seq`` column (insertion order), never by
timestamp, so two sends landing in the same microsecond keep the order in
which storage accepted them.
"""
import logging
from typing import Dict, List, Optional

from .database import Database
from .schemas import Message, MessageType, Reaction, ReadReceipt, utcnow

logger = logging.getLogger(__name__)

_COLUMNS = (
    "id, chat_id, sender_id, content, message_type, file_url, file_name, "
    "file_size, is_edited, edited_at, reply_to, is_deleted, deleted_at, "
    "created_at, updated_at"
)


def _row_to_message(
    row: tuple,
    read_by: List[ReadReceipt],
    reactions: List[Reaction],
) -> Message:
    return Message(
        id=row[0],
        chatId=row[1],
        senderId=row[2],
        content=row[3],
        messageType=MessageType(row[4]),
        fileUrl=row[5],
        fileName=row[6],
        fileSize=row[7],
        isEdited=row[8],
        editedAt=row[9],
        replyTo=row[10],
        isDeleted=row[11],
        deletedAt=row[12],
        createdAt=row[13],
        updatedAt=row[14],
        readBy=read_by,
        reactions=reactions,
    )


class MessageRepository:
    """CRUD for ``messages`` and the per-user read/reaction tables."""

    def __init__(self, db: Database) -> None:
        self._db = db

    async def _hydrate(self, rows: List[tuple]) -> List[Message]:
        if not rows:
            return []
        ids = [r[0] for r in rows]
        placeholders = ", ".join("?" for _ in ids)

        def _load(conn):
            reads = conn.execute(
                f"SELECT message_id, user_id, read_at FROM message_reads "
                f"WHERE message_id IN ({placeholders}) ORDER BY read_at",
                ids,
            ).fetchall()
            reactions = conn.execute(
                f"SELECT message_id, user_id, emoji, created_at FROM message_reactions "
                f"WHERE message_id IN ({placeholders}) ORDER BY created_at",
                ids,
            ).fetchall()
            return reads, reactions

        reads, reactions = await self._db.run(_load)
        read_map: Dict[str, List[ReadReceipt]] = {i: [] for i in ids}
        for message_id, user_id, read_at in reads:
            read_map[message_id].append(ReadReceipt(userId=user_id, readAt=read_at))
        reaction_map: Dict[str, List[Reaction]] = {i: [] for i in ids}
        for message_id, user_id, emoji, created_at in reactions:
            reaction_map[message_id].append(
                Reaction(userId=user_id, emoji=emoji, createdAt=created_at)
            )
        return [_row_to_message(r, read_map[r[0]], reaction_map[r[0]]) for r in rows]

    async def create(
        self,
        chat_id: str,
        sender_id: str,
        content: str,
        message_type: MessageType = MessageType.TEXT,
        file_url: str = "",
        file_name: str = "",
        file_size: int = 0,
        reply_to: Optional[str] = None,
    ) -> Message:
        message = Message(
            chatId=chat_id,
            senderId=sender_id,
            content=content,
            messageType=message_type,
            fileUrl=file_url,
            fileName=file_name,
            fileSize=file_size,
            replyTo=reply_to,
        )
        await self._db.execute(
            "INSERT INTO messages (id, chat_id, sender_id, content, message_type, "
            "file_url, file_name, file_size, reply_to, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            [
                message.id, message.chatId, message.senderId, message.content,
                message.messageType.value, message.fileUrl, message.fileName,
                message.fileSize, message.replyTo, message.createdAt, message.updatedAt,
            ],
        )
        return message

    async def get(self, message_id: str, include_deleted: bool = False) -> Optional[Message]:
        sql = f"SELECT {_COLUMNS} FROM messages WHERE id = ?"
        if not include_deleted:
            sql += " AND NOT is_deleted"
        row = await self._db.fetchone(sql, [message_id])
        if not row:
            return None
        return (await self._hydrate([row]))[0]

    async def list_for_chat(self, chat_id: str, page: int = 1, limit: int = 50) -> List[Message]:
        """One page of non-deleted messages, newest first."""
        rows = await self._db.fetchall(
            f"SELECT {_COLUMNS} FROM messages WHERE chat_id = ? AND NOT is_deleted "
            "ORDER BY seq DESC LIMIT ? OFFSET ?",
            [chat_id, limit, (page - 1) * limit],
        )
        return await self._hydrate(rows)

    async def count_for_chat(self, chat_id: str, include_deleted: bool = False) -> int:
        sql = "SELECT count(*) FROM messages WHERE chat_id = ?"
        if not include_deleted:
            sql += " AND NOT is_deleted"
        row = await self._db.fetchone(sql, [chat_id])
        return row[0]

    async def mark_read(self, chat_id: str, user_id: str) -> int:
        """Mark every message in the chat not sent by ``user_id`` as read by them.

        Already-read messages are skipped, so calling this twice is harmless.

        Returns:
            Number of messages newly marked as read.
        """
        now = utcnow()

        def _mark(conn) -> int:
            unread = conn.execute(
                "SELECT m.id FROM messages m WHERE m.chat_id = ? AND m.sender_id <> ? "
                "AND NOT EXISTS (SELECT 1 FROM message_reads r "
                "WHERE r.message_id = m.id AND r.user_id = ?)",
                [chat_id, user_id, user_id],
            ).fetchall()
            if unread:
                conn.executemany(
                    "INSERT OR IGNORE INTO message_reads (message_id, user_id, read_at) "
                    "VALUES (?, ?, ?)",
                    [[r[0], user_id, now] for r in unread],
                )
            return len(unread)

        marked = await self._db.run(_mark)
        if marked:
            logger.debug("[Messages] %s read %d messages in chat %s", user_id, marked, chat_id)
        return marked

    async def edit(self, message_id: str, content: str) -> Optional[Message]:
        now = utcnow()
        await self._db.execute(
            "UPDATE messages SET content = ?, is_edited = TRUE, edited_at = ?, "
            "updated_at = ? WHERE id = ? AND NOT is_deleted",
            [content, now, now, message_id],
        )
        return await self.get(message_id)

    async def soft_delete(self, message_id: str) -> None:
        now = utcnow()
        await self._db.execute(
            "UPDATE messages SET is_deleted = TRUE, deleted_at = ?, updated_at = ? "
            "WHERE id = ?",
            [now, now, message_id],
        )

    async def set_reaction(self, message_id: str, user_id: str, emoji: str) -> None:
        """Record ``emoji`` as the user's reaction, replacing any earlier one."""
        await self._db.execute(
            "INSERT OR REPLACE INTO message_reactions (message_id, user_id, emoji, created_at) "
            "VALUES (?, ?, ?, ?)",
            [message_id, user_id, emoji, utcnow()],
        )

    async def remove_reaction(self, message_id: str, user_id: str) -> None:
        await self._db.execute(
            "DELETE FROM message_reactions WHERE message_id = ? AND user_id = ?",
            [message_id, user_id],
        )
