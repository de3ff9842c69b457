"""Message fan-out engine.

Takes one command at a time from a connection (or from the HTTP API),
checks that the user may act on the conversation, persists the effect and
broadcasts the result to the conversation's room.

Ordering:
    Persist + broadcast for one conversation runs under that conversation's
    ``asyncio.Lock``, so room members see messages in the order storage
    accepted them. Different conversations proceed independently.

Partial failure:
    A broadcast that fails after a successful write is logged and dropped;
    the write is never rolled back and never retried here.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Awaitable, Callable, Dict, List, Optional, Tuple

from app.errors import (
    AccessDenied,
    ChatError,
    InternalError,
    NotFound,
    ValidationError,
)
from app.storage import Storage
from app.storage.schemas import Chat, ChatType, Message, MessageType, User

from . import events
from .connection import ClientConnection
from .presence import PresenceTable
from .rooms import RoomManager, room_for_chat, room_for_user

logger = logging.getLogger(__name__)


@dataclass
class _ChatLock:
    lock:  asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class FanoutEngine:
    """Validates, persists and broadcasts chat events."""

    def __init__(self, storage: Storage, rooms: RoomManager, presence: PresenceTable) -> None:
        self._storage = storage
        self._rooms = rooms
        self._presence = presence
        self._chat_locks: Dict[str, _ChatLock] = {}
        self._handlers: Dict[str, Callable[[ClientConnection, object], Awaitable[None]]] = {
            "join_chat": self._on_join_chat,
            "leave_chat": self._on_leave_chat,
            "send_message": self._on_send_message,
            "edit_message": self._on_edit_message,
            "delete_message": self._on_delete_message,
            "typing_start": self._on_typing,
            "typing_stop": self._on_typing,
            "add_reaction": self._on_add_reaction,
            "remove_reaction": self._on_remove_reaction,
        }

    @asynccontextmanager
    async def _chat_lock(self, chat_id: str) -> AsyncIterator[None]:
        """Hold the chat's lock; the entry is dropped once nobody holds or awaits it."""
        entry = self._chat_locks.get(chat_id)
        if entry is None:
            entry = self._chat_locks[chat_id] = _ChatLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._chat_locks[chat_id]

    # =========================================================================
    # Entry point for WebSocket frames
    # =========================================================================

    async def dispatch(self, connection: ClientConnection, frame: object) -> None:
        """Handle one decoded client frame.

        Errors are reported to ``connection`` only, as an ``error`` frame;
        they never propagate to the transport loop.
        """
        try:
            if not connection.is_active:
                raise AccessDenied("Connection is not active")
            command = events.parse_command(frame)
            await self.handle(connection, command)
        except ChatError as e:
            logger.info(
                "[Fanout] %s from %s rejected: %s",
                frame.get("type", "?") if isinstance(frame, dict) else "?",
                connection.user_id, e.message,
            )
            await connection.send(events.error(e.message))
        except Exception:
            logger.exception(
                "[Fanout] Unexpected error handling frame from %s", connection.user_id
            )
            await connection.send(events.error(InternalError().message))

    async def handle(self, connection: ClientConnection, command: events.ClientCommand) -> None:
        """Run an already-parsed command."""
        await self._handlers[command.type](connection, command)

    async def _on_join_chat(self, connection: ClientConnection, command: events.JoinChat) -> None:
        await self.join_chat(connection, command.chatId)

    async def _on_leave_chat(self, connection: ClientConnection, command: events.LeaveChat) -> None:
        self.leave_chat(connection, command.chatId)

    async def _on_send_message(
        self, connection: ClientConnection, command: events.SendMessage
    ) -> None:
        await self.send_message(
            connection.user,
            command.chatId,
            command.content,
            message_type=command.messageType,
            file_url=command.fileUrl,
            file_name=command.fileName,
            file_size=command.fileSize,
            reply_to=command.replyTo,
        )

    async def _on_edit_message(
        self, connection: ClientConnection, command: events.EditMessage
    ) -> None:
        await self.edit_message(connection.user, command.messageId, command.content)

    async def _on_delete_message(
        self, connection: ClientConnection, command: events.DeleteMessage
    ) -> None:
        await self.delete_message(connection.user, command.messageId)

    async def _on_typing(self, connection: ClientConnection, command) -> None:
        await self.typing(connection, command.chatId, started=command.type == "typing_start")

    async def _on_add_reaction(
        self, connection: ClientConnection, command: events.AddReaction
    ) -> None:
        await self.add_reaction(connection.user, command.messageId, command.emoji)

    async def _on_remove_reaction(
        self, connection: ClientConnection, command: events.RemoveReaction
    ) -> None:
        await self.remove_reaction(connection.user, command.messageId)

    # =========================================================================
    # Helpers
    # =========================================================================

    async def require_participant(self, chat_id: str, user_id: str) -> Chat:
        chat = await self._storage.chats.get(chat_id)
        if chat is None or not chat.isActive:
            raise NotFound("Chat not found")
        if not chat.has_participant(user_id):
            raise AccessDenied()
        return chat

    async def _require_message(self, message_id: str, chat_id: Optional[str] = None) -> Message:
        message = await self._storage.messages.get(message_id)
        if message is None or (chat_id is not None and message.chatId != chat_id):
            raise NotFound("Message not found")
        return message

    async def _broadcast_chat(
        self,
        chat_id: str,
        payload: dict,
        exclude: Optional[ClientConnection] = None,
    ) -> int:
        try:
            return await self._rooms.broadcast(room_for_chat(chat_id), payload, exclude=exclude)
        except Exception:
            logger.exception(
                "[Fanout] Broadcast of %s to chat %s failed; state is persisted",
                payload.get("type"), chat_id,
            )
            return 0

    async def _with_sender(self, message: Message) -> Message:
        sender = await self._storage.users.get(message.senderId)
        if sender is not None:
            message.sender = sender.public_profile()
        return message

    def _join_online_participants(self, chat: Chat) -> None:
        """Subscribe the live connections of the chat's participants to its room."""
        for user_id in chat.participants:
            connection = self._presence.connection_for(user_id)
            if connection is not None:
                self._rooms.join_conversation_room(connection, chat.id)

    # =========================================================================
    # Operations
    # =========================================================================

    async def join_chat(self, connection: ClientConnection, chat_id: str) -> Chat:
        """Join the chat's room and mark its messages as read by the user."""
        chat = await self.require_participant(chat_id, connection.user_id)
        if self._rooms.join_conversation_room(connection, chat.id):
            logger.info("[Fanout] %s joined chat %s", connection.user_id, chat.id)
        await self.mark_read(connection.user, chat.id, exclude=connection)
        return chat

    def leave_chat(self, connection: ClientConnection, chat_id: str) -> None:
        if self._rooms.leave_conversation_room(connection, chat_id):
            logger.info("[Fanout] %s left chat %s", connection.user_id, chat_id)

    async def mark_read(
        self,
        user: User,
        chat_id: str,
        exclude: Optional[ClientConnection] = None,
    ) -> int:
        """Mark the chat's messages from others as read and tell the room.

        Nothing is broadcast when there was nothing new to mark.
        """
        marked = await self._storage.messages.mark_read(chat_id, user.id)
        if marked:
            await self._broadcast_chat(chat_id, events.messages_read(chat_id, user.id), exclude=exclude)
        return marked

    async def send_message(
        self,
        sender: User,
        chat_id: str,
        content: str,
        message_type: MessageType = MessageType.TEXT,
        file_url: str = "",
        file_name: str = "",
        file_size: int = 0,
        reply_to: Optional[str] = None,
    ) -> Tuple[Message, Chat]:
        """Persist a message and broadcast ``new_message`` to the chat's room.

        The sender's own connection is part of the room, so it receives the
        broadcast as confirmation.

        Raises:
            ValidationError: Empty content.
            NotFound: Unknown chat.
            AccessDenied: Sender is not a participant; nothing is persisted.
        """
        content = (content or "").strip()
        if not content:
            raise ValidationError("Message content is required")

        chat = await self.require_participant(chat_id, sender.id)
        async with self._chat_lock(chat.id):
            message = await self._storage.messages.create(
                chat_id=chat.id,
                sender_id=sender.id,
                content=content,
                message_type=message_type,
                file_url=file_url,
                file_name=file_name,
                file_size=file_size,
                reply_to=reply_to,
            )
            await self._storage.chats.touch(chat.id, message.id, message.createdAt)
            chat.lastMessageId = message.id
            chat.lastActivity = message.createdAt
            message.sender = sender.public_profile()

            delivered = await self._broadcast_chat(chat.id, events.new_message(message, chat))
            logger.info(
                "[Fanout] Message %s from %s in chat %s delivered to %d connections",
                message.id, sender.id, chat.id, delivered,
            )
        return message, chat

    async def edit_message(
        self, user: User, message_id: str, content: str, chat_id: Optional[str] = None
    ) -> Message:
        """Change a message's content; only its sender may do so."""
        content = (content or "").strip()
        if not content:
            raise ValidationError("Message content is required")

        message = await self._require_message(message_id, chat_id)
        async with self._chat_lock(message.chatId):
            await self.require_participant(message.chatId, user.id)
            if message.senderId != user.id:
                raise AccessDenied("Message not found or access denied")

            updated = await self._storage.messages.edit(message.id, content)
            if updated is None:
                raise NotFound("Message not found")
            updated.sender = user.public_profile()
            await self._broadcast_chat(updated.chatId, events.message_edited(updated))
        return updated

    async def delete_message(
        self, user: User, message_id: str, chat_id: Optional[str] = None
    ) -> Message:
        """Soft-delete a message; only its sender may do so."""
        message = await self._require_message(message_id, chat_id)
        async with self._chat_lock(message.chatId):
            await self.require_participant(message.chatId, user.id)
            if message.senderId != user.id:
                raise AccessDenied("Message not found or access denied")

            await self._storage.messages.soft_delete(message.id)
            message.isDeleted = True
            await self._broadcast_chat(
                message.chatId, events.message_deleted(message.id, message.chatId)
            )
        logger.info("[Fanout] Message %s deleted by %s", message.id, user.id)
        return message

    async def add_reaction(
        self, user: User, message_id: str, emoji: str, chat_id: Optional[str] = None
    ) -> Message:
        """Set the user's reaction on a message, replacing any earlier one."""
        if not emoji:
            raise ValidationError("Emoji is required")

        message = await self._require_message(message_id, chat_id)
        async with self._chat_lock(message.chatId):
            await self.require_participant(message.chatId, user.id)
            await self._storage.messages.set_reaction(message.id, user.id, emoji)
            await self._broadcast_chat(
                message.chatId,
                events.message_reaction(message.id, user.id, emoji, "add"),
            )
        return await self._storage.messages.get(message.id)

    async def remove_reaction(
        self, user: User, message_id: str, chat_id: Optional[str] = None
    ) -> Message:
        message = await self._require_message(message_id, chat_id)
        async with self._chat_lock(message.chatId):
            await self.require_participant(message.chatId, user.id)
            await self._storage.messages.remove_reaction(message.id, user.id)
            await self._broadcast_chat(
                message.chatId,
                events.message_reaction(message.id, user.id, None, "remove"),
            )
        return await self._storage.messages.get(message.id)

    async def typing(self, connection: ClientConnection, chat_id: str, started: bool) -> None:
        """Relay a typing indicator to the other members of the room.

        Nothing is persisted; the connection must already be in the room.
        """
        if not self._rooms.is_member(connection, room_for_chat(chat_id)):
            raise AccessDenied("Join the chat before sending typing indicators")

        user = connection.user
        if started:
            payload = events.user_typing(user.id, user.name, chat_id)
        else:
            payload = events.user_stop_typing(user.id, chat_id)
        await self._rooms.broadcast(room_for_chat(chat_id), payload, exclude=connection)

    # =========================================================================
    # Conversation creation (HTTP path)
    # =========================================================================

    async def start_private_chat(self, user: User, other_user_id: str) -> Chat:
        """Find or create the private chat with another user.

        Raises:
            ValidationError: Chatting with yourself.
            NotFound: Unknown user.
        """
        if other_user_id == user.id:
            raise ValidationError("Cannot start chat with yourself")
        if await self._storage.users.get(other_user_id) is None:
            raise NotFound("User not found")

        chat = await self._storage.chats.find_or_create_private_chat(user.id, other_user_id)
        self._join_online_participants(chat)
        return chat

    async def create_group(
        self, creator: User, chat_name: str, participant_ids: List[str]
    ) -> Chat:
        """Create a group chat and announce it to every participant.

        Raises:
            ValidationError: No other valid participant.
        """
        wanted = [uid for uid in dict.fromkeys(participant_ids) if uid != creator.id]
        known = await self._storage.users.get_many(wanted)
        others = [uid for uid in wanted if uid in known]
        if not others:
            raise ValidationError("A group needs at least one other participant")

        chat = await self._storage.chats.create(
            participants=[creator.id] + others,
            chat_type=ChatType.GROUP,
            created_by=creator.id,
            chat_name=(chat_name or "").strip() or "New Group",
        )
        self._join_online_participants(chat)

        payload = events.group_created(chat)
        for user_id in chat.participants:
            await self._rooms.broadcast(room_for_user(user_id), payload)
        return chat
