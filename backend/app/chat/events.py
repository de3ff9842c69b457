"""WebSocket wire protocol.

Every frame is a JSON object with a ``type`` field.

Client → server frames are parsed into tagged commands (one pydantic model
per event, discriminated on ``type``) so the fan-out engine has a single
entry point and tests can inject commands without a socket.

Server → client frames are built by the small functions at the bottom of
this module.

Protocol Message Types (client → server):
    - join_chat / leave_chat: enter or leave a conversation room
    - send_message / edit_message / delete_message: message lifecycle
    - typing_start / typing_stop: typing indicators
    - add_reaction / remove_reaction: one reaction per user per message
"""
from datetime import datetime
from typing import Annotated, Iterable, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from app.errors import ValidationError
from app.storage.schemas import Chat, Message, MessageType, PublicProfile

# =============================================================================
# Client → server
# =============================================================================


class JoinChat(BaseModel):
    type: Literal["join_chat"]
    chatId: str = Field(..., min_length=1)


class LeaveChat(BaseModel):
    type: Literal["leave_chat"]
    chatId: str = Field(..., min_length=1)


class SendMessage(BaseModel):
    type: Literal["send_message"]
    chatId: str = Field(..., min_length=1)
    content: str = ""
    messageType: MessageType = MessageType.TEXT
    fileUrl: str = ""
    fileName: str = ""
    fileSize: int = 0
    replyTo: Optional[str] = None


class EditMessage(BaseModel):
    type: Literal["edit_message"]
    messageId: str = Field(..., min_length=1)
    content: str = ""


class DeleteMessage(BaseModel):
    type: Literal["delete_message"]
    messageId: str = Field(..., min_length=1)


class TypingStart(BaseModel):
    type: Literal["typing_start"]
    chatId: str = Field(..., min_length=1)


class TypingStop(BaseModel):
    type: Literal["typing_stop"]
    chatId: str = Field(..., min_length=1)


class AddReaction(BaseModel):
    type: Literal["add_reaction"]
    messageId: str = Field(..., min_length=1)
    emoji: str = ""


class RemoveReaction(BaseModel):
    type: Literal["remove_reaction"]
    messageId: str = Field(..., min_length=1)


ClientCommand = Annotated[
    Union[
        JoinChat,
        LeaveChat,
        SendMessage,
        EditMessage,
        DeleteMessage,
        TypingStart,
        TypingStop,
        AddReaction,
        RemoveReaction,
    ],
    Field(discriminator="type"),
]

_command_adapter = TypeAdapter(ClientCommand)

CLIENT_EVENT_TYPES = frozenset({
    "join_chat", "leave_chat", "send_message", "edit_message", "delete_message",
    "typing_start", "typing_stop", "add_reaction", "remove_reaction",
})


def parse_command(frame: object) -> ClientCommand:
    """Turn a decoded client frame into a command.

    Raises:
        ValidationError: Not an object, unknown ``type``, or bad fields.
    """
    if not isinstance(frame, dict):
        raise ValidationError("Invalid message format: expected a JSON object")

    event_type = frame.get("type")
    if event_type not in CLIENT_EVENT_TYPES:
        raise ValidationError(f"Unknown event type: {event_type}")

    try:
        return _command_adapter.validate_python(frame)
    except PydanticValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first["loc"][1:]) or "payload"
        raise ValidationError(f"Invalid {event_type}: {field} {first['msg'].lower()}")


# =============================================================================
# Server → client
# =============================================================================


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def online_users(profiles: Iterable[PublicProfile]) -> dict:
    return {
        "type": "online_users",
        "users": [p.model_dump(mode="json") for p in profiles],
    }


def user_online(profile: PublicProfile) -> dict:
    return {
        "type": "user_online",
        "userId": profile.id,
        "user": profile.model_dump(mode="json"),
    }


def user_offline(user_id: str, last_seen: datetime) -> dict:
    return {"type": "user_offline", "userId": user_id, "lastSeen": _iso(last_seen)}


def new_message(message: Message, chat: Chat) -> dict:
    return {
        "type": "new_message",
        "message": message.model_dump(mode="json"),
        "chat": chat.model_dump(mode="json"),
    }


def message_edited(message: Message) -> dict:
    return {"type": "message_edited", "message": message.model_dump(mode="json")}


def message_deleted(message_id: str, chat_id: str) -> dict:
    return {"type": "message_deleted", "messageId": message_id, "chatId": chat_id}


def messages_read(chat_id: str, user_id: str) -> dict:
    return {"type": "messages_read", "chatId": chat_id, "userId": user_id}


def user_typing(user_id: str, user_name: str, chat_id: str) -> dict:
    return {"type": "user_typing", "userId": user_id, "userName": user_name, "chatId": chat_id}


def user_stop_typing(user_id: str, chat_id: str) -> dict:
    return {"type": "user_stop_typing", "userId": user_id, "chatId": chat_id}


def message_reaction(
    message_id: str, user_id: str, emoji: Optional[str], action: str
) -> dict:
    return {
        "type": "message_reaction",
        "messageId": message_id,
        "userId": user_id,
        "emoji": emoji,
        "action": action,
    }


def group_created(chat: Chat) -> dict:
    return {"type": "group_created", "chat": chat.model_dump(mode="json")}


def session_replaced() -> dict:
    return {
        "type": "session_replaced",
        "message": "You connected from another location; this session was closed",
    }


def error(message: str) -> dict:
    return {"type": "error", "message": message}
