"""Chat HTTP API.

Everything that changes a conversation goes through the fan-out engine, so a
message sent over HTTP is persisted and broadcast exactly like one sent over
the socket.

Endpoints (all require ``Authorization: Bearer``):
    - GET    /api/chat                                   list chats
    - GET    /api/chat/rooms, POST /api/chat/rooms       group chats
    - GET    /api/chat/{id}                              chat details
    - GET    /api/chat/{id}/messages                     history (marks read)
    - POST   /api/chat/{id}/messages                     send
    - POST   /api/chat/{id}/upload                       send an attachment
    - PUT    /api/chat/{id}/messages/{mid}               edit
    - DELETE /api/chat/{id}/messages/{mid}               soft delete
    - POST   /api/chat/{id}/messages/{mid}/react         add/replace reaction
    - DELETE /api/chat/{id}/messages/{mid}/react         remove reaction
    - DELETE /api/chat/{id}                              deactivate chat
"""
import logging
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile

from app.auth.dependencies import get_current_user
from app.files.service import FileStorageService
from app.storage.schemas import Chat, ChatType, PublicProfile, User

from .manager import ChatHub, get_hub
from .schemas import (
    CreateGroupRequest,
    EditMessageRequest,
    ReactionRequest,
    SendMessageRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/chat", tags=["chat"])

# Default page size for chat lists
DEFAULT_CHAT_PAGE_SIZE = 20

# Default page size for message history pagination
DEFAULT_PAGE_SIZE = 50

# Maximum page size to prevent abuse
MAX_PAGE_SIZE = 100


async def _profiles(hub: ChatHub, user_ids: List[str]) -> Dict[str, PublicProfile]:
    """Public profiles with the live online flag from the presence table."""
    users = await hub.storage.users.get_many(user_ids)
    profiles = {}
    for user_id, user in users.items():
        profile = user.public_profile()
        profile.isOnline = hub.presence.is_online(user_id)
        profiles[user_id] = profile
    return profiles


async def _format_chat(hub: ChatHub, chat: Chat, user: User) -> dict:
    profiles = await _profiles(hub, chat.participants)
    participants = [profiles[uid] for uid in chat.participants if uid in profiles]
    other = next((p for p in participants if p.id != user.id), None)

    last_message = None
    if chat.lastMessageId:
        message = await hub.storage.messages.get(chat.lastMessageId)
        if message is not None:
            message.sender = profiles.get(message.senderId)
            last_message = message.model_dump(mode="json")

    return {
        "id": chat.id,
        "chatType": chat.chatType.value,
        "chatName": chat.chatName or (other.name if other else "Unknown User"),
        "participants": [p.model_dump(mode="json") for p in participants],
        "otherParticipant": other.model_dump(mode="json") if other else None,
        "lastMessage": last_message,
        "lastActivity": chat.lastActivity.isoformat(),
        "createdBy": chat.createdBy,
        "createdAt": chat.createdAt.isoformat(),
    }


# =============================================================================
# Chats
# =============================================================================


@router.get("")
async def list_chats(
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_CHAT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    user: User = Depends(get_current_user),
    hub: ChatHub = Depends(get_hub),
) -> dict:
    """The user's active chats, most recently active first."""
    chats = await hub.storage.chats.list_for_user(user.id, page=page, limit=limit)
    return {
        "success": True,
        "chats": [await _format_chat(hub, c, user) for c in chats],
        "pagination": {"page": page, "limit": limit, "hasMore": len(chats) == limit},
    }


@router.get("/rooms")
async def list_group_chats(
    user: User = Depends(get_current_user),
    hub: ChatHub = Depends(get_hub),
) -> dict:
    chats = await hub.storage.chats.list_for_user(user.id, chat_type=ChatType.GROUP)
    return {"success": True, "chats": [await _format_chat(hub, c, user) for c in chats]}


@router.post("/rooms", status_code=201)
async def create_group_chat(
    body: CreateGroupRequest,
    user: User = Depends(get_current_user),
    hub: ChatHub = Depends(get_hub),
) -> dict:
    """Create a group chat and announce it to its participants.

    Returns:
        The created chat (201 Created).
    """
    chat = await hub.fanout.create_group(user, body.chatName, body.participantIds)
    logger.info("[Chat] %s created group %s (%s)", user.id, chat.id, chat.chatName)
    return {"success": True, "chat": await _format_chat(hub, chat, user)}


@router.get("/{chat_id}")
async def get_chat(
    chat_id: str,
    user: User = Depends(get_current_user),
    hub: ChatHub = Depends(get_hub),
) -> dict:
    chat = await hub.fanout.require_participant(chat_id, user.id)
    return {"success": True, "chat": await _format_chat(hub, chat, user)}


@router.delete("/{chat_id}")
async def delete_chat(
    chat_id: str,
    user: User = Depends(get_current_user),
    hub: ChatHub = Depends(get_hub),
) -> dict:
    """Mark the chat inactive; its messages stay stored."""
    chat = await hub.fanout.require_participant(chat_id, user.id)
    await hub.storage.chats.deactivate(chat.id)
    logger.info("[Chat] %s deactivated chat %s", user.id, chat.id)
    return {"success": True, "message": "Chat deleted successfully"}


# =============================================================================
# Messages
# =============================================================================


@router.get("/{chat_id}/messages")
async def get_messages(
    chat_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    user: User = Depends(get_current_user),
    hub: ChatHub = Depends(get_hub),
) -> dict:
    """One page of history, oldest first within the page.

    Page 1 is the newest messages. Reading marks the chat as read.
    """
    chat = await hub.fanout.require_participant(chat_id, user.id)
    messages = await hub.storage.messages.list_for_chat(chat.id, page=page, limit=limit)

    profiles = await _profiles(hub, [m.senderId for m in messages])
    for message in messages:
        message.sender = profiles.get(message.senderId)

    await hub.fanout.mark_read(user, chat.id)

    return {
        "success": True,
        "messages": [m.model_dump(mode="json") for m in reversed(messages)],
        "pagination": {"page": page, "limit": limit, "hasMore": len(messages) == limit},
    }


@router.post("/{chat_id}/messages", status_code=201)
async def send_message(
    chat_id: str,
    body: SendMessageRequest,
    user: User = Depends(get_current_user),
    hub: ChatHub = Depends(get_hub),
) -> dict:
    message, chat = await hub.fanout.send_message(
        user,
        chat_id,
        body.content,
        message_type=body.messageType,
        reply_to=body.replyTo,
    )
    return {
        "success": True,
        "message": message.model_dump(mode="json"),
        "chat": {"id": chat.id, "lastActivity": chat.lastActivity.isoformat()},
    }


@router.post("/{chat_id}/upload", status_code=201)
async def upload_file(
    chat_id: str,
    file: UploadFile = File(...),
    caption: Optional[str] = Form(None),
    user: User = Depends(get_current_user),
    hub: ChatHub = Depends(get_hub),
) -> dict:
    """Store an attachment and send it as a message.

    The message type follows the file's MIME type; the content is the caption,
    or the file name when there is none.
    """
    await hub.fanout.require_participant(chat_id, user.id)

    content = await file.read()
    stored = FileStorageService.get_instance().save_file(
        chat_id=chat_id,
        filename=file.filename or "unnamed",
        content=content,
        mime_type=file.content_type or "application/octet-stream",
    )

    message, _chat = await hub.fanout.send_message(
        user,
        chat_id,
        (caption or "").strip() or stored.original_filename,
        message_type=stored.message_type,
        file_url=stored.url,
        file_name=stored.original_filename,
        file_size=stored.size_bytes,
    )
    logger.info(
        "[Chat] %s uploaded %s (%d bytes) to chat %s",
        user.id, stored.original_filename, stored.size_bytes, chat_id,
    )
    return {"success": True, "message": message.model_dump(mode="json")}


@router.put("/{chat_id}/messages/{message_id}")
async def edit_message(
    chat_id: str,
    message_id: str,
    body: EditMessageRequest,
    user: User = Depends(get_current_user),
    hub: ChatHub = Depends(get_hub),
) -> dict:
    message = await hub.fanout.edit_message(user, message_id, body.content, chat_id=chat_id)
    return {"success": True, "message": message.model_dump(mode="json")}


@router.delete("/{chat_id}/messages/{message_id}")
async def delete_message(
    chat_id: str,
    message_id: str,
    user: User = Depends(get_current_user),
    hub: ChatHub = Depends(get_hub),
) -> dict:
    await hub.fanout.delete_message(user, message_id, chat_id=chat_id)
    return {"success": True, "message": "Message deleted successfully"}


@router.post("/{chat_id}/messages/{message_id}/react")
async def add_reaction(
    chat_id: str,
    message_id: str,
    body: ReactionRequest,
    user: User = Depends(get_current_user),
    hub: ChatHub = Depends(get_hub),
) -> dict:
    message = await hub.fanout.add_reaction(user, message_id, body.emoji, chat_id=chat_id)
    return {"success": True, "reactions": [r.model_dump(mode="json") for r in message.reactions]}


@router.delete("/{chat_id}/messages/{message_id}/react")
async def remove_reaction(
    chat_id: str,
    message_id: str,
    user: User = Depends(get_current_user),
    hub: ChatHub = Depends(get_hub),
) -> dict:
    message = await hub.fanout.remove_reaction(user, message_id, chat_id=chat_id)
    return {"success": True, "reactions": [r.model_dump(mode="json") for r in message.reactions]}
