"""Pydantic schemas for chat attachments.

- StoredFile: where an accepted upload ended up and how to link to it
- get_message_type(): maps a MIME type onto the chat message type

Files are stored in chat-scoped directories (uploads/{chat_id}/) with
UUID-based filenames to prevent collisions. The message that carries the
attachment holds its URL, name and size; there is no separate metadata table.
"""
from pydantic import BaseModel, Field

from app.storage.schemas import MessageType


class StoredFile(BaseModel):
    """An upload that passed validation and was written to disk."""
    original_filename: str = Field(..., description="Original filename")
    stored_filename: str = Field(..., description="Filename on disk (UUID-based)")
    mime_type: str = Field(..., description="MIME type of the file")
    size_bytes: int = Field(..., description="File size in bytes")
    url: str = Field(..., description="Path under /uploads the file is served from")
    message_type: MessageType = Field(..., description="Message type derived from the MIME type")


# MIME prefix -> message type; anything else is a plain file
_MIME_PREFIXES = {
    "image/": MessageType.IMAGE,
    "audio/": MessageType.AUDIO,
    "video/": MessageType.VIDEO,
}


def get_message_type(mime_type: str) -> MessageType:
    """Determine the chat message type from a MIME type.

    Examples:
        >>> get_message_type("image/png")
        <MessageType.IMAGE: 'image'>
        >>> get_message_type("application/pdf")
        <MessageType.FILE: 'file'>
    """
    for prefix, message_type in _MIME_PREFIXES.items():
        if (mime_type or "").startswith(prefix):
            return message_type
    return MessageType.FILE
