"""Request bodies for the chat HTTP API."""
from typing import List, Optional

from pydantic import BaseModel, Field

from app.storage.schemas import MessageType


class SendMessageRequest(BaseModel):
    content: str = ""
    messageType: MessageType = MessageType.TEXT
    replyTo: Optional[str] = None


class EditMessageRequest(BaseModel):
    content: str = ""


class ReactionRequest(BaseModel):
    emoji: str = ""


class CreateGroupRequest(BaseModel):
    """Body for ``POST /api/chat/rooms``.

    The creator is always added; at least one other participant is required.
    """
    chatName: str = ""
    participantIds: List[str] = Field(default_factory=list)
