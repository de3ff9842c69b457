"""Pydantic models for persisted users, chats and messages.

Field names are the wire names (camelCase) so that ``model_dump(mode="json")``
can be sent to clients unchanged; the storage layer maps them to snake_case
columns.
"""
import uuid
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

DEFAULT_STATUS = "Hey there! I am using Chat App."


def utcnow() -> datetime:
    """Naive UTC timestamp, the form DuckDB ``TIMESTAMP`` columns hold."""
    return datetime.utcnow()


def new_id() -> str:
    return uuid.uuid4().hex


class ChatType(str, Enum):
    """Kind of conversation.

    Attributes:
        PRIVATE: Exactly two participants; one per unordered pair.
        GROUP: Any number of participants with a chosen name.
    """
    PRIVATE = "private"
    GROUP = "group"


class MessageType(str, Enum):
    """Type of chat message."""
    TEXT = "text"
    IMAGE = "image"
    FILE = "file"
    AUDIO = "audio"
    VIDEO = "video"


class PublicProfile(BaseModel):
    """The subset of a user that other users may see."""
    id: str
    name: str
    email: str = ""
    avatar: str = ""
    isOnline: bool = False
    lastSeen: Optional[datetime] = None
    status: str = DEFAULT_STATUS


class User(BaseModel):
    """A persisted user account.

    ``socketId`` holds the single current connection handle; a new connection
    overwrites it.
    """
    id: str = Field(default_factory=new_id)
    googleId: Optional[str] = None
    email: str
    name: str
    avatar: str = ""
    isOnline: bool = False
    lastSeen: datetime = Field(default_factory=utcnow)
    socketId: str = ""
    status: str = DEFAULT_STATUS
    phone: str = ""
    createdAt: datetime = Field(default_factory=utcnow)
    updatedAt: datetime = Field(default_factory=utcnow)

    def public_profile(self) -> PublicProfile:
        return PublicProfile(
            id=self.id,
            name=self.name,
            email=self.email,
            avatar=self.avatar,
            isOnline=self.isOnline,
            lastSeen=self.lastSeen,
            status=self.status,
        )


class Chat(BaseModel):
    """A private or group conversation."""
    id: str = Field(default_factory=new_id)
    participants: List[str] = Field(default_factory=list)
    chatType: ChatType = ChatType.PRIVATE
    chatName: str = ""
    lastMessageId: Optional[str] = None
    lastActivity: datetime = Field(default_factory=utcnow)
    createdBy: str
    isActive: bool = True
    createdAt: datetime = Field(default_factory=utcnow)
    updatedAt: datetime = Field(default_factory=utcnow)

    def has_participant(self, user_id: str) -> bool:
        return user_id in self.participants


class ReadReceipt(BaseModel):
    userId: str
    readAt: datetime


class Reaction(BaseModel):
    userId: str
    emoji: str
    createdAt: datetime


class Message(BaseModel):
    """A chat message.

    Messages are never hard-deleted: ``isDeleted`` hides them from normal
    reads, ``isEdited`` marks content changes.
    """
    id: str = Field(default_factory=new_id)
    chatId: str
    senderId: str
    sender: Optional[PublicProfile] = None
    content: str
    messageType: MessageType = MessageType.TEXT
    fileUrl: str = ""
    fileName: str = ""
    fileSize: int = 0
    readBy: List[ReadReceipt] = Field(default_factory=list)
    isEdited: bool = False
    editedAt: Optional[datetime] = None
    replyTo: Optional[str] = None
    reactions: List[Reaction] = Field(default_factory=list)
    isDeleted: bool = False
    deletedAt: Optional[datetime] = None
    createdAt: datetime = Field(default_factory=utcnow)
    updatedAt: datetime = Field(default_factory=utcnow)

    def reaction_of(self, user_id: str) -> Optional[Reaction]:
        for reaction in self.reactions:
            if reaction.userId == user_id:
                return reaction
        return None

    def is_read_by(self, user_id: str) -> bool:
        return any(receipt.userId == user_id for receipt in self.readBy)
