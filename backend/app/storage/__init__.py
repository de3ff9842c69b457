"""Persistent storage for users, chats and messages (DuckDB).

Services:
    - Database: singleton owner of the DuckDB connection.
    - UserRepository, ChatRepository, MessageRepository: async CRUD.
    - Storage: bundles the three repositories over one database.
"""
from typing import Optional

from .chats import ChatRepository
from .database import Database
from .messages import MessageRepository
from .users import UserRepository


class Storage:
    """The three repositories sharing one :class:`Database`."""

    _instance: Optional["Storage"] = None

    def __init__(self, db: Database) -> None:
        self.db = db
        self.users = UserRepository(db)
        self.chats = ChatRepository(db)
        self.messages = MessageRepository(db)

    @classmethod
    def get_instance(cls, db_path: Optional[str] = None) -> "Storage":
        if cls._instance is None:
            cls._instance = cls(Database.get_instance(db_path))
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        cls._instance = None
        Database.reset_instance()


__all__ = [
    "ChatRepository",
    "Database",
    "MessageRepository",
    "Storage",
    "UserRepository",
]
