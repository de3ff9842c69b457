"""DuckDB connection and schema for persisted users, chats and messages.

The service implements the singleton pattern so only one database
connection exists per process.

Database Schema:
    users:             one row per Google account
    chats:             private and group conversations
    chat_participants: chat <-> user membership (ordered by position)
    messages:          chat messages, soft-deleted via is_deleted
    message_reads:     one row per (message, reader)
    message_reactions: one row per (message, user); last write wins

Thread Safety:
    DuckDB work runs in the default executor so the event loop never blocks
    on disk I/O. A single ``threading.Lock`` serialises access to the one
    connection, which also makes every ``run`` callable atomic with respect
    to other storage calls.

Usage:
    db = Database.get_instance()
    row = await db.fetchone("SELECT * FROM users WHERE id = ?", [user_id])
"""
import asyncio
import functools
import logging
import threading
from typing import Any, Callable, List, Optional, Sequence, TypeVar

import duckdb

logger = logging.getLogger(__name__)

T = TypeVar("T")

_SCHEMA = [
    "CREATE SEQUENCE IF NOT EXISTS chats_seq START 1",
    "CREATE SEQUENCE IF NOT EXISTS messages_seq START 1",
    """
    CREATE TABLE IF NOT EXISTS users (
        id          VARCHAR PRIMARY KEY,
        google_id   VARCHAR,
        email       VARCHAR NOT NULL,
        name        VARCHAR NOT NULL,
        avatar      VARCHAR NOT NULL DEFAULT '',
        is_online   BOOLEAN NOT NULL DEFAULT FALSE,
        last_seen   TIMESTAMP NOT NULL,
        socket_id   VARCHAR NOT NULL DEFAULT '',
        status      VARCHAR NOT NULL DEFAULT 'Hey there! I am using Chat App.',
        phone       VARCHAR NOT NULL DEFAULT '',
        created_at  TIMESTAMP NOT NULL,
        updated_at  TIMESTAMP NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS chats (
        id              VARCHAR PRIMARY KEY,
        seq             BIGINT NOT NULL DEFAULT nextval('chats_seq'),
        chat_type       VARCHAR NOT NULL,
        chat_name       VARCHAR NOT NULL DEFAULT '',
        pair_key        VARCHAR,
        last_message_id VARCHAR,
        last_activity   TIMESTAMP NOT NULL,
        created_by      VARCHAR NOT NULL,
        is_active       BOOLEAN NOT NULL DEFAULT TRUE,
        created_at      TIMESTAMP NOT NULL,
        updated_at      TIMESTAMP NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS chat_participants (
        chat_id  VARCHAR NOT NULL,
        user_id  VARCHAR NOT NULL,
        position INTEGER NOT NULL,
        PRIMARY KEY (chat_id, user_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS messages (
        id           VARCHAR PRIMARY KEY,
        seq          BIGINT NOT NULL DEFAULT nextval('messages_seq'),
        chat_id      VARCHAR NOT NULL,
        sender_id    VARCHAR NOT NULL,
        content      VARCHAR NOT NULL,
        message_type VARCHAR NOT NULL DEFAULT 'text',
        file_url     VARCHAR NOT NULL DEFAULT '',
        file_name    VARCHAR NOT NULL DEFAULT '',
        file_size    BIGINT NOT NULL DEFAULT 0,
        is_edited    BOOLEAN NOT NULL DEFAULT FALSE,
        edited_at    TIMESTAMP,
        reply_to     VARCHAR,
        is_deleted   BOOLEAN NOT NULL DEFAULT FALSE,
        deleted_at   TIMESTAMP,
        created_at   TIMESTAMP NOT NULL,
        updated_at   TIMESTAMP NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS message_reads (
        message_id VARCHAR NOT NULL,
        user_id    VARCHAR NOT NULL,
        read_at    TIMESTAMP NOT NULL,
        PRIMARY KEY (message_id, user_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS message_reactions (
        message_id VARCHAR NOT NULL,
        user_id    VARCHAR NOT NULL,
        emoji      VARCHAR NOT NULL,
        created_at TIMESTAMP NOT NULL,
        PRIMARY KEY (message_id, user_id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_users_google ON users(google_id)",
    "CREATE INDEX IF NOT EXISTS idx_chats_pair ON chats(pair_key)",
    "CREATE INDEX IF NOT EXISTS idx_participants_user ON chat_participants(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_messages_chat ON messages(chat_id, seq)",
]


class Database:
    """Singleton owner of the DuckDB connection.

    Attributes:
        _instance: Singleton instance of the service.
        _db_path: Path to the DuckDB database file.
    """

    _instance: Optional["Database"] = None
    _db_path: str = "chat.duckdb"

    def __init__(self, db_path: Optional[str] = None) -> None:
        if db_path:
            self._db_path = db_path
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._lock = threading.Lock()
        self._initialize_db()
        logger.info("[Database] Initialized with db=%s", self._db_path)

    @classmethod
    def get_instance(cls, db_path: Optional[str] = None) -> "Database":
        """Get or create the singleton instance.

        Args:
            db_path: Optional database path (only used on first call).
        """
        if cls._instance is None:
            cls._instance = cls(db_path)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Close the connection and forget the singleton (for testing)."""
        if cls._instance is not None:
            cls._instance.close()
            cls._instance = None

    @property
    def db_path(self) -> str:
        return self._db_path

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        if self._connection is None:
            self._connection = duckdb.connect(self._db_path)
        return self._connection

    def _initialize_db(self) -> None:
        """Create tables, sequences and indexes (idempotent)."""
        conn = self._get_connection()
        for statement in _SCHEMA:
            conn.execute(statement)

    def _locked(self, fn: Callable[[duckdb.DuckDBPyConnection], T]) -> T:
        with self._lock:
            return fn(self._get_connection())

    async def run(self, fn: Callable[[duckdb.DuckDBPyConnection], T]) -> T:
        """Run ``fn(connection)`` off the event loop, holding the connection lock."""
        return await asyncio.get_running_loop().run_in_executor(
            None, functools.partial(self._locked, fn)
        )

    async def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> None:
        await self.run(lambda conn: conn.execute(sql, params or []))

    async def fetchone(self, sql: str, params: Optional[Sequence[Any]] = None) -> Optional[tuple]:
        return await self.run(lambda conn: conn.execute(sql, params or []).fetchone())

    async def fetchall(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[tuple]:
        return await self.run(lambda conn: conn.execute(sql, params or []).fetchall())

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None
