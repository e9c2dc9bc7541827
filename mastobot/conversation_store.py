"""
Conversation Store - SQLite map from thread key to last response id.

The OpenAI Responses API keeps conversation state server-side; passing the
previous response id back on the next call continues that conversation.
This store remembers the last response id per Mastodon thread so the bot
can resume multi-turn context across restarts.

Concurrency:
    Notification handlers run as independent asyncio tasks, so every
    operation goes through one asyncio.Lock and the blocking sqlite3 call
    runs in a worker thread. Upserts are a single INSERT ... ON CONFLICT
    statement, never read-then-write.

Retention:
    Rows are never pruned; one row accumulates per distinct thread.
"""

import asyncio
import logging
import sqlite3
import time
from pathlib import Path
from typing import Optional, Union

from mastobot.models import ConversationRecord

logger = logging.getLogger(__name__)

# Default SQLite database path
DEFAULT_DB_PATH = Path("bot_state.sqlite")


class ConversationStoreError(Exception):
    """Raised when the conversation table cannot be read or written."""


class ConversationStore:
    """
    Durable thread_key -> last_response_id map.

    Safe to share between concurrently running handlers.
    """

    def __init__(self, db_path: Union[str, Path] = DEFAULT_DB_PATH):
        """Open (or create) the SQLite database and its table."""
        self.db_path = Path(db_path)
        self.conn: Optional[sqlite3.Connection] = None
        self._lock = asyncio.Lock()

        self._connect()
        self._create_tables()
        logger.info(f"Conversation store initialized: {self.db_path}")

    def _connect(self) -> None:
        """Establish database connection."""
        try:
            self.conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self.conn.row_factory = sqlite3.Row
        except sqlite3.Error as e:
            logger.error(f"Failed to open SQLite database {self.db_path}: {e}")
            raise ConversationStoreError(f"Failed to open SQLite database: {e}") from e

    def _create_tables(self) -> None:
        """Create the conversations table if it doesn't exist."""
        try:
            self.conn.executescript("""
                PRAGMA journal_mode = WAL;
                PRAGMA synchronous = NORMAL;

                CREATE TABLE IF NOT EXISTS conversations (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    thread_key TEXT NOT NULL UNIQUE,
                    last_response_id TEXT NOT NULL,
                    updated_at INTEGER NOT NULL
                );
            """)
            self.conn.commit()
        except sqlite3.Error as e:
            raise ConversationStoreError(f"Failed to init conversations table: {e}") from e

    async def _run(self, func, *args):
        """Run a blocking database call under the store lock."""
        if self.conn is None:
            raise ConversationStoreError("Conversation store is closed")
        async with self._lock:
            try:
                return await asyncio.to_thread(func, *args)
            except sqlite3.Error as e:
                raise ConversationStoreError(str(e)) from e

    # =========================================================================
    # Conversation Operations
    # =========================================================================

    def _select(self, thread_key: str) -> Optional[sqlite3.Row]:
        cursor = self.conn.execute(
            "SELECT thread_key, last_response_id, updated_at FROM conversations WHERE thread_key = ?",
            (thread_key,),
        )
        return cursor.fetchone()

    def _upsert(self, thread_key: str, response_id: str, updated_at: int) -> None:
        self.conn.execute("""
            INSERT INTO conversations (thread_key, last_response_id, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT(thread_key) DO UPDATE SET
                last_response_id = excluded.last_response_id,
                updated_at = excluded.updated_at
        """, (thread_key, response_id, updated_at))
        self.conn.commit()

    def _count(self) -> int:
        return self.conn.execute("SELECT COUNT(*) FROM conversations").fetchone()[0]

    async def get(self, thread_key: str) -> Optional[str]:
        """
        Get the last response id stored for a thread.

        Returns:
            The response id, or None if the thread has no record yet.

        Raises:
            ConversationStoreError: On any database failure.
        """
        record = await self.get_record(thread_key)
        return record.last_response_id if record else None

    async def get_record(self, thread_key: str) -> Optional[ConversationRecord]:
        """Get the full record for a thread, if any."""
        row = await self._run(self._select, thread_key)
        if row is None:
            return None
        return ConversationRecord(
            thread_key=row["thread_key"],
            last_response_id=row["last_response_id"],
            updated_at=row["updated_at"],
        )

    async def upsert(self, thread_key: str, response_id: str) -> None:
        """
        Insert or update the last response id for a thread.

        Raises:
            ConversationStoreError: On any database failure.
        """
        now = int(time.time())
        await self._run(self._upsert, thread_key, response_id, now)
        logger.debug(f"Stored last_response_id for thread {thread_key}: {response_id}")

    async def count(self) -> int:
        """Number of threads with a stored response id."""
        return await self._run(self._count)

    async def health_check(self) -> bool:
        """Check database connection health."""
        try:
            await self._run(lambda: self.conn.execute("SELECT 1").fetchone())
            return True
        except ConversationStoreError as e:
            logger.error(f"Conversation store health check failed: {e}")
            return False

    def close(self) -> None:
        """Close the underlying connection."""
        if self.conn is not None:
            self.conn.close()
            self.conn = None
            logger.info("Conversation store closed")
