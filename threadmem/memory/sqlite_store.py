"""SQLite message store for threads and their ordered messages."""

import asyncio
import json
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from loguru import logger

from threadmem.errors import ConfigurationError, MemoryAdapterError
from threadmem.memory.types import Message, Role, SelectBy, Thread


class SQLiteMessageStore:
    """
    SQLite database holding threads and their messages.

    Every message gets a per-thread sequence_index at append time; reads
    always come back ordered by it. Blocking work runs in a worker thread so
    the async API never stalls the event loop.
    """

    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        # serialises the MAX(sequence_index) read with the INSERT that uses it
        self._write_lock = threading.Lock()
        self._init_db()

    def _init_db(self):
        """Initialize database tables."""
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS threads (
                    thread_id TEXT PRIMARY KEY,
                    resource_id TEXT NOT NULL,
                    title TEXT,
                    metadata TEXT,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS messages (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    thread_id TEXT NOT NULL,
                    sequence_index INTEGER NOT NULL,
                    role TEXT NOT NULL,
                    content TEXT NOT NULL,
                    metadata TEXT,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    UNIQUE (thread_id, sequence_index),
                    FOREIGN KEY (thread_id) REFERENCES threads(thread_id)
                )
            """)

            conn.execute("CREATE INDEX IF NOT EXISTS idx_threads_resource ON threads(resource_id)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_messages_thread ON messages(thread_id, sequence_index)")
            conn.commit()

    @contextmanager
    def _get_connection(self):
        """Get database connection with proper cleanup and classified errors."""
        try:
            conn = sqlite3.connect(str(self.db_path))
        except sqlite3.Error as e:
            logger.error(f"Cannot open message store at {self.db_path}: {e}")
            raise MemoryAdapterError(MemoryAdapterError.STORE_UNREACHABLE, str(e)) from e
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        except sqlite3.OperationalError as e:
            logger.error(f"Message store operation failed: {e}")
            code = (
                MemoryAdapterError.STORE_UNREACHABLE
                if "unable to open" in str(e) or "locked" in str(e)
                else MemoryAdapterError.STORE_ERROR
            )
            raise MemoryAdapterError(code, str(e)) from e
        except sqlite3.Error as e:
            logger.error(f"Message store error: {e}")
            raise MemoryAdapterError(MemoryAdapterError.STORE_ERROR, str(e)) from e
        finally:
            conn.close()

    # ── Threads ─────────────────────────────────────────────────

    def _create_thread(self, resource_id: str, title: str | None,
                       metadata: dict | None, thread_id: str | None) -> Thread:
        thread_id = thread_id or str(uuid.uuid4())
        with self._get_connection() as conn:
            conn.execute(
                """INSERT INTO threads
                   (thread_id, resource_id, title, metadata, updated_at)
                   VALUES (?, ?, ?, ?, CURRENT_TIMESTAMP)
                   ON CONFLICT(thread_id) DO UPDATE SET
                       resource_id = excluded.resource_id,
                       title = COALESCE(excluded.title, threads.title),
                       metadata = COALESCE(excluded.metadata, threads.metadata),
                       updated_at = CURRENT_TIMESTAMP""",
                (thread_id, resource_id, title,
                 json.dumps(metadata) if metadata else None)
            )
            conn.commit()
            row = conn.execute(
                "SELECT * FROM threads WHERE thread_id = ?", (thread_id,)
            ).fetchone()
        return self._row_to_thread(row)

    async def create_thread(self, resource_id: str, title: str | None = None,
                            metadata: dict[str, Any] | None = None,
                            thread_id: str | None = None) -> Thread:
        """Create a thread owned by `resource_id`, or update an existing one.

        Re-creating an existing thread_id keeps its created_at, and keeps its
        title and metadata unless new ones are given.
        """
        if not resource_id:
            raise ConfigurationError("resource_id must be a non-empty string")
        if thread_id is not None and not thread_id:
            raise ConfigurationError("thread_id must be a non-empty string")
        return await asyncio.to_thread(self._create_thread, resource_id, title, metadata, thread_id)

    @staticmethod
    def _row_to_thread(row: sqlite3.Row) -> Thread:
        return Thread(
            id=row["thread_id"],
            resource_id=row["resource_id"],
            title=row["title"],
            metadata=json.loads(row["metadata"]) if row["metadata"] else {},
        )

    def _get_thread(self, thread_id: str) -> Thread | None:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM threads WHERE thread_id = ?", (thread_id,)
            ).fetchone()
        return self._row_to_thread(row) if row else None

    async def get_thread_by_id(self, thread_id: str) -> Thread | None:
        if not thread_id:
            raise ConfigurationError("thread_id must be a non-empty string")
        return await asyncio.to_thread(self._get_thread, thread_id)

    def _get_threads(self, resource_id: str) -> list[Thread]:
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM threads WHERE resource_id = ? ORDER BY created_at, thread_id",
                (resource_id,)
            ).fetchall()
        return [self._row_to_thread(row) for row in rows]

    async def get_threads_by_resource_id(self, resource_id: str) -> list[Thread]:
        if not resource_id:
            raise ConfigurationError("resource_id must be a non-empty string")
        return await asyncio.to_thread(self._get_threads, resource_id)

    # ── Messages ────────────────────────────────────────────────

    def _append(self, thread_id: str, role: Role, content: str,
                metadata: dict | None) -> Message:
        with self._write_lock, self._get_connection() as conn:
            exists = conn.execute(
                "SELECT 1 FROM threads WHERE thread_id = ?", (thread_id,)
            ).fetchone()
            if not exists:
                raise MemoryAdapterError(
                    MemoryAdapterError.STORE_ERROR, f"thread {thread_id} does not exist"
                )
            row = conn.execute(
                "SELECT COALESCE(MAX(sequence_index), -1) + 1 FROM messages WHERE thread_id = ?",
                (thread_id,)
            ).fetchone()
            sequence_index = int(row[0])
            conn.execute(
                """INSERT INTO messages
                   (thread_id, sequence_index, role, content, metadata)
                   VALUES (?, ?, ?, ?, ?)""",
                (thread_id, sequence_index, role.value, content,
                 json.dumps(metadata) if metadata else None)
            )
            conn.execute(
                "UPDATE threads SET updated_at = CURRENT_TIMESTAMP WHERE thread_id = ?",
                (thread_id,)
            )
            conn.commit()
        return Message(role=role, content=content, sequence_index=sequence_index,
                       metadata=dict(metadata or {}))

    async def append(self, thread_id: str, role: str, content: str,
                     metadata: dict[str, Any] | None = None) -> Message:
        """Append a message, assigning the next sequence_index of the thread."""
        return await asyncio.to_thread(self._append, thread_id, Role(role), content, metadata)

    @staticmethod
    def _row_to_message(row: sqlite3.Row) -> Message:
        return Message(
            role=Role(row["role"]),
            content=row["content"],
            sequence_index=row["sequence_index"],
            metadata=json.loads(row["metadata"]) if row["metadata"] else {},
        )

    def _query(self, thread_id: str, select_by: SelectBy) -> list[Message]:
        with self._get_connection() as conn:
            if select_by.last is None and select_by.include is None:
                rows = conn.execute(
                    "SELECT * FROM messages WHERE thread_id = ? ORDER BY sequence_index",
                    (thread_id,)
                ).fetchall()
                return [self._row_to_message(row) for row in rows]

            selected: dict[int, Message] = {}
            if select_by.last is not None:
                rows = conn.execute(
                    """SELECT * FROM messages WHERE thread_id = ?
                       ORDER BY sequence_index DESC LIMIT ?""",
                    (thread_id, select_by.last)
                ).fetchall()
                for row in rows:
                    selected[row["sequence_index"]] = self._row_to_message(row)

            if select_by.include:
                wanted = sorted(set(select_by.include))
                placeholders = ",".join("?" for _ in wanted)
                rows = conn.execute(
                    f"""SELECT * FROM messages WHERE thread_id = ?
                        AND sequence_index IN ({placeholders})""",
                    (thread_id, *wanted)
                ).fetchall()
                for row in rows:
                    selected[row["sequence_index"]] = self._row_to_message(row)

        return [selected[i] for i in sorted(selected)]

    async def query(self, thread_id: str, select_by: SelectBy | None = None) -> list[Message]:
        """Return messages of a thread in chronological order.

        An unknown thread yields an empty list.
        """
        if not thread_id:
            raise ConfigurationError("thread_id must be a non-empty string")
        select_by = select_by or SelectBy()
        if select_by.last is not None and select_by.last < 1:
            raise ConfigurationError("select_by.last must be >= 1")
        return await asyncio.to_thread(self._query, thread_id, select_by)

    def prune_messages(self, older_than_days: int = 30, keep_minimum: int = 10) -> int:
        """Delete messages older than `older_than_days`, keeping the newest
        `keep_minimum` of every thread. Threads themselves are never deleted.

        Returns:
            Number of deleted messages.
        """
        with self._get_connection() as conn:
            cursor = conn.execute(
                """DELETE FROM messages WHERE id IN (
                       SELECT id FROM (
                           SELECT id, created_at,
                                  ROW_NUMBER() OVER (
                                      PARTITION BY thread_id ORDER BY sequence_index DESC
                                  ) AS rn
                           FROM messages
                       )
                       WHERE rn > ? AND created_at < datetime('now', ?)
                   )""",
                (keep_minimum, f"-{older_than_days} days")
            )
            deleted = cursor.rowcount
            conn.commit()
        if deleted > 0:
            logger.info(f"Pruned {deleted} stale messages (>{older_than_days} days)")
        return deleted

    def get_stats(self) -> dict:
        with self._get_connection() as conn:
            threads = conn.execute("SELECT COUNT(*) FROM threads").fetchone()[0]
            messages = conn.execute("SELECT COUNT(*) FROM messages").fetchone()[0]
        return {"threads": threads, "messages": messages, "db_path": str(self.db_path)}
