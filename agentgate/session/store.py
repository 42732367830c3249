"""
Thread persistence.

A thread is a named conversation owned by one user.  Each completed exchange
is appended as one row holding that exchange's messages, its usage records
and free-form metadata (upstream response id, agent name).

``SqliteThreadStore`` uses ``aiosqlite`` with a write lock to serialise
mutations (SQLite only supports one writer at a time in WAL mode).  Schema is
version-tracked via a ``schema_version`` table; migrations are applied
automatically on ``init()``.
"""

from __future__ import annotations

import asyncio
import json
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path

import aiosqlite

from agentgate.types import ThreadNotFoundError


class ThreadStore(ABC):
    @abstractmethod
    async def persist(
        self,
        messages: list[dict],
        usage: list[dict],
        metadata: dict,
        *,
        thread_id: str | None,
        user_id: str,
        title: str = "",
    ) -> str:
        """Append one exchange; creates the thread when *thread_id* is ``None``.  Returns the thread id."""
        ...

    @abstractmethod
    async def load(self, thread_id: str, user_id: str) -> list[dict]:
        """
        Return the thread's messages in order.

        Raises ``ThreadNotFoundError`` if the thread does not exist or belongs
        to another user.
        """
        ...


# ---------------------------------------------------------------------------
# Schema management
# ---------------------------------------------------------------------------

SCHEMA_VERSION = 1

MIGRATIONS: dict[int, list[str]] = {
    1: [
        """CREATE TABLE IF NOT EXISTS schema_version (
            version INTEGER NOT NULL
        )""",
        """CREATE TABLE IF NOT EXISTS threads (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            name TEXT NOT NULL DEFAULT '',
            created_at TEXT NOT NULL
        )""",
        """CREATE TABLE IF NOT EXISTS thread_messages (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            thread_id TEXT NOT NULL,
            messages TEXT NOT NULL,
            usage TEXT NOT NULL DEFAULT '[]',
            extra TEXT NOT NULL DEFAULT '{}',
            created_at TEXT NOT NULL,
            FOREIGN KEY (thread_id) REFERENCES threads(id) ON DELETE CASCADE
        )""",
        """CREATE INDEX IF NOT EXISTS idx_threads_user ON threads(user_id)""",
        """CREATE INDEX IF NOT EXISTS idx_thread_messages_thread ON thread_messages(thread_id)""",
    ],
}


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class SqliteThreadStore(ThreadStore):
    """
    Async SQLite thread store.

    Usage::

        store = SqliteThreadStore("~/.agentgate/threads.db")
        await store.init()
        tid = await store.persist(messages, usage, {}, thread_id=None, user_id="u1")
        history = await store.load(tid, "u1")
        await store.close()
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = Path(db_path).expanduser().resolve()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._write_lock = asyncio.Lock()
        self._db: aiosqlite.Connection | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def init(self) -> None:
        """Open the database and ensure the schema is up to date."""
        self._db = await aiosqlite.connect(str(self.db_path))
        self._db.row_factory = aiosqlite.Row
        await self._db.execute("PRAGMA journal_mode=WAL")
        await self._db.execute("PRAGMA foreign_keys=ON")
        await self._run_migrations()

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None

    async def __aenter__(self) -> SqliteThreadStore:
        await self.init()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Migration runner
    # ------------------------------------------------------------------

    async def _get_schema_version(self) -> int:
        """Return the current schema version, or 0 if not initialised."""
        assert self._db is not None
        cursor = await self._db.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name='schema_version'"
        )
        row = await cursor.fetchone()
        if row is None:
            return 0
        cursor = await self._db.execute("SELECT version FROM schema_version LIMIT 1")
        row = await cursor.fetchone()
        if row is None:
            return 0
        return int(row[0])

    async def _set_schema_version(self, version: int) -> None:
        assert self._db is not None
        cursor = await self._db.execute("SELECT COUNT(*) FROM schema_version")
        row = await cursor.fetchone()
        assert row is not None
        if row[0] == 0:
            await self._db.execute("INSERT INTO schema_version (version) VALUES (?)", (version,))
        else:
            await self._db.execute("UPDATE schema_version SET version = ?", (version,))

    async def _run_migrations(self) -> None:
        assert self._db is not None
        current = await self._get_schema_version()
        if current >= SCHEMA_VERSION:
            return

        for version in range(current + 1, SCHEMA_VERSION + 1):
            stmts = MIGRATIONS.get(version)
            if stmts is None:
                raise RuntimeError(f"Missing migration for schema version {version}")
            for stmt in stmts:
                await self._db.execute(stmt)
            await self._set_schema_version(version)

        await self._db.commit()

    async def get_schema_version(self) -> int:
        return await self._get_schema_version()

    # ------------------------------------------------------------------
    # Threads
    # ------------------------------------------------------------------

    async def persist(
        self,
        messages: list[dict],
        usage: list[dict],
        metadata: dict,
        *,
        thread_id: str | None,
        user_id: str,
        title: str = "",
    ) -> str:
        assert self._db is not None
        now = datetime.now(timezone.utc).isoformat()

        async with self._write_lock:
            if thread_id is None:
                thread_id = str(uuid.uuid4())
                await self._db.execute(
                    "INSERT INTO threads (id, user_id, name, created_at) VALUES (?, ?, ?, ?)",
                    (thread_id, user_id, title, now),
                )
            else:
                await self._require_owner(thread_id, user_id)
            await self._db.execute(
                """INSERT INTO thread_messages (thread_id, messages, usage, extra, created_at)
                   VALUES (?, ?, ?, ?, ?)""",
                (thread_id, json.dumps(messages), json.dumps(usage), json.dumps(metadata), now),
            )
            await self._db.commit()

        return thread_id

    async def _require_owner(self, thread_id: str, user_id: str) -> None:
        assert self._db is not None
        cursor = await self._db.execute("SELECT user_id FROM threads WHERE id = ?", (thread_id,))
        row = await cursor.fetchone()
        if row is None or row[0] != user_id:
            raise ThreadNotFoundError(f"Thread not found: {thread_id}")

    async def load(self, thread_id: str, user_id: str) -> list[dict]:
        assert self._db is not None
        await self._require_owner(thread_id, user_id)
        cursor = await self._db.execute(
            "SELECT messages FROM thread_messages WHERE thread_id = ? ORDER BY id ASC",
            (thread_id,),
        )
        rows = await cursor.fetchall()
        messages: list[dict] = []
        for row in rows:
            messages.extend(json.loads(row[0]))
        return messages

    async def list_threads(self, user_id: str | None = None) -> list[dict]:
        """Return threads (optionally for one user), newest first."""
        assert self._db is not None
        query = """SELECT t.id, t.user_id, t.name, t.created_at, COUNT(m.id)
                   FROM threads t LEFT JOIN thread_messages m ON m.thread_id = t.id"""
        params: tuple = ()
        if user_id is not None:
            query += " WHERE t.user_id = ?"
            params = (user_id,)
        query += " GROUP BY t.id ORDER BY t.created_at DESC"
        cursor = await self._db.execute(query, params)
        rows = await cursor.fetchall()
        return [
            {"id": r[0], "user_id": r[1], "name": r[2], "created_at": r[3], "exchanges": r[4]}
            for r in rows
        ]

    async def get_thread(self, thread_id: str) -> dict | None:
        """Thread row plus every exchange (messages, usage, metadata)."""
        assert self._db is not None
        cursor = await self._db.execute(
            "SELECT id, user_id, name, created_at FROM threads WHERE id = ?", (thread_id,)
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        cursor = await self._db.execute(
            """SELECT messages, usage, extra, created_at FROM thread_messages
               WHERE thread_id = ? ORDER BY id ASC""",
            (thread_id,),
        )
        exchanges = [
            {
                "messages": json.loads(r[0]),
                "usage": json.loads(r[1]),
                "metadata": json.loads(r[2]),
                "created_at": r[3],
            }
            for r in await cursor.fetchall()
        ]
        return {
            "id": row[0],
            "user_id": row[1],
            "name": row[2],
            "created_at": row[3],
            "exchanges": exchanges,
        }
