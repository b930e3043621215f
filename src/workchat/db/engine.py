"""SQLite async database backing the conversation store.

Conversations are kept Keyv-style: one row per conversation id holding the
serialized message log, with an absolute expiry used for TTL eviction.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import aiosqlite
import structlog

logger = structlog.get_logger()

SCHEMA = """
CREATE TABLE IF NOT EXISTS conversations (
    id TEXT PRIMARY KEY,
    messages TEXT NOT NULL DEFAULT '[]',
    message_count INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    expires_at REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_conversations_expires_at ON conversations(expires_at);
"""


class Database:
    """Async SQLite database for workchat."""

    def __init__(
        self,
        data_dir: str,
        journal_mode: str = "WAL",
        busy_timeout_ms: int = 5000,
        filename: str = "conversations.sqlite",
    ) -> None:
        self.data_dir = Path(data_dir)
        self.db_path = self.data_dir / filename
        self.journal_mode = journal_mode.upper()
        if self.journal_mode not in {"WAL", "DELETE"}:
            raise ValueError(f"Unsupported SQLite journal mode: {journal_mode}")
        self.busy_timeout_ms = int(busy_timeout_ms)
        self._conn: aiosqlite.Connection | None = None

    @property
    def initialized(self) -> bool:
        return self._conn is not None

    async def initialize(self) -> None:
        """Create the database file and schema."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(str(self.db_path))
        self._conn.row_factory = aiosqlite.Row

        # WAL may fail on network filesystems; fall back to DELETE mode there.
        try:
            await self._conn.execute(f"PRAGMA journal_mode={self.journal_mode}")
        except Exception as exc:
            if self.journal_mode == "WAL":
                logger.warning(
                    "db.wal_unavailable_fallback",
                    path=str(self.db_path),
                    error=str(exc),
                )
                await self._conn.execute("PRAGMA journal_mode=DELETE")
            else:
                raise

        await self._conn.execute(f"PRAGMA busy_timeout={self.busy_timeout_ms}")
        await self._conn.executescript(SCHEMA)
        await self._conn.commit()

        logger.info("db.initialized", path=str(self.db_path))

    async def close(self) -> None:
        """Close the database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None
            logger.info("db.closed")

    async def execute(self, sql: str, params: tuple = ()) -> aiosqlite.Cursor:
        """Execute a statement and commit."""
        assert self._conn, "Database not initialized"
        cursor = await self._conn.execute(sql, params)
        await self._conn.commit()
        return cursor

    async def fetch_one(self, sql: str, params: tuple = ()) -> dict[str, Any] | None:
        """Fetch a single row."""
        assert self._conn, "Database not initialized"
        cursor = await self._conn.execute(sql, params)
        row = await cursor.fetchone()
        return dict(row) if row else None

    async def fetch_all(self, sql: str, params: tuple = ()) -> list[dict[str, Any]]:
        """Fetch all rows."""
        assert self._conn, "Database not initialized"
        cursor = await self._conn.execute(sql, params)
        rows = await cursor.fetchall()
        return [dict(row) for row in rows]
