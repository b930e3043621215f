"""Conversation stores — the single source of truth for message logs.

The turn engine reads and writes through the narrow ``get``/``append``/
``replace`` interface, so in-memory and SQLite stores are interchangeable.
Entries expire after ``ttl_seconds`` without a write.

There is no per-conversation lock: two concurrent requests on the same id
can interleave their appends.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import structlog

from workchat.agent.messages import Message, dumps_history, loads_history
from workchat.db.engine import Database
from workchat.errors import StoreError

logger = structlog.get_logger()

DEFAULT_TTL_SECONDS = 60 * 60 * 24


class ConversationStore(ABC):
    """Durable mapping from conversation id to an ordered message log."""

    @abstractmethod
    async def get(self, conversation_id: str) -> list[Message]:
        """Return the log, or ``[]`` for an unknown or expired id."""
        ...

    @abstractmethod
    async def replace(self, conversation_id: str, messages: list[Message]) -> None:
        """Overwrite the whole log (used by summarization)."""
        ...

    @abstractmethod
    async def delete(self, conversation_id: str) -> bool:
        ...

    @abstractmethod
    async def list_conversations(self) -> list[dict[str, Any]]:
        ...

    async def append(self, conversation_id: str, message: Message) -> None:
        """Read-modify-write one message onto the end of the log."""
        history = await self.get(conversation_id)
        history.append(message)
        await self.replace(conversation_id, history)

    async def extend(self, conversation_id: str, messages: list[Message]) -> None:
        """Append a contiguous block of messages in one write."""
        if not messages:
            return
        history = await self.get(conversation_id)
        history.extend(messages)
        await self.replace(conversation_id, history)

    async def close(self) -> None:
        return None


@dataclass
class _Entry:
    messages: list[Message]
    created_at: datetime
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    expires_at: float = 0.0


class InMemoryConversationStore(ConversationStore):
    """Process-local store; good for tests and single-process deployments."""

    def __init__(
        self,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, _Entry] = {}

    def _live(self, conversation_id: str) -> _Entry | None:
        entry = self._entries.get(conversation_id)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            del self._entries[conversation_id]
            logger.info("store.expired", conversation_id=conversation_id)
            return None
        return entry

    async def get(self, conversation_id: str) -> list[Message]:
        entry = self._live(conversation_id)
        # Hand out a copy so callers cannot mutate the stored log in place
        return list(entry.messages) if entry else []

    async def replace(self, conversation_id: str, messages: list[Message]) -> None:
        now = datetime.now(UTC)
        existing = self._live(conversation_id)
        self._entries[conversation_id] = _Entry(
            messages=list(messages),
            created_at=existing.created_at if existing else now,
            updated_at=now,
            expires_at=self._clock() + self.ttl_seconds,
        )

    async def delete(self, conversation_id: str) -> bool:
        return self._entries.pop(conversation_id, None) is not None

    async def list_conversations(self) -> list[dict[str, Any]]:
        for conversation_id in list(self._entries):
            self._live(conversation_id)
        return [
            {
                "id": conversation_id,
                "message_count": len(entry.messages),
                "created_at": entry.created_at.isoformat(),
                "updated_at": entry.updated_at.isoformat(),
            }
            for conversation_id, entry in sorted(
                self._entries.items(), key=lambda item: item[1].updated_at, reverse=True
            )
        ]


class SQLiteConversationStore(ConversationStore):
    """Store backed by the aiosqlite ``Database``; survives restarts."""

    def __init__(
        self,
        db: Database,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.db = db
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    async def initialize(self) -> None:
        if not self.db.initialized:
            await self.db.initialize()
        purged = await self.purge_expired()
        logger.info("store.ready", backend="sqlite", purged=purged)

    async def get(self, conversation_id: str) -> list[Message]:
        try:
            row = await self.db.fetch_one(
                "SELECT messages, expires_at FROM conversations WHERE id = ?",
                (conversation_id,),
            )
            if not row:
                return []
            if row["expires_at"] <= self._clock():
                await self.db.execute("DELETE FROM conversations WHERE id = ?", (conversation_id,))
                logger.info("store.expired", conversation_id=conversation_id)
                return []
            return loads_history(row["messages"])
        except Exception as e:
            logger.error("store.get_failed", conversation_id=conversation_id, error=str(e))
            raise StoreError(f"Failed to load conversation {conversation_id}: {e}") from e

    async def replace(self, conversation_id: str, messages: list[Message]) -> None:
        now = datetime.now(UTC).isoformat()
        try:
            await self.db.execute(
                """INSERT INTO conversations
                       (id, messages, message_count, created_at, updated_at, expires_at)
                   VALUES (?, ?, ?, ?, ?, ?)
                   ON CONFLICT(id) DO UPDATE SET
                       messages = excluded.messages,
                       message_count = excluded.message_count,
                       updated_at = excluded.updated_at,
                       expires_at = excluded.expires_at""",
                (
                    conversation_id,
                    dumps_history(messages),
                    len(messages),
                    now,
                    now,
                    self._clock() + self.ttl_seconds,
                ),
            )
        except Exception as e:
            logger.error("store.write_failed", conversation_id=conversation_id, error=str(e))
            raise StoreError(f"Failed to save conversation {conversation_id}: {e}") from e

    async def delete(self, conversation_id: str) -> bool:
        try:
            cursor = await self.db.execute("DELETE FROM conversations WHERE id = ?", (conversation_id,))
        except Exception as e:
            logger.error("store.delete_failed", conversation_id=conversation_id, error=str(e))
            raise StoreError(f"Failed to delete conversation {conversation_id}: {e}") from e
        return cursor.rowcount > 0

    async def list_conversations(self) -> list[dict[str, Any]]:
        try:
            return await self.db.fetch_all(
                """SELECT id, message_count, created_at, updated_at FROM conversations
                   WHERE expires_at > ? ORDER BY updated_at DESC""",
                (self._clock(),),
            )
        except Exception as e:
            logger.error("store.list_failed", error=str(e))
            raise StoreError(f"Failed to list conversations: {e}") from e

    async def purge_expired(self) -> int:
        """Delete every expired conversation; returns how many were removed."""
        try:
            cursor = await self.db.execute(
                "DELETE FROM conversations WHERE expires_at <= ?", (self._clock(),)
            )
        except Exception as e:
            logger.error("store.purge_failed", error=str(e))
            raise StoreError(f"Failed to purge expired conversations: {e}") from e
        return cursor.rowcount

    async def close(self) -> None:
        await self.db.close()
