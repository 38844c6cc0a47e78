"""
Durable message store backed by SQLite.

Every operation runs through the store breaker, so a failing database
fails fast instead of stalling each detection that touches history.
aiosqlite errors surface as :class:`UpstreamUnavailable`.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Awaitable, Callable, Iterable, List, Optional, TypeVar

import aiosqlite

from arbiter.core.errors import UpstreamUnavailable
from arbiter.database.db_connection import ConnectionManager
from arbiter.database.db_schema import SchemaManager
from arbiter.datatypes.message_datatypes import ChannelSummary, MessageFilter, MessageRecord
from arbiter.repositories.message_repo import MessageRepo
from arbiter.resilience.circuit_breaker import CircuitBreaker
from arbiter.util.logger import get_logger

logger = get_logger("message_store")

T = TypeVar("T")


class MessageStore:
    """
    Append-only message log plus channel summaries.

    Args:
        connection: Connection manager; opened by :meth:`initialize`.
        breaker: Breaker of the store dependency. A private one is created
            when omitted.
    """

    def __init__(self, connection: Optional[ConnectionManager] = None, breaker: Optional[CircuitBreaker] = None) -> None:
        self._connection = connection or ConnectionManager()
        self._breaker = breaker or CircuitBreaker("store")

    async def initialize(self, path: Path) -> None:
        await self._connection.open(path)
        await SchemaManager.initialize_schema(self._connection.connection)

    async def shutdown(self) -> None:
        await self._connection.close()

    async def _guarded(self, operation: Callable[[], Awaitable[T]]) -> T:
        async def wrapped() -> T:
            try:
                return await operation()
            except aiosqlite.Error as exc:
                raise UpstreamUnavailable("store", str(exc)) from exc

        return await self._breaker.execute(wrapped)

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def insert(self, record: MessageRecord) -> int:
        """Append ``record`` and return its row id."""
        async def op() -> int:
            async with self._connection.transaction() as conn:
                return await MessageRepo.insert(conn, record)

        return await self._guarded(op)

    async def find_recent(
        self,
        message_filter: MessageFilter,
        limit: int,
        exclude_message_id: Optional[str] = None,
    ) -> List[MessageRecord]:
        """Return up to ``limit`` matching messages, newest first."""
        if exclude_message_id is not None and message_filter.exclude_message_id is None:
            message_filter = MessageFilter(
                channel_id=message_filter.channel_id,
                scope_id=message_filter.scope_id,
                author_id=message_filter.author_id,
                exclude_message_id=exclude_message_id,
            )

        async def op() -> List[MessageRecord]:
            async with self._connection.read() as conn:
                return await MessageRepo.find(conn, message_filter, limit, newest_first=True)

        return await self._guarded(op)

    async def find_oldest(self, message_filter: MessageFilter, limit: int) -> List[MessageRecord]:
        """Return up to ``limit`` matching messages, oldest first."""
        async def op() -> List[MessageRecord]:
            async with self._connection.read() as conn:
                return await MessageRepo.find(conn, message_filter, limit, newest_first=False)

        return await self._guarded(op)

    async def count(self, message_filter: MessageFilter) -> int:
        async def op() -> int:
            async with self._connection.read() as conn:
                return await MessageRepo.count(conn, message_filter)

        return await self._guarded(op)

    async def delete_many(self, row_ids: Iterable[int]) -> int:
        ids = list(row_ids)

        async def op() -> int:
            async with self._connection.transaction() as conn:
                return await MessageRepo.delete_many(conn, ids)

        return await self._guarded(op)

    async def purge_older_than(self, days: int, now: Optional[datetime] = None) -> int:
        """Delete messages older than ``days`` days (retention policy)."""
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=days)

        async def op() -> int:
            async with self._connection.transaction() as conn:
                return await MessageRepo.delete_older_than(conn, cutoff)

        removed = await self._guarded(op)
        if removed:
            logger.info("[STORE] Retention purge removed %d messages older than %d days", removed, days)
        return removed

    # ------------------------------------------------------------------
    # Summaries
    # ------------------------------------------------------------------

    async def insert_summary(self, summary: ChannelSummary) -> int:
        async def op() -> int:
            async with self._connection.transaction() as conn:
                return await MessageRepo.insert_summary(conn, summary)

        return await self._guarded(op)

    async def replace_with_summary(self, summary: ChannelSummary, row_ids: Iterable[int]) -> int:
        """Insert ``summary`` and delete the summarised rows in one transaction."""
        ids = list(row_ids)

        async def op() -> int:
            async with self._connection.transaction() as conn:
                await MessageRepo.insert_summary(conn, summary)
                return await MessageRepo.delete_many(conn, ids)

        return await self._guarded(op)

    async def recent_summaries(self, channel_id: str, scope_id: str, limit: int = 3) -> List[ChannelSummary]:
        """Return up to ``limit`` summaries of a channel, newest first."""
        async def op() -> List[ChannelSummary]:
            async with self._connection.read() as conn:
                return await MessageRepo.recent_summaries(conn, channel_id, scope_id, limit)

        return await self._guarded(op)

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker
