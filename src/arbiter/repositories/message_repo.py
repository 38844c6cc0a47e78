"""
SQL for the ``messages`` and ``channel_summaries`` tables.

Timestamps are stored as UTC ISO-8601 strings with microseconds, which sort
lexically in time order.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Iterable, List, Sequence, Tuple

import aiosqlite

from arbiter.datatypes.message_datatypes import ChannelSummary, MessageFilter, MessageRecord
from arbiter.util.logger import get_logger

logger = get_logger("message_repo")

_MESSAGE_COLUMNS = "row_id, message_id, author_id, author_name, channel_id, scope_id, content, is_bot, created_at"


def to_db_time(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_db_time(value: str) -> datetime:
    return datetime.fromisoformat(value)


def _row_to_record(row: aiosqlite.Row) -> MessageRecord:
    return MessageRecord(
        id=row["message_id"],
        author_id=row["author_id"],
        channel_id=row["channel_id"],
        scope_id=row["scope_id"],
        content=row["content"],
        created_at=from_db_time(row["created_at"]),
        is_bot=bool(row["is_bot"]),
        author_name=row["author_name"],
        row_id=row["row_id"],
    )


def _row_to_summary(row: aiosqlite.Row) -> ChannelSummary:
    try:
        users = json.loads(row["users"] or "[]")
    except json.JSONDecodeError:
        users = []
    return ChannelSummary(
        channel_id=row["channel_id"],
        scope_id=row["scope_id"],
        summary=row["summary"],
        start_at=from_db_time(row["start_at"]),
        end_at=from_db_time(row["end_at"]),
        users=[str(u) for u in users],
        created_at=from_db_time(row["created_at"]),
    )


def _where(message_filter: MessageFilter) -> Tuple[str, List[object]]:
    clauses = ["scope_id = ?", "channel_id = ?"]
    params: List[object] = [message_filter.scope_id, message_filter.channel_id]
    if message_filter.author_id is not None:
        clauses.append("author_id = ?")
        params.append(message_filter.author_id)
    if message_filter.exclude_message_id is not None:
        clauses.append("message_id != ?")
        params.append(message_filter.exclude_message_id)
    return " AND ".join(clauses), params


class MessageRepo:
    """Low-level reads and writes; callers own the connection and transaction."""

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    @staticmethod
    async def insert(conn: aiosqlite.Connection, record: MessageRecord) -> int:
        cursor = await conn.execute(
            "INSERT INTO messages (message_id, author_id, author_name, channel_id, scope_id, content, is_bot, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (
                record.id,
                record.author_id,
                record.author_name,
                record.channel_id,
                record.scope_id,
                record.content,
                int(record.is_bot),
                to_db_time(record.created_at),
            ),
        )
        return int(cursor.lastrowid)

    @staticmethod
    async def delete_many(conn: aiosqlite.Connection, row_ids: Iterable[int]) -> int:
        ids = list(row_ids)
        if not ids:
            return 0
        placeholders = ", ".join("?" for _ in ids)
        cursor = await conn.execute(f"DELETE FROM messages WHERE row_id IN ({placeholders})", ids)
        return cursor.rowcount

    @staticmethod
    async def delete_older_than(conn: aiosqlite.Connection, cutoff: datetime) -> int:
        cursor = await conn.execute("DELETE FROM messages WHERE created_at < ?", (to_db_time(cutoff),))
        return cursor.rowcount

    @staticmethod
    async def insert_summary(conn: aiosqlite.Connection, summary: ChannelSummary) -> int:
        cursor = await conn.execute(
            "INSERT INTO channel_summaries (channel_id, scope_id, summary, start_at, end_at, users, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                summary.channel_id,
                summary.scope_id,
                summary.summary,
                to_db_time(summary.start_at),
                to_db_time(summary.end_at),
                json.dumps(list(summary.users)),
                to_db_time(summary.created_at),
            ),
        )
        return int(cursor.lastrowid)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @staticmethod
    async def find(
        conn: aiosqlite.Connection,
        message_filter: MessageFilter,
        limit: int,
        newest_first: bool = True,
    ) -> List[MessageRecord]:
        where, params = _where(message_filter)
        order = "DESC" if newest_first else "ASC"
        cursor = await conn.execute(
            f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE {where} "
            f"ORDER BY created_at {order}, row_id {order} LIMIT ?",
            (*params, limit),
        )
        rows = await cursor.fetchall()
        return [_row_to_record(row) for row in rows]

    @staticmethod
    async def count(conn: aiosqlite.Connection, message_filter: MessageFilter) -> int:
        where, params = _where(message_filter)
        cursor = await conn.execute(f"SELECT COUNT(*) FROM messages WHERE {where}", params)
        row = await cursor.fetchone()
        return int(row[0]) if row else 0

    @staticmethod
    async def recent_summaries(
        conn: aiosqlite.Connection, channel_id: str, scope_id: str, limit: int
    ) -> List[ChannelSummary]:
        cursor = await conn.execute(
            "SELECT channel_id, scope_id, summary, start_at, end_at, users, created_at "
            "FROM channel_summaries WHERE scope_id = ? AND channel_id = ? "
            "ORDER BY created_at DESC, id DESC LIMIT ?",
            (scope_id, channel_id, limit),
        )
        rows = await cursor.fetchall()
        return [_row_to_summary(row) for row in rows]


def record_ids(records: Sequence[MessageRecord]) -> List[int]:
    return [r.row_id for r in records if r.row_id is not None]
