"""
Message store schema.

Two tables: ``messages`` holds the append-only chat log, ``channel_summaries``
holds the condensed logs that replace pruned blocks of messages.
"""

import aiosqlite

from arbiter.util.logger import get_logger

logger = get_logger("database_schema")

SCHEMA_VERSION = 1


class SchemaManager:
    """Creates tables, indexes and version tracking for the message store."""

    @staticmethod
    async def initialize_schema(db: aiosqlite.Connection) -> None:
        await SchemaManager._create_tables(db)
        await SchemaManager._create_indexes(db)
        await SchemaManager._update_schema_version(db)
        await db.commit()
        logger.info("[SCHEMA] Database schema initialized (version %d)", SCHEMA_VERSION)

    @staticmethod
    async def _create_tables(db: aiosqlite.Connection) -> None:
        await db.execute("""
            CREATE TABLE IF NOT EXISTS messages (
                row_id INTEGER PRIMARY KEY AUTOINCREMENT,
                message_id TEXT NOT NULL,
                author_id TEXT NOT NULL,
                author_name TEXT NOT NULL DEFAULT '',
                channel_id TEXT NOT NULL,
                scope_id TEXT NOT NULL,
                content TEXT NOT NULL DEFAULT '',
                is_bot INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS channel_summaries (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                channel_id TEXT NOT NULL,
                scope_id TEXT NOT NULL,
                summary TEXT NOT NULL,
                start_at TEXT NOT NULL,
                end_at TEXT NOT NULL,
                users TEXT NOT NULL DEFAULT '[]',
                created_at TEXT NOT NULL
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

    @staticmethod
    async def _create_indexes(db: aiosqlite.Connection) -> None:
        await db.execute(
            "CREATE INDEX IF NOT EXISTS idx_messages_channel ON messages(scope_id, channel_id, created_at DESC)"
        )
        await db.execute(
            "CREATE INDEX IF NOT EXISTS idx_messages_author "
            "ON messages(scope_id, channel_id, author_id, created_at DESC)"
        )
        await db.execute("CREATE INDEX IF NOT EXISTS idx_messages_message_id ON messages(message_id)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_messages_created ON messages(created_at)")
        await db.execute(
            "CREATE INDEX IF NOT EXISTS idx_summaries_channel "
            "ON channel_summaries(scope_id, channel_id, created_at DESC)"
        )

    @staticmethod
    async def _update_schema_version(db: aiosqlite.Connection) -> None:
        await db.execute("INSERT OR IGNORE INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
