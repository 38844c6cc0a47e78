"""
Single long-lived aiosqlite connection for the message store.

SQLite is single-writer. Writes are serialised by a semaphore held for the
whole transaction; reads share the connection directly, which WAL mode
allows alongside one writer.

Usage
-----
    manager = ConnectionManager()
    await manager.open(Path("data/arbiter.db"))

    async with manager.transaction() as conn:
        await conn.execute("INSERT ...")   # commits on clean exit

    async with manager.read() as conn:
        cursor = await conn.execute("SELECT ...")

    await manager.close()
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

import aiosqlite

from arbiter.util.logger import get_logger

logger = get_logger("database_connection")

_PRAGMAS = [
    "PRAGMA journal_mode = WAL",
    "PRAGMA foreign_keys = ON",
    "PRAGMA synchronous = NORMAL",
    "PRAGMA cache_size = -65536",     # 64 MB page cache
    "PRAGMA temp_store = MEMORY",
    "PRAGMA wal_autocheckpoint = 1000",
]


class ConnectionManager:
    """Owner of the one aiosqlite connection the store uses."""

    def __init__(self) -> None:
        self._conn: aiosqlite.Connection | None = None
        self._write_sem = asyncio.Semaphore(1)
        self._path: Path | None = None

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    @property
    def path(self) -> Path | None:
        return self._path

    async def open(self, path: Path) -> None:
        """Open the database file (creating parent directories) and apply pragmas."""
        if self._conn is not None:
            logger.warning("[DB CONNECTION] open() called but connection already exists, ignoring")
            return

        self._path = path
        path.parent.mkdir(parents=True, exist_ok=True)

        self._conn = await aiosqlite.connect(path)
        self._conn.row_factory = aiosqlite.Row

        for pragma in _PRAGMAS:
            await self._conn.execute(pragma)
        await self._conn.commit()

        logger.info("[DB CONNECTION] Opened connection to %s", path)

    async def close(self) -> None:
        """Checkpoint the WAL and close the connection."""
        if self._conn is None:
            return

        try:
            await self._conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")
            await self._conn.commit()
        except aiosqlite.Error:
            logger.exception("[DB CONNECTION] WAL checkpoint failed during close")
        finally:
            await self._conn.close()
            self._conn = None
            logger.info("[DB CONNECTION] Connection closed")

    @property
    def connection(self) -> aiosqlite.Connection:
        """
        The raw connection.

        Raises:
            RuntimeError: If :meth:`open` has not been awaited yet.
        """
        if self._conn is None:
            raise RuntimeError("ConnectionManager: connection is not open. Await open(path) at startup.")
        return self._conn

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Serialised write transaction: commit on clean exit, roll back on error."""
        conn = self.connection

        async with self._write_sem:
            try:
                yield conn
                await conn.commit()
            except Exception:
                await conn.rollback()
                raise

    @asynccontextmanager
    async def read(self) -> AsyncIterator[aiosqlite.Connection]:
        """Read access; no semaphore is taken."""
        yield self.connection
