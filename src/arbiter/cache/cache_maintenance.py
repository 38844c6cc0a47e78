"""Periodic sweep of the TTL caches.

Runs one background task that purges expired entries from every registered
:class:`TTLCache` on a fixed interval and logs the resulting sizes. An
optional retention coroutine (the message store purge) runs on the same tick.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Dict, Mapping

from arbiter.cache.lru_cache import TTLCache
from arbiter.util.logger import get_logger

logger = get_logger("cache_maintenance")


class CacheMaintenance:
    """
    Background sweeper for TTL caches.

    Args:
        caches: Caches to sweep, keyed by a name used in logs.
        get_interval: Callable returning the sweep interval in seconds (read at start).
        size_reporter: Optional callable returning extra sizes to log alongside.
        retention: Optional coroutine function run after each sweep; failures are logged.
    """

    def __init__(
        self,
        caches: Mapping[str, TTLCache],
        get_interval: Callable[[], float],
        size_reporter: Callable[[], Dict[str, int]] | None = None,
        retention: Callable[[], Awaitable[int]] | None = None,
    ) -> None:
        self._caches = dict(caches)
        self._get_interval = get_interval
        self._size_reporter = size_reporter
        self._retention = retention
        self._task: asyncio.Task | None = None

    def sweep_once(self) -> Dict[str, int]:
        """Sweep every cache now and return the number of entries removed per cache."""
        removed: Dict[str, int] = {}
        for name, cache in self._caches.items():
            try:
                removed[name] = cache.sweep()
            except Exception as exc:
                logger.warning("[CACHE] Sweep of %s failed: %s", name, exc)
                removed[name] = 0

        sizes = {name: len(cache) for name, cache in self._caches.items()}
        if self._size_reporter is not None:
            sizes.update(self._size_reporter())
        logger.info("[CACHE] Cleanup completed: removed=%s sizes=%s", removed, sizes)
        return removed

    async def run_retention(self) -> int:
        """Run the retention coroutine once; returns the rows it removed (0 on failure)."""
        if self._retention is None:
            return 0
        try:
            return await self._retention()
        except Exception as exc:
            logger.warning("[CACHE] Retention purge failed: %s", exc)
            return 0

    async def _run_loop(self, interval: float) -> None:
        logger.info("[CACHE] Starting periodic cleanup (interval=%.1fs)", interval)
        try:
            while True:
                await asyncio.sleep(interval)
                self.sweep_once()
                await self.run_retention()
        except asyncio.CancelledError:
            logger.info("[CACHE] Periodic cleanup cancelled")
            raise

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            logger.warning("[CACHE] Cleanup task already running")
            return
        self._task = asyncio.create_task(self._run_loop(self._get_interval()), name="cache-maintenance")

    async def shutdown(self) -> None:
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.info("[CACHE] Cache maintenance shutdown complete")
