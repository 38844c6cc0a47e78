"""
Message history: durable store plus bounded LRU cache, with summarization pruning.

Reads go to the cache first and fall through to the store on a miss or a
shortfall, repopulating the cache from what the store returned. A cache
failure never fails a read; the store answer is used instead.

When a channel grows past ``max_context_messages_per_channel`` messages the
oldest ``summary_block_size`` of them are condensed into a
:class:`ChannelSummary` and deleted. Pruning runs as a background task per
channel, after the message that triggered it is stored and cached.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, Union

from arbiter.cache.history_cache import MessageHistoryCache
from arbiter.configuration.app_configuration import StorageSettings
from arbiter.database.message_store import MessageStore
from arbiter.datatypes.message_datatypes import ChannelSummary, MessageFilter, MessageRecord
from arbiter.detection.prefilter import is_trivial
from arbiter.detection.prompts import build_summary_prompt
from arbiter.repositories.message_repo import record_ids
from arbiter.util.logger import get_logger

logger = get_logger("history_service")

FAILED_SUMMARY = "[failed to summarize]"
MAX_SUMMARIES_IN_CONTEXT = 3

Summarizer = Callable[[str], Awaitable[Optional[str]]]
ChannelItem = Union[MessageRecord, ChannelSummary]


def worth_summarizing(block: Sequence[MessageRecord], trivial_threshold: float) -> bool:
    """A block is summarized only if something in it is substantive and trivia stays under the threshold."""
    if not block:
        return False
    trivial = sum(1 for m in block if is_trivial(m.content))
    return trivial < len(block) and trivial / len(block) <= trivial_threshold


class HistoryService:
    """
    Args:
        store: Durable message store.
        cache: Bounded LRU of recent user and channel sequences.
        settings: Pruning thresholds.
        summarizer: Coroutine turning a summary prompt into text (``None`` on failure).
    """

    def __init__(
        self,
        store: MessageStore,
        cache: MessageHistoryCache,
        settings: Optional[StorageSettings] = None,
        summarizer: Optional[Summarizer] = None,
    ) -> None:
        self._store = store
        self._cache = cache
        self._settings = settings or StorageSettings()
        self._summarizer = summarizer
        self._pruning: Dict[Tuple[str, str], asyncio.Task] = {}

    def set_summarizer(self, summarizer: Summarizer) -> None:
        self._summarizer = summarizer

    # ------------------------------------------------------
    # Writes
    # ------------------------------------------------------

    async def save_message(self, record: MessageRecord, *, prune: bool = True) -> int:
        """Store ``record`` and add it to the cache before returning its row id.

        Raises:
            UpstreamUnavailable: If the store is unreachable.
        """
        row_id = await self._store.insert(record)
        try:
            self._cache.add_message(record)
        except Exception as exc:
            logger.warning("[HISTORY] Cache update failed for message %s: %s", record.id, exc)

        if prune:
            self._schedule_pruning(record.channel_id, record.scope_id)
        return row_id

    def _schedule_pruning(self, channel_id: str, scope_id: str) -> None:
        key = (channel_id, scope_id)
        running = self._pruning.get(key)
        if running is not None and not running.done():
            return
        task = asyncio.create_task(self._prune_quietly(channel_id, scope_id), name=f"prune-{scope_id}-{channel_id}")
        self._pruning[key] = task
        task.add_done_callback(lambda _t, k=key: self._pruning.pop(k, None))

    async def _prune_quietly(self, channel_id: str, scope_id: str) -> None:
        try:
            await self.prune_channel(channel_id, scope_id)
        except Exception as exc:
            logger.warning("[HISTORY] Pruning channel %s failed: %s", channel_id, exc)

    async def prune_channel(self, channel_id: str, scope_id: str) -> Optional[ChannelSummary]:
        """Summarize and delete the oldest block if the channel is over its limit."""
        channel_filter = MessageFilter.for_channel(channel_id, scope_id)
        count = await self._store.count(channel_filter)
        if count <= self._settings.max_context_messages_per_channel:
            return None

        block = await self._store.find_oldest(channel_filter, self._settings.summary_block_size)
        if not worth_summarizing(block, self._settings.trivial_history_threshold):
            logger.debug("[HISTORY] Oldest block of channel %s is mostly trivial, not summarizing", channel_id)
            return None

        text = await self._summarize(block)
        users = list(dict.fromkeys(m.author_name or m.author_id for m in block))
        summary = ChannelSummary(
            channel_id=channel_id,
            scope_id=scope_id,
            summary=text,
            start_at=block[0].created_at,
            end_at=block[-1].created_at,
            users=users,
            created_at=datetime.now(timezone.utc),
        )
        removed = await self._store.replace_with_summary(summary, record_ids(block))
        self._cache.invalidate_channel(channel_id, scope_id)
        logger.info("[HISTORY] Summarized %d messages of channel %s", removed, channel_id)
        return summary

    async def _summarize(self, block: Sequence[MessageRecord]) -> str:
        if self._summarizer is None:
            return FAILED_SUMMARY
        try:
            text = await self._summarizer(build_summary_prompt(block))
        except Exception as exc:
            logger.warning("[HISTORY] Summary error: %s", exc)
            return FAILED_SUMMARY
        return text.strip() if text and text.strip() else FAILED_SUMMARY

    async def drain(self) -> None:
        """Wait for in-flight pruning tasks."""
        if self._pruning:
            await asyncio.gather(*list(self._pruning.values()), return_exceptions=True)

    async def shutdown(self) -> None:
        for task in list(self._pruning.values()):
            task.cancel()
        await self.drain()

    # ------------------------------------------------------
    # Reads
    # ------------------------------------------------------

    async def fetch_user_history(
        self,
        author_id: str,
        channel_id: str,
        scope_id: str,
        limit: int = 10,
        exclude_message_id: Optional[str] = None,
    ) -> List[MessageRecord]:
        """Newest-first messages of one author in one channel."""
        try:
            cached = self._cache.get_user_history(author_id, channel_id, scope_id, limit, exclude_message_id)
        except Exception as exc:
            logger.warning("[HISTORY] Cache read failed: %s", exc)
            cached = None
        if cached is not None:
            return cached

        fetch = max(limit, self._cache.user_history_length)
        records = await self._store.find_recent(
            MessageFilter(channel_id=channel_id, scope_id=scope_id, author_id=author_id), fetch
        )
        try:
            records = self._cache.put_user_history(
                author_id, channel_id, scope_id, records, complete=len(records) < fetch
            )
        except Exception as exc:
            logger.warning("[HISTORY] Cache repopulation failed: %s", exc)

        if exclude_message_id:
            records = [m for m in records if m.id != exclude_message_id]
        return records[:limit]

    async def fetch_channel_history(
        self,
        channel_id: str,
        scope_id: str,
        limit: int = 15,
        exclude_message_id: Optional[str] = None,
    ) -> List[ChannelItem]:
        """Oldest-first channel context: up to three summaries, then recent messages."""
        summaries = await self._store.recent_summaries(channel_id, scope_id, MAX_SUMMARIES_IN_CONTEXT)

        try:
            messages = self._cache.get_channel_history(channel_id, scope_id, limit, exclude_message_id)
        except Exception as exc:
            logger.warning("[HISTORY] Cache read failed: %s", exc)
            messages = None

        if messages is None:
            fetch = max(limit, self._cache.channel_history_length)
            records = await self._store.find_recent(MessageFilter.for_channel(channel_id, scope_id), fetch)
            try:
                records = self._cache.put_channel_history(
                    channel_id, scope_id, records, complete=len(records) < fetch
                )
            except Exception as exc:
                logger.warning("[HISTORY] Cache repopulation failed: %s", exc)
            if exclude_message_id:
                records = [m for m in records if m.id != exclude_message_id]
            messages = records[:limit]

        return [*reversed(summaries), *reversed(messages)]

    async def fetch_user_messages_for_detection(self, record: MessageRecord, limit: int = 50) -> List[MessageRecord]:
        """The author's prior messages in the record's channel, newest first, without the record."""
        return await self.fetch_user_history(
            record.author_id, record.channel_id, record.scope_id, limit, exclude_message_id=record.id
        )
