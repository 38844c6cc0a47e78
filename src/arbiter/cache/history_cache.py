"""
Recent-history cache keyed by (author, channel, scope) and (channel, scope).

Every stored message is prepended to two parallel bounded sequences, one
for its author in the channel and one for the channel as a whole. Both
live in a single :class:`LRUCache`, so rarely used scopes age out as a unit.

The cache only ever holds a prefix of what the store holds. Callers that
need ``n`` messages and find fewer here must go to the store and
repopulate (see :class:`arbiter.services.history_service.HistoryService`).
A sequence refilled from a store read that came back short holds the whole
history of its key and is marked complete; reads of a complete sequence
never miss.

Refills merge with what is cached instead of replacing it, so a message
added while the store read was pending is kept.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple, Union

from arbiter.cache.lru_cache import LRUCache
from arbiter.datatypes.message_datatypes import MessageRecord
from arbiter.util.logger import get_logger

logger = get_logger("history_cache")

UserKey = Tuple[str, str, str, str]
ChannelKey = Tuple[str, str, str]
HistoryKey = Union[UserKey, ChannelKey]


def user_key(author_id: str, channel_id: str, scope_id: str) -> UserKey:
    return ("user", author_id, channel_id, scope_id)


def channel_key(channel_id: str, scope_id: str) -> ChannelKey:
    return ("channel", channel_id, scope_id)


@dataclass(slots=True)
class HistorySequence:
    records: List[MessageRecord] = field(default_factory=list)
    complete: bool = False


def merge_newest_first(*batches: Sequence[MessageRecord]) -> List[MessageRecord]:
    """Union of ``batches`` by message id, newest first; earlier batches win on duplicates."""
    by_id: Dict[str, MessageRecord] = {}
    for batch in batches:
        for record in batch:
            by_id.setdefault(record.id, record)
    return sorted(by_id.values(), key=lambda m: m.created_at, reverse=True)


class MessageHistoryCache:
    """
    Bounded LRU of newest-first message sequences.

    Attributes:
        user_history_length (int): Messages kept per (author, channel, scope).
        channel_history_length (int): Messages kept per (channel, scope).
    """

    def __init__(
        self,
        max_entries: int = 1000,
        user_history_length: int = 20,
        channel_history_length: int = 50,
    ) -> None:
        self._lru: LRUCache[HistoryKey, HistorySequence] = LRUCache(max_entries, name="history")
        self.user_history_length = user_history_length
        self.channel_history_length = channel_history_length

    def _prepend(self, key: HistoryKey, record: MessageRecord, length: int) -> None:
        current = self._lru.get(key) or HistorySequence()
        records = [record, *current.records]
        self._lru.set(key, HistorySequence(records[:length], current.complete and len(records) <= length))

    def add_message(self, record: MessageRecord) -> None:
        """Prepend ``record`` to its user and channel sequences."""
        self._prepend(user_key(record.author_id, record.channel_id, record.scope_id), record, self.user_history_length)
        self._prepend(channel_key(record.channel_id, record.scope_id), record, self.channel_history_length)

    def _read(self, key: HistoryKey, limit: int, exclude_message_id: Optional[str]) -> Optional[List[MessageRecord]]:
        sequence = self._lru.get(key) or HistorySequence()
        cached = sequence.records
        if exclude_message_id:
            cached = [m for m in cached if m.id != exclude_message_id]
        if len(cached) >= limit or sequence.complete:
            logger.debug("[CACHE] History hit for %s (%d cached)", key, len(cached))
            return cached[:limit]
        logger.debug("[CACHE] History miss for %s (%d cached, %d wanted)", key, len(cached), limit)
        return None

    def _refill(
        self, key: HistoryKey, records: Sequence[MessageRecord], length: int, complete: bool
    ) -> List[MessageRecord]:
        current = self._lru.get(key) or HistorySequence()
        merged = merge_newest_first(current.records, records)
        self._lru.set(key, HistorySequence(merged[:length], complete and len(merged) <= length))
        return merged

    def get_user_history(
        self,
        author_id: str,
        channel_id: str,
        scope_id: str,
        limit: int,
        exclude_message_id: Optional[str] = None,
    ) -> Optional[List[MessageRecord]]:
        """Return up to ``limit`` newest messages, or ``None`` on a miss or shortfall."""
        return self._read(user_key(author_id, channel_id, scope_id), limit, exclude_message_id)

    def get_channel_history(
        self,
        channel_id: str,
        scope_id: str,
        limit: int,
        exclude_message_id: Optional[str] = None,
    ) -> Optional[List[MessageRecord]]:
        return self._read(channel_key(channel_id, scope_id), limit, exclude_message_id)

    def put_user_history(
        self,
        author_id: str,
        channel_id: str,
        scope_id: str,
        records: Sequence[MessageRecord],
        complete: bool = False,
    ) -> List[MessageRecord]:
        """Merge store ``records`` (newest first) into the user sequence.

        ``complete`` says the store has nothing older than ``records``.
        Returns the merged list before truncation.
        """
        return self._refill(
            user_key(author_id, channel_id, scope_id), records, self.user_history_length, complete
        )

    def put_channel_history(
        self, channel_id: str, scope_id: str, records: Sequence[MessageRecord], complete: bool = False
    ) -> List[MessageRecord]:
        return self._refill(channel_key(channel_id, scope_id), records, self.channel_history_length, complete)

    def invalidate_channel(self, channel_id: str, scope_id: str) -> None:
        """Drop every cached sequence of one channel, e.g. after pruning."""
        for key in self._lru:
            if key[0] == "channel" and key[1:] == (channel_id, scope_id):
                self._lru.delete(key)
            elif key[0] == "user" and key[2:] == (channel_id, scope_id):
                self._lru.delete(key)

    def clear(self) -> None:
        self._lru.clear()

    def __len__(self) -> int:
        return len(self._lru)

    def stats(self) -> dict:
        return self._lru.stats()
