"""
Bounded in-memory caches.

- :class:`LRUCache` evicts exactly the least-recently-used key when an insert
  would exceed ``max_size``. Every read or write promotes the key.
- :class:`TTLCache` adds an insertion timestamp to each entry. Expired
  entries read as absent even while physically present, ``sweep()`` purges
  them, and an insert into a full cache first sweeps and then drops the
  oldest ``eviction_fraction`` of entries regardless of TTL.

Both caches enforce their size cap on every insert. They are not
thread-safe; all mutation happens on the event loop thread.
"""

from __future__ import annotations

import math
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, Hashable, Iterator, Optional, TypeVar

from arbiter.util.logger import get_logger

logger = get_logger("lru_cache")

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

_MISSING = object()


@dataclass(slots=True)
class CacheEntry(Generic[V]):
    key: Hashable
    value: V
    inserted_at: float
    expires_at: Optional[float] = None

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


class LRUCache(Generic[K, V]):
    """Size-bounded least-recently-used cache."""

    def __init__(self, max_size: int, name: str = "lru") -> None:
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        self.max_size = max_size
        self.name = name
        self._data: "OrderedDict[K, V]" = OrderedDict()
        self.hits = 0
        self.misses = 0

    def get(self, key: K, default: Any = None) -> Any:
        """Return the cached value and mark ``key`` most recently used."""
        value = self._data.get(key, _MISSING)
        if value is _MISSING:
            self.misses += 1
            return default
        self._data.move_to_end(key)
        self.hits += 1
        return value

    def set(self, key: K, value: V) -> None:
        if key in self._data:
            self._data.move_to_end(key)
        elif len(self._data) >= self.max_size:
            evicted, _ = self._data.popitem(last=False)
            logger.debug("[CACHE] %s evicted LRU key %s", self.name, evicted)
        self._data[key] = value

    def delete(self, key: K) -> bool:
        return self._data.pop(key, _MISSING) is not _MISSING

    def clear(self) -> None:
        self._data.clear()

    def keys(self) -> list[K]:
        """Keys from least to most recently used."""
        return list(self._data.keys())

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)

    def __iter__(self) -> Iterator[K]:
        return iter(list(self._data.keys()))

    def stats(self) -> Dict[str, int]:
        return {"size": len(self._data), "max_size": self.max_size, "hits": self.hits, "misses": self.misses}


class TTLCache(Generic[K, V]):
    """Size-bounded LRU cache whose entries also expire by age.

    Args:
        max_size: Hard cap on the number of entries.
        ttl_seconds: Entry lifetime from insertion. ``None`` disables expiry
            and leaves only the size bound.
        eviction_fraction: Share of ``max_size`` dropped, oldest insertion
            first, when an insert finds the cache full after sweeping.
        clock: Time source, injectable for tests.
    """

    def __init__(
        self,
        max_size: int,
        ttl_seconds: Optional[float] = 300.0,
        eviction_fraction: float = 0.25,
        name: str = "ttl",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self.eviction_fraction = eviction_fraction
        self.name = name
        self._clock = clock
        self._entries: "OrderedDict[K, CacheEntry[V]]" = OrderedDict()
        self.hits = 0
        self.misses = 0

    def get(self, key: K, default: Any = None) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return default
        if entry.is_expired(self._clock()):
            del self._entries[key]
            self.misses += 1
            return default
        self._entries.move_to_end(key)
        self.hits += 1
        return entry.value

    def set(self, key: K, value: V) -> None:
        now = self._clock()
        expires_at = now + self.ttl_seconds if self.ttl_seconds is not None else None

        if key in self._entries:
            del self._entries[key]
        elif len(self._entries) >= self.max_size:
            self._make_room(now)

        self._entries[key] = CacheEntry(key=key, value=value, inserted_at=now, expires_at=expires_at)

    def _make_room(self, now: float) -> None:
        self.sweep(now)
        if len(self._entries) < self.max_size:
            return

        to_remove = max(1, math.floor(self.max_size * self.eviction_fraction))
        oldest = sorted(self._entries.values(), key=lambda entry: entry.inserted_at)[:to_remove]
        for entry in oldest:
            self._entries.pop(entry.key, None)
        logger.debug(
            "[CACHE] %s full - evicted %d oldest entries (max %d)", self.name, len(oldest), self.max_size
        )

    def sweep(self, now: Optional[float] = None) -> int:
        """Drop every expired entry and return how many were removed."""
        if self.ttl_seconds is None:
            return 0
        now = self._clock() if now is None else now
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("[CACHE] %s swept %d expired entries", self.name, len(expired))
        return len(expired)

    def delete(self, key: K) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, key: object) -> bool:
        entry = self._entries.get(key)  # type: ignore[arg-type]
        return entry is not None and not entry.is_expired(self._clock())

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> Dict[str, Any]:
        return {
            "size": len(self._entries),
            "max_size": self.max_size,
            "ttl_seconds": self.ttl_seconds,
            "hits": self.hits,
            "misses": self.misses,
        }
