"""
In-process TTL cache with stale reads.

Entries are never dropped on expiry or invalidation, only marked expired, so a
caller whose fresh computation fails can still fall back to the last value
written under a key.
"""

import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from utils.logger import get_logger

logger = get_logger("cache_store")


@dataclass
class CacheEntry:
    key: str
    payload: Any
    written_at: float
    ttl_seconds: float
    invalidated: bool = False

    def is_fresh(self, now: float) -> bool:
        return not self.invalidated and (now - self.written_at) < self.ttl_seconds

    def age(self, now: float) -> float:
        return max(0.0, now - self.written_at)


class CacheStore:
    def __init__(
        self,
        default_ttl: float = 3600,
        clock: Callable[[], float] = time.monotonic,
        name: str = "cache",
    ):
        self.default_ttl = default_ttl
        self.name = name
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._hits = 0
        self._misses = 0

    def get(self, key: str) -> Optional[Any]:
        """Fresh payload for ``key``, or None on miss/expiry."""
        entry = self._entries.get(key)
        if entry is None or not entry.is_fresh(self._clock()):
            self._misses += 1
            return None
        self._hits += 1
        return entry.payload

    def get_stale(self, key: str) -> Optional[Any]:
        """Last payload written under ``key`` regardless of age."""
        entry = self._entries.get(key)
        return entry.payload if entry is not None else None

    def get_entry(self, key: str) -> Optional[CacheEntry]:
        return self._entries.get(key)

    def set(self, key: str, payload: Any, ttl: Optional[float] = None) -> None:
        self._entries[key] = CacheEntry(
            key=key,
            payload=payload,
            written_at=self._clock(),
            ttl_seconds=self.default_ttl if ttl is None else ttl,
        )

    def invalidate_all(self) -> int:
        """Expire every entry; stale reads still see them."""
        count = 0
        for entry in self._entries.values():
            if not entry.invalidated:
                entry.invalidated = True
                count += 1
        logger.info("Cache invalidated", cache=self.name, entries=count)
        return count

    def clear(self) -> int:
        """Drop every entry, stale copies included."""
        count = len(self._entries)
        self._entries.clear()
        return count

    def stats(self) -> dict:
        now = self._clock()
        fresh = sum(1 for entry in self._entries.values() if entry.is_fresh(now))
        return {
            "name": self.name,
            "entries": len(self._entries),
            "fresh": fresh,
            "stale": len(self._entries) - fresh,
            "hits": self._hits,
            "misses": self._misses,
        }
