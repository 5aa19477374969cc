"""TTL-bounded in-memory caches for user records and guild rankings."""

from __future__ import annotations

import time
from typing import Callable, Dict, Generic, Hashable, List, Optional, Tuple, TypeVar

from storage.models import RankingEntry, RecordKey, UserRecord

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class TTLCache(Generic[K, V]):
    """Map whose entries expire ``ttl`` seconds after they were stored.

    Every key also carries a generation counter bumped by :meth:`invalidate`.
    A reader that fetched a value from a slow source passes the generation it
    saw before fetching to :meth:`set`; if a writer invalidated the key in
    the meantime the stale value is dropped instead of cached.
    """

    def __init__(self, ttl: float, *, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl = float(ttl)
        self._clock = clock
        self._entries: Dict[K, Tuple[float, V]] = {}
        self._generations: Dict[K, int] = {}
        self._epoch = 0
        self.stats = {"hits": 0, "misses": 0, "invalidations": 0, "dropped_sets": 0}

    def generation(self, key: K) -> Tuple[int, int]:
        return self._epoch, self._generations.get(key, 0)

    def get(self, key: K) -> Optional[V]:
        entry = self._entries.get(key)
        if entry is None:
            self.stats["misses"] += 1
            return None
        stored_at, value = entry
        if self._clock() - stored_at > self.ttl:
            del self._entries[key]
            self.stats["misses"] += 1
            return None
        self.stats["hits"] += 1
        return value

    def set(self, key: K, value: V, *, generation: Optional[Tuple[int, int]] = None) -> bool:
        """Store ``value``; returns ``False`` when dropped as stale."""
        if generation is not None and generation != self.generation(key):
            self.stats["dropped_sets"] += 1
            return False
        self._entries[key] = (self._clock(), value)
        return True

    def invalidate(self, key: K) -> None:
        self._entries.pop(key, None)
        self._generations[key] = self._generations.get(key, 0) + 1
        self.stats["invalidations"] += 1

    def invalidate_all(self) -> None:
        self._entries.clear()
        self._generations.clear()
        self._epoch += 1
        self.stats["invalidations"] += 1

    def __len__(self) -> int:
        return len(self._entries)


class RecordCache(TTLCache[RecordKey, UserRecord]):
    """``(guild_id, user_id)`` -> :class:`UserRecord`."""


class RankingCache(TTLCache[str, List[RankingEntry]]):
    """``guild_id`` -> full sorted ranking of that guild.

    The whole ranking is cached once; any ``limit`` is served by truncation.
    """

    def get_top(self, guild_id: str, limit: int) -> Optional[List[RankingEntry]]:
        ranking = self.get(guild_id)
        if ranking is None:
            return None
        return list(ranking[:limit])


__all__ = ["TTLCache", "RecordCache", "RankingCache"]
