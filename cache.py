from __future__ import annotations
import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Hashable, TypeVar

logger = logging.getLogger(__name__)

V = TypeVar("V")

DEFAULT_MAX_ENTRIES = 64


@dataclass(frozen=True)
class CacheStats:
    name: str
    hits: int
    misses: int
    size: int
    max_size: int

    @property
    def lookups(self) -> int:
        return self.hits + self.misses

    @property
    def hit_ratio(self) -> float:
        return self.hits / self.lookups if self.lookups else 0.0

    def __str__(self) -> str:
        return (f"{self.name} cache: {self.size}/{self.max_size} entries, "
                f"{self.hits} hits / {self.misses} misses ({self.hit_ratio:.0%})")


class QueryCache:
    """
    Bounded LRU cache of query results for one entity type.

    There is no expiry: entries live until evicted or until ``invalidate``
    drops everything after a write. Loads run outside the lock; a load that
    started before an invalidation is returned to its caller but never stored,
    so a racing reader cannot put pre-write rows back.
    """

    def __init__(self, name: str, max_entries: int = DEFAULT_MAX_ENTRIES):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.name = name
        self.max_entries = max_entries
        self._entries: OrderedDict[Hashable, Any] = OrderedDict()
        self._lock = threading.RLock()
        self._generation = 0
        self._hits = 0
        self._misses = 0

    def get_or_load(self, key: Hashable, loader: Callable[[], V]) -> V:
        with self._lock:
            if key in self._entries:
                self._entries.move_to_end(key)
                self._hits += 1
                return self._entries[key]
            self._misses += 1
            generation = self._generation

        value = loader()

        with self._lock:
            if generation == self._generation:
                self._entries[key] = value
                self._entries.move_to_end(key)
                while len(self._entries) > self.max_entries:
                    self._entries.popitem(last=False)
        return value

    def invalidate(self) -> None:
        with self._lock:
            dropped = len(self._entries)
            self._entries.clear()
            self._generation += 1
        logger.debug("%s cache invalidated (%d entries dropped)", self.name, dropped)

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(self.name, self._hits, self._misses, len(self._entries), self.max_entries)

    def reset_stats(self) -> None:
        with self._lock:
            self._hits = self._misses = 0
