"""Process-local read-through cache with TTL, LRU bound and optimistic mutation.

Three regions, each keyed independently:

    threads        thread list by owner id
    messages       message list by thread id
    thread_detail  thread detail by thread id

The remote store stays authoritative; entries only mask latency.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from repodb.config import CacheConfig

logger = logging.getLogger(__name__)


class Region(str, Enum):
    THREADS = "threads"
    MESSAGES = "messages"
    THREAD_DETAIL = "thread_detail"


@dataclass
class CacheEntry:
    value: Any
    inserted_at: float


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    expirations: int = 0
    entries: dict[str, int] = field(default_factory=dict)


class Cache:
    """TTL cache per region, bounded to ``max_entries`` per region (LRU)."""

    def __init__(
        self,
        ttls: dict[Region, float],
        max_entries: int = 512,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttls = {Region(r): float(t) for r, t in ttls.items()}
        self._max_entries = max_entries
        self._clock = clock
        self._lock = threading.RLock()
        self._regions: dict[Region, OrderedDict[str, CacheEntry]] = {r: OrderedDict() for r in Region}
        self._stats = CacheStats()

    @classmethod
    def from_config(cls, config: CacheConfig, clock: Callable[[], float] = time.monotonic) -> Cache:
        return cls(
            {
                Region.THREADS: config.threads_ttl,
                Region.MESSAGES: config.messages_ttl,
                Region.THREAD_DETAIL: config.thread_detail_ttl,
            },
            max_entries=config.max_entries,
            clock=clock,
        )

    def _live(self, region: Region, key: str) -> CacheEntry | None:
        """Return the entry if unexpired, dropping it otherwise. Caller holds the lock."""
        entries = self._regions[region]
        entry = entries.get(key)
        if entry is None:
            return None
        age = self._clock() - entry.inserted_at
        if age > self._ttls.get(region, 0.0):
            del entries[key]
            self._stats.expirations += 1
            logger.debug("Cache expired %s/%s (age %.1fs)", region.value, key, age)
            return None
        entries.move_to_end(key)
        return entry

    def get(self, region: Region, key: str) -> Any | None:
        region = Region(region)
        with self._lock:
            entry = self._live(region, key)
            if entry is None:
                self._stats.misses += 1
                logger.debug("Cache miss %s/%s", region.value, key)
                return None
            self._stats.hits += 1
            logger.debug("Cache hit %s/%s", region.value, key)
            return entry.value

    def set(self, region: Region, key: str, value: Any) -> None:
        region = Region(region)
        with self._lock:
            entries = self._regions[region]
            entries[key] = CacheEntry(value=value, inserted_at=self._clock())
            entries.move_to_end(key)
            while len(entries) > self._max_entries:
                evicted, _ = entries.popitem(last=False)
                self._stats.evictions += 1
                logger.debug("Cache evicted %s/%s", region.value, evicted)

    def apply_optimistic(self, region: Region, key: str, mutator: Callable[[Any], Any]) -> bool:
        """Replace a live entry's value with ``mutator(value)``, keeping its age.

        Returns False, and leaves the cache untouched, when there is no live
        entry to mutate.
        """
        region = Region(region)
        with self._lock:
            entry = self._live(region, key)
            if entry is None:
                return False
            entry.value = mutator(entry.value)
            return True

    def invalidate(self, region: Region, key: str) -> None:
        region = Region(region)
        with self._lock:
            if self._regions[region].pop(key, None) is not None:
                logger.debug("Cache invalidated %s/%s", region.value, key)

    def invalidate_all(self, region: Region | None = None) -> None:
        with self._lock:
            targets = [Region(region)] if region is not None else list(Region)
            for r in targets:
                self._regions[r].clear()

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                hits=self._stats.hits,
                misses=self._stats.misses,
                evictions=self._stats.evictions,
                expirations=self._stats.expirations,
                entries={r.value: len(e) for r, e in self._regions.items()},
            )
