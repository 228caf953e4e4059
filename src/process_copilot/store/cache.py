"""In-process TTL caches for embeddings and intent classifications."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

V = TypeVar("V")


@dataclass(slots=True)
class CacheEntry(Generic[V]):
    key: str
    value: V
    timestamp: float


class TTLCache(Generic[V]):
    """Write-ordered cache whose entries expire after `ttl_seconds`.

    When `max_entries` is set, inserting a new key into a full cache evicts the
    entry written longest ago. Expired entries are treated as absent on read and
    removed by `purge_expired`.

    The cache lives in process memory. Concurrent writes to one key race
    harmlessly because values for a key are interchangeable; nothing here is
    shared across service instances.
    """

    def __init__(
        self,
        *,
        ttl_seconds: float,
        max_entries: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: dict[str, CacheEntry[V]] = {}

    def get(self, key: str) -> V | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._expired(entry, self._clock()):
            return None
        return entry.value

    def set(self, key: str, value: V) -> None:
        # Rewriting a key moves it to the end of the eviction order.
        self._entries.pop(key, None)
        if self.max_entries is not None and len(self._entries) >= self.max_entries:
            oldest = next(iter(self._entries))
            del self._entries[oldest]
        self._entries[key] = CacheEntry(key=key, value=value, timestamp=self._clock())

    def purge_expired(self) -> int:
        """Drop expired entries and return how many were removed."""
        now = self._clock()
        expired = [key for key, entry in list(self._entries.items()) if self._expired(entry, now)]
        for key in expired:
            self._entries.pop(key, None)
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.get(key) is not None

    def _expired(self, entry: CacheEntry[V], now: float) -> bool:
        return (now - entry.timestamp) >= self.ttl_seconds
