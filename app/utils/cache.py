# app/utils/cache.py
"""Per-process TTL cache used as the fast path for duplicate detection."""

from __future__ import annotations

import time
from collections import OrderedDict
from threading import Lock
from typing import Any, Callable, Hashable, Iterable


class TTLCache:
    """
    Bounded LRU cache whose entries expire after a fixed time-to-live.

    The cache is advisory: a miss never means "absent from storage", so
    callers must always fall back to the authoritative source.
    """

    def __init__(self, *, enabled: bool = True, ttl_seconds: int = 600, maxsize: int = 50_000) -> None:
        """
        Args:
            enabled: Whether the cache stores anything at all
            ttl_seconds: Lifetime of each entry in seconds
            maxsize: Entry cap; the least recently used entry is evicted first
        """
        self.enabled = enabled and ttl_seconds > 0 and maxsize > 0
        self.ttl = max(1, int(ttl_seconds)) if self.enabled else 0
        self.maxsize = max(1, int(maxsize)) if self.enabled else 0
        self._entries: OrderedDict[Hashable, tuple[float, Any]] = OrderedDict()
        self._lock = Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def _lookup(self, key: Hashable, now: float) -> tuple[bool, Any]:
        # Caller holds the lock
        entry = self._entries.get(key)
        if entry is None:
            return False, None
        expires_at, value = entry
        if expires_at <= now:
            del self._entries[key]
            return False, None
        self._entries.move_to_end(key)
        return True, value

    def get(self, key: Hashable, loader: Callable[[], Any] | None = None) -> Any:
        """Return the cached value, or load and cache it when a loader is given."""
        if self.enabled:
            with self._lock:
                found, value = self._lookup(key, time.monotonic())
                if found:
                    self._hits += 1
                    return value
                self._misses += 1
        if loader is None:
            return None
        value = loader()
        self.set(key, value)
        return value

    def has(self, key: Hashable) -> bool:
        """True if *key* holds a live entry."""
        if not self.enabled:
            return False
        with self._lock:
            found, _ = self._lookup(key, time.monotonic())
            if found:
                self._hits += 1
            else:
                self._misses += 1
            return found

    def set(self, key: Hashable, value: Any = True) -> None:
        self.set_many([(key, value)])

    def set_many(self, items: Iterable[tuple[Hashable, Any]]) -> None:
        """Insert several entries under one lock acquisition. A None value removes the key."""
        if not self.enabled:
            return
        expires_at = time.monotonic() + self.ttl
        with self._lock:
            for key, value in items:
                if value is None:
                    self._entries.pop(key, None)
                    continue
                self._entries[key] = (expires_at, value)
                self._entries.move_to_end(key)
            while len(self._entries) > self.maxsize:
                self._entries.popitem(last=False)
                self._evictions += 1

    def invalidate(self, key: Hashable) -> None:
        if not self.enabled:
            return
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get_stats(self) -> dict[str, Any]:
        """Counters for health endpoints: size, hits, misses, hit rate and evictions."""
        with self._lock:
            size = len(self._entries)
            hits, misses, evictions = self._hits, self._misses, self._evictions
        lookups = hits + misses
        return {
            "enabled": self.enabled,
            "size": size,
            "maxsize": self.maxsize,
            "ttl_seconds": self.ttl,
            "hits": hits,
            "misses": misses,
            "hit_rate": round(hits / lookups * 100, 2) if lookups else 0.0,
            "evictions": evictions,
        }
