"""In-process TTL cache with an injected clock.

Used for the fiscal provider OAuth token and municipality support lookups.
Expiry is computed from ``clock.now()`` so tests drive it with a FixedClock
instead of sleeping.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Generic, Hashable, TypeVar

from fiscalia.infra.time import Clock, SystemClock

V = TypeVar("V")


@dataclass
class _Entry(Generic[V]):
    value: V
    expires_at: datetime


class TTLCache(Generic[V]):
    """Thread-safe key/value cache where each entry expires after a TTL."""

    def __init__(
        self,
        ttl: timedelta,
        *,
        clock: Clock | None = None,
        max_entries: int | None = None,
    ) -> None:
        if ttl <= timedelta(0):
            raise ValueError("ttl must be positive")
        self._ttl = ttl
        self._clock = clock or SystemClock()
        self._max_entries = max_entries
        self._entries: dict[Hashable, _Entry[V]] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def get(self, key: Hashable) -> V | None:
        """Return the cached value, or None if absent or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if self._clock.now() >= entry.expires_at:
                del self._entries[key]
                self._misses += 1
                return None
            self._hits += 1
            return entry.value

    def set(self, key: Hashable, value: V, ttl: timedelta | None = None) -> None:
        """Store a value. ``ttl`` overrides the cache default for this entry."""
        expires_at = self._clock.now() + (ttl or self._ttl)
        with self._lock:
            if (
                self._max_entries is not None
                and key not in self._entries
                and len(self._entries) >= self._max_entries
            ):
                # Evict the entry closest to expiry
                oldest = min(self._entries, key=lambda k: self._entries[k].expires_at)
                del self._entries[oldest]
            self._entries[key] = _Entry(value=value, expires_at=expires_at)

    def get_or_load(
        self,
        key: Hashable,
        loader: Callable[[], V],
        ttl: timedelta | None = None,
    ) -> V:
        """Return the cached value or compute, store and return it.

        Exceptions from ``loader`` propagate and nothing is cached.
        """
        value = self.get(key)
        if value is not None:
            return value
        value = loader()
        self.set(key, value, ttl)
        return value

    def invalidate(self, key: Hashable) -> bool:
        """Drop one entry. Returns True if it was present."""
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self) -> dict[str, int]:
        with self._lock:
            return {"hits": self._hits, "misses": self._misses, "size": len(self._entries)}
