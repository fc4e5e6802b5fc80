# src/trackerflow/core/cache.py
"""Explicit plan and result caches.

Compiled plans (validation, calculation, option graphs) and resolved option
lists are cached in objects owned by the calling layer rather than in
module-level state. Both caches are bounded with a clear-on-overflow policy:
when an insert would exceed the limit, every entry is dropped first.

Entries are never mutated after insertion, so readers can share cached
plans freely. The lock only protects the bookkeeping counters and the
overflow clear.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from threading import Lock
from typing import Generic, TypeVar

import structlog

from trackerflow.core.paths import MISSING

logger = structlog.get_logger(__name__)

K = TypeVar("K")
V = TypeVar("V")


@dataclass(frozen=True, slots=True)
class CacheStats:
    """Snapshot of cache counters.

    Attributes:
        hits: Lookups that found a live entry
        misses: Lookups that found nothing (or an expired entry)
        evictions: Entries dropped by overflow clears or expiry
        size: Entries currently held
    """

    hits: int
    misses: int
    evictions: int
    size: int


class BoundedCache(Generic[K, V]):
    """Size-bounded map that clears itself when full.

    Usage:
        cache = BoundedCache[str, ValidationPlan](limit=2000, name="validation_plans")
        plan = cache.get(signature)
        if plan is None:
            plan = build_plan()
            cache.put(signature, plan)
    """

    def __init__(self, limit: int, *, name: str = "cache") -> None:
        if limit <= 0:
            raise ValueError(f"Cache limit must be positive, got {limit}")
        self._limit = limit
        self._name = name
        self._entries: dict[K, V] = {}
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._lock = Lock()

    @property
    def limit(self) -> int:
        return self._limit

    def get(self, key: K) -> V | None:
        with self._lock:
            value = self._entries.get(key, MISSING)
            if value is MISSING:
                self._misses += 1
                return None
            self._hits += 1
            return value  # type: ignore[return-value]

    def put(self, key: K, value: V) -> None:
        with self._lock:
            if key not in self._entries and len(self._entries) >= self._limit:
                dropped = len(self._entries)
                self._entries.clear()
                self._evictions += dropped
                logger.debug("cache_overflow_cleared", cache=self._name, dropped=dropped)
            self._entries[key] = value

    def discard(self, key: K) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def reset_stats(self) -> None:
        with self._lock:
            self._hits = 0
            self._misses = 0
            self._evictions = 0

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                hits=self._hits,
                misses=self._misses,
                evictions=self._evictions,
                size=len(self._entries),
            )

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries


@dataclass(frozen=True, slots=True)
class _TtlEntry(Generic[V]):
    value: V
    expires_at: float


class TtlCache(Generic[K, V]):
    """Bounded cache whose entries expire after a per-entry TTL.

    ``clock`` returns seconds and defaults to ``time.monotonic``; tests pass
    a fake clock to step time forward.
    """

    def __init__(
        self,
        limit: int,
        *,
        default_ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
        name: str = "ttl_cache",
    ) -> None:
        if default_ttl_seconds <= 0:
            raise ValueError(f"Default TTL must be positive, got {default_ttl_seconds}")
        self._entries: BoundedCache[K, _TtlEntry[V]] = BoundedCache(limit, name=name)
        self._default_ttl = default_ttl_seconds
        self._clock = clock
        self._expired = 0

    def get(self, key: K) -> V | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            self._entries.discard(key)
            self._expired += 1
            return None
        return entry.value

    def put(self, key: K, value: V, ttl_seconds: float | None = None) -> float:
        """Store a value and return the number of seconds until it expires."""
        ttl = ttl_seconds if ttl_seconds is not None and ttl_seconds > 0 else self._default_ttl
        self._entries.put(key, _TtlEntry(value=value, expires_at=self._clock() + ttl))
        return ttl

    def clear(self) -> None:
        self._entries.clear()

    def stats(self) -> CacheStats:
        inner = self._entries.stats()
        return CacheStats(
            hits=inner.hits - self._expired,
            misses=inner.misses + self._expired,
            evictions=inner.evictions + self._expired,
            size=inner.size,
        )

    def __len__(self) -> int:
        return len(self._entries)
