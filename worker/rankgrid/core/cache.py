"""Bounded in-process caches and per-client rate limiting.

Both classes are plain constructed objects; the HTTP app receives them through
its services container so each test can build fresh ones.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Generic, Hashable, List, Optional, Tuple, TypeVar

logger = logging.getLogger(__name__)

V = TypeVar("V")


class TTLCache(Generic[V]):
    """Thread-safe LRU map whose entries also expire ``ttl`` seconds after insertion.

    With ``sliding=True`` every hit pushes the expiry out again, so entries
    expire after ``ttl`` seconds of idleness. ``on_evict(key, value)`` runs for
    entries dropped by expiry or by the size bound, after the lock is released;
    explicit :meth:`pop` does not trigger it.
    """

    def __init__(
        self,
        maxsize: int,
        ttl: float,
        clock: Callable[[], float] = time.monotonic,
        sliding: bool = False,
        on_evict: Optional[Callable[[Hashable, V], None]] = None,
    ) -> None:
        if maxsize < 1:
            raise ValueError("maxsize must be at least 1")
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        self.maxsize = maxsize
        self.ttl = ttl
        self.sliding = sliding
        self._clock = clock
        self._on_evict = on_evict
        self._data: "OrderedDict[Hashable, Tuple[float, V]]" = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            evicted = self._purge_expired(self._clock())
            size = len(self._data)
        self._notify(evicted)
        return size

    def get(self, key: Hashable, default: Optional[V] = None) -> Optional[V]:
        evicted: List[Tuple[Hashable, V]] = []
        with self._lock:
            now = self._clock()
            value = self._lookup(key, now, evicted)
        self._notify(evicted)
        return default if value is None else value

    def set(self, key: Hashable, value: V) -> None:
        with self._lock:
            evicted = self._insert(key, value, self._clock())
        self._notify(evicted)

    def get_or_create(self, key: Hashable, factory: Callable[[], V]) -> V:
        """Return the cached value for ``key`` or atomically store ``factory()``."""
        evicted: List[Tuple[Hashable, V]] = []
        with self._lock:
            now = self._clock()
            value = self._lookup(key, now, evicted)
            if value is None:
                value = factory()
                evicted.extend(self._insert(key, value, now))
        self._notify(evicted)
        return value

    def pop(self, key: Hashable) -> Optional[V]:
        with self._lock:
            entry = self._data.pop(key, None)
            return entry[1] if entry else None

    def _lookup(self, key: Hashable, now: float, evicted: List[Tuple[Hashable, V]]) -> Optional[V]:
        entry = self._data.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if expires_at <= now:
            del self._data[key]
            evicted.append((key, value))
            return None
        if self.sliding:
            self._data[key] = (now + self.ttl, value)
        self._data.move_to_end(key)
        return value

    def _insert(self, key: Hashable, value: V, now: float) -> List[Tuple[Hashable, V]]:
        self._data[key] = (now + self.ttl, value)
        self._data.move_to_end(key)
        evicted = self._purge_expired(now)
        while len(self._data) > self.maxsize:
            oldest, (_, old_value) = self._data.popitem(last=False)
            logger.debug("Evicted cache entry %r", oldest)
            evicted.append((oldest, old_value))
        return evicted

    def _purge_expired(self, now: float) -> List[Tuple[Hashable, V]]:
        expired = [(key, value) for key, (expires_at, value) in self._data.items() if expires_at <= now]
        for key, _ in expired:
            del self._data[key]
        return expired

    def _notify(self, evicted: List[Tuple[Hashable, V]]) -> None:
        if self._on_evict is None:
            return
        for key, value in evicted:
            self._on_evict(key, value)


class _Bucket:
    __slots__ = ("tokens", "updated_at", "lock")

    def __init__(self, tokens: float, updated_at: float) -> None:
        self.tokens = tokens
        self.updated_at = updated_at
        self.lock = threading.Lock()


class TokenBucketLimiter:
    """Per-client token buckets refilled at ``rate_per_minute``.

    Buckets live in a :class:`TTLCache`, so idle clients are evicted instead
    of accumulating for the lifetime of the process.
    """

    def __init__(
        self,
        rate_per_minute: int,
        burst: Optional[int] = None,
        max_clients: int = 4096,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if rate_per_minute < 1:
            raise ValueError("rate_per_minute must be at least 1")
        self.capacity = float(burst or rate_per_minute)
        self.refill_per_second = rate_per_minute / 60.0
        self._clock = clock
        idle_ttl = max(60.0, self.capacity / self.refill_per_second)
        self._buckets: TTLCache[_Bucket] = TTLCache(max_clients, idle_ttl, clock=clock)

    def allow(self, client_id: Any) -> bool:
        now = self._clock()
        bucket = self._buckets.get_or_create(client_id, lambda: _Bucket(self.capacity, now))
        with bucket.lock:
            elapsed = max(0.0, now - bucket.updated_at)
            bucket.tokens = min(self.capacity, bucket.tokens + elapsed * self.refill_per_second)
            bucket.updated_at = now
            if bucket.tokens >= 1.0:
                bucket.tokens -= 1.0
                self._buckets.set(client_id, bucket)
                return True
        logger.info("Rate limit exceeded for client %s", client_id)
        return False
