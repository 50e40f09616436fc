from __future__ import annotations

import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Generic, TypeVar

V = TypeVar("V")


class BoundedStore(Generic[V]):
    """Thread-safe in-process key/value store with LRU eviction and TTL expiry.

    Entries past ``ttl_seconds`` are dropped on access or by ``sweep()``; once
    ``max_entries`` is reached the least recently used key is evicted. The store
    owns no background timer, callers decide when to sweep and must ``close()``
    it on shutdown.
    """

    def __init__(
        self,
        max_entries: int,
        ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: OrderedDict[str, tuple[float, V]] = OrderedDict()
        self._lock = threading.Lock()
        self._closed = False

    def _expired(self, stored_at: float, now: float) -> bool:
        return self.ttl_seconds is not None and now - stored_at >= self.ttl_seconds

    def _check_open(self) -> None:
        if self._closed:
            raise RuntimeError("store is closed")

    def get(self, key: str) -> V | None:
        with self._lock:
            self._check_open()
            entry = self._entries.get(key)
            if entry is None:
                return None
            stored_at, value = entry
            if self._expired(stored_at, self._clock()):
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return value

    def set(self, key: str, value: V) -> None:
        with self._lock:
            self._check_open()
            self._entries[key] = (self._clock(), value)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def sweep(self) -> int:
        with self._lock:
            now = self._clock()
            stale = [key for key, (stored_at, _) in self._entries.items() if self._expired(stored_at, now)]
            for key in stale:
                del self._entries[key]
            return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def close(self) -> None:
        with self._lock:
            self._entries.clear()
            self._closed = True

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


@dataclass
class _Bucket:
    tokens: int
    window_started: float


class RateLimiter:
    """Fixed-window limiter: ``limit`` calls per ``interval_seconds`` for each key."""

    def __init__(
        self,
        limit: int,
        interval_seconds: float,
        max_keys: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.limit = limit
        self.interval_seconds = interval_seconds
        self._clock = clock
        self._buckets: BoundedStore[_Bucket] = BoundedStore(
            max_entries=max_keys,
            ttl_seconds=interval_seconds,
            clock=clock,
        )
        self._lock = threading.Lock()

    def allow(self, key: str) -> bool:
        with self._lock:
            now = self._clock()
            bucket = self._buckets.get(key)
            if bucket is None or now - bucket.window_started >= self.interval_seconds:
                # New window; storing it also restarts the TTL.
                bucket = _Bucket(tokens=self.limit, window_started=now)
                self._buckets.set(key, bucket)
            if bucket.tokens <= 0:
                return False
            bucket.tokens -= 1
            return True

    def reset(self) -> None:
        self._buckets.clear()

    def close(self) -> None:
        self._buckets.close()
