"""Requeue delay policies for the task queue.

Each limiter answers ``when(key)`` with the number of seconds to wait before
the item may be processed again. ``forget(key)`` clears per-item state after
a successful sync.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from typing import Protocol

from pyrate_limiter import Duration, InMemoryBucket, Rate, RateItem


class RateLimiter(Protocol):
    def when(self, key: str) -> float: ...

    def forget(self, key: str) -> None: ...

    def num_requeues(self, key: str) -> int: ...


class ItemExponentialFailureRateLimiter:
    """``base_delay * 2**failures`` per item, capped at *max_delay*."""

    def __init__(self, base_delay: float = 0.005, max_delay: float = 1000.0) -> None:
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._failures: dict[str, int] = {}
        self._lock = threading.Lock()

    def when(self, key: str) -> float:
        with self._lock:
            exp = self._failures.get(key, 0)
            self._failures[key] = exp + 1
        # long failure streaks would overflow the float product
        if exp > 62:
            return self._max_delay
        return min(self._base_delay * (2**exp), self._max_delay)

    def forget(self, key: str) -> None:
        with self._lock:
            self._failures.pop(key, None)

    def num_requeues(self, key: str) -> int:
        with self._lock:
            return self._failures.get(key, 0)


class BucketRateLimiter:
    """Overall rate limit shared by every item, backed by a pyrate-limiter bucket.

    *burst* reservations fit in any ``burst / qps`` second window, so the
    long-run rate is *qps*. ``when`` reserves the earliest free slot and
    returns how long the caller must wait for it; reservations beyond the
    burst queue up behind each other.
    """

    def __init__(self, qps: float = 10.0, burst: int = 100, clock: Callable[[], float] = time.monotonic) -> None:
        if qps <= 0 or burst < 1:
            raise ValueError("qps must be positive and burst at least 1")
        window_ms = max(1, int(burst * Duration.SECOND.value / qps))
        self._bucket = InMemoryBucket([Rate(burst, window_ms)])
        self._clock = clock
        self._last_slot = 0
        self._lock = threading.Lock()

    def when(self, key: str) -> float:
        with self._lock:
            now = int(self._clock() * 1000)
            self._bucket.leak(now)
            # slots stay ordered, so a new one never precedes the last reservation
            item = RateItem(key, max(now, self._last_slot))
            while not self._bucket.put(item):
                wait = self._bucket.waiting(item)
                item = RateItem(key, item.timestamp + max(int(wait), 1))
            self._last_slot = item.timestamp
            return (item.timestamp - now) / 1000

    def forget(self, key: str) -> None:
        return None

    def num_requeues(self, key: str) -> int:
        return 0


class MaxOfRateLimiter:
    """Delay is the worst of all wrapped limiters."""

    def __init__(self, *limiters: RateLimiter) -> None:
        if not limiters:
            raise ValueError("at least one rate limiter is required")
        self._limiters = limiters

    def when(self, key: str) -> float:
        return max(limiter.when(key) for limiter in self._limiters)

    def forget(self, key: str) -> None:
        for limiter in self._limiters:
            limiter.forget(key)

    def num_requeues(self, key: str) -> int:
        return max(limiter.num_requeues(key) for limiter in self._limiters)


def default_controller_rate_limiter() -> MaxOfRateLimiter:
    """Per-item exponential backoff (5 ms to 1000 s) bounded by 10 qps overall, burst 100."""
    return MaxOfRateLimiter(
        ItemExponentialFailureRateLimiter(0.005, 1000.0),
        BucketRateLimiter(qps=10.0, burst=100),
    )
