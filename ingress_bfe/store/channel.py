"""Bounded event channel that drops the oldest item when full.

Producers (one per watched kind) never block. Overflow is counted in
``dropped``.
"""

from __future__ import annotations

import asyncio
from collections import deque
from typing import Generic, TypeVar

import structlog

_log = structlog.get_logger(component="store.channel")

T = TypeVar("T")


class RingChannel(Generic[T]):
    """Single-consumer ring buffer with an awaitable ``get``."""

    def __init__(self, capacity: int = 1024) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self._items: deque[T] = deque(maxlen=capacity)
        self._ready = asyncio.Event()
        self._capacity = capacity
        self.dropped = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    def put_nowait(self, item: T) -> None:
        if len(self._items) == self._capacity:
            self.dropped += 1
            _log.debug("event_dropped", capacity=self._capacity, dropped_total=self.dropped)
        self._items.append(item)
        self._ready.set()

    async def get(self) -> T:
        while not self._items:
            self._ready.clear()
            await self._ready.wait()
        item = self._items.popleft()
        if not self._items:
            self._ready.clear()
        return item

    def get_nowait(self) -> T:
        if not self._items:
            raise asyncio.QueueEmpty
        item = self._items.popleft()
        if not self._items:
            self._ready.clear()
        return item

    def __len__(self) -> int:
        return len(self._items)
