"""Serialized, deduplicating, rate-limited sync queue.

A single worker drains the queue, so at most one sync runs at a time.
Every task carries a nanosecond timestamp; a task older than the last
successful sync is dropped on dequeue because that sync already covered it.
Non-skippable tasks are stamped 24 hours ahead so they are never dropped
this way.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import structlog

from ingress_bfe.errors import QueueKeyError
from ingress_bfe.models.resources import meta_namespace_key
from ingress_bfe.queue.rate_limiter import RateLimiter, default_controller_rate_limiter

_log = structlog.get_logger(component="queue")

NON_SKIPPABLE_OFFSET_NS = 24 * 60 * 60 * 1_000_000_000

SyncFn = Callable[[str], Awaitable[None]]
KeyFn = Callable[[Any], str]


@dataclass(frozen=True)
class QueueTask:
    """One unit of work: the object identity and its logical timestamp."""

    key: str
    timestamp: int
    skippable: bool = False


@dataclass(frozen=True)
class DummyObject:
    """Stand-in object for work that is not tied to a watched resource."""

    name: str
    namespace: str = ""

    @property
    def key(self) -> str:
        return meta_namespace_key(self.namespace, self.name)


def get_dummy_object(name: str) -> DummyObject:
    return DummyObject(name=name)


def default_key_fn(obj: Any) -> str:
    """``namespace/name`` of *obj*; plain strings are used as-is."""
    if isinstance(obj, str):
        if not obj:
            raise QueueKeyError("empty key")
        return obj
    key = getattr(obj, "key", None)
    if isinstance(key, str) and key:
        return key
    name = getattr(obj, "name", None)
    if isinstance(name, str) and name:
        return meta_namespace_key(getattr(obj, "namespace", "") or "", name)
    raise QueueKeyError(f"could not get key for object {obj!r}")


class TaskQueue:
    """Work queue with a single worker.

    Args:
        sync_fn:      Coroutine called with the task key. Raising requeues
                      the key through the rate limiter.
        key_fn:       Derives the identity of an enqueued object.
        rate_limiter: Failure backoff policy.
        clock:        Nanosecond wall clock, injectable for tests.
    """

    def __init__(
        self,
        sync_fn: SyncFn,
        key_fn: KeyFn | None = None,
        rate_limiter: RateLimiter | None = None,
        clock: Callable[[], int] = time.time_ns,
    ) -> None:
        self._sync_fn = sync_fn
        self._key_fn = key_fn or default_key_fn
        self._limiter = rate_limiter or default_controller_rate_limiter()
        self._clock = clock

        self._ready: deque[str] = deque()
        self._pending: dict[str, QueueTask] = {}
        self._processing: set[str] = set()
        self._delayed: set[asyncio.TimerHandle] = set()
        self._wakeup = asyncio.Event()

        self._last_sync = 0
        self._shutting_down = False
        self._worker_started = False
        self._worker_done = asyncio.Event()

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    def enqueue_task(self, obj: Any) -> None:
        """Enqueue *obj*; the task is never dropped by the skip rule."""
        self._enqueue(obj, skippable=False)

    def enqueue_skippable_task(self, obj: Any) -> None:
        """Enqueue *obj*; dropped if a later sync succeeds before it runs."""
        self._enqueue(obj, skippable=True)

    def _enqueue(self, obj: Any, skippable: bool) -> None:
        if self._shutting_down:
            _log.error("enqueue_after_shutdown", obj=repr(obj))
            return
        try:
            key = self._key_fn(obj)
        except QueueKeyError as exc:
            _log.error("queue_key_error", error=str(exc))
            return
        ts = self._clock()
        if not skippable:
            ts += NON_SKIPPABLE_OFFSET_NS
        _log.debug("queuing_item", key=key, skippable=skippable)
        self.add_task(QueueTask(key=key, timestamp=ts, skippable=skippable))

    def add_task(self, task: QueueTask) -> None:
        """Add *task* as is; a pending task with the same key keeps the newer timestamp."""
        if self._shutting_down:
            _log.error("enqueue_after_shutdown", key=task.key)
            return
        current = self._pending.get(task.key)
        if current is not None:
            if task.timestamp > current.timestamp:
                self._pending[task.key] = task
            return
        self._pending[task.key] = task
        if task.key not in self._processing:
            self._ready.append(task.key)
            self._wakeup.set()

    def _add_rate_limited(self, task: QueueTask) -> None:
        delay = self._limiter.when(task.key)
        if delay <= 0:
            self.add_task(task)
            return
        loop = asyncio.get_running_loop()
        handle: asyncio.TimerHandle | None = None

        def fire() -> None:
            if handle is not None:
                self._delayed.discard(handle)
            self.add_task(task)

        handle = loop.call_later(delay, fire)
        self._delayed.add(handle)

    # ------------------------------------------------------------------
    # Consumer side
    # ------------------------------------------------------------------

    @property
    def last_sync(self) -> int:
        """Dequeue time (ns) of the most recent successful sync."""
        return self._last_sync

    def num_requeues(self, key: str) -> int:
        return self._limiter.num_requeues(key)

    def __len__(self) -> int:
        return len(self._pending)

    def is_shutting_down(self) -> bool:
        return self._shutting_down

    async def run(self, period: float, stop: asyncio.Event) -> None:
        """Process tasks until shutdown or *stop*; restarts the worker after *period* if it crashes."""
        self._worker_started = True
        stop_waiter = asyncio.ensure_future(stop.wait())
        stop_waiter.add_done_callback(lambda _: self._wakeup.set())
        try:
            while not self._shutting_down and not stop.is_set():
                try:
                    await self._worker(stop)
                except Exception as exc:  # noqa: BLE001
                    _log.error("queue_worker_crashed", error=str(exc), exc_info=True)
                    await _sleep_or_stop(stop, period)
        finally:
            stop_waiter.cancel()
            self._worker_done.set()

    async def shutdown(self) -> None:
        """Stop accepting work and wait for the in-flight sync to finish."""
        if not self._shutting_down:
            self._shutting_down = True
            for handle in self._delayed:
                handle.cancel()
            self._delayed.clear()
            self._wakeup.set()
            _log.info("queue_shutting_down", pending=len(self._pending))
        if self._worker_started:
            await self._worker_done.wait()

    async def _next(self, stop: asyncio.Event) -> QueueTask | None:
        while True:
            if self._shutting_down or stop.is_set():
                return None
            if self._ready:
                key = self._ready.popleft()
                task = self._pending.pop(key)
                self._processing.add(key)
                return task
            self._wakeup.clear()
            await self._wakeup.wait()

    def _done(self, key: str) -> None:
        self._processing.discard(key)
        if key in self._pending:
            self._ready.append(key)
            self._wakeup.set()

    async def _worker(self, stop: asyncio.Event) -> None:
        while True:
            task = await self._next(stop)
            if task is None:
                return
            try:
                await self._process(task)
            finally:
                self._done(task.key)

    async def _process(self, task: QueueTask) -> None:
        ts = self._clock()
        if self._last_sync > task.timestamp:
            _log.debug("skipping_sync", key=task.key, last_sync=self._last_sync, timestamp=task.timestamp)
            self._limiter.forget(task.key)
            return

        _log.debug("syncing", key=task.key)
        try:
            await self._sync_fn(task.key)
        except Exception as exc:  # noqa: BLE001
            _log.warning(
                "requeuing",
                key=task.key,
                error=str(exc),
                requeues=self._limiter.num_requeues(task.key) + 1,
            )
            if not self._shutting_down:
                self._add_rate_limited(QueueTask(key=task.key, timestamp=self._clock(), skippable=True))
            return

        self._limiter.forget(task.key)
        self._last_sync = ts


async def _sleep_or_stop(stop: asyncio.Event, seconds: float) -> None:
    try:
        await asyncio.wait_for(stop.wait(), timeout=seconds)
    except TimeoutError:
        pass
