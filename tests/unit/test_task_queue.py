"""Tests for TaskQueue ordering, dedup and the skip rule."""

from __future__ import annotations

import asyncio

import pytest

from ingress_bfe.errors import QueueKeyError
from ingress_bfe.queue.task_queue import (
    NON_SKIPPABLE_OFFSET_NS,
    QueueTask,
    TaskQueue,
    default_key_fn,
    get_dummy_object,
)


class _Clock:
    """Nanosecond clock that advances one tick per read."""

    def __init__(self, start: int = 1_000) -> None:
        self.now = start

    def __call__(self) -> int:
        self.now += 1
        return self.now


class _Recorder:
    def __init__(self) -> None:
        self.keys: list[str] = []

    async def __call__(self, key: str) -> None:
        self.keys.append(key)


async def _drain(queue: TaskQueue) -> None:
    """Run the worker until the queue is empty, then stop it."""
    stop = asyncio.Event()
    runner = asyncio.create_task(queue.run(0.1, stop))
    for _ in range(200):
        await asyncio.sleep(0.005)
        if len(queue) == 0 and not queue._processing and not queue._delayed:
            break
    stop.set()
    await asyncio.wait_for(runner, timeout=2.0)


class TestKeyFn:
    def test_string_used_as_is(self) -> None:
        assert default_key_fn("default/web") == "default/web"

    def test_object_with_key(self) -> None:
        assert default_key_fn(get_dummy_object("configmap-change")) == "configmap-change"

    def test_rejects_empty_and_unkeyed(self) -> None:
        with pytest.raises(QueueKeyError):
            default_key_fn("")
        with pytest.raises(QueueKeyError):
            default_key_fn(object())


class TestEnqueue:
    async def test_non_skippable_is_stamped_a_day_ahead(self) -> None:
        clock = _Clock(start=0)
        queue = TaskQueue(_Recorder(), clock=clock)
        queue.enqueue_task("default/web")
        assert queue._pending["default/web"].timestamp == 1 + NON_SKIPPABLE_OFFSET_NS
        assert queue._pending["default/web"].skippable is False

    async def test_skippable_uses_current_time(self) -> None:
        clock = _Clock(start=0)
        queue = TaskQueue(_Recorder(), clock=clock)
        queue.enqueue_skippable_task("default/web")
        assert queue._pending["default/web"].timestamp == 1

    async def test_duplicate_key_keeps_newest_timestamp(self) -> None:
        queue = TaskQueue(_Recorder())
        queue.add_task(QueueTask("k", 10))
        queue.add_task(QueueTask("k", 30))
        queue.add_task(QueueTask("k", 20))
        assert len(queue) == 1
        assert queue._pending["k"].timestamp == 30

    async def test_bad_key_is_dropped(self) -> None:
        queue = TaskQueue(_Recorder())
        queue.enqueue_task(object())
        assert len(queue) == 0

    async def test_enqueue_after_shutdown_is_dropped(self) -> None:
        queue = TaskQueue(_Recorder())
        await queue.shutdown()
        queue.enqueue_task("default/web")
        queue.add_task(QueueTask("default/web", 1))
        assert len(queue) == 0
        assert queue.is_shutting_down()


class TestProcessing:
    async def test_tasks_run_in_fifo_order(self) -> None:
        sync = _Recorder()
        queue = TaskQueue(sync)
        for key in ("a", "b", "c"):
            queue.enqueue_task(key)
        await _drain(queue)
        assert sync.keys == ["a", "b", "c"]

    async def test_task_older_than_last_sync_is_skipped(self) -> None:
        sync = _Recorder()
        clock = _Clock()
        queue = TaskQueue(sync, clock=clock)
        stale = QueueTask("stale", clock(), skippable=True)
        queue.enqueue_skippable_task("fresh")
        queue.add_task(stale)
        # "fresh" is processed first and sets last_sync past the stale stamp
        await _drain(queue)
        assert sync.keys == ["fresh"]
        assert queue.last_sync > stale.timestamp

    async def test_non_skippable_survives_later_sync(self) -> None:
        sync = _Recorder()
        queue = TaskQueue(sync)
        queue.enqueue_skippable_task("first")
        queue.enqueue_task("second")
        await _drain(queue)
        assert sync.keys == ["first", "second"]

    async def test_failed_sync_is_requeued_after_backoff(self) -> None:
        attempts: list[str] = []

        async def flaky(key: str) -> None:
            attempts.append(key)
            if len(attempts) == 1:
                raise RuntimeError("boom")

        queue = TaskQueue(flaky)
        queue.enqueue_task("default/web")
        await _drain(queue)
        assert attempts == ["default/web", "default/web"]
        assert queue.num_requeues("default/web") == 0

    async def test_key_enqueued_during_sync_runs_again(self) -> None:
        seen: list[str] = []
        queue: TaskQueue

        async def sync(key: str) -> None:
            seen.append(key)
            if len(seen) == 1:
                queue.enqueue_task(key)

        queue = TaskQueue(sync)
        queue.enqueue_task("k")
        await _drain(queue)
        assert seen == ["k", "k"]

    async def test_worker_crash_is_restarted(self, monkeypatch: pytest.MonkeyPatch) -> None:
        sync = _Recorder()
        queue = TaskQueue(sync)
        original = queue._next
        crashed = []

        async def flaky_next(stop: asyncio.Event) -> QueueTask | None:
            if not crashed:
                crashed.append(True)
                raise RuntimeError("worker bug")
            return await original(stop)

        monkeypatch.setattr(queue, "_next", flaky_next)
        queue.enqueue_task("k")
        await _drain(queue)
        assert crashed == [True]
        assert sync.keys == ["k"]


class TestShutdown:
    async def test_shutdown_waits_for_in_flight_sync(self) -> None:
        started = asyncio.Event()
        release = asyncio.Event()
        finished: list[str] = []

        async def slow(key: str) -> None:
            started.set()
            await release.wait()
            finished.append(key)

        queue = TaskQueue(slow)
        queue.enqueue_task("k")
        runner = asyncio.create_task(queue.run(0.1, asyncio.Event()))
        await asyncio.wait_for(started.wait(), timeout=1.0)

        shutdown = asyncio.create_task(queue.shutdown())
        await asyncio.sleep(0.01)
        assert not shutdown.done()

        release.set()
        await asyncio.wait_for(shutdown, timeout=1.0)
        await asyncio.wait_for(runner, timeout=1.0)
        assert finished == ["k"]

    async def test_shutdown_cancels_delayed_requeues(self) -> None:
        async def failing(key: str) -> None:
            raise RuntimeError("nope")

        queue = TaskQueue(failing)
        queue.enqueue_task("k")
        runner = asyncio.create_task(queue.run(0.1, asyncio.Event()))
        for _ in range(100):
            await asyncio.sleep(0.001)
            if queue._delayed or queue.num_requeues("k"):
                break
        await asyncio.wait_for(queue.shutdown(), timeout=1.0)
        await asyncio.wait_for(runner, timeout=1.0)
        assert not queue._delayed

    async def test_shutdown_without_worker_returns(self) -> None:
        queue = TaskQueue(_Recorder())
        await asyncio.wait_for(queue.shutdown(), timeout=1.0)
