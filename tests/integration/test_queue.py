"""Retry and skip behaviour of the sync queue under real timers."""

from __future__ import annotations

import asyncio
import time

from ingress_bfe.queue import QueueTask, TaskQueue
from ingress_bfe.queue.rate_limiter import ItemExponentialFailureRateLimiter


class _RecordingLimiter(ItemExponentialFailureRateLimiter):
    def __init__(self, base_delay: float) -> None:
        super().__init__(base_delay, 10.0)
        self.delays: list[float] = []

    def when(self, item: str) -> float:
        delay = super().when(item)
        self.delays.append(delay)
        return delay


async def _run_until(queue: TaskQueue, done: asyncio.Event, timeout: float = 5.0) -> None:
    stop = asyncio.Event()
    runner = asyncio.create_task(queue.run(0.1, stop))
    try:
        await asyncio.wait_for(done.wait(), timeout=timeout)
        # let any follow-up task for the same key reach the worker
        await asyncio.sleep(0.05)
    finally:
        stop.set()
        await asyncio.wait_for(runner, timeout=1.0)


class TestRetryThenSkip:
    async def test_fails_twice_then_succeeds_and_stale_task_is_skipped(self) -> None:
        limiter = _RecordingLimiter(base_delay=0.02)
        attempts: list[float] = []
        stale: list[QueueTask] = []
        done = asyncio.Event()
        queue: TaskQueue

        async def sync(key: str) -> None:
            attempts.append(time.monotonic())
            if len(attempts) == 2:
                stale.append(QueueTask(key, time.time_ns(), skippable=True))
            if len(attempts) <= 2:
                raise RuntimeError("data plane not ready")
            # in flight: this copy is held back until the current sync finishes
            queue.add_task(stale[0])
            done.set()

        queue = TaskQueue(sync, rate_limiter=limiter)
        queue.enqueue_task("default/web")
        await _run_until(queue, done)

        assert len(attempts) == 3
        assert limiter.delays == [0.02, 0.04]
        gaps = [b - a for a, b in zip(attempts, attempts[1:])]
        assert gaps[0] >= 0.015
        assert gaps[1] >= 0.035
        assert queue.last_sync > stale[0].timestamp
        assert queue.num_requeues("default/web") == 0
        assert len(queue) == 0

    async def test_newer_task_after_success_still_runs(self) -> None:
        calls: list[str] = []
        done = asyncio.Event()
        queue: TaskQueue

        async def sync(key: str) -> None:
            calls.append(key)
            if len(calls) == 1:
                queue.enqueue_skippable_task(key)
            else:
                done.set()

        queue = TaskQueue(sync)
        queue.enqueue_skippable_task("default/web")
        await _run_until(queue, done)
        # the second stamp is later than the first dequeue time
        assert calls == ["default/web", "default/web"]

    async def test_retry_covered_by_later_sync_is_skipped(self) -> None:
        limiter = _RecordingLimiter(base_delay=0.01)
        calls: list[str] = []
        done = asyncio.Event()

        async def sync(key: str) -> None:
            calls.append(key)
            if key == "bad":
                raise RuntimeError("transient")
            done.set()

        queue = TaskQueue(sync, rate_limiter=limiter)
        queue.enqueue_task("bad")
        queue.enqueue_task("good")
        await _run_until(queue, done)
        # "good" synced after "bad" failed, so the retry is already covered
        assert calls == ["bad", "good"]
        assert limiter.delays == [0.01]
        assert queue.num_requeues("bad") == 0
