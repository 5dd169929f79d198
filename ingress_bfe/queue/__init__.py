"""Sync task queue and requeue rate limiters."""

from ingress_bfe.queue.rate_limiter import (
    BucketRateLimiter,
    ItemExponentialFailureRateLimiter,
    MaxOfRateLimiter,
    RateLimiter,
    default_controller_rate_limiter,
)
from ingress_bfe.queue.task_queue import (
    DummyObject,
    QueueTask,
    TaskQueue,
    default_key_fn,
    get_dummy_object,
)

__all__ = [
    "BucketRateLimiter",
    "DummyObject",
    "ItemExponentialFailureRateLimiter",
    "MaxOfRateLimiter",
    "QueueTask",
    "RateLimiter",
    "TaskQueue",
    "default_controller_rate_limiter",
    "default_key_fn",
    "get_dummy_object",
]
