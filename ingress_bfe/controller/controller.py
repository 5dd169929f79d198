"""BFE ingress controller: event dispatch and data plane supervision."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

import structlog

from ingress_bfe.controller.dataplane import DataPlaneExit, DataPlaneProcess
from ingress_bfe.errors import ShutdownInProgressError
from ingress_bfe.models.config import ControllerConfig
from ingress_bfe.models.events import Event, EventType
from ingress_bfe.queue import TaskQueue, get_dummy_object
from ingress_bfe.store import RingChannel, WatchStore, is_valid
from ingress_bfe.store.recorder import EventRecorder

if TYPE_CHECKING:
    from ingress_bfe.pod import PodInfo

_log = structlog.get_logger(component="controller")

CONTROLLER_NAME = "bfe-ingress-controller"

# Every ConfigMap change is folded into this one queue identity.
CONFIGMAP_CHANGE = "configmap-change"

SyncAction = Callable[[str], Awaitable[None]]


class BfeController:
    """Owns the watch store, the sync queue and the data plane process.

    ``run`` starts them in order (store, data plane, queue worker) and then
    dispatches store events to the queue until the data plane exits or
    ``stop`` is called.
    """

    def __init__(
        self,
        config: ControllerConfig,
        core_api: Any = None,
        networking_api: Any = None,
        recorder: EventRecorder | None = None,
        pod_info: PodInfo | None = None,
        sync_action: SyncAction | None = None,
        data_plane: DataPlaneProcess | None = None,
    ) -> None:
        self.config = config
        self.updates: RingChannel[Event] = RingChannel(config.store.event_channel_size)
        self.store = WatchStore(
            config.store,
            config.ingress_class,
            config.certs,
            self.updates,
            recorder=recorder,
            core_api=core_api,
            networking_api=networking_api,
            pod_info=pod_info,
        )
        self.queue = TaskQueue(self._sync)
        self.data_plane = data_plane or DataPlaneProcess(config.data_plane.binary, config.data_plane.config_path)
        self._sync_action: SyncAction = sync_action or self.sync_ingress
        self._stop = asyncio.Event()
        self._shutting_down = False
        self._queue_task: asyncio.Task[None] | None = None
        self._start_task: asyncio.Task[None] | None = None
        self.last_exit: DataPlaneExit | None = None
        self.syncs = 0

    @property
    def is_shutting_down(self) -> bool:
        return self._shutting_down

    async def run(self) -> DataPlaneExit | None:
        """Run until the data plane exits or the controller is stopped.

        Returns how the data plane exited, or None after ``stop``.
        """
        _log.info("starting_controller")
        await self.store.run()
        if self._shutting_down:
            return None
        self._start_task = asyncio.create_task(self.data_plane.start(), name="data-plane-start")
        await self._start_task
        if self._shutting_down:
            # stop() arrived mid-spawn and terminates the child itself
            return None
        self._queue_task = asyncio.create_task(
            self.queue.run(self.config.queue.period, self._stop),
            name="sync-queue",
        )

        exit_task = asyncio.create_task(self.data_plane.wait(), name="data-plane-wait")
        stop_task = asyncio.create_task(self._stop.wait(), name="controller-stop")
        get_task: asyncio.Task[Event] | None = None
        try:
            while True:
                if get_task is None:
                    get_task = asyncio.create_task(self.updates.get(), name="controller-updates")
                done, _ = await asyncio.wait(
                    {exit_task, get_task, stop_task},
                    return_when=asyncio.FIRST_COMPLETED,
                )
                if get_task in done:
                    self._dispatch(get_task.result())
                    get_task = None
                if exit_task in done:
                    self.last_exit = exit_task.result()
                    if self._shutting_down:
                        return None
                    # No respawn: the caller decides what a dead data plane means.
                    _log.warning("data_plane_died", returncode=self.last_exit.returncode, kind=str(self.last_exit.kind))
                    return self.last_exit
                if stop_task in done:
                    return None
        finally:
            for task in (get_task, stop_task, exit_task):
                if task is not None and not task.done():
                    task.cancel()

    def _dispatch(self, event: Event) -> None:
        if self._shutting_down:
            return
        _log.debug("event_received", type=str(event.type), kind=event.kind, key=event.key)
        if event.type is EventType.CONFIGURATION:
            self.queue.enqueue_task(get_dummy_object(CONFIGMAP_CHANGE))
        self.queue.enqueue_task(event.obj)

    async def stop(self) -> None:
        """Shut down the queue, the informers and the data plane, in that order."""
        if self._shutting_down or self.queue.is_shutting_down():
            raise ShutdownInProgressError("shutdown already in progress")
        self._shutting_down = True

        _log.info("shutting_down_controller_queues")
        self._stop.set()
        await self.queue.shutdown()
        if self._queue_task is not None:
            await self._queue_task
        await self.store.stop()
        flush = getattr(self.store.recorder, "flush", None)
        if flush is not None:
            await flush()

        if self._start_task is not None:
            await asyncio.wait({self._start_task})
        exit_status = await self.data_plane.stop()
        if exit_status is not None:
            self.last_exit = exit_status
        _log.info("controller_stopped")

    async def _sync(self, key: str) -> None:
        self.syncs += 1
        await self._sync_action(key)

    async def sync_ingress(self, key: str) -> None:
        """Default reconciliation: snapshot the member routes and log them.

        Safe to call any number of times with unchanged state.
        """
        routes = self.store.list_routes(lambda r: not is_valid(r, self.config.ingress_class))
        _log.info(
            "sync_ingress",
            trigger=key,
            routes=[r.key for r in routes],
            certificates=len(self.store.certs),
        )

    def status(self) -> dict[str, Any]:
        return {
            "shutting_down": self._shutting_down,
            "cache_synced": self.store.sync_status(),
            "queue": {
                "pending": len(self.queue),
                "last_sync": self.queue.last_sync,
                "syncs": self.syncs,
                "shutting_down": self.queue.is_shutting_down(),
            },
            "data_plane": {
                "pid": self.data_plane.pid,
                "running": self.data_plane.is_running(),
                "last_exit": str(self.last_exit.kind) if self.last_exit else None,
            },
            "routes": len(self.store.routes),
            "certificates": len(self.store.certs),
            "events_dropped": self.updates.dropped,
        }
