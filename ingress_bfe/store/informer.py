"""List-then-watch producer for one resource kind.

An Informer keeps an Indexer (``key -> typed object``) in step with the API
server and hands every change to a ResourceEventHandler:

1. List the collection, replace the indexer contents, remember the list's
   ``resourceVersion`` and mark the informer as synced.
2. Watch from that ``resourceVersion``; each delivery replaces the cached
   object wholesale and calls ``on_add`` / ``on_update`` / ``on_delete``.
3. ``410 Gone`` (compacted history) triggers a fresh list; any other error
   backs off exponentially with jitter, 1 s up to 30 s.
4. Once per resync period every cached object is re-delivered as
   ``on_update(obj, obj)``; handlers treat identical objects as no-ops.
"""

from __future__ import annotations

import asyncio
import random
import time
from collections.abc import Awaitable, Callable
from typing import Any, Generic, Protocol, TypeVar

import structlog
from kubernetes_asyncio import watch
from kubernetes_asyncio.client.exceptions import ApiException

from ingress_bfe.models.resources import ResourceKind, WatchedResource

_log = structlog.get_logger(component="store.informer")

T = TypeVar("T", bound=WatchedResource)

_BACKOFF_INITIAL = 1.0
_BACKOFF_MAX = 30.0
_WATCH_TIMEOUT_MAX = 300

ADDED = "ADDED"
MODIFIED = "MODIFIED"
DELETED = "DELETED"


class ResourceEventHandler(Protocol[T]):
    async def on_add(self, obj: T) -> None: ...

    async def on_update(self, old: T, cur: T) -> None: ...

    async def on_delete(self, obj: T) -> None: ...


class _Gone(Exception):
    """The watch resourceVersion is too old; relist required."""


class Indexer(Generic[T]):
    """Local cache of one kind, keyed by ``namespace/name``."""

    def __init__(self) -> None:
        self._items: dict[str, T] = {}

    def get(self, key: str) -> T | None:
        return self._items.get(key)

    def add(self, obj: T) -> T | None:
        """Store *obj*, returning the object it replaced."""
        old = self._items.get(obj.key)
        self._items[obj.key] = obj
        return old

    def delete(self, key: str) -> T | None:
        return self._items.pop(key, None)

    def list(self) -> list[T]:
        return list(self._items.values())

    def keys(self) -> list[str]:
        return list(self._items)

    def __contains__(self, key: object) -> bool:
        return key in self._items

    def __len__(self) -> int:
        return len(self._items)


class Informer(Generic[T]):
    """Synchronizes one kind and dispatches deliveries to a handler.

    Args:
        kind:       Resource kind (for logs).
        parse:      Builds the typed object from raw API JSON.
        handler:    Receives add/update/delete callbacks.
        list_fn:    kubernetes_asyncio list function (also used for watch).
                    None for informers fed only through ``deliver``.
        serialize:  Turns a kubernetes_asyncio model into raw JSON
                    (``ApiClient.sanitize_for_serialization``).
        list_kwargs: Extra arguments for ``list_fn`` (namespace, selectors).
        resync_period: Seconds between re-deliveries of the whole cache; 0 disables.
    """

    def __init__(
        self,
        kind: ResourceKind,
        parse: Callable[[dict[str, Any]], T],
        handler: ResourceEventHandler[T],
        list_fn: Callable[..., Awaitable[Any]] | None = None,
        serialize: Callable[[Any], Any] | None = None,
        list_kwargs: dict[str, Any] | None = None,
        resync_period: float = 0.0,
    ) -> None:
        self.kind = kind
        self.indexer: Indexer[T] = Indexer()
        self._parse = parse
        self._handler = handler
        self._list_fn = list_fn
        self._serialize = serialize
        self._list_kwargs = dict(list_kwargs or {})
        self._resync_period = resync_period
        self._resource_version = ""
        self._synced = asyncio.Event()
        self._next_resync: float | None = None
        self._watch: watch.Watch | None = None
        self._log = _log.bind(kind=str(kind))

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def has_synced(self) -> bool:
        return self._synced.is_set()

    async def wait_for_sync(self) -> None:
        await self._synced.wait()

    @property
    def resource_version(self) -> str:
        return self._resource_version

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    async def deliver(self, event_type: str, raw: dict[str, Any] | T) -> None:
        """Apply one watch event to the indexer and notify the handler."""
        if isinstance(raw, WatchedResource):
            obj = raw
        else:
            try:
                obj = self._parse(raw)
            except (TypeError, ValueError, AttributeError) as exc:
                self._log.warning("unparseable_object", event_type=event_type, error=str(exc))
                return

        if event_type in (ADDED, MODIFIED):
            old = self.indexer.add(obj)
            if old is None:
                await self._dispatch("on_add", obj)
            else:
                await self._dispatch("on_update", old, obj)
        elif event_type == DELETED:
            old = self.indexer.delete(obj.key)
            await self._dispatch("on_delete", old if old is not None else obj)
        else:
            self._log.debug("ignored_event_type", event_type=event_type)

    async def replace(self, objs: list[T]) -> None:
        """Replace the whole cache with a fresh listing."""
        seen = set()
        for obj in objs:
            seen.add(obj.key)
            old = self.indexer.add(obj)
            if old is None:
                await self._dispatch("on_add", obj)
            else:
                await self._dispatch("on_update", old, obj)
        for key in [k for k in self.indexer.keys() if k not in seen]:
            old = self.indexer.delete(key)
            if old is not None:
                await self._dispatch("on_delete", old)

    async def resync(self) -> None:
        """Re-deliver every cached object as an update to itself."""
        for obj in self.indexer.list():
            await self._dispatch("on_update", obj, obj)

    async def _dispatch(self, method: str, *args: T) -> None:
        try:
            await getattr(self._handler, method)(*args)
        except Exception as exc:  # noqa: BLE001
            self._log.error("handler_error", method=method, key=args[-1].key, error=str(exc), exc_info=True)

    # ------------------------------------------------------------------
    # List / watch loop
    # ------------------------------------------------------------------

    async def run(self, stop: asyncio.Event) -> None:
        """List and watch until *stop* is set."""
        if self._list_fn is None:
            raise RuntimeError(f"informer for {self.kind} has no list function")

        backoff = _BACKOFF_INITIAL
        need_list = True
        while not stop.is_set():
            try:
                if need_list:
                    await self._list()
                    need_list = False
                    self._synced.set()
                await self._watch_once(stop)
                backoff = _BACKOFF_INITIAL
            except _Gone:
                self._log.info("watch_expired_relisting", resource_version=self._resource_version)
                need_list = True
            except ApiException as exc:
                if exc.status == 410:
                    self._log.info("watch_expired_relisting", resource_version=self._resource_version)
                    need_list = True
                    continue
                self._log.warning("watch_api_error", status=exc.status, reason=exc.reason, retry_in=backoff)
                await _sleep_or_stop(stop, backoff * (0.5 + random.random()))  # noqa: S311
                backoff = min(backoff * 2, _BACKOFF_MAX)
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # noqa: BLE001
                self._log.warning("watch_error", error=str(exc), retry_in=backoff)
                await _sleep_or_stop(stop, backoff * (0.5 + random.random()))  # noqa: S311
                backoff = min(backoff * 2, _BACKOFF_MAX)
        self._log.debug("informer_stopped")

    def stop_watch(self) -> None:
        """Interrupt the open watch stream, if any."""
        if self._watch is not None:
            self._watch.stop()

    def _request_kwargs(self) -> dict[str, Any]:
        return {k: v for k, v in self._list_kwargs.items() if v not in (None, "")}

    def _to_raw(self, obj: Any) -> dict[str, Any]:
        if isinstance(obj, dict):
            return obj
        if self._serialize is None:
            raise RuntimeError("informer needs a serializer for API model objects")
        return self._serialize(obj)

    async def _list(self) -> None:
        assert self._list_fn is not None
        result = self._to_raw(await self._list_fn(**self._request_kwargs()))
        objs = []
        for item in result.get("items") or []:
            try:
                objs.append(self._parse(item))
            except (TypeError, ValueError, AttributeError) as exc:
                self._log.warning("unparseable_object", error=str(exc))
        self._resource_version = str((result.get("metadata") or {}).get("resourceVersion") or "")
        await self.replace(objs)
        if self._resync_period > 0:
            self._next_resync = time.monotonic() + self._resync_period
        self._log.info("listed", count=len(objs), resource_version=self._resource_version)

    def _watch_timeout(self) -> int:
        if self._next_resync is None:
            return _WATCH_TIMEOUT_MAX
        remaining = self._next_resync - time.monotonic()
        return int(max(1, min(remaining, _WATCH_TIMEOUT_MAX)))

    def _resync_due(self) -> bool:
        return self._next_resync is not None and time.monotonic() >= self._next_resync

    async def _watch_once(self, stop: asyncio.Event) -> None:
        w = watch.Watch()
        self._watch = w
        try:
            async with w.stream(
                self._list_fn,
                resource_version=self._resource_version,
                timeout_seconds=self._watch_timeout(),
                allow_watch_bookmarks=True,
                **self._request_kwargs(),
            ) as stream:
                async for event in stream:
                    if stop.is_set():
                        break
                    event_type = event.get("type", "")
                    raw = event.get("raw_object") or self._to_raw(event.get("object"))
                    if event_type == "ERROR":
                        if raw.get("code") == 410:
                            raise _Gone
                        raise RuntimeError(f"watch error: {raw.get('message', raw)}")
                    rv = (raw.get("metadata") or {}).get("resourceVersion")
                    if rv:
                        self._resource_version = str(rv)
                    if event_type != "BOOKMARK":
                        await self.deliver(event_type, raw)
                    if self._resync_due():
                        break
        finally:
            self._watch = None

        if self._resync_due():
            assert self._next_resync is not None
            self._next_resync = time.monotonic() + self._resync_period
            await self.resync()


async def _sleep_or_stop(stop: asyncio.Event, seconds: float) -> None:
    try:
        await asyncio.wait_for(stop.wait(), timeout=seconds)
    except TimeoutError:
        pass
