"""Per-kind watch handlers.

Handlers run on the informer task that delivered the change. They mutate
only local state (reference index, certificate store) and push normalized
events onto the store's update channel; they never wait on the consumer.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from ingress_bfe.models.events import Event, EventType
from ingress_bfe.models.resources import ConfigObject, Endpoints, Pod, Route, Secret, Service
from ingress_bfe.store.class_filter import INGRESS_CLASS_ANNOTATION, class_annotation, is_valid
from ingress_bfe.store.recorder import EVENT_TYPE_NORMAL

if TYPE_CHECKING:
    from ingress_bfe.store.store import WatchStore

_log = structlog.get_logger(component="store.handlers")


class RouteEventHandler:
    """Ingress deliveries: class filtering, secret references, audit events."""

    def __init__(self, store: WatchStore) -> None:
        self._store = store

    def _valid(self, route: Route) -> bool:
        return is_valid(route, self._store.class_config)

    def _record(self, route: Route, reason: str) -> None:
        self._store.recorder.eventf(route, EVENT_TYPE_NORMAL, reason, f"Ingress {route.namespace}/{route.name}")

    async def on_add(self, route: Route) -> None:
        if not self._valid(route):
            _log.info(
                "ignoring_ingress_add",
                ingress=route.key,
                annotation=INGRESS_CLASS_ANNOTATION,
                value=class_annotation(route),
            )
            return
        self._record(route, "CREATE")
        self._store.update_secret_ingress_map(route)
        await self._store.sync_secrets(route)
        self._store.emit(Event(type=EventType.CREATE, obj=route))

    async def on_update(self, old: Route, cur: Route) -> None:
        valid_old = self._valid(old)
        valid_cur = self._valid(cur)
        if not valid_old and valid_cur:
            _log.info("creating_ingress", ingress=cur.key, annotation=INGRESS_CLASS_ANNOTATION)
            self._record(cur, "CREATE")
            event_type = EventType.CREATE
        elif valid_old and not valid_cur:
            _log.info("removing_ingress", ingress=cur.key, annotation=INGRESS_CLASS_ANNOTATION)
            await self.on_delete(old)
            return
        elif valid_cur and old != cur:
            self._record(cur, "UPDATE")
            event_type = EventType.UPDATE
        else:
            _log.debug("ingress_unchanged", ingress=cur.key)
            return

        self._store.update_secret_ingress_map(cur)
        await self._store.sync_secrets(cur)
        self._store.emit(Event(type=event_type, obj=cur))

    async def on_delete(self, route: Route) -> None:
        if not self._valid(route):
            _log.info("ignoring_ingress_delete", ingress=route.key, annotation=INGRESS_CLASS_ANNOTATION)
            return
        self._record(route, "DELETE")
        self._store.refmap.delete(route.key)
        self._store.emit(Event(type=EventType.DELETE, obj=route))


class SecretEventHandler:
    """Secrets matter only while some route references them."""

    def __init__(self, store: WatchStore) -> None:
        self._store = store

    async def _resync_referencing_routes(self, secret: Secret, action: str) -> frozenset[str]:
        routes = self._store.refmap.reference(secret.key)
        if not routes:
            return frozenset()
        _log.info("secret_referenced_by_ingress", secret=secret.key, action=action, ingresses=sorted(routes))
        for route_key in sorted(routes):
            route = self._store.routes.get(route_key)
            if route is None:
                _log.error("ingress_not_in_local_store", ingress=route_key, secret=secret.key)
                continue
            await self._store.sync_secrets(route)
        return frozenset(routes)

    async def on_add(self, secret: Secret) -> None:
        routes = await self._resync_referencing_routes(secret, "added")
        if routes:
            self._store.emit(Event(type=EventType.CREATE, obj=secret, referenced_by=routes))

    async def on_update(self, old: Secret, cur: Secret) -> None:
        if old == cur:
            return
        routes = await self._resync_referencing_routes(cur, "updated")
        if routes:
            self._store.emit(Event(type=EventType.UPDATE, obj=cur, referenced_by=routes))

    async def on_delete(self, secret: Secret) -> None:
        self._store.certs.delete(secret.key)
        routes = self._store.refmap.reference(secret.key)
        if routes:
            _log.info("referenced_secret_deleted", secret=secret.key, ingresses=sorted(routes))
            self._store.emit(Event(type=EventType.DELETE, obj=secret, referenced_by=frozenset(routes)))


class EndpointsEventHandler:
    """Only subset topology changes are interesting."""

    def __init__(self, store: WatchStore) -> None:
        self._store = store

    async def on_add(self, endpoints: Endpoints) -> None:
        self._store.emit(Event(type=EventType.CREATE, obj=endpoints))

    async def on_update(self, old: Endpoints, cur: Endpoints) -> None:
        if old.subsets != cur.subsets:
            self._store.emit(Event(type=EventType.UPDATE, obj=cur))

    async def on_delete(self, endpoints: Endpoints) -> None:
        self._store.emit(Event(type=EventType.DELETE, obj=endpoints))


class ServiceEventHandler:
    def __init__(self, store: WatchStore) -> None:
        self._store = store

    async def on_add(self, service: Service) -> None:
        return None

    async def on_update(self, old: Service, cur: Service) -> None:
        if old == cur:
            return
        self._store.emit(Event(type=EventType.UPDATE, obj=cur))

    async def on_delete(self, service: Service) -> None:
        return None


class ConfigObjectEventHandler:
    """Every real ConfigMap change is a configuration change."""

    def __init__(self, store: WatchStore) -> None:
        self._store = store

    async def on_add(self, config: ConfigObject) -> None:
        self._store.emit(Event(type=EventType.CONFIGURATION, obj=config))

    async def on_update(self, old: ConfigObject, cur: ConfigObject) -> None:
        if old == cur:
            return
        self._store.emit(Event(type=EventType.CONFIGURATION, obj=cur))

    async def on_delete(self, config: ConfigObject) -> None:
        return None


class PodEventHandler:
    """The controller's own Pod; only phase transitions are reported."""

    def __init__(self, store: WatchStore) -> None:
        self._store = store

    async def on_add(self, pod: Pod) -> None:
        self._store.emit(Event(type=EventType.CREATE, obj=pod))

    async def on_update(self, old: Pod, cur: Pod) -> None:
        if old.phase == cur.phase:
            return
        self._store.emit(Event(type=EventType.UPDATE, obj=cur))

    async def on_delete(self, pod: Pod) -> None:
        self._store.emit(Event(type=EventType.DELETE, obj=pod))
