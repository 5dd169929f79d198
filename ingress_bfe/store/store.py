"""Watch store: local mirror of the resources the controller reconciles.

Owns one Informer per kind, the secret/route reference index and the
certificate store. Normalized events produced by the handlers are pushed
onto the update channel handed in by the controller.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import structlog

from ingress_bfe.errors import CertificateError, NotFoundError
from ingress_bfe.models.certs import CertificateRecord
from ingress_bfe.models.config import CertConfig, ClassConfig, StoreConfig
from ingress_bfe.models.events import Event
from ingress_bfe.models.resources import (
    CA_CERT_KEY,
    CA_CRL_KEY,
    TLS_CERT_KEY,
    TLS_PRIVATE_KEY_KEY,
    ConfigObject,
    Endpoints,
    Pod,
    ResourceKind,
    Route,
    Secret,
    Service,
)
from ingress_bfe.store.certs import CertificateStore
from ingress_bfe.store.channel import RingChannel
from ingress_bfe.store.class_filter import set_default_path_type
from ingress_bfe.store.handlers import (
    ConfigObjectEventHandler,
    EndpointsEventHandler,
    PodEventHandler,
    RouteEventHandler,
    SecretEventHandler,
    ServiceEventHandler,
)
from ingress_bfe.store.informer import Indexer, Informer
from ingress_bfe.store.recorder import EventRecorder, NullRecorder
from ingress_bfe.store.refmap import ReferenceIndex

if TYPE_CHECKING:
    from ingress_bfe.pod import PodInfo

_log = structlog.get_logger(component="store")

# Returns True for routes that must be omitted from a listing.
RouteFilter = Callable[[Route], bool]


def _parse_route(raw: dict[str, Any]) -> Route:
    return set_default_path_type(Route.from_raw(raw))


class WatchStore:
    """Informer-backed cache of routes, endpoints, services, secrets and config maps.

    The Kubernetes API objects are optional: without them the informers can
    only be fed through ``Informer.deliver``, which is how the tests drive it.
    """

    def __init__(
        self,
        config: StoreConfig,
        class_config: ClassConfig,
        cert_config: CertConfig,
        updates: RingChannel[Event],
        recorder: EventRecorder | None = None,
        core_api: Any = None,
        networking_api: Any = None,
        pod_info: PodInfo | None = None,
    ) -> None:
        self.config = config
        self.class_config = class_config
        self.recorder: EventRecorder = recorder or NullRecorder()
        self.refmap = ReferenceIndex()
        self.certs = CertificateStore(
            ssl_directory=cert_config.ssl_directory,
            chain_completion=cert_config.chain_completion,
            chain_fetch_timeout=cert_config.chain_fetch_timeout,
        )
        self._updates = updates
        self._sync_secret_lock = asyncio.Lock()
        self._tasks: list[asyncio.Task[None]] = []
        self._stop = asyncio.Event()

        serialize = None
        if core_api is not None:
            serialize = core_api.api_client.sanitize_for_serialization
        elif networking_api is not None:
            serialize = networking_api.api_client.sanitize_for_serialization

        ns = config.namespace
        selector = {"label_selector": config.label_selector}

        def scoped(api: Any, namespaced: str, cluster: str) -> tuple[Any, dict[str, Any]]:
            if api is None:
                return None, {}
            if ns:
                return getattr(api, namespaced), {"namespace": ns, **selector}
            return getattr(api, cluster), dict(selector)

        def informer(kind: ResourceKind, parse: Any, handler: Any, api: Any, namespaced: str, cluster: str) -> Informer:
            list_fn, kwargs = scoped(api, namespaced, cluster)
            return Informer(
                kind,
                parse,
                handler,
                list_fn=list_fn,
                serialize=serialize,
                list_kwargs=kwargs,
                resync_period=config.resync_period,
            )

        self.route_informer: Informer[Route] = informer(
            ResourceKind.ROUTE,
            _parse_route,
            RouteEventHandler(self),
            networking_api,
            "list_namespaced_ingress",
            "list_ingress_for_all_namespaces",
        )
        self.endpoints_informer: Informer[Endpoints] = informer(
            ResourceKind.ENDPOINTS,
            Endpoints.from_raw,
            EndpointsEventHandler(self),
            core_api,
            "list_namespaced_endpoints",
            "list_endpoints_for_all_namespaces",
        )
        self.service_informer: Informer[Service] = informer(
            ResourceKind.SERVICE,
            Service.from_raw,
            ServiceEventHandler(self),
            core_api,
            "list_namespaced_service",
            "list_service_for_all_namespaces",
        )
        self.secret_informer: Informer[Secret] = informer(
            ResourceKind.SECRET,
            Secret.from_raw,
            SecretEventHandler(self),
            core_api,
            "list_namespaced_secret",
            "list_secret_for_all_namespaces",
        )
        self.config_informer: Informer[ConfigObject] = informer(
            ResourceKind.CONFIG_OBJECT,
            ConfigObject.from_raw,
            ConfigObjectEventHandler(self),
            core_api,
            "list_namespaced_config_map",
            "list_config_map_for_all_namespaces",
        )

        self.pod_informer: Informer[Pod] | None = None
        if config.watch_self_pod and pod_info is not None:
            self.pod_informer = Informer(
                ResourceKind.POD,
                Pod.from_raw,
                PodEventHandler(self),
                list_fn=core_api.list_namespaced_pod if core_api is not None else None,
                serialize=serialize,
                list_kwargs={
                    "namespace": pod_info.namespace,
                    "field_selector": f"metadata.name={pod_info.name}",
                },
                resync_period=config.resync_period,
            )

    # ------------------------------------------------------------------
    # Indexers
    # ------------------------------------------------------------------

    @property
    def routes(self) -> Indexer[Route]:
        return self.route_informer.indexer

    @property
    def endpoints(self) -> Indexer[Endpoints]:
        return self.endpoints_informer.indexer

    @property
    def services(self) -> Indexer[Service]:
        return self.service_informer.indexer

    @property
    def secrets(self) -> Indexer[Secret]:
        return self.secret_informer.indexer

    @property
    def config_objects(self) -> Indexer[ConfigObject]:
        return self.config_informer.indexer

    def _dependency_informers(self) -> list[Informer[Any]]:
        informers: list[Informer[Any]] = [
            self.endpoints_informer,
            self.service_informer,
            self.secret_informer,
            self.config_informer,
        ]
        if self.pod_informer is not None:
            informers.append(self.pod_informer)
        return informers

    def informers(self) -> list[Informer[Any]]:
        return [*self._dependency_informers(), self.route_informer]

    def sync_status(self) -> dict[str, bool]:
        return {str(inf.kind): inf.has_synced() for inf in self.informers()}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Start every informer; returns once routes have been listed.

        Dependencies (endpoints, services, secrets, config maps) are started
        first so that route handlers can resolve the secrets they reference.
        """
        dependencies = self._dependency_informers()
        for inf in dependencies:
            self._start(inf)
        await self._wait_for_sync(dependencies)
        if self._stop.is_set():
            return

        try:
            await asyncio.wait_for(self._stop.wait(), timeout=self.config.settle_delay)
            return
        except TimeoutError:
            pass

        self._start(self.route_informer)
        await self._wait_for_sync([self.route_informer])
        _log.info("store_started", namespace=self.config.namespace or "*")

    async def stop(self) -> None:
        """Stop every informer task and wait for them to finish."""
        self._stop.set()
        for inf in self.informers():
            inf.stop_watch()
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        _log.info("store_stopped")

    def _start(self, inf: Informer[Any]) -> None:
        task = asyncio.create_task(inf.run(self._stop), name=f"informer-{inf.kind}")
        self._tasks.append(task)

    async def _wait_for_sync(self, informers: list[Informer[Any]]) -> None:
        """Wait for the initial listing of *informers*; gives up on timeout or stop."""
        synced = asyncio.ensure_future(asyncio.gather(*(inf.wait_for_sync() for inf in informers)))
        stopped = asyncio.ensure_future(self._stop.wait())
        try:
            await asyncio.wait(
                {synced, stopped},
                timeout=self.config.cache_sync_timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            synced.cancel()
            stopped.cancel()
        if self._stop.is_set():
            return
        pending = [str(inf.kind) for inf in informers if not inf.has_synced()]
        if pending:
            _log.error("cache_sync_timeout", pending=pending, timeout=self.config.cache_sync_timeout)

    def emit(self, event: Event) -> None:
        self._updates.put_nowait(event)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_secret(self, key: str) -> Secret:
        return _lookup(self.secrets, ResourceKind.SECRET, key)

    def get_service(self, key: str) -> Service:
        return _lookup(self.services, ResourceKind.SERVICE, key)

    def get_service_endpoints(self, key: str) -> Endpoints:
        return _lookup(self.endpoints, ResourceKind.ENDPOINTS, key)

    def get_route(self, key: str) -> Route:
        return _lookup(self.routes, ResourceKind.ROUTE, key)

    def get_config_object(self, key: str) -> ConfigObject:
        return _lookup(self.config_objects, ResourceKind.CONFIG_OBJECT, key)

    def get_local_ssl_cert(self, key: str) -> CertificateRecord:
        return self.certs.get(key)

    def list_routes(self, filter_fn: RouteFilter | None = None) -> list[Route]:
        """Routes not omitted by *filter_fn*, oldest first.

        Routes created in the same second are ordered by key, descending.
        """
        routes = [r for r in self.routes.list() if filter_fn is None or not filter_fn(r)]
        routes.sort(key=lambda r: r.key, reverse=True)
        routes.sort(key=lambda r: r.creation_timestamp)
        return routes

    # ------------------------------------------------------------------
    # Secrets
    # ------------------------------------------------------------------

    def update_secret_ingress_map(self, route: Route) -> None:
        """Record the secrets *route* references (TLS entries)."""
        self.refmap.insert(route.key, *route.secret_keys())

    async def sync_secrets(self, route: Route) -> None:
        """Refresh the certificate of every secret *route* references."""
        async with self._sync_secret_lock:
            for key in sorted(self.refmap.referenced_by(route.key)):
                await self.sync_secret(key)

    async def sync_secret(self, key: str) -> CertificateRecord | None:
        """Build and store the certificate record of Secret *key*.

        Returns None when the secret is not cached yet, holds no usable
        material, or is rejected; a rejected update keeps the prior record.
        """
        secret = self.secrets.get(key)
        if secret is None:
            _log.warning("secret_not_found", secret=key)
            return None

        cert = secret.data.get(TLS_CERT_KEY)
        private_key = secret.data.get(TLS_PRIVATE_KEY_KEY)
        ca = secret.data.get(CA_CERT_KEY)
        crl = secret.data.get(CA_CRL_KEY)
        try:
            if cert and private_key:
                return await self.certs.put(key, cert, private_key, uid=secret.uid, ca=ca, crl=crl)
            if ca:
                return self.certs.put_ca(key, ca, uid=secret.uid, crl=crl)
        except CertificateError as exc:
            _log.warning("secret_rejected", secret=key, error=str(exc), error_type=type(exc).__name__)
            return None
        _log.warning("secret_has_no_certificate", secret=key, keys=sorted(secret.data))
        return None


def _lookup(indexer: Indexer[Any], kind: ResourceKind, key: str) -> Any:
    obj = indexer.get(key)
    if obj is None:
        raise NotFoundError(str(kind), key)
    return obj
