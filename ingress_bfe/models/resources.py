"""Typed views of the Kubernetes objects the controller watches.

Every watched kind is a frozen dataclass parsed from the raw API JSON
(camelCase keys, as delivered by list and watch responses). Equality is the
generated field-by-field comparison of each dataclass, so change detection
is explicit per kind rather than a generic deep comparison of API models.
"""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, ClassVar

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


class ResourceKind(StrEnum):
    """Kinds held by the watch store."""

    ROUTE = "Ingress"
    ENDPOINTS = "Endpoints"
    SERVICE = "Service"
    SECRET = "Secret"
    CONFIG_OBJECT = "ConfigMap"
    POD = "Pod"


def meta_namespace_key(namespace: str, name: str) -> str:
    """Return ``namespace/name``, or just ``name`` for cluster-scoped objects."""
    if namespace:
        return f"{namespace}/{name}"
    return name


def split_meta_namespace_key(key: str) -> tuple[str, str]:
    """Inverse of meta_namespace_key."""
    parts = key.split("/")
    if len(parts) == 1:
        return "", parts[0]
    if len(parts) == 2:
        return parts[0], parts[1]
    raise ValueError(f"unexpected key format: {key!r}")


def _parse_timestamp(value: Any) -> datetime:
    if not value:
        return _EPOCH
    try:
        parsed = datetime.fromisoformat(str(value))
    except ValueError:
        return _EPOCH
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _str_map(value: Any) -> dict[str, str]:
    if not isinstance(value, dict):
        return {}
    return {str(k): "" if v is None else str(v) for k, v in value.items()}


def _metadata(raw: dict[str, Any]) -> dict[str, Any]:
    meta = raw.get("metadata") or {}
    return {
        "namespace": str(meta.get("namespace") or ""),
        "name": str(meta.get("name") or ""),
        "resource_version": str(meta.get("resourceVersion") or ""),
        "uid": str(meta.get("uid") or ""),
    }


@dataclass(frozen=True)
class WatchedResource:
    """Fields common to every watched object."""

    kind: ClassVar[ResourceKind]

    namespace: str
    name: str
    resource_version: str = ""
    uid: str = ""

    @property
    def key(self) -> str:
        return meta_namespace_key(self.namespace, self.name)


# ---------------------------------------------------------------------------
# Ingress (route)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RouteBackend:
    """Service backend of an Ingress path or default backend."""

    service_name: str
    service_port: str = ""

    @classmethod
    def from_raw(cls, raw: dict[str, Any] | None) -> RouteBackend | None:
        if not raw:
            return None
        service = raw.get("service")
        if isinstance(service, dict):
            port = service.get("port") or {}
            port_value = port.get("number") or port.get("name") or ""
            return cls(service_name=str(service.get("name") or ""), service_port=str(port_value))
        # networking/v1beta1 shape
        if "serviceName" in raw:
            return cls(
                service_name=str(raw.get("serviceName") or ""),
                service_port=str(raw.get("servicePort") or ""),
            )
        return None


@dataclass(frozen=True)
class RoutePath:
    path: str
    path_type: str | None
    backend: RouteBackend | None


@dataclass(frozen=True)
class RouteRule:
    host: str
    paths: tuple[RoutePath, ...] = ()


@dataclass(frozen=True)
class RouteTLS:
    hosts: tuple[str, ...] = ()
    secret_name: str = ""


@dataclass(frozen=True)
class Route(WatchedResource):
    """An Ingress object."""

    kind: ClassVar[ResourceKind] = ResourceKind.ROUTE

    creation_timestamp: datetime = _EPOCH
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    ingress_class_name: str | None = None
    tls: tuple[RouteTLS, ...] = ()
    rules: tuple[RouteRule, ...] = ()
    default_backend: RouteBackend | None = None

    def secret_keys(self) -> list[str]:
        """Keys of the Secrets declared in the TLS section, in declaration order."""
        keys: list[str] = []
        for entry in self.tls:
            if entry.secret_name:
                keys.append(meta_namespace_key(self.namespace, entry.secret_name))
        return keys

    @classmethod
    def from_raw(cls, raw: dict[str, Any]) -> Route:
        meta = raw.get("metadata") or {}
        spec = raw.get("spec") or {}
        tls = tuple(
            RouteTLS(
                hosts=tuple(str(h) for h in (entry.get("hosts") or [])),
                secret_name=str(entry.get("secretName") or ""),
            )
            for entry in (spec.get("tls") or [])
        )
        rules = []
        for rule in spec.get("rules") or []:
            http = rule.get("http") or {}
            paths = tuple(
                RoutePath(
                    path=str(p.get("path") or ""),
                    path_type=p.get("pathType"),
                    backend=RouteBackend.from_raw(p.get("backend")),
                )
                for p in (http.get("paths") or [])
            )
            rules.append(RouteRule(host=str(rule.get("host") or ""), paths=paths))
        class_name = spec.get("ingressClassName")
        return cls(
            **_metadata(raw),
            creation_timestamp=_parse_timestamp(meta.get("creationTimestamp")),
            labels=_str_map(meta.get("labels")),
            annotations=_str_map(meta.get("annotations")),
            ingress_class_name=str(class_name) if class_name is not None else None,
            tls=tls,
            rules=tuple(rules),
            default_backend=RouteBackend.from_raw(spec.get("defaultBackend") or spec.get("backend")),
        )


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EndpointAddress:
    ip: str
    hostname: str = ""
    node_name: str = ""
    target_ref: str = ""


@dataclass(frozen=True)
class EndpointPort:
    port: int
    name: str = ""
    protocol: str = "TCP"


@dataclass(frozen=True)
class EndpointSubset:
    addresses: tuple[EndpointAddress, ...] = ()
    not_ready_addresses: tuple[EndpointAddress, ...] = ()
    ports: tuple[EndpointPort, ...] = ()


def _addresses(raw: Any) -> tuple[EndpointAddress, ...]:
    result = []
    for addr in raw or []:
        target = addr.get("targetRef") or {}
        result.append(
            EndpointAddress(
                ip=str(addr.get("ip") or ""),
                hostname=str(addr.get("hostname") or ""),
                node_name=str(addr.get("nodeName") or ""),
                target_ref=meta_namespace_key(str(target.get("namespace") or ""), str(target.get("name") or ""))
                if target
                else "",
            )
        )
    return tuple(result)


@dataclass(frozen=True)
class Endpoints(WatchedResource):
    """An Endpoints object. Only ``subsets`` is topology."""

    kind: ClassVar[ResourceKind] = ResourceKind.ENDPOINTS

    labels: dict[str, str] = field(default_factory=dict)
    subsets: tuple[EndpointSubset, ...] = ()

    @classmethod
    def from_raw(cls, raw: dict[str, Any]) -> Endpoints:
        meta = raw.get("metadata") or {}
        subsets = tuple(
            EndpointSubset(
                addresses=_addresses(s.get("addresses")),
                not_ready_addresses=_addresses(s.get("notReadyAddresses")),
                ports=tuple(
                    EndpointPort(
                        port=int(p.get("port") or 0),
                        name=str(p.get("name") or ""),
                        protocol=str(p.get("protocol") or "TCP"),
                    )
                    for p in (s.get("ports") or [])
                ),
            )
            for s in (raw.get("subsets") or [])
        )
        return cls(**_metadata(raw), labels=_str_map(meta.get("labels")), subsets=subsets)


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ServicePort:
    port: int
    name: str = ""
    protocol: str = "TCP"
    target_port: str = ""
    node_port: int = 0


@dataclass(frozen=True)
class Service(WatchedResource):
    kind: ClassVar[ResourceKind] = ResourceKind.SERVICE

    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    service_type: str = "ClusterIP"
    cluster_ip: str = ""
    external_name: str = ""
    selector: dict[str, str] = field(default_factory=dict)
    ports: tuple[ServicePort, ...] = ()

    @classmethod
    def from_raw(cls, raw: dict[str, Any]) -> Service:
        meta = raw.get("metadata") or {}
        spec = raw.get("spec") or {}
        ports = tuple(
            ServicePort(
                port=int(p.get("port") or 0),
                name=str(p.get("name") or ""),
                protocol=str(p.get("protocol") or "TCP"),
                target_port=str(p.get("targetPort") or ""),
                node_port=int(p.get("nodePort") or 0),
            )
            for p in (spec.get("ports") or [])
        )
        return cls(
            **_metadata(raw),
            labels=_str_map(meta.get("labels")),
            annotations=_str_map(meta.get("annotations")),
            service_type=str(spec.get("type") or "ClusterIP"),
            cluster_ip=str(spec.get("clusterIP") or ""),
            external_name=str(spec.get("externalName") or ""),
            selector=_str_map(spec.get("selector")),
            ports=ports,
        )


# ---------------------------------------------------------------------------
# Secret
# ---------------------------------------------------------------------------

TLS_CERT_KEY = "tls.crt"
TLS_PRIVATE_KEY_KEY = "tls.key"
CA_CERT_KEY = "ca.crt"
CA_CRL_KEY = "ca.crl"


@dataclass(frozen=True)
class Secret(WatchedResource):
    """A Secret with its data values base64-decoded."""

    kind: ClassVar[ResourceKind] = ResourceKind.SECRET

    secret_type: str = "Opaque"
    data: dict[str, bytes] = field(default_factory=dict, repr=False)

    @classmethod
    def from_raw(cls, raw: dict[str, Any]) -> Secret:
        data: dict[str, bytes] = {}
        for k, v in (raw.get("data") or {}).items():
            if v is None:
                continue
            try:
                data[str(k)] = base64.b64decode(v, validate=True)
            except (binascii.Error, ValueError):
                data[str(k)] = b""
        return cls(**_metadata(raw), secret_type=str(raw.get("type") or "Opaque"), data=data)


# ---------------------------------------------------------------------------
# ConfigMap (controller configuration object)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ConfigObject(WatchedResource):
    kind: ClassVar[ResourceKind] = ResourceKind.CONFIG_OBJECT

    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    data: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_raw(cls, raw: dict[str, Any]) -> ConfigObject:
        meta = raw.get("metadata") or {}
        return cls(
            **_metadata(raw),
            labels=_str_map(meta.get("labels")),
            annotations=_str_map(meta.get("annotations")),
            data=_str_map(raw.get("data")),
        )


# ---------------------------------------------------------------------------
# Pod (controller self-identity)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Pod(WatchedResource):
    kind: ClassVar[ResourceKind] = ResourceKind.POD

    labels: dict[str, str] = field(default_factory=dict)
    phase: str = ""

    @classmethod
    def from_raw(cls, raw: dict[str, Any]) -> Pod:
        meta = raw.get("metadata") or {}
        status = raw.get("status") or {}
        return cls(
            **_metadata(raw),
            labels=_str_map(meta.get("labels")),
            phase=str(status.get("phase") or ""),
        )
