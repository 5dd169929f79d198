"""Core data structures for ingress-bfe."""

from ingress_bfe.models.certs import CertificateRecord
from ingress_bfe.models.config import (
    ClassConfig,
    ControllerConfig,
    StoreConfig,
)
from ingress_bfe.models.events import Event, EventType, ResourceObject
from ingress_bfe.models.resources import (
    ConfigObject,
    Endpoints,
    Pod,
    ResourceKind,
    Route,
    Secret,
    Service,
    WatchedResource,
)

__all__ = [
    "CertificateRecord",
    "ClassConfig",
    "ConfigObject",
    "ControllerConfig",
    "Endpoints",
    "Event",
    "EventType",
    "Pod",
    "ResourceKind",
    "ResourceObject",
    "Route",
    "Secret",
    "Service",
    "StoreConfig",
    "WatchedResource",
]
