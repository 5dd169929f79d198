"""Configuration data structures."""

from __future__ import annotations

from dataclasses import dataclass, field

DEFAULT_CLASS_NAME = "bfe"


@dataclass(frozen=True)
class ClassConfig:
    """Ingress class filtering.

    Passed explicitly to the watch store and to ``is_valid``; there is no
    process-wide class setting.
    """

    ingress_class: str = DEFAULT_CLASS_NAME
    default_class: str = DEFAULT_CLASS_NAME
    # True when the cluster serves networking.k8s.io/v1 (Kubernetes >= 1.18)
    ingress_v1_ready: bool = True
    # Name of the IngressClass resource to match against spec.ingressClassName
    ingress_class_resource: str | None = None


@dataclass
class StoreConfig:
    """Watch store configuration."""

    namespace: str = ""
    resync_period: float = 600.0
    label_selector: str = "OWNER!=TILLER"
    cache_sync_timeout: float = 60.0
    settle_delay: float = 1.0
    event_channel_size: int = 1024
    watch_self_pod: bool = False


@dataclass
class CertConfig:
    """Local certificate storage."""

    ssl_directory: str = "/etc/ingress-controller/ssl"
    chain_completion: bool = False
    chain_fetch_timeout: float = 10.0


@dataclass
class QueueConfig:
    """Sync queue configuration."""

    period: float = 1.0


@dataclass
class DataPlaneConfig:
    """BFE process configuration."""

    binary: str = "/usr/local/bin/bfe/bfe"
    config_path: str = "/etc/bfe/bfe/conf"


@dataclass
class APIConfig:
    """Health/status API configuration."""

    port: int = 10254


@dataclass
class LogConfig:
    """Logging configuration."""

    level: str = "info"
    format: str = "json"


@dataclass
class ControllerConfig:
    """Top-level controller configuration."""

    store: StoreConfig = field(default_factory=StoreConfig)
    ingress_class: ClassConfig = field(default_factory=ClassConfig)
    certs: CertConfig = field(default_factory=CertConfig)
    queue: QueueConfig = field(default_factory=QueueConfig)
    data_plane: DataPlaneConfig = field(default_factory=DataPlaneConfig)
    api: APIConfig = field(default_factory=APIConfig)
    log: LogConfig = field(default_factory=LogConfig)
