"""Configuration loading from environment variables."""

from __future__ import annotations

import os

from ingress_bfe.models.config import (
    APIConfig,
    CertConfig,
    ClassConfig,
    ControllerConfig,
    DataPlaneConfig,
    LogConfig,
    QueueConfig,
    StoreConfig,
)


def _env(key: str, default: str = "") -> str:
    return os.environ.get(f"INGRESS_BFE_{key}", default)


def _env_bool(key: str, default: bool = False) -> bool:
    val = _env(key, str(default).lower())
    return val.lower() in ("true", "1", "yes")


def _env_int(key: str, default: int, min_val: int | None = None, max_val: int | None = None) -> int:
    val = int(_env(key, str(default)))
    if min_val is not None:
        val = max(val, min_val)
    if max_val is not None:
        val = min(val, max_val)
    return val


def _env_float(key: str, default: float, min_val: float | None = None) -> float:
    val = float(_env(key, str(default)))
    if min_val is not None:
        val = max(val, min_val)
    return val


def _validate_log_level(value: str) -> str:
    valid = {"debug", "info", "warning", "error"}
    if value.lower() not in valid:
        raise ValueError(f"Invalid log level: {value}. Must be one of {valid}")
    return value.lower()


def _validate_log_format(value: str) -> str:
    if value.lower() not in ("json", "console"):
        raise ValueError(f"Invalid log format: {value}. Must be json or console")
    return value.lower()


def _validate_class_name(value: str) -> str:
    if "/" in value or " " in value:
        raise ValueError(f"Invalid ingress class: {value!r}")
    return value


def load_config() -> ControllerConfig:
    """Load configuration from INGRESS_BFE_* environment variables."""
    class_resource = _env("INGRESS_CLASS_RESOURCE", "")
    return ControllerConfig(
        store=StoreConfig(
            namespace=_env("NAMESPACE", ""),
            resync_period=_env_float("RESYNC_PERIOD", 600.0, min_val=0.0),
            label_selector=_env("LABEL_SELECTOR", "OWNER!=TILLER"),
            cache_sync_timeout=_env_float("CACHE_SYNC_TIMEOUT", 60.0, min_val=1.0),
            settle_delay=_env_float("SETTLE_DELAY", 1.0, min_val=0.0),
            event_channel_size=_env_int("EVENT_CHANNEL_SIZE", 1024, min_val=1, max_val=65536),
            watch_self_pod=_env_bool("WATCH_SELF_POD", False),
        ),
        ingress_class=ClassConfig(
            ingress_class=_validate_class_name(_env("INGRESS_CLASS", "bfe")),
            ingress_v1_ready=_env_bool("INGRESS_V1_READY", True),
            ingress_class_resource=class_resource or None,
        ),
        certs=CertConfig(
            ssl_directory=_env("SSL_DIRECTORY", "/etc/ingress-controller/ssl"),
            chain_completion=_env_bool("SSL_CHAIN_COMPLETION", False),
            chain_fetch_timeout=_env_float("CHAIN_FETCH_TIMEOUT", 10.0, min_val=1.0),
        ),
        queue=QueueConfig(
            period=_env_float("QUEUE_PERIOD", 1.0, min_val=0.1),
        ),
        data_plane=DataPlaneConfig(
            binary=_env("BFE_BINARY", "/usr/local/bin/bfe/bfe"),
            config_path=_env("BFE_CONFIG_PATH", "/etc/bfe/bfe/conf"),
        ),
        api=APIConfig(
            port=_env_int("API_PORT", 10254, min_val=1024, max_val=65535),
        ),
        log=LogConfig(
            level=_validate_log_level(_env("LOG_LEVEL", "info")),
            format=_validate_log_format(_env("LOG_FORMAT", "json")),
        ),
    )
