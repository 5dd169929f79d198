"""Shared fixtures for ingress-bfe tests.

Provides certificate material generated with ``cryptography`` and raw
Kubernetes API objects (camelCase dicts, as a watch delivers them) so tests
can exercise the store and the controller without a cluster.
"""

from __future__ import annotations

import base64
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from ingress_bfe.models.config import CertConfig, ClassConfig, StoreConfig
from ingress_bfe.models.events import Event
from ingress_bfe.store import RingChannel, WatchStore

_NOW = datetime.now(UTC)


# ---------------------------------------------------------------------------
# Certificate factories
# ---------------------------------------------------------------------------


def make_key() -> ec.EllipticCurvePrivateKey:
    return ec.generate_private_key(ec.SECP256R1())


def key_pem(key: ec.EllipticCurvePrivateKey) -> bytes:
    return key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    )


def make_cert(
    cn: str = "example.com",
    sans: tuple[str, ...] = ("example.com", "www.example.com"),
    key: ec.EllipticCurvePrivateKey | None = None,
    issuer_key: ec.EllipticCurvePrivateKey | None = None,
    issuer_cn: str | None = None,
    days: int = 30,
    is_ca: bool = False,
    serial: int | None = None,
) -> tuple[bytes, bytes]:
    """Return ``(cert_pem, key_pem)``; self-signed unless *issuer_key* is given."""
    key = key or make_key()
    not_after = _NOW + timedelta(days=days)
    not_before = min(_NOW, not_after) - timedelta(days=1)
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, cn)])
    issuer = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, issuer_cn)]) if issuer_cn else subject
    builder = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(key.public_key())
        .serial_number(serial or x509.random_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(not_after)
        .add_extension(x509.BasicConstraints(ca=is_ca, path_length=None), critical=True)
    )
    if sans:
        builder = builder.add_extension(
            x509.SubjectAlternativeName([x509.DNSName(s) for s in sans]),
            critical=False,
        )
    cert = builder.sign(issuer_key or key, hashes.SHA256())
    return cert.public_bytes(serialization.Encoding.PEM), key_pem(key)


def make_crl(issuer_key: ec.EllipticCurvePrivateKey, issuer_cn: str = "test-ca") -> bytes:
    crl = (
        x509.CertificateRevocationListBuilder()
        .issuer_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, issuer_cn)]))
        .last_update(_NOW - timedelta(hours=1))
        .next_update(_NOW + timedelta(days=7))
        .sign(issuer_key, hashes.SHA256())
    )
    return crl.public_bytes(serialization.Encoding.PEM)


# ---------------------------------------------------------------------------
# Raw API object factories
# ---------------------------------------------------------------------------


def _b64(value: bytes) -> str:
    return base64.b64encode(value).decode("ascii")


def raw_ingress(
    name: str = "web",
    namespace: str = "default",
    secret: str | None = None,
    annotations: dict[str, str] | None = None,
    class_name: str | None = None,
    created: str = "2024-01-01T00:00:00Z",
    host: str = "example.com",
    path: str = "/",
    path_type: str | None = "Prefix",
    resource_version: str = "1",
) -> dict[str, Any]:
    spec: dict[str, Any] = {
        "rules": [
            {
                "host": host,
                "http": {
                    "paths": [
                        {
                            "path": path,
                            "pathType": path_type,
                            "backend": {"service": {"name": "web", "port": {"number": 80}}},
                        }
                    ]
                },
            }
        ]
    }
    if secret:
        spec["tls"] = [{"hosts": [host], "secretName": secret}]
    if class_name is not None:
        spec["ingressClassName"] = class_name
    return {
        "apiVersion": "networking.k8s.io/v1",
        "kind": "Ingress",
        "metadata": {
            "name": name,
            "namespace": namespace,
            "uid": f"uid-{namespace}-{name}",
            "resourceVersion": resource_version,
            "creationTimestamp": created,
            "annotations": annotations or {},
        },
        "spec": spec,
    }


def raw_secret(
    name: str = "tls",
    namespace: str = "default",
    data: dict[str, bytes] | None = None,
    uid: str = "",
    resource_version: str = "1",
) -> dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "Secret",
        "type": "kubernetes.io/tls",
        "metadata": {
            "name": name,
            "namespace": namespace,
            "uid": uid or f"uid-{namespace}-{name}",
            "resourceVersion": resource_version,
        },
        "data": {k: _b64(v) for k, v in (data or {}).items()},
    }


def tls_secret(name: str = "tls", namespace: str = "default", **kwargs: Any) -> dict[str, Any]:
    cert, key = make_cert()
    return raw_secret(name, namespace, data={"tls.crt": cert, "tls.key": key}, **kwargs)


def raw_endpoints(
    name: str = "web",
    namespace: str = "default",
    ips: tuple[str, ...] = ("10.0.0.1",),
    resource_version: str = "1",
) -> dict[str, Any]:
    return {
        "metadata": {"name": name, "namespace": namespace, "resourceVersion": resource_version},
        "subsets": [
            {
                "addresses": [{"ip": ip} for ip in ips],
                "ports": [{"name": "http", "port": 8080, "protocol": "TCP"}],
            }
        ],
    }


def raw_service(name: str = "web", namespace: str = "default", port: int = 80, resource_version: str = "1") -> dict:
    return {
        "metadata": {"name": name, "namespace": namespace, "resourceVersion": resource_version},
        "spec": {
            "type": "ClusterIP",
            "clusterIP": "10.96.0.10",
            "selector": {"app": name},
            "ports": [{"name": "http", "port": port, "targetPort": 8080, "protocol": "TCP"}],
        },
    }


def raw_config_map(
    name: str = "bfe-config",
    namespace: str = "default",
    data: dict[str, str] | None = None,
    resource_version: str = "1",
) -> dict[str, Any]:
    return {
        "metadata": {"name": name, "namespace": namespace, "resourceVersion": resource_version},
        "data": data or {},
    }


def raw_pod(name: str = "controller-0", namespace: str = "ingress", phase: str = "Running") -> dict[str, Any]:
    return {
        "metadata": {"name": name, "namespace": namespace, "labels": {"app": "bfe"}},
        "status": {"phase": phase},
    }


def drain(channel: RingChannel[Event]) -> list[Event]:
    events = []
    while len(channel):
        events.append(channel.get_nowait())
    return events


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def updates() -> RingChannel[Event]:
    return RingChannel(64)


@pytest.fixture()
def recorder() -> Any:
    from unittest.mock import MagicMock

    return MagicMock()


@pytest.fixture()
def watch_store(tmp_path: Any, updates: RingChannel[Event], recorder: Any) -> WatchStore:
    """WatchStore with no API clients; fed through ``Informer.deliver``."""
    return WatchStore(
        StoreConfig(settle_delay=0.0, cache_sync_timeout=1.0),
        ClassConfig(),
        CertConfig(ssl_directory=str(tmp_path / "ssl")),
        updates,
        recorder=recorder,
    )


@pytest.fixture()
def tls_pair() -> tuple[bytes, bytes]:
    return make_cert()
