"""Tests for parsing raw API objects into typed resources."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from ingress_bfe.models.events import Event, EventType
from ingress_bfe.models.resources import (
    ConfigObject,
    Endpoints,
    Pod,
    ResourceKind,
    Route,
    Secret,
    Service,
    meta_namespace_key,
    split_meta_namespace_key,
)
from tests.conftest import (
    raw_config_map,
    raw_endpoints,
    raw_ingress,
    raw_pod,
    raw_secret,
    raw_service,
)


class TestKeys:
    def test_namespaced_key(self) -> None:
        assert meta_namespace_key("default", "web") == "default/web"
        assert split_meta_namespace_key("default/web") == ("default", "web")

    def test_cluster_scoped_key(self) -> None:
        assert meta_namespace_key("", "node-1") == "node-1"
        assert split_meta_namespace_key("node-1") == ("", "node-1")

    def test_malformed_key(self) -> None:
        with pytest.raises(ValueError):
            split_meta_namespace_key("a/b/c")


class TestRoute:
    def test_from_raw(self) -> None:
        route = Route.from_raw(raw_ingress(secret="tls", class_name="bfe", created="2024-03-01T12:00:00Z"))
        assert route.key == "default/web"
        assert route.kind is ResourceKind.ROUTE
        assert route.creation_timestamp == datetime(2024, 3, 1, 12, 0, tzinfo=UTC)
        assert route.ingress_class_name == "bfe"
        assert route.tls[0].secret_name == "tls"
        assert route.rules[0].host == "example.com"
        backend = route.rules[0].paths[0].backend
        assert backend is not None
        assert (backend.service_name, backend.service_port) == ("web", "80")

    def test_secret_keys_use_route_namespace(self) -> None:
        route = Route.from_raw(raw_ingress(namespace="shop", secret="shop-tls"))
        assert route.secret_keys() == ["shop/shop-tls"]

    def test_tls_without_secret_name_ignored(self) -> None:
        raw = raw_ingress()
        raw["spec"]["tls"] = [{"hosts": ["example.com"]}]
        assert Route.from_raw(raw).secret_keys() == []

    def test_equality_is_field_by_field(self) -> None:
        assert Route.from_raw(raw_ingress()) == Route.from_raw(raw_ingress())
        assert Route.from_raw(raw_ingress()) != Route.from_raw(raw_ingress(host="other.example.com"))

    def test_missing_timestamp_sorts_first(self) -> None:
        raw = raw_ingress()
        del raw["metadata"]["creationTimestamp"]
        assert Route.from_raw(raw).creation_timestamp.year == 1970


class TestOtherKinds:
    def test_endpoints(self) -> None:
        eps = Endpoints.from_raw(raw_endpoints(ips=("10.0.0.1", "10.0.0.2")))
        assert [a.ip for a in eps.subsets[0].addresses] == ["10.0.0.1", "10.0.0.2"]
        assert eps.subsets[0].ports[0].port == 8080

    def test_service(self) -> None:
        svc = Service.from_raw(raw_service(port=443))
        assert svc.service_type == "ClusterIP"
        assert svc.ports[0].port == 443
        assert svc.ports[0].target_port == "8080"
        assert svc.selector == {"app": "web"}

    def test_secret_data_is_decoded(self) -> None:
        secret = Secret.from_raw(raw_secret(data={"tls.crt": b"cert", "tls.key": b"key"}))
        assert secret.data == {"tls.crt": b"cert", "tls.key": b"key"}
        assert secret.secret_type == "kubernetes.io/tls"

    def test_secret_invalid_base64_becomes_empty(self) -> None:
        raw = raw_secret()
        raw["data"] = {"tls.crt": "***"}
        assert Secret.from_raw(raw).data == {"tls.crt": b""}

    def test_config_object(self) -> None:
        config = ConfigObject.from_raw(raw_config_map(data={"keepalive": "60"}))
        assert config.data == {"keepalive": "60"}
        assert config.kind is ResourceKind.CONFIG_OBJECT

    def test_pod(self) -> None:
        pod = Pod.from_raw(raw_pod(phase="Pending"))
        assert pod.phase == "Pending"
        assert pod.key == "ingress/controller-0"


class TestEvent:
    def test_envelope_exposes_object_identity(self) -> None:
        secret = Secret.from_raw(raw_secret())
        event = Event(type=EventType.UPDATE, obj=secret, referenced_by=frozenset({"default/web"}))
        assert event.key == "default/tls"
        assert event.kind == "Secret"
        assert "default/web" in event.referenced_by

    def test_referenced_by_defaults_empty(self) -> None:
        event = Event(type=EventType.CREATE, obj=Route.from_raw(raw_ingress()))
        assert event.referenced_by == frozenset()
