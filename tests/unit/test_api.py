"""Tests for the health/status API, including hypothesis-driven status fuzzing."""

from __future__ import annotations

from typing import Any
from unittest.mock import MagicMock

from fastapi.testclient import TestClient
from hypothesis import given, settings
from hypothesis import strategies as st

from ingress_bfe import __version__
from ingress_bfe.api import create_app
from ingress_bfe.models.config import ControllerConfig, StoreConfig


def _status(
    synced: bool = True,
    running: bool = True,
    shutting_down: bool = False,
    cache_synced: dict[str, bool] | None = None,
) -> dict[str, Any]:
    return {
        "shutting_down": shutting_down,
        "cache_synced": cache_synced
        if cache_synced is not None
        else {"Ingress": synced, "Endpoints": True, "Service": True, "Secret": True, "ConfigMap": True},
        "queue": {"pending": 2, "last_sync": 1_700_000_000_000_000_000, "syncs": 5, "shutting_down": shutting_down},
        "data_plane": {"pid": 4242 if running else None, "running": running, "last_exit": None},
        "routes": 3,
        "certificates": 1,
        "events_dropped": 0,
    }


def _client(status: dict[str, Any] | Exception) -> TestClient:
    controller = MagicMock()
    controller.config = ControllerConfig(store=StoreConfig(namespace="edge"))
    if isinstance(status, Exception):
        controller.status = MagicMock(side_effect=status)
    else:
        controller.status = MagicMock(return_value=status)
    return TestClient(create_app(controller), raise_server_exceptions=False)


class TestHealthz:
    def test_healthy(self) -> None:
        resp = _client(_status()).get("/healthz")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok", "version": __version__}

    def test_unsynced_cache(self) -> None:
        resp = _client(_status(synced=False)).get("/healthz")
        assert resp.status_code == 503
        assert resp.json()["status"] == "unavailable"

    def test_data_plane_down(self) -> None:
        assert _client(_status(running=False)).get("/healthz").status_code == 503

    def test_shutting_down(self) -> None:
        assert _client(_status(shutting_down=True)).get("/healthz").status_code == 503


class TestStatus:
    def test_fields(self) -> None:
        resp = _client(_status()).get("/api/v1/status")
        assert resp.status_code == 200
        body = resp.json()
        assert body["version"] == __version__
        assert body["ingress_class"] == "bfe"
        assert body["namespace"] == "edge"
        assert body["queue"]["pending"] == 2
        assert body["queue"]["syncs"] == 5
        assert body["data_plane"] == {"pid": 4242, "running": True, "last_exit": None}
        assert body["routes"] == 3
        assert body["cache_synced"]["Ingress"] is True

    def test_internal_error_hides_details(self) -> None:
        resp = _client(RuntimeError("secret detail")).get("/api/v1/status")
        assert resp.status_code == 500
        assert resp.json() == {"error": "INTERNAL_ERROR", "detail": "An unexpected error occurred."}
        assert "secret detail" not in resp.text

    def test_openapi_served_under_api_prefix(self) -> None:
        resp = _client(_status()).get("/api/v1/openapi.json")
        assert resp.status_code == 200
        assert "/healthz" in resp.json()["paths"]


class TestFuzz:
    @given(
        cache_synced=st.dictionaries(
            st.sampled_from(["Ingress", "Endpoints", "Service", "Secret", "ConfigMap", "Pod"]),
            st.booleans(),
        ),
        running=st.booleans(),
        shutting_down=st.booleans(),
    )
    @settings(max_examples=50, deadline=None)
    def test_healthz_matches_readiness(
        self, cache_synced: dict[str, bool], running: bool, shutting_down: bool
    ) -> None:
        resp = _client(_status(running=running, shutting_down=shutting_down, cache_synced=cache_synced)).get(
            "/healthz"
        )
        healthy = all(cache_synced.values()) and running and not shutting_down
        assert resp.status_code == (200 if healthy else 503)
        assert resp.headers["content-type"].startswith("application/json")

    @given(path=st.text(alphabet="abcdefghijklmnopqrstuvwxyz0123456789-_/", min_size=1, max_size=40))
    @settings(max_examples=50, deadline=None)
    def test_unknown_paths_never_500(self, path: str) -> None:
        resp = _client(_status()).get(f"/api/v2/{path}")
        assert resp.status_code == 404
