"""Health/status HTTP API."""

from ingress_bfe.api.app import create_app

build_app = create_app

__all__ = ["build_app", "create_app"]
