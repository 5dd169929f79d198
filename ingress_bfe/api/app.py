"""FastAPI application factory for the controller's health/status surface.

Usage::

    from ingress_bfe.api.app import create_app

    app = create_app(controller=controller)

Used by the production bootstrap (``ingress_bfe.app``) and by unit tests.
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ingress_bfe.api.routes import router
from ingress_bfe.api.schemas import ErrorResponse

_log = structlog.get_logger(component="api.app")


def create_app(controller: Any) -> FastAPI:
    """Create the API application.

    Args:
        controller: BfeController (anything exposing ``status()`` and ``config``).
    """
    from ingress_bfe import __version__

    app = FastAPI(
        title="ingress-bfe",
        summary="BFE ingress controller status API",
        version=__version__,
        docs_url=None,
        redoc_url=None,
        openapi_url="/api/v1/openapi.json",
    )
    app.state.controller = controller
    app.include_router(router)

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Never expose stack traces."""
        _log.error(
            "unhandled_exception",
            path=str(request.url.path),
            method=request.method,
            error=str(exc),
        )
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(error="INTERNAL_ERROR", detail="An unexpected error occurred.").model_dump(),
        )

    return app
