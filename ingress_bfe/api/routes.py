"""Health and status endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from ingress_bfe import __version__
from ingress_bfe.api.schemas import DataPlaneStatus, HealthResponse, QueueStatus, StatusResponse

router = APIRouter()


@router.get("/healthz", response_model=HealthResponse)
async def healthz(request: Request) -> JSONResponse:
    """200 once every cache has synced and the data plane is running, else 503."""
    controller = request.app.state.controller
    status = controller.status()
    healthy = (
        not status["shutting_down"]
        and all(status["cache_synced"].values())
        and status["data_plane"]["running"]
    )
    body = HealthResponse(status="ok" if healthy else "unavailable", version=__version__)
    return JSONResponse(status_code=200 if healthy else 503, content=body.model_dump())


@router.get("/api/v1/status", response_model=StatusResponse)
async def get_status(request: Request) -> StatusResponse:
    controller = request.app.state.controller
    status = controller.status()
    config = controller.config
    return StatusResponse(
        version=__version__,
        ingress_class=config.ingress_class.ingress_class,
        namespace=config.store.namespace,
        shutting_down=status["shutting_down"],
        cache_synced=status["cache_synced"],
        queue=QueueStatus(**status["queue"]),
        data_plane=DataPlaneStatus(**status["data_plane"]),
        routes=status["routes"],
        certificates=status["certificates"],
        events_dropped=status["events_dropped"],
    )
