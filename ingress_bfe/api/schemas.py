"""Response models for the health/status API."""

from __future__ import annotations

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    error: str
    detail: str = ""


class HealthResponse(BaseModel):
    status: str = Field(description="'ok' when every informer has synced and the data plane runs")
    version: str


class QueueStatus(BaseModel):
    pending: int
    last_sync: int = Field(description="Dequeue time (ns since epoch) of the last successful sync")
    syncs: int
    shutting_down: bool


class DataPlaneStatus(BaseModel):
    pid: int | None = None
    running: bool
    last_exit: str | None = None


class StatusResponse(BaseModel):
    version: str
    ingress_class: str
    namespace: str
    shutting_down: bool
    cache_synced: dict[str, bool]
    queue: QueueStatus
    data_plane: DataPlaneStatus
    routes: int
    certificates: int
    events_dropped: int
