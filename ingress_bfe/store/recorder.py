"""Audit events attached to Ingress objects.

Events are posted to the core/v1 Events API of the object's namespace from
background tasks, so a handler never waits on the API server. Posting is
best effort: failures are logged and dropped.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from typing import Any, Protocol
from uuid import uuid4

import structlog

from ingress_bfe.models.resources import WatchedResource

_log = structlog.get_logger(component="store.recorder")

COMPONENT = "bfe-ingress-controller"
EVENT_TYPE_NORMAL = "Normal"
EVENT_TYPE_WARNING = "Warning"


class EventRecorder(Protocol):
    def eventf(self, obj: WatchedResource, event_type: str, reason: str, message: str) -> None: ...


class NullRecorder:
    """Recorder that only logs; used when no API client is configured."""

    def eventf(self, obj: WatchedResource, event_type: str, reason: str, message: str) -> None:
        _log.info("event", kind=str(obj.kind), key=obj.key, type=event_type, reason=reason, message=message)


class KubeEventRecorder:
    """Posts Events through a kubernetes_asyncio CoreV1Api."""

    def __init__(self, core_api: Any, component: str = COMPONENT) -> None:
        self._core_api = core_api
        self._component = component
        self._pending: set[asyncio.Task[None]] = set()

    def eventf(self, obj: WatchedResource, event_type: str, reason: str, message: str) -> None:
        _log.info("event", kind=str(obj.kind), key=obj.key, type=event_type, reason=reason, message=message)
        task = asyncio.get_running_loop().create_task(
            self._post(obj, self._body(obj, event_type, reason, message)),
            name=f"event-{reason.lower()}",
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def flush(self) -> None:
        """Wait for every in-flight post."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _post(self, obj: WatchedResource, body: dict[str, Any]) -> None:
        try:
            await self._core_api.create_namespaced_event(namespace=obj.namespace or "default", body=body)
        except Exception as exc:  # noqa: BLE001
            _log.warning("event_post_failed", key=obj.key, reason=body["reason"], error=str(exc))

    def _body(self, obj: WatchedResource, event_type: str, reason: str, message: str) -> dict[str, Any]:
        now = datetime.now(tz=UTC).isoformat().replace("+00:00", "Z")
        return {
            "apiVersion": "v1",
            "kind": "Event",
            "metadata": {
                "name": f"{obj.name}.{uuid4().hex[:16]}",
                "namespace": obj.namespace,
            },
            "involvedObject": {
                "kind": str(obj.kind),
                "namespace": obj.namespace,
                "name": obj.name,
                "uid": obj.uid,
                "resourceVersion": obj.resource_version,
            },
            "type": event_type,
            "reason": reason,
            "message": message,
            "source": {"component": self._component},
            "firstTimestamp": now,
            "lastTimestamp": now,
            "count": 1,
        }
