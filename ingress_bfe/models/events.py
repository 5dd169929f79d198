"""Normalized events emitted by the watch store."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum

from ingress_bfe.models.resources import (
    ConfigObject,
    Endpoints,
    Pod,
    Route,
    Secret,
    Service,
)

# One case per watched kind; CONFIGURATION events always carry a ConfigObject.
ResourceObject = Route | Endpoints | Service | Secret | ConfigObject | Pod


class EventType(StrEnum):
    """Type of a store event."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    CONFIGURATION = "CONFIGURATION"


@dataclass(frozen=True)
class Event:
    """Envelope pushed onto the controller's update channel.

    ``referenced_by`` lists the route keys that depend on a Secret event's
    object; it is empty for every other kind.
    """

    type: EventType
    obj: ResourceObject
    referenced_by: frozenset[str] = field(default_factory=frozenset)

    @property
    def key(self) -> str:
        return self.obj.key

    @property
    def kind(self) -> str:
        return str(self.obj.kind)
