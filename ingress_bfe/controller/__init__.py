"""Controller: event dispatch, sync queue worker and data plane supervision."""

from ingress_bfe.controller.controller import CONFIGMAP_CHANGE, BfeController, SyncAction
from ingress_bfe.controller.dataplane import DataPlaneExit, DataPlaneProcess, ExitKind, classify_exit

__all__ = [
    "CONFIGMAP_CHANGE",
    "BfeController",
    "DataPlaneExit",
    "DataPlaneProcess",
    "ExitKind",
    "SyncAction",
    "classify_exit",
]
