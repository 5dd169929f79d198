"""Controller self-identity, from the downward API environment."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any

from kubernetes_asyncio.client.exceptions import ApiException

from ingress_bfe.errors import PodInfoError

POD_NAME_ENV = "POD_NAME"
POD_NAMESPACE_ENV = "POD_NAMESPACE"


@dataclass(frozen=True)
class PodInfo:
    name: str
    namespace: str
    labels: dict[str, str] = field(default_factory=dict)


async def get_pod_details(core_api: Any) -> PodInfo:
    """Look up the Pod named by ``POD_NAME`` / ``POD_NAMESPACE``.

    Raises:
        PodInfoError: either variable is unset or the Pod cannot be read.
    """
    name = os.environ.get(POD_NAME_ENV, "")
    namespace = os.environ.get(POD_NAMESPACE_ENV, "")
    if not name or not namespace:
        raise PodInfoError(
            f"unable to get POD information (missing {POD_NAME_ENV} or {POD_NAMESPACE_ENV} environment variable)"
        )

    try:
        pod = await core_api.read_namespaced_pod(name=name, namespace=namespace)
    except ApiException as exc:
        raise PodInfoError(f"unable to get POD information: {exc.status} {exc.reason}") from exc
    if pod is None:
        raise PodInfoError("unable to get POD information")

    labels = dict(getattr(pod.metadata, "labels", None) or {})
    return PodInfo(name=name, namespace=namespace, labels=labels)
