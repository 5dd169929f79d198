"""Ingress class membership and path-type defaulting."""

from __future__ import annotations

import dataclasses

from ingress_bfe.models.config import ClassConfig
from ingress_bfe.models.resources import Route, RoutePath, RouteRule

# The controller only processes Ingresses with this annotation either
# unset, or set to the configured class (or empty, for the default class).
INGRESS_CLASS_ANNOTATION = "kubernetes.io/ingress.class"

PATH_TYPE_PREFIX = "Prefix"
PATH_TYPE_EXACT = "Exact"
PATH_TYPE_IMPLEMENTATION_SPECIFIC = "ImplementationSpecific"


def is_valid(route: Route, config: ClassConfig) -> bool:
    """Return True when *route* belongs to the configured ingress class."""
    # 1. class annotation
    if INGRESS_CLASS_ANNOTATION in route.annotations:
        annotation = route.annotations[INGRESS_CLASS_ANNOTATION]
        if annotation == "" and config.ingress_class == config.default_class:
            return True
        return annotation == config.ingress_class

    # 2. clusters without networking/v1: only the default class matches
    if not config.ingress_v1_ready:
        return config.ingress_class == config.default_class

    # 3. no IngressClass resource configured
    if config.ingress_class_resource is None:
        return config.ingress_class == config.default_class

    # 4. IngressClass resource reference
    return route.ingress_class_name is not None and route.ingress_class_name == config.ingress_class_resource


def class_annotation(route: Route) -> str | None:
    return route.annotations.get(INGRESS_CLASS_ANNOTATION)


def set_default_path_type(route: Route) -> Route:
    """Return *route* with missing or implementation-specific path types set to Prefix."""
    changed = False
    rules = []
    for rule in route.rules:
        paths = []
        for path in rule.paths:
            if path.path_type is None or path.path_type == PATH_TYPE_IMPLEMENTATION_SPECIFIC:
                path = RoutePath(path=path.path, path_type=PATH_TYPE_PREFIX, backend=path.backend)
                changed = True
            paths.append(path)
        rules.append(RouteRule(host=rule.host, paths=tuple(paths)))
    if not changed:
        return route
    return dataclasses.replace(route, rules=tuple(rules))
