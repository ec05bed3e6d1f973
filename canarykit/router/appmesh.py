"""App Mesh virtual nodes and virtual services for canary routing."""

from __future__ import annotations

import copy
import logging
from typing import Any

from canarykit.router.resources import (
    Canary,
    NotFoundError,
    Resource,
    ResourceStore,
    Router,
    owner_reference,
)

logger = logging.getLogger(__name__)

VIRTUAL_NODE = "VirtualNode"
VIRTUAL_SERVICE = "VirtualService"


def _listener(canary: Canary) -> dict[str, Any]:
    return {"portMapping": {"port": int(canary.service.port), "protocol": "http"}}


def _weighted_targets(canary: Canary, primary_weight: int, canary_weight: int) -> list[dict[str, Any]]:
    return [
        {"virtualNodeName": canary.canary_name(), "weight": int(canary_weight)},
        {"virtualNodeName": canary.primary_name(), "weight": int(primary_weight)},
    ]


def _route_prefix(canary: Canary) -> str:
    # App Mesh supports only URI prefix matching
    if canary.service.match:
        uri = canary.service.match[0].get("uri") or {}
        prefix = uri.get("prefix") or ""
        if prefix:
            return prefix
    return "/"


def _action(spec: dict[str, Any]) -> dict[str, Any] | None:
    routes = spec.get("routes") or []
    if not routes:
        return None
    http = routes[0].get("http")
    if not isinstance(http, dict):
        return None
    return http.get("action")


def _without_targets(spec: dict[str, Any]) -> dict[str, Any]:
    stripped = copy.deepcopy(spec)
    for route in stripped.get("routes") or []:
        action = (route.get("http") or {}).get("action")
        if isinstance(action, dict):
            action.pop("weightedTargets", None)
    return stripped


class AppMeshRouter(Router):
    """Manages the App Mesh virtual nodes and virtual service of a canary."""

    def __init__(self, store: ResourceStore) -> None:
        self.store = store

    def reconcile(self, canary: Canary) -> None:
        """Create or update the virtual nodes and the virtual service."""
        if not canary.service.mesh_name:
            raise ValueError("mesh name cannot be empty")

        target = canary.target_name
        namespace = canary.namespace
        primary_host = f"{canary.primary_name()}.{namespace}"
        canary_host = f"{canary.canary_name()}.{namespace}"

        self._reconcile_virtual_node(canary, target, primary_host)
        self._reconcile_virtual_node(canary, canary.primary_name(), primary_host)
        self._reconcile_virtual_node(canary, canary.canary_name(), canary_host)
        self._reconcile_virtual_service(canary, f"{target}.{namespace}")

    def _reconcile_virtual_node(self, canary: Canary, name: str, host: str) -> None:
        spec: dict[str, Any] = {
            "meshName": canary.service.mesh_name,
            "listeners": [_listener(canary)],
            "serviceDiscovery": {"dns": {"hostName": host}},
        }
        backends = [
            {"virtualService": {"virtualServiceName": b}} for b in canary.service.backends
        ]
        if backends:
            spec["backends"] = backends

        try:
            node = self.store.get(VIRTUAL_NODE, canary.namespace, name)
        except NotFoundError:
            self.store.create(
                Resource(
                    VIRTUAL_NODE,
                    canary.namespace,
                    name,
                    spec=spec,
                    owner_references=[owner_reference(canary)],
                )
            )
            logger.info(
                "VirtualNode %s.%s created (canary %s.%s)",
                name, canary.namespace, canary.name, canary.namespace,
            )
            return

        if node.spec != spec:
            node.spec = spec
            self.store.update(node)
            logger.info(
                "VirtualNode %s updated (canary %s.%s)", name, canary.name, canary.namespace
            )

    def _reconcile_virtual_service(self, canary: Canary, name: str) -> None:
        target = canary.target_name
        spec: dict[str, Any] = {
            "meshName": canary.service.mesh_name,
            "virtualRouter": {
                "name": f"{target}-router",
                "listeners": [_listener(canary)],
            },
            "routes": [
                {
                    "name": f"{target}-route",
                    "http": {
                        "match": {"prefix": _route_prefix(canary)},
                        "action": {"weightedTargets": _weighted_targets(canary, 100, 0)},
                    },
                }
            ],
        }

        try:
            service = self.store.get(VIRTUAL_SERVICE, canary.namespace, name)
        except NotFoundError:
            self.store.create(
                Resource(
                    VIRTUAL_SERVICE,
                    canary.namespace,
                    name,
                    spec=spec,
                    owner_references=[owner_reference(canary)],
                )
            )
            logger.info(
                "VirtualService %s created (canary %s.%s)", name, canary.name, canary.namespace
            )
            return

        if _without_targets(spec) != _without_targets(service.spec):
            # keep the current target weights
            old_action = _action(service.spec)
            if old_action is not None:
                spec["routes"][0]["http"]["action"] = copy.deepcopy(old_action)
            service.spec = spec
            self.store.update(service)
            logger.info(
                "VirtualService %s updated (canary %s.%s)", name, canary.name, canary.namespace
            )

    def get_routes(self, canary: Canary) -> tuple[int, int]:
        """Return the (primary, canary) weights of the virtual service route."""
        name, service = self._get(canary)
        action = _action(service.spec) or {}
        targets = action.get("weightedTargets") or []
        if len(targets) != 2:
            raise ValueError(f"VirtualService routes {name} not found")

        primary_weight = canary_weight = 0
        for target in targets:
            node = target.get("virtualNodeName")
            if node == canary.canary_name():
                canary_weight = int(target.get("weight") or 0)
            if node == canary.primary_name():
                primary_weight = int(target.get("weight") or 0)

        if primary_weight == 0 and canary_weight == 0:
            raise ValueError(
                f"VirtualService {name} does not contain routes for "
                f"{canary.primary_name()} and {canary.canary_name()}"
            )
        return primary_weight, canary_weight

    def set_routes(self, canary: Canary, primary_weight: int, canary_weight: int) -> None:
        """Set the weights of the primary and canary virtual nodes."""
        name, service = self._get(canary)
        routes = service.spec.get("routes") or []
        if not routes or not isinstance(routes[0].get("http"), dict):
            raise ValueError(f"VirtualService routes {name} not found")
        routes[0]["http"]["action"] = {
            "weightedTargets": _weighted_targets(canary, primary_weight, canary_weight)
        }
        self.store.update(service)

    def _get(self, canary: Canary) -> tuple[str, Resource]:
        name = f"{canary.target_name}.{canary.namespace}"
        try:
            return name, self.store.get(VIRTUAL_SERVICE, canary.namespace, name)
        except NotFoundError:
            raise NotFoundError(f"VirtualService {name} not found") from None