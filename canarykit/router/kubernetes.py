"""ClusterIP services for the primary and canary workloads."""

from __future__ import annotations

import copy
import logging
from typing import Any, Mapping

from canarykit.router.resources import (
    Canary,
    NotFoundError,
    Resource,
    ResourceStore,
    Router,
    owner_reference,
)

logger = logging.getLogger(__name__)

SERVICE = "Service"


def _service_port(name: str, port: int) -> dict[str, Any]:
    return {"name": name, "protocol": "TCP", "port": port, "targetPort": port}


class KubernetesRouter(Router):
    """Manages the main, primary and canary ClusterIP services."""

    def __init__(
        self,
        store: ResourceStore,
        label: str,
        ports: Mapping[str, int] | None = None,
    ) -> None:
        self.store = store
        self.label = label
        self.ports = dict(ports) if ports is not None else None

    def reconcile(self, canary: Canary) -> None:
        """Create or update the primary and canary services."""
        target = canary.target_name
        primary = canary.primary_name()
        self._reconcile_service(canary, target, primary)
        self._reconcile_service(canary, canary.canary_name(), target)
        self._reconcile_service(canary, primary, primary)

    def set_routes(self, canary: Canary, primary_weight: int, canary_weight: int) -> None:
        return None

    def get_routes(self, canary: Canary) -> tuple[int, int]:
        return 0, 0

    def _reconcile_service(self, canary: Canary, name: str, target: str) -> None:
        port = canary.service.port
        ports = [_service_port(canary.service.port_name or "http", port)]
        if self.ports is not None:
            ports.extend(_service_port(n, p) for n, p in sorted(self.ports.items()))
        selector = {self.label: target}
        spec = {"type": "ClusterIP", "selector": selector, "ports": ports}

        try:
            svc = self.store.get(SERVICE, canary.namespace, name)
        except NotFoundError:
            self.store.create(
                Resource(
                    SERVICE,
                    canary.namespace,
                    name,
                    spec=spec,
                    owner_references=[owner_reference(canary)],
                )
            )
            logger.info(
                "Service %s.%s created (canary %s.%s)",
                name, canary.namespace, canary.name, canary.namespace,
            )
            return

        if svc.spec.get("ports") != ports or svc.spec.get("selector") != selector:
            svc.spec["ports"] = copy.deepcopy(ports)
            svc.spec["selector"] = dict(selector)
            self.store.update(svc)
            logger.info(
                "Service %s updated (canary %s.%s)", name, canary.name, canary.namespace
            )