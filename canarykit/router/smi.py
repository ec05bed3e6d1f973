"""Service Mesh Interface traffic splits."""

from __future__ import annotations

import json
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

TRAFFIC_SPLIT = "TrafficSplit"
GATEWAYS_ANNOTATION = "VirtualService.v1alpha3.networking.istio.io/spec.gateways"


def _backends(canary: Canary, primary_weight: int, canary_weight: int) -> list[dict[str, Any]]:
    return [
        {"service": canary.canary_name(), "weight": canary_weight},
        {"service": canary.primary_name(), "weight": primary_weight},
    ]


def _without_weights(spec: dict[str, Any]) -> dict[str, Any]:
    return {
        "service": spec.get("service"),
        "backends": [
            {k: v for k, v in backend.items() if k != "weight"}
            for backend in spec.get("backends") or []
        ],
    }


class SmiRouter(Router):
    """Manages an SMI TrafficSplit for the canary target."""

    def __init__(self, store: ResourceStore, target_mesh: str) -> None:
        self.store = store
        self.target_mesh = target_mesh

    def reconcile(self, canary: Canary) -> None:
        """Create or update the traffic split."""
        target = canary.target_name
        host = canary.service.hosts[0] if canary.service.hosts else target
        spec = {"service": host, "backends": _backends(canary, 100, 0)}

        try:
            split = self.store.get(TRAFFIC_SPLIT, canary.namespace, target)
        except NotFoundError:
            self.store.create(
                Resource(
                    TRAFFIC_SPLIT,
                    canary.namespace,
                    target,
                    spec=spec,
                    annotations=self._make_annotations(canary.service.gateways),
                    owner_references=[owner_reference(canary)],
                )
            )
            logger.info(
                "TrafficSplit %s.%s created (canary %s.%s)",
                target, canary.namespace, canary.name, canary.namespace,
            )
            return

        if _without_weights(spec) != _without_weights(split.spec):
            split.spec = spec
            self.store.update(split)
            logger.info(
                "TrafficSplit %s.%s updated (canary %s.%s)",
                target, canary.namespace, canary.name, canary.namespace,
            )

    def get_routes(self, canary: Canary) -> tuple[int, int]:
        """Return the (primary, canary) weights of the traffic split."""
        split = self._get(canary)
        primary_weight = canary_weight = 0
        for backend in split.spec.get("backends") or []:
            weight = int(backend.get("weight") or 0)
            if backend.get("service") == canary.primary_name():
                primary_weight = weight
            if backend.get("service") == canary.canary_name():
                canary_weight = weight

        if primary_weight == 0 and canary_weight == 0:
            raise ValueError(
                f"TrafficSplit {canary.target_name}.{canary.namespace} does not contain routes "
                f"for {canary.primary_name()} and {canary.canary_name()}"
            )
        return primary_weight, canary_weight

    def set_routes(self, canary: Canary, primary_weight: int, canary_weight: int) -> None:
        """Replace the backends with the given weights."""
        split = self._get(canary)
        split.spec["backends"] = _backends(canary, primary_weight, canary_weight)
        self.store.update(split)

    def _get(self, canary: Canary) -> Resource:
        try:
            return self.store.get(TRAFFIC_SPLIT, canary.namespace, canary.target_name)
        except NotFoundError:
            raise NotFoundError(
                f"TrafficSplit {canary.target_name}.{canary.namespace} not found"
            ) from None

    def _make_annotations(self, gateways: list[str]) -> dict[str, str]:
        if self.target_mesh == "istio" and gateways:
            return {GATEWAYS_ANNOTATION: json.dumps(list(gateways), separators=(",", ":"))}
        return {}