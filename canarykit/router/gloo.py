"""Gloo upstream groups for canary routing."""

from __future__ import annotations

import logging
from typing import Any

from canarykit.router.resources import (
    Canary,
    NotFoundError,
    Resource,
    ResourceStore,
    Router,
    owner_reference,
    upstream_name,
)

logger = logging.getLogger(__name__)

UPSTREAM_GROUP = "UpstreamGroup"
DEFAULT_DISCOVERY_NAMESPACE = "gloo-system"


class GlooRouter(Router):
    """Manages a Gloo UpstreamGroup splitting traffic between primary and canary."""

    def __init__(self, store: ResourceStore, upstream_discovery_ns: str = "") -> None:
        self.store = store
        self.upstream_discovery_ns = upstream_discovery_ns or DEFAULT_DISCOVERY_NAMESPACE

    @classmethod
    def from_provider(cls, store: ResourceStore, provider: str) -> GlooRouter:
        """Build a router from a ``gloo`` or ``gloo:<namespace>`` provider string."""
        namespace = provider[len("gloo:"):] if provider.startswith("gloo:") else ""
        return cls(store, namespace)

    def reconcile(self, canary: Canary) -> None:
        """Create the upstream group with all traffic on the primary if it is missing."""
        try:
            self.get_routes(canary)
        except NotFoundError:
            self.set_routes(canary, 100, 0)

    def get_routes(self, canary: Canary) -> tuple[int, int]:
        """Return the (primary, canary) weights of the upstream group."""
        group = self.store.get(UPSTREAM_GROUP, canary.namespace, canary.target_name)
        primary_upstream = self._upstream(canary, canary.primary_name())
        canary_upstream = self._upstream(canary, canary.canary_name())

        primary_weight = canary_weight = 0
        for dest in group.spec.get("destinations") or []:
            upstream = ((dest.get("destination") or {}).get("upstream") or {}).get("name")
            if upstream == primary_upstream:
                primary_weight = int(dest.get("weight") or 0)
            if upstream == canary_upstream:
                canary_weight = int(dest.get("weight") or 0)

        if primary_weight == 0 and canary_weight == 0:
            target = canary.target_name
            raise ValueError(
                f"RoutingRule {target}.{canary.namespace} does not contain routes for "
                f"{target}-primary and {target}-canary"
            )
        return primary_weight, canary_weight

    def set_routes(self, canary: Canary, primary_weight: int, canary_weight: int) -> None:
        """Write the upstream group with the given weights."""
        if primary_weight == 0 and canary_weight == 0:
            raise ValueError(
                f"RoutingRule {canary.target_name}.{canary.namespace} update failed: "
                "no valid weights"
            )
        spec = {
            "destinations": [
                self._destination(canary, canary.primary_name(), primary_weight),
                self._destination(canary, canary.canary_name(), canary_weight),
            ]
        }
        self._write(canary, spec)

    def _upstream(self, canary: Canary, name: str) -> str:
        return upstream_name(canary.namespace, name, canary.service.port)

    def _destination(self, canary: Canary, name: str, weight: int) -> dict[str, Any]:
        if weight < 0:
            raise ValueError(f"invalid weight {weight}")
        return {
            "destination": {
                "upstream": {
                    "name": self._upstream(canary, name),
                    "namespace": self.upstream_discovery_ns,
                }
            },
            "weight": int(weight),
        }

    def _write(self, canary: Canary, spec: dict[str, Any]) -> None:
        try:
            group = self.store.get(UPSTREAM_GROUP, canary.namespace, canary.target_name)
        except NotFoundError:
            self.store.create(
                Resource(
                    UPSTREAM_GROUP,
                    canary.namespace,
                    canary.target_name,
                    spec=spec,
                    owner_references=[owner_reference(canary)],
                )
            )
            logger.info(
                "UpstreamGroup %s created (canary %s.%s)",
                canary.target_name, canary.name, canary.namespace,
            )
            return

        if group.spec == spec:
            return
        group.spec = spec
        group.owner_references = [owner_reference(canary)]
        self.store.update(group)