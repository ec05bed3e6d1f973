"""Istio virtual services and destination rules for canary routing."""

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

DESTINATION_RULE = "DestinationRule"
VIRTUAL_SERVICE = "VirtualService"


def add_headers(canary: Canary) -> dict[str, str] | None:
    """Request headers to append before forwarding to the destination, if any."""
    headers = canary.service.headers or {}
    request = headers.get("request") or {}
    add = request.get("add") or {}
    return dict(add) if add else None


def merge_match_conditions(
    canary: list[dict[str, Any]], defaults: list[dict[str, Any]]
) -> list[dict[str, Any]]:
    """Copy the URI match rules of ``defaults`` into every canary condition."""
    merged = copy.deepcopy(canary)
    for condition in merged:
        for default in defaults:
            if default.get("uri") is not None:
                condition["uri"] = copy.deepcopy(default["uri"])
    return merged


def make_destination(host: str, weight: int) -> dict[str, Any]:
    """A weighted destination for ``host``."""
    return {"destination": {"host": host}, "weight": weight}


def _http_route(
    canary: Canary, match: list[dict[str, Any]], route: list[dict[str, Any]]
) -> dict[str, Any]:
    service = canary.service
    fields: dict[str, Any] = {
        "match": copy.deepcopy(match),
        "rewrite": copy.deepcopy(service.rewrite),
        "timeout": service.timeout,
        "retries": copy.deepcopy(service.retries),
        "corsPolicy": copy.deepcopy(service.cors_policy),
        "appendHeaders": add_headers(canary),
    }
    result = {key: value for key, value in fields.items() if value}
    result["route"] = route
    return result


def _http_routes(canary: Canary, primary_weight: int, canary_weight: int) -> list[dict[str, Any]]:
    weighted = [
        make_destination(canary.primary_name(), primary_weight),
        make_destination(canary.canary_name(), canary_weight),
    ]
    if not canary.analysis.match:
        return [_http_route(canary, canary.service.match, weighted)]
    canary_match = merge_match_conditions(canary.analysis.match, canary.service.match)
    return [
        _http_route(canary, canary_match, weighted),
        _http_route(
            canary,
            canary.service.match,
            [make_destination(canary.primary_name(), primary_weight)],
        ),
    ]


def _without_weights(spec: dict[str, Any]) -> dict[str, Any]:
    stripped = copy.deepcopy(spec)
    for http in stripped.get("http") or []:
        for destination in http.get("route") or []:
            destination.pop("weight", None)
    return stripped


class IstioRouter(Router):
    """Manages the Istio virtual service and destination rules of a canary."""

    def __init__(self, store: ResourceStore) -> None:
        self.store = store

    def reconcile(self, canary: Canary) -> None:
        """Create or update the destination rules and the virtual service."""
        self._reconcile_destination_rule(canary, canary.canary_name())
        self._reconcile_destination_rule(canary, canary.primary_name())
        self._reconcile_virtual_service(canary)

    def _reconcile_destination_rule(self, canary: Canary, name: str) -> None:
        spec: dict[str, Any] = {"host": name}
        if canary.service.traffic_policy is not None:
            spec["trafficPolicy"] = copy.deepcopy(canary.service.traffic_policy)

        try:
            rule = self.store.get(DESTINATION_RULE, canary.namespace, name)
        except NotFoundError:
            self.store.create(
                Resource(
                    DESTINATION_RULE,
                    canary.namespace,
                    name,
                    spec=spec,
                    owner_references=[owner_reference(canary)],
                )
            )
            logger.info(
                "DestinationRule %s.%s created (canary %s.%s)",
                name, canary.namespace, canary.name, canary.namespace,
            )
            return

        if rule.spec != spec:
            rule.spec = spec
            self.store.update(rule)
            logger.info(
                "DestinationRule %s.%s updated (canary %s.%s)",
                name, canary.namespace, canary.name, canary.namespace,
            )

    def _reconcile_virtual_service(self, canary: Canary) -> None:
        target = canary.target_name

        hosts = list(canary.service.hosts)
        if not any(h in (target, "*") for h in hosts):
            hosts.append(target)

        gateways = list(canary.service.gateways)
        if "mesh" not in gateways and not canary.service.gateways:
            gateways.append("mesh")

        spec = {"hosts": hosts, "gateways": gateways, "http": _http_routes(canary, 100, 0)}

        try:
            service = self.store.get(VIRTUAL_SERVICE, canary.namespace, target)
        except NotFoundError:
            self.store.create(
                Resource(
                    VIRTUAL_SERVICE,
                    canary.namespace,
                    target,
                    spec=spec,
                    owner_references=[owner_reference(canary)],
                )
            )
            logger.info(
                "VirtualService %s.%s created (canary %s.%s)",
                target, canary.namespace, canary.name, canary.namespace,
            )
            return

        if _without_weights(spec) != _without_weights(service.spec):
            service.spec = spec
            self.store.update(service)
            logger.info(
                "VirtualService %s.%s updated (canary %s.%s)",
                target, canary.namespace, canary.name, canary.namespace,
            )

    def get_routes(self, canary: Canary) -> tuple[int, int]:
        """Return the (primary, canary) weights of the route holding the canary."""
        service = self._get(canary)
        primary_host = canary.primary_name()
        canary_host = canary.canary_name()

        selected: dict[str, Any] = {}
        for http in service.spec.get("http") or []:
            if any(
                (r.get("destination") or {}).get("host") == canary_host
                for r in http.get("route") or []
            ):
                selected = http

        primary_weight = canary_weight = 0
        for route in selected.get("route") or []:
            host = (route.get("destination") or {}).get("host")
            if host == primary_host:
                primary_weight = int(route.get("weight") or 0)
            if host == canary_host:
                canary_weight = int(route.get("weight") or 0)

        if primary_weight == 0 and canary_weight == 0:
            raise ValueError(
                f"VirtualService {canary.target_name}.{canary.namespace} does not contain "
                f"routes for {primary_host} and {canary_host}"
            )
        return primary_weight, canary_weight

    def set_routes(self, canary: Canary, primary_weight: int, canary_weight: int) -> None:
        """Rewrite the HTTP routes with the given weights."""
        service = self._get(canary)
        service.spec["http"] = _http_routes(canary, primary_weight, canary_weight)
        self.store.update(service)

    def _get(self, canary: Canary) -> Resource:
        try:
            return self.store.get(VIRTUAL_SERVICE, canary.namespace, canary.target_name)
        except NotFoundError:
            raise NotFoundError(
                f"VirtualService {canary.target_name}.{canary.namespace} not found"
            ) from None