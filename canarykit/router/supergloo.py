"""SuperGloo routing rules for canary traffic shifting, retries, headers and CORS."""

from __future__ import annotations

import logging
import re
from decimal import Decimal, InvalidOperation
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

ROUTING_RULE = "RoutingRule"
PROVIDER_PREFIX = "supergloo:"

_NANOS_PER_SECOND = 10**9
_UNITS = {
    "ns": 1,
    "us": 1_000,
    "µs": 1_000,
    "μs": 1_000,
    "ms": 1_000_000,
    "s": _NANOS_PER_SECOND,
    "m": 60 * _NANOS_PER_SECOND,
    "h": 3600 * _NANOS_PER_SECOND,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")


def _parse_duration(text: str) -> int:
    """Parse a duration such as ``1m30s`` or ``250ms`` into nanoseconds."""
    rest = text
    sign = 1
    if rest[:1] in ("+", "-"):
        sign = -1 if rest[0] == "-" else 1
        rest = rest[1:]
    if rest == "0":
        return 0
    if not rest:
        raise ValueError(f"invalid duration {text!r}")
    total = Decimal(0)
    pos = 0
    while pos < len(rest):
        match = _DURATION_PART.match(rest, pos)
        if match is None:
            raise ValueError(f"invalid duration {text!r}")
        try:
            amount = Decimal(match.group(1))
        except InvalidOperation:
            raise ValueError(f"invalid duration {text!r}") from None
        total += amount * _UNITS[match.group(2)]
        pos = match.end()
    return sign * int(total)


def _duration_proto(nanos: int) -> dict[str, int]:
    sign = -1 if nanos < 0 else 1
    seconds = sign * (abs(nanos) // _NANOS_PER_SECOND)
    return {"seconds": seconds, "nanos": nanos - seconds * _NANOS_PER_SECOND}


def convert_headers(headers: dict[str, Any]) -> dict[str, Any] | None:
    """Turn request/response header operations into a header manipulation rule."""
    manipulation: dict[str, Any] | None = None
    request = headers.get("request")
    if request is not None:
        manipulation = {
            "removeRequestHeaders": list(request.get("remove") or []),
            "appendRequestHeaders": dict(request.get("add") or {}),
        }
    response = headers.get("response")
    if response is not None:
        if manipulation is None:
            manipulation = {}
        manipulation["removeResponseHeaders"] = list(response.get("remove") or [])
        manipulation["appendResponseHeaders"] = dict(response.get("add") or {})
    return manipulation


def convert_retries(retries: dict[str, Any]) -> dict[str, Any]:
    """Turn an HTTP retry policy into a retry rule; raise ValueError on a bad timeout."""
    per_try_timeout = _parse_duration(str(retries.get("perTryTimeout") or ""))
    return {
        "maxRetries": {
            "attempts": int(retries.get("attempts") or 0),
            "perTryTimeout": _duration_proto(per_try_timeout),
            "retryOn": retries.get("retryOn") or "",
        }
    }


class SuperglooRouter(Router):
    """Manages SuperGloo routing rules targeting one mesh."""

    def __init__(self, store: ResourceStore, mesh_name: str, mesh_namespace: str) -> None:
        self.store = store
        self.mesh_name = mesh_name
        self.mesh_namespace = mesh_namespace

    @classmethod
    def from_provider(cls, store: ResourceStore, provider: str) -> SuperglooRouter:
        """Build a router from a ``supergloo:<mesh>.<namespace>`` provider string."""
        if provider.startswith(PROVIDER_PREFIX):
            provider = provider[len(PROVIDER_PREFIX):]
        parts = provider.split(".")
        if len(parts) != 2:
            raise ValueError("invalid format for supergloo provider")
        return cls(store, parts[0], parts[1])

    def reconcile(self, canary: Canary) -> None:
        """Write the retry, header and CORS rules and create the traffic rule if missing."""
        self._set_retries(canary)
        self._set_headers(canary)
        self._set_cors(canary)
        try:
            self.get_routes(canary)
        except NotFoundError:
            self.set_routes(canary, 100, 0)

    def get_routes(self, canary: Canary) -> tuple[int, int]:
        """Return the (primary, canary) weights of the traffic shifting rule."""
        target = canary.target_name
        rule = self.store.get(ROUTING_RULE, canary.namespace, target)
        traffic = rule.spec.get("trafficShifting")
        if traffic is None:
            raise ValueError("target rule is not for traffic shifting")

        primary_upstream = self._upstream(canary, canary.primary_name())
        canary_upstream = self._upstream(canary, canary.canary_name())
        primary_weight = canary_weight = 0
        for dest in traffic.get("destinations") or []:
            upstream = ((dest.get("destination") or {}).get("upstream") or {}).get("name")
            if upstream == primary_upstream:
                primary_weight = int(dest.get("weight") or 0)
            if upstream == canary_upstream:
                canary_weight = int(dest.get("weight") or 0)

        if primary_weight == 0 and canary_weight == 0:
            raise ValueError(
                f"RoutingRule {target}.{canary.namespace} does not contain routes for "
                f"{target}-primary and {target}-canary"
            )
        return primary_weight, canary_weight

    def set_routes(self, canary: Canary, primary_weight: int, canary_weight: int) -> None:
        """Write the traffic shifting rule; destinations with zero weight are left out."""
        destinations = [
            self._destination(canary, name, weight)
            for name, weight in (
                (canary.primary_name(), primary_weight),
                (canary.canary_name(), canary_weight),
            )
            if weight != 0
        ]
        if not destinations:
            raise ValueError(
                f"RoutingRule {canary.target_name}.{canary.namespace} update failed: "
                "no valid weights"
            )
        rule = self._create_rule(canary, "", {"trafficShifting": {"destinations": destinations}})
        self._write(canary, rule)

    def _set_retries(self, canary: Canary) -> None:
        if canary.service.retries is None:
            return
        retries = convert_retries(canary.service.retries)
        self._write(canary, self._create_rule(canary, "retries", {"retries": retries}))

    def _set_headers(self, canary: Canary) -> None:
        if canary.service.headers is None:
            return
        manipulation = convert_headers(canary.service.headers)
        if manipulation is None:
            return
        rule = self._create_rule(canary, "headers", {"headerManipulation": manipulation})
        self._write(canary, rule)

    def _set_cors(self, canary: Canary) -> None:
        policy = canary.service.cors_policy
        if policy is None:
            return
        try:
            max_age: dict[str, int] | None = _duration_proto(
                _parse_duration(str(policy.get("maxAge") or ""))
            )
        except ValueError:
            max_age = None
        cors = {
            "allowOrigin": list(policy.get("allowOrigin") or []),
            "allowMethods": list(policy.get("allowMethods") or []),
            "allowHeaders": list(policy.get("allowHeaders") or []),
            "exposeHeaders": list(policy.get("exposeHeaders") or []),
            "maxAge": max_age,
            "allowCredentials": {"value": bool(policy.get("allowCredentials"))},
        }
        self._write(canary, self._create_rule(canary, "cors", {"corsPolicy": cors}))

    def _create_rule(self, canary: Canary, suffix: str, rule_type: dict[str, Any]) -> Resource:
        name = canary.target_name + (f"-{suffix}" if suffix else "")
        spec: dict[str, Any] = {
            "targetMesh": {"name": self.mesh_name, "namespace": self.mesh_namespace},
            "destinationSelector": {
                "upstreamSelector": {
                    "upstreams": [
                        {
                            "name": self._upstream(canary, canary.target_name),
                            "namespace": self.mesh_namespace,
                        }
                    ]
                }
            },
        }
        spec.update(rule_type)
        return Resource(ROUTING_RULE, canary.namespace, name, spec=spec)

    def _upstream(self, canary: Canary, name: str) -> str:
        return upstream_name(canary.namespace, name, canary.service.port)

    def _destination(self, canary: Canary, name: str, weight: int) -> dict[str, Any]:
        if weight < 0:
            raise ValueError(f"invalid weight {weight}")
        return {
            "destination": {
                "upstream": {
                    "name": self._upstream(canary, name),
                    "namespace": self.mesh_namespace,
                }
            },
            "weight": int(weight),
        }

    def _write(self, canary: Canary, rule: Resource) -> None:
        rule.owner_references = [owner_reference(canary)]
        try:
            existing = self.store.get(ROUTING_RULE, rule.namespace, rule.name)
        except NotFoundError:
            self.store.create(rule)
            logger.info(
                "RoutingRule %s.%s created (canary %s.%s)",
                rule.name, rule.namespace, canary.name, canary.namespace,
            )
            return

        if existing.spec == rule.spec:
            return
        existing.spec = rule.spec
        existing.owner_references = rule.owner_references
        self.store.update(existing)
        logger.info(
            "RoutingRule %s.%s updated (canary %s.%s)",
            rule.name, rule.namespace, canary.name, canary.namespace,
        )