"""NGINX ingress canary routing through annotations on a cloned ingress."""

from __future__ import annotations

import copy
import logging
import re

from canarykit.router.resources import (
    Canary,
    NotFoundError,
    Resource,
    ResourceStore,
    Router,
    owner_reference,
)

logger = logging.getLogger(__name__)

INGRESS = "Ingress"

ANNOTATION_CANARY = "nginx.ingress.kubernetes.io/canary"
ANNOTATION_WEIGHT = "nginx.ingress.kubernetes.io/canary-weight"
ANNOTATION_COOKIE = "nginx.ingress.kubernetes.io/canary-by-cookie"
ANNOTATION_HEADER = "nginx.ingress.kubernetes.io/canary-by-header"
ANNOTATION_HEADER_VALUE = "nginx.ingress.kubernetes.io/canary-by-header-value"
LAST_APPLIED = "kubectl.kubernetes.io/last-applied-configuration"

_INTEGER = re.compile(r"[+-]?[0-9]+")


def _make_annotations(annotations: dict[str, str]) -> dict[str, str]:
    result = {
        k: v
        for k, v in annotations.items()
        if ANNOTATION_CANARY not in k and LAST_APPLIED not in k
    }
    result[ANNOTATION_CANARY] = "false"
    result[ANNOTATION_WEIGHT] = "0"
    return result


def _make_header_annotations(
    annotations: dict[str, str], header: str, header_value: str, cookie: str
) -> dict[str, str]:
    result = {k: v for k, v in annotations.items() if ANNOTATION_CANARY not in v}
    result[ANNOTATION_CANARY] = "true"
    result[ANNOTATION_WEIGHT] = "0"
    if cookie:
        result[ANNOTATION_COOKIE] = cookie
    if header:
        result[ANNOTATION_HEADER] = header
    if header_value:
        result[ANNOTATION_HEADER_VALUE] = header_value
    return result


def _canary_ingress_name(canary: Canary) -> str:
    if not canary.ingress_name:
        raise ValueError("ingress selector is empty")
    return f"{canary.ingress_name}-canary"


class IngressRouter(Router):
    """Routes traffic with a canary copy of the target's NGINX ingress."""

    def __init__(self, store: ResourceStore) -> None:
        self.store = store

    def reconcile(self, canary: Canary) -> None:
        """Create or update the canary ingress pointing at the canary service."""
        canary_ingress_name = _canary_ingress_name(canary)
        target = canary.target_name

        ingress = self.store.get(INGRESS, canary.namespace, canary.ingress_name)
        spec = copy.deepcopy(ingress.spec)

        backend_exists = False
        for rule in spec.get("rules") or []:
            http = rule.get("http") or {}
            for path in http.get("paths") or []:
                backend = path.get("backend") or {}
                if backend.get("serviceName") == target:
                    backend["serviceName"] = canary.canary_name()
                    backend_exists = True
                    break

        if not backend_exists:
            raise ValueError(f"backend {target} not found in ingress {canary.ingress_name}")

        try:
            existing = self.store.get(INGRESS, canary.namespace, canary_ingress_name)
        except NotFoundError:
            self.store.create(
                Resource(
                    INGRESS,
                    canary.namespace,
                    canary_ingress_name,
                    spec=spec,
                    annotations=_make_annotations(ingress.annotations),
                    labels=dict(ingress.labels),
                    owner_references=[owner_reference(canary)],
                )
            )
            logger.info(
                "Ingress %s.%s created (canary %s.%s)",
                canary_ingress_name, canary.namespace, canary.name, canary.namespace,
            )
            return

        if existing.spec != spec:
            existing.spec = spec
            self.store.update(existing)
            logger.info(
                "Ingress %s updated (canary %s.%s)",
                canary_ingress_name, canary.name, canary.namespace,
            )

    def get_routes(self, canary: Canary) -> tuple[int, int]:
        """Read the weights from the canary ingress annotations."""
        ingress = self.store.get(INGRESS, canary.namespace, _canary_ingress_name(canary))
        annotations = ingress.annotations

        if canary.analysis.match and (
            ANNOTATION_COOKIE in annotations or ANNOTATION_HEADER in annotations
        ):
            return 0, 100

        canary_weight = 0
        if ANNOTATION_WEIGHT in annotations:
            value = annotations[ANNOTATION_WEIGHT]
            if not _INTEGER.fullmatch(value):
                raise ValueError(f"invalid canary weight {value!r}")
            canary_weight = int(value)
        return 100 - canary_weight, canary_weight

    def set_routes(self, canary: Canary, primary_weight: int, canary_weight: int) -> None:
        """Write the weights, or the A/B header and cookie rules, as annotations."""
        name = _canary_ingress_name(canary)
        ingress = self.store.get(INGRESS, canary.namespace, name)

        if canary.analysis.match:
            cookie = header = header_value = ""
            for match in canary.analysis.match:
                for key, condition in (match.get("headers") or {}).items():
                    exact = (condition or {}).get("exact", "")
                    if key == "cookie":
                        cookie = exact
                    else:
                        header = key
                        header_value = exact
            ingress.annotations = _make_header_annotations(
                ingress.annotations, header, header_value, cookie
            )
        else:
            ingress.annotations[ANNOTATION_WEIGHT] = str(canary_weight)

        if canary_weight > 0:
            ingress.annotations[ANNOTATION_CANARY] = "true"
        else:
            ingress.annotations = _make_annotations(ingress.annotations)

        self.store.update(ingress)