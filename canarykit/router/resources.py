"""Canary model, an in-memory resource store and the router interface."""

from __future__ import annotations

import abc
import copy
import threading
from dataclasses import dataclass, field
from typing import Any

CANARY_API_VERSION = "flagger.app/v1alpha3"
CANARY_KIND = "Canary"


class NotFoundError(LookupError):
    """Raised when a resource does not exist."""


class AlreadyExistsError(Exception):
    """Raised when creating a resource that already exists."""


@dataclass
class Resource:
    """A namespaced object with metadata and a free-form spec."""

    kind: str
    namespace: str
    name: str
    spec: dict[str, Any] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    labels: dict[str, str] = field(default_factory=dict)
    owner_references: list[dict[str, Any]] = field(default_factory=list)
    resource_version: int = 0


class ResourceStore:
    """A thread-safe in-memory store of resources keyed by kind, namespace and name."""

    def __init__(self) -> None:
        self._items: dict[tuple[str, str, str], Resource] = {}
        self._version = 0
        self._lock = threading.Lock()

    def get(self, kind: str, namespace: str, name: str) -> Resource:
        """Return a copy of the stored resource."""
        with self._lock:
            try:
                return copy.deepcopy(self._items[(kind, namespace, name)])
            except KeyError:
                raise NotFoundError(f"{kind} {name}.{namespace} not found") from None

    def create(self, resource: Resource) -> Resource:
        """Store a new resource and return a copy of what was stored."""
        key = (resource.kind, resource.namespace, resource.name)
        with self._lock:
            if key in self._items:
                raise AlreadyExistsError(
                    f"{resource.kind} {resource.name}.{resource.namespace} already exists"
                )
            return self._store(key, resource)

    def update(self, resource: Resource) -> Resource:
        """Replace an existing resource and return a copy of what was stored."""
        key = (resource.kind, resource.namespace, resource.name)
        with self._lock:
            if key not in self._items:
                raise NotFoundError(
                    f"{resource.kind} {resource.name}.{resource.namespace} not found"
                )
            return self._store(key, resource)

    def _store(self, key: tuple[str, str, str], resource: Resource) -> Resource:
        self._version += 1
        stored = copy.deepcopy(resource)
        stored.resource_version = self._version
        self._items[key] = stored
        return copy.deepcopy(stored)


@dataclass
class CanaryService:
    """How the canary target is exposed and routed."""

    port: int = 0
    port_name: str = ""
    mesh_name: str = ""
    hosts: list[str] = field(default_factory=list)
    gateways: list[str] = field(default_factory=list)
    backends: list[str] = field(default_factory=list)
    match: list[dict[str, Any]] = field(default_factory=list)
    rewrite: dict[str, Any] | None = None
    timeout: str = ""
    retries: dict[str, Any] | None = None
    cors_policy: dict[str, Any] | None = None
    headers: dict[str, Any] | None = None
    traffic_policy: dict[str, Any] | None = None


@dataclass
class CanaryAnalysis:
    """Settings of the canary analysis."""

    threshold: int = 0
    iterations: int = 0
    step_weight: int = 0
    max_weight: int = 0
    match: list[dict[str, Any]] = field(default_factory=list)
    metrics: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class Canary:
    """A canary release of the workload named ``target_name``.

    ``status_iterations`` is the number of analysis iterations run so far.
    """

    name: str
    namespace: str
    target_name: str
    service: CanaryService = field(default_factory=CanaryService)
    analysis: CanaryAnalysis = field(default_factory=CanaryAnalysis)
    ingress_name: str | None = None
    status_iterations: int = 0
    uid: str = ""

    def primary_name(self) -> str:
        return f"{self.target_name}-primary"

    def canary_name(self) -> str:
        return f"{self.target_name}-canary"


def owner_reference(canary: Canary) -> dict[str, Any]:
    """A controller owner reference pointing at the canary."""
    return {
        "apiVersion": CANARY_API_VERSION,
        "kind": CANARY_KIND,
        "name": canary.name,
        "uid": canary.uid,
        "controller": True,
        "blockOwnerDeletion": True,
    }


def upstream_name(namespace: str, name: str, port: int) -> str:
    """The name of the upstream discovered for a service port."""
    return f"{namespace}-{name}-{port}"


class Router(abc.ABC):
    """Manages the traffic split between the primary and canary workloads."""

    @abc.abstractmethod
    def reconcile(self, canary: Canary) -> None:
        """Create or update the routing objects for the canary."""

    @abc.abstractmethod
    def set_routes(self, canary: Canary, primary_weight: int, canary_weight: int) -> None:
        """Set the destination weights."""

    @abc.abstractmethod
    def get_routes(self, canary: Canary) -> tuple[int, int]:
        """Return the (primary, canary) destination weights."""


class NopRouter(Router):
    """A router that manages nothing."""

    def reconcile(self, canary: Canary) -> None:
        return None

    def set_routes(self, canary: Canary, primary_weight: int, canary_weight: int) -> None:
        return None

    def get_routes(self, canary: Canary) -> tuple[int, int]:
        if canary.status_iterations > 0:
            return 0, 100
        return 100, 0