"""Selects the router for a mesh provider."""

from __future__ import annotations

from typing import Mapping

from canarykit.router.appmesh import AppMeshRouter
from canarykit.router.gloo import GlooRouter
from canarykit.router.ingress import IngressRouter
from canarykit.router.istio import IstioRouter
from canarykit.router.kubernetes import KubernetesRouter
from canarykit.router.resources import NopRouter, ResourceStore, Router
from canarykit.router.smi import SmiRouter
from canarykit.router.supergloo import SuperglooRouter


class RouterFactory:
    """Builds routers that share one resource store."""

    def __init__(self, store: ResourceStore) -> None:
        self.store = store

    def kubernetes_router(
        self, label: str, ports: Mapping[str, int] | None = None
    ) -> KubernetesRouter:
        """A router managing the ClusterIP services."""
        return KubernetesRouter(self.store, label, ports)

    def mesh_router(self, provider: str) -> Router:
        """The service mesh router for ``provider``; Istio when it is not recognised."""
        if provider in ("none", "kubernetes"):
            return NopRouter()
        if provider == "nginx":
            return IngressRouter(self.store)
        if provider == "appmesh":
            return AppMeshRouter(self.store)
        if provider.startswith("smi:"):
            return SmiRouter(self.store, provider[len("smi:"):])
        if provider == "linkerd":
            return SmiRouter(self.store, "linkerd")
        if provider.startswith("supergloo"):
            try:
                return SuperglooRouter.from_provider(self.store, provider)
            except ValueError as exc:
                raise RuntimeError("failed creating supergloo client") from exc
        if provider.startswith("gloo"):
            return GlooRouter.from_provider(self.store, provider)
        return IstioRouter(self.store)