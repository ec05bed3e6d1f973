import pytest

from canarykit.router.appmesh import AppMeshRouter
from canarykit.router.factory import RouterFactory
from canarykit.router.gloo import GlooRouter
from canarykit.router.ingress import IngressRouter
from canarykit.router.istio import IstioRouter
from canarykit.router.kubernetes import KubernetesRouter
from canarykit.router.resources import Canary, CanaryService, NopRouter, ResourceStore
from canarykit.router.smi import SmiRouter
from canarykit.router.supergloo import SuperglooRouter


@pytest.fixture
def factory():
    return RouterFactory(ResourceStore())


@pytest.mark.parametrize(
    "provider, expected",
    [
        ("none", NopRouter),
        ("kubernetes", NopRouter),
        ("nginx", IngressRouter),
        ("appmesh", AppMeshRouter),
        ("smi:istio", SmiRouter),
        ("linkerd", SmiRouter),
        ("supergloo:mesh.supergloo-system", SuperglooRouter),
        ("gloo", GlooRouter),
        ("istio", IstioRouter),
        ("anything-else", IstioRouter),
    ],
)
def test_mesh_router_selection(factory, provider, expected):
    assert type(factory.mesh_router(provider)) is expected


def test_smi_target_mesh_from_provider(factory):
    assert factory.mesh_router("smi:istio").target_mesh == "istio"
    assert factory.mesh_router("smi:linkerd").target_mesh == "linkerd"


def test_linkerd_uses_smi_linkerd(factory):
    assert factory.mesh_router("linkerd").target_mesh == "linkerd"


def test_gloo_discovery_namespace(factory):
    assert factory.mesh_router("gloo").upstream_discovery_ns == "gloo-system"
    assert factory.mesh_router("gloo:custom").upstream_discovery_ns == "custom"


def test_supergloo_mesh_from_provider(factory):
    router = factory.mesh_router("supergloo:mesh.supergloo-system")
    assert (router.mesh_name, router.mesh_namespace) == ("mesh", "supergloo-system")


def test_supergloo_bad_provider_fails(factory):
    with pytest.raises(RuntimeError, match="failed creating supergloo client"):
        factory.mesh_router("supergloo:invalid")


def test_routers_share_the_store(factory):
    canary = Canary(
        name="podinfo",
        namespace="default",
        target_name="podinfo",
        service=CanaryService(port=9898),
    )
    factory.mesh_router("smi:linkerd").reconcile(canary)
    assert factory.mesh_router("linkerd").get_routes(canary) == (100, 0)


def test_kubernetes_router(factory):
    router = factory.kubernetes_router("app", {"grpc": 9999})
    assert type(router) is KubernetesRouter
    assert router.label == "app"
    assert router.ports == {"grpc": 9999}
    assert router.store is factory.store


def test_nop_router_routes_follow_iterations(factory):
    router = factory.mesh_router("none")
    canary = Canary(name="podinfo", namespace="default", target_name="podinfo")
    assert router.get_routes(canary) == (100, 0)
    canary.status_iterations = 1
    assert router.get_routes(canary) == (0, 100)