import pytest

from canarykit.router.appmesh import VIRTUAL_NODE, VIRTUAL_SERVICE, AppMeshRouter
from canarykit.router.resources import (
    Canary,
    CanaryAnalysis,
    CanaryService,
    NotFoundError,
    ResourceStore,
)


def make_canary(backends=None, mesh_name="global"):
    return Canary(
        name="appmesh",
        namespace="default",
        target_name="podinfo",
        service=CanaryService(
            port=9898,
            mesh_name=mesh_name,
            backends=list(backends if backends is not None else ["backend.default"]),
        ),
        analysis=CanaryAnalysis(
            threshold=10,
            step_weight=10,
            max_weight=50,
            metrics=[{"name": "appmesh_requests_total", "threshold": 99, "interval": "1m"}],
        ),
    )


@pytest.fixture
def store():
    return ResourceStore()


@pytest.fixture
def router(store):
    return AppMeshRouter(store)


def test_reconcile_creates_virtual_service_and_nodes(store, router):
    canary = make_canary()
    router.reconcile(canary)

    vs = store.get(VIRTUAL_SERVICE, "default", "podinfo.default")
    assert vs.spec["meshName"] == "global"
    assert len(vs.spec["routes"][0]["http"]["action"]["weightedTargets"]) == 2

    vn = store.get(VIRTUAL_NODE, "default", "podinfo")
    assert vn.spec["serviceDiscovery"]["dns"]["hostName"] == "podinfo-primary.default"
    assert vn.owner_references[0]["name"] == "appmesh"

    canary_vn = store.get(VIRTUAL_NODE, "default", "podinfo-canary")
    assert canary_vn.spec["serviceDiscovery"]["dns"]["hostName"] == "podinfo-canary.default"


def test_reconcile_updates_backends(store, router):
    router.reconcile(make_canary())
    updated = make_canary(backends=["backend.default", "test.example.com"])
    router.reconcile(updated)

    vn = store.get(VIRTUAL_NODE, "default", "podinfo-canary")
    assert len(vn.spec["backends"]) == 2


def test_reconcile_keeps_weights(store, router):
    canary = make_canary()
    router.reconcile(canary)

    vs = store.get(VIRTUAL_SERVICE, "default", "podinfo.default")
    targets = vs.spec["routes"][0]["http"]["action"]["weightedTargets"]
    targets[0]["weight"] = 50
    targets[1]["weight"] = 50
    store.update(vs)

    router.reconcile(canary)
    vs = store.get(VIRTUAL_SERVICE, "default", "podinfo.default")
    assert vs.spec["routes"][0]["http"]["action"]["weightedTargets"][0]["weight"] == 50


def test_reconcile_restores_prefix(store, router):
    canary = make_canary()
    router.reconcile(canary)

    vs = store.get(VIRTUAL_SERVICE, "default", "podinfo.default")
    vs.spec["routes"][0]["http"]["match"]["prefix"] = "api"
    store.update(vs)

    router.reconcile(canary)
    vs = store.get(VIRTUAL_SERVICE, "default", "podinfo.default")
    assert vs.spec["routes"][0]["http"]["match"]["prefix"] == "/"


def test_reconcile_uses_match_prefix(store, router):
    canary = make_canary()
    canary.service.match = [{"uri": {"prefix": "/api"}}]
    router.reconcile(canary)
    vs = store.get(VIRTUAL_SERVICE, "default", "podinfo.default")
    assert vs.spec["routes"][0]["http"]["match"]["prefix"] == "/api"


def test_get_set_routes(router):
    canary = make_canary()
    router.reconcile(canary)
    router.set_routes(canary, 60, 40)
    assert router.get_routes(canary) == (60, 40)


def test_initial_routes(router):
    canary = make_canary()
    router.reconcile(canary)
    assert router.get_routes(canary) == (100, 0)


def test_empty_mesh_name_rejected(router):
    with pytest.raises(ValueError, match="mesh name cannot be empty"):
        router.reconcile(make_canary(mesh_name=""))


def test_get_routes_missing_service(router):
    with pytest.raises(NotFoundError, match="podinfo.default not found"):
        router.get_routes(make_canary())


def test_set_routes_missing_service(router):
    with pytest.raises(NotFoundError):
        router.set_routes(make_canary(), 50, 50)


def test_get_routes_without_weights_fails(router):
    canary = make_canary()
    router.reconcile(canary)
    router.set_routes(canary, 0, 0)
    with pytest.raises(ValueError, match="does not contain routes"):
        router.get_routes(canary)