# canarykit

Building blocks for progressive delivery: query Prometheus while a canary
release is analysed, shift traffic between the primary and canary versions of
a workload, keep the analysis as Prometheus metrics and announce the outcome in
Slack or Microsoft Teams.

canarykit has no runtime dependencies beyond the Python standard library and
supports Python 3.10 and later.

## What is inside

| Module | Purpose |
| --- | --- |
| `canarykit.prometheus` | `PrometheusClient` renders, trims and runs PromQL queries and checks that the server is reachable; failures raise `PrometheusError`. |
| `canarykit.notifier` | `Slack` and `MSTeams` webhook notifiers, `Field` for extra message facts, `post_message` and `NotifierFactory`. |
| `canarykit.recorder` | `Recorder` keeps the canary info, duration, total, status and weight metrics and renders them in the Prometheus text format; `CanaryPhase` names the analysis phases. |
| `canarykit.signals` | A stop event that is set on SIGINT/SIGTERM; a second signal exits the process. |
| `canarykit.router` | Traffic routers (Kubernetes services, NGINX ingress, SMI, Istio, App Mesh, Gloo, SuperGloo and a no-op router) working against a `ResourceStore`, and `RouterFactory` to choose one by provider name. |

## Running a query

```python
from canarykit.prometheus import PrometheusClient, PrometheusError

client = PrometheusClient("http://prometheus.monitoring:9090", timeout=5)

template = """
sum(
  rate(
    http_requests_total{namespace="{{ .Namespace }}", app="{{ .Name }}"}[{{ .Interval }}]
  )
)
"""
query = client.render_query("podinfo", "test", "1m", template)

try:
    client.is_online()
    value = client.run_query(query)
except PrometheusError as exc:
    print("query failed:", exc)
```

`render_query` fills in `{{ .Name }}`, `{{ .Namespace }}` and
`{{ .Interval }}`; any other action is an error. Queries are stripped of
spaces, tabs and new lines before they are sent (`client.trim_query(...)`
shows the exact text). `run_query` returns the last string value found in the
result vector and raises `PrometheusError` when there is none. A client pointed
at the host `fake` answers every query with `100.0` without contacting
anything, which is handy for dry runs. `timeout` may be seconds or a
`datetime.timedelta`.

## Sending notifications

```python
from canarykit.notifier import Field, NotifierFactory

notifier = NotifierFactory(
    "https://hooks.example.com/services/placeholder", "flagger", "deployments"
).notifier("slack")

notifier.post(
    "podinfo",
    "test",
    "Canary analysis failed, rollback started",
    [Field("Failed checks", "3")],
    True,
)
```

`"msteams"` selects the Microsoft Teams notifier; an unknown provider gives
`None`. An invalid hook URL, an empty Slack user name or channel, and any reply
other than HTTP 200 raise `NotifierError`. Each notifier's `payload(...)`
returns the JSON document it would send, with the same arguments as `post`.

## Recording the analysis

```python
from datetime import timedelta

from canarykit.recorder import CanaryPhase, Recorder

recorder = Recorder("flagger")
recorder.set_info("0.18.3", "istio")
recorder.set_total("test", 1)
recorder.set_status("podinfo", "test", CanaryPhase.PROGRESSING)
recorder.set_weight("podinfo", "test", 90, 10)
recorder.set_duration("podinfo", "test", timedelta(seconds=42))

print(recorder.render())
```

Metric names are prefixed with the controller name, e.g.
`flagger_canary_weight`. The status gauge is 0 while progressing, 2 after a
failure and 1 otherwise. `set_weight` writes the primary weight under
`<name>-primary` and the canary weight under `<name>`.

## Shutting down on signals

```python
from canarykit.signals import setup_signal_handler

stop = setup_signal_handler()
stop.wait()  # returns after the first SIGINT or SIGTERM
```

Only SIGINT is handled on Windows. A second signal ends the process with exit
code 1. `setup_signal_handler` may be called once per process; a second call
raises `RuntimeError`.

## Routing traffic

Routers read and write resources (services, ingresses, virtual services,
destination rules, traffic splits, upstream groups, routing rules) in a
`canarykit.router.resources.ResourceStore`, an in-memory, thread-safe store.
Describe the release with a `Canary`:

```python
from canarykit.router.factory import RouterFactory
from canarykit.router.resources import Canary, CanaryService, ResourceStore

store = ResourceStore()
routers = RouterFactory(store)

canary = Canary(
    name="podinfo",
    namespace="test",
    target_name="podinfo",
    service=CanaryService(port=9898),
)

routers.kubernetes_router("app", None).reconcile(canary)

mesh = routers.mesh_router("istio")
mesh.reconcile(canary)
mesh.set_routes(canary, 90, 10)
print(mesh.get_routes(canary))  # (90, 10)
```

Every router offers the same three operations:

- `reconcile(canary)` creates or brings up to date the objects the router needs,
  starting with all traffic on the primary;
- `set_routes(canary, primary_weight, canary_weight)` shifts traffic;
- `get_routes(canary)` returns the current `(primary_weight, canary_weight)`.

Provider names map to routers as follows: `none` and `kubernetes` give the
no-op router, `nginx` the ingress router, `appmesh` the App Mesh router,
`smi:<mesh>` and `linkerd` the SMI router, `supergloo:<mesh>.<namespace>` the
SuperGloo router, `gloo` or `gloo:<namespace>` the Gloo router, and anything
else the Istio router. A malformed SuperGloo provider raises `RuntimeError`.

Looking up a missing object raises `NotFoundError`; creating one that is
already present raises `AlreadyExistsError`. Invalid canary settings and routes
that hold no weights raise `ValueError`.

## What canarykit does not do

- It has no HTTP server: `Recorder.render()` produces the metrics text, but
  serving it (and a health endpoint) is left to the application.
- It ships no ready-made success-rate or latency queries for particular meshes
  or ingress controllers; write the PromQL template and run it with
  `PrometheusClient`.
- Routers work against the in-memory `ResourceStore` only; nothing is sent to a
  Kubernetes cluster.
- There is no command-line program.

## Running the tests

Install the package with its `test` extra and run `pytest` from the project
root.