[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "canarykit"
version = "0.18.3"
description = "Canary release toolkit: Prometheus queries, traffic routers for service meshes and ingress controllers, analysis metrics and release notifications"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "canary",
    "progressive-delivery",
    "prometheus",
    "promql",
    "service-mesh",
    "istio",
    "linkerd",
    "app-mesh",
    "gloo",
    "nginx",
    "traffic-shifting",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Monitoring",
    "Topic :: System :: Systems Administration",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["canarykit"]

[tool.hatch.build.targets.sdist]
include = ["canarykit", "tests", "README.md"]

[tool.pytest.ini_options]
addopts = "-ra"
