"""Prometheus queries, traffic routers, analysis metrics, notifications and signal handling for canary releases."""

__version__ = "0.18.3"