"""A small client for running PromQL queries against a Prometheus server."""

from __future__ import annotations

import json
import posixpath
import re
import urllib.error
import urllib.request
from datetime import timedelta
from urllib.parse import quote_plus, urlsplit, urlunsplit

_ACTION = re.compile(r"\{\{(.*?)\}\}", re.DOTALL)
_FIELD = re.compile(r"\s*\.(\w+)\s*")


class PrometheusError(Exception):
    """Raised when a query cannot be rendered, sent or understood."""


class PrometheusClient:
    """Executes PromQL queries against the Prometheus HTTP API."""

    def __init__(self, address: str, timeout: float | timedelta) -> None:
        try:
            self._url = urlsplit(address)
        except ValueError as exc:
            raise PrometheusError(f"invalid metrics server address {address!r}: {exc}") from exc
        self._address = address
        if isinstance(timeout, timedelta):
            self.timeout = timeout.total_seconds()
        else:
            self.timeout = float(timeout)

    def render_query(self, name: str, namespace: str, interval: str, template: str) -> str:
        """Fill the ``{{ .Name }}``, ``{{ .Namespace }}`` and ``{{ .Interval }}`` fields."""
        if "{{" in _ACTION.sub("", template):
            raise PrometheusError("template: unclosed action")

        values = {"Name": name, "Namespace": namespace, "Interval": interval}

        def substitute(match: re.Match[str]) -> str:
            field = _FIELD.fullmatch(match.group(1))
            if field is None:
                raise PrometheusError(f"template: unsupported action {match.group(0)!r}")
            key = field.group(1)
            if key not in values:
                raise PrometheusError(f"template: can't evaluate field {key}")
            return values[key]

        return _ACTION.sub(substitute, template)

    def run_query(self, query: str) -> float:
        """Execute the query and return the last string value in the result vector."""
        if self._url.hostname == "fake":
            return 100.0

        encoded = "query=" + quote_plus(self.trim_query(query))
        body = self._fetch(self._endpoint("api/v1/query", encoded))

        try:
            result = json.loads(body)
        except ValueError as exc:
            text = body.decode(errors="replace")
            raise PrometheusError(f"error unmarshaling result: {exc}, '{text}'") from exc

        value: float | None = None
        for entry in _result_entries(result):
            try:
                metric_value = entry["value"][1]
            except (KeyError, IndexError, TypeError) as exc:
                raise PrometheusError(f"malformed result entry: {entry!r}") from exc
            if isinstance(metric_value, str):
                value = _parse_float(metric_value)

        if value is None:
            raise PrometheusError("no values found")
        return value

    def trim_query(self, query: str) -> str:
        """Remove new lines, tabs and spaces from a query."""
        return query.replace("\n", "").replace("\t", "").replace(" ", "")

    def is_online(self) -> bool:
        """Call the status endpoint; raise PrometheusError if the API is unreachable."""
        self._fetch(self._endpoint("api/v1/status/flags"))
        return True

    def metrics_server(self) -> str:
        """The address of the Prometheus server."""
        return self._url.geturl()

    def _endpoint(self, relative: str, query: str = "") -> str:
        path = posixpath.join(self._url.path or "/", relative)
        return urlunsplit((self._url.scheme, self._url.netloc, path, query, ""))

    def _fetch(self, url: str) -> bytes:
        if self._url.scheme not in ("http", "https"):
            raise PrometheusError(f"unsupported protocol scheme {self._url.scheme!r}")
        request = urllib.request.Request(url, method="GET")
        try:
            with urllib.request.urlopen(request, timeout=self.timeout) as response:
                return response.read()
        except urllib.error.HTTPError as exc:
            body = exc.read().decode(errors="replace")
            raise PrometheusError(f"error response: {body}") from exc
        except (urllib.error.URLError, OSError) as exc:
            raise PrometheusError(f"request to {url} failed: {exc}") from exc


def _result_entries(result: object) -> list:
    if result is None:
        return []
    if not isinstance(result, dict):
        raise PrometheusError(f"error unmarshaling result: unexpected document {result!r}")
    data = result.get("data") or {}
    if not isinstance(data, dict):
        raise PrometheusError("error unmarshaling result: 'data' is not an object")
    entries = data.get("result") or []
    if not isinstance(entries, list):
        raise PrometheusError("error unmarshaling result: 'result' is not a list")
    return entries


def _parse_float(text: str) -> float:
    if text != text.strip() or "_" in text:
        raise PrometheusError(f"invalid metric value {text!r}")
    try:
        return float(text)
    except ValueError as exc:
        raise PrometheusError(f"invalid metric value {text!r}") from exc