"""Prometheus metrics describing the canary analysis, in text exposition format."""

from __future__ import annotations

import enum
import math
import threading
from datetime import timedelta
from typing import Iterator

VERSION = "0.18.3"
REVISION = "unknown"

DEFAULT_BUCKETS = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)


class CanaryPhase(str, enum.Enum):
    INITIALIZED = "Initialized"
    PROGRESSING = "Progressing"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"


def _format_value(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if value.is_integer() and abs(value) < 1e15:
        return str(int(value))
    return repr(value)


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


def _labels(pairs: list[tuple[str, str]]) -> str:
    if not pairs:
        return ""
    return "{" + ",".join(f'{k}="{_escape(v)}"' for k, v in pairs) + "}"


def _full_name(subsystem: str, name: str) -> str:
    return f"{subsystem}_{name}" if subsystem else name


class _Gauge:
    kind = "gauge"

    def __init__(self, name: str, help_text: str, label_names: tuple[str, ...]) -> None:
        self.name = name
        self.help = help_text
        self.label_names = label_names
        self._values: dict[tuple[str, ...], float] = {}

    def set(self, labels: tuple[str, ...], value: float) -> None:
        self._values[labels] = float(value)

    def samples(self) -> Iterator[str]:
        for labels in sorted(self._values):
            pairs = list(zip(self.label_names, labels))
            yield f"{self.name}{_labels(pairs)} {_format_value(self._values[labels])}"


class _Histogram:
    kind = "histogram"

    def __init__(
        self,
        name: str,
        help_text: str,
        label_names: tuple[str, ...],
        buckets: tuple[float, ...] = DEFAULT_BUCKETS,
    ) -> None:
        self.name = name
        self.help = help_text
        self.label_names = label_names
        self.buckets = buckets
        self._series: dict[tuple[str, ...], tuple[list[int], float, int]] = {}

    def observe(self, labels: tuple[str, ...], value: float) -> None:
        counts, total, count = self._series.get(labels, ([0] * len(self.buckets), 0.0, 0))
        counts = [c + (1 if value <= bound else 0) for c, bound in zip(counts, self.buckets)]
        self._series[labels] = (counts, total + value, count + 1)

    def samples(self) -> Iterator[str]:
        for labels in sorted(self._series):
            counts, total, count = self._series[labels]
            pairs = list(zip(self.label_names, labels))
            for bound, cumulative in zip(self.buckets, counts):
                le = pairs + [("le", _format_value(bound))]
                yield f"{self.name}_bucket{_labels(le)} {cumulative}"
            yield f"{self.name}_bucket{_labels(pairs + [('le', '+Inf')])} {count}"
            yield f"{self.name}_sum{_labels(pairs)} {_format_value(total)}"
            yield f"{self.name}_count{_labels(pairs)} {count}"


class Recorder:
    """Records the canary analysis as Prometheus gauges and a histogram."""

    def __init__(self, controller: str) -> None:
        self._lock = threading.Lock()
        self._info = _Gauge(
            _full_name(controller, "info"),
            "Flagger version and mesh provider information",
            ("version", "mesh_provider"),
        )
        self._duration = _Histogram(
            _full_name(controller, "canary_duration_seconds"),
            "Seconds spent performing canary analysis.",
            ("name", "namespace"),
        )
        self._total = _Gauge(
            _full_name(controller, "canary_total"),
            "Total number of canary object",
            ("namespace",),
        )
        # 0 - running, 1 - successful, 2 - failed
        self._status = _Gauge(
            _full_name(controller, "canary_status"),
            "Last canary analysis result",
            ("name", "namespace"),
        )
        self._weight = _Gauge(
            _full_name(controller, "canary_weight"),
            "The virtual service destination weight current value",
            ("workload", "namespace"),
        )

    def set_info(self, version: str, mesh_provider: str) -> None:
        """Set the version and mesh provider labels."""
        with self._lock:
            self._info.set((version, mesh_provider), 1)

    def set_duration(self, name: str, namespace: str, duration: timedelta | float) -> None:
        """Observe the time spent performing canary analysis."""
        seconds = duration.total_seconds() if isinstance(duration, timedelta) else float(duration)
        with self._lock:
            self._duration.observe((name, namespace), seconds)

    def set_total(self, namespace: str, total: int) -> None:
        """Set the number of canaries in a namespace."""
        with self._lock:
            self._total.set((namespace,), total)

    def set_status(self, name: str, namespace: str, phase: CanaryPhase | str) -> None:
        """Set the last known analysis status: 0 running, 1 successful, 2 failed."""
        phase = CanaryPhase(phase) if phase in CanaryPhase._value2member_map_ else phase
        if phase is CanaryPhase.PROGRESSING:
            status = 0
        elif phase is CanaryPhase.FAILED:
            status = 2
        else:
            status = 1
        with self._lock:
            self._status.set((name, namespace), status)

    def set_weight(self, name: str, namespace: str, primary: int, canary: int) -> None:
        """Set the weights of the primary and canary destinations."""
        with self._lock:
            self._weight.set((f"{name}-primary", namespace), primary)
            self._weight.set((name, namespace), canary)

    def render(self) -> str:
        """All metrics in Prometheus text exposition format."""
        with self._lock:
            metrics = sorted(
                (self._info, self._duration, self._total, self._status, self._weight),
                key=lambda m: m.name,
            )
            lines: list[str] = []
            for metric in metrics:
                samples = list(metric.samples())
                if not samples:
                    continue
                lines.append(f"# HELP {metric.name} {metric.help}")
                lines.append(f"# TYPE {metric.name} {metric.kind}")
                lines.extend(samples)
        return "".join(line + "\n" for line in lines)