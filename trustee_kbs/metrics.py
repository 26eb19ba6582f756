"""Process metrics in the Prometheus text exposition format."""

from __future__ import annotations

import bisect
import math
import re
import threading
from collections.abc import Iterator, Sequence

_NAME_RE = re.compile(r"[a-zA-Z_:][a-zA-Z0-9_:]*")
_LABEL_RE = re.compile(r"[a-zA-Z_][a-zA-Z0-9_]*")

DEFAULT_BUCKETS = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)

_Sample = tuple[str, tuple[tuple[str, str], ...], float]


def _check_name(name: str) -> None:
    if not _NAME_RE.fullmatch(name):
        raise ValueError(f"invalid metric name {name!r}")


def _format_value(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if value == int(value):
        return str(int(value))
    return repr(value)


def _escape_label(value: str) -> str:
    return value.replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')


def _escape_help(value: str) -> str:
    return value.replace("\\", "\\\\").replace("\n", "\\n")


def exponential_buckets(start: float, factor: float, count: int) -> list[float]:
    """Return ``count`` bucket bounds starting at ``start``, each ``factor`` times the last."""
    if count < 1:
        raise ValueError(f"exponential_buckets needs a positive count, count: {count}")
    if start <= 0:
        raise ValueError(f"exponential_buckets needs a positive start value, start: {start}")
    if factor <= 1:
        raise ValueError(f"exponential_buckets needs a factor greater than 1, factor: {factor}")
    buckets = []
    bound = float(start)
    for _ in range(count):
        buckets.append(bound)
        bound *= factor
    return buckets


class Counter:
    """A monotonically increasing value."""

    kind = "counter"

    def __init__(self, name: str, documentation: str) -> None:
        _check_name(name)
        self.name = name
        self.documentation = documentation
        self._value = 0.0
        self._lock = threading.Lock()

    @property
    def value(self) -> float:
        with self._lock:
            return self._value

    def inc(self, amount: float = 1.0) -> None:
        """Add ``amount`` to the counter."""
        if amount < 0:
            raise ValueError("counters can only increase")
        with self._lock:
            self._value += amount

    def _samples(self) -> Iterator[_Sample]:
        yield self.name, (), self.value


class CounterVec:
    """A family of counters told apart by label values."""

    kind = "counter"

    def __init__(self, name: str, documentation: str, label_names: Sequence[str]) -> None:
        _check_name(name)
        for label in label_names:
            if not _LABEL_RE.fullmatch(label) or label.startswith("__"):
                raise ValueError(f"invalid label name {label!r}")
        self.name = name
        self.documentation = documentation
        self.label_names = tuple(label_names)
        self._children: dict[tuple[str, ...], Counter] = {}
        self._lock = threading.Lock()

    def labels(self, *args: str) -> Counter:
        """Return the counter for the given label values, creating it if needed."""
        if len(args) != len(self.label_names):
            raise ValueError(
                f"expected {len(self.label_names)} label values, got {len(args)}"
            )
        key = tuple(str(value) for value in args)
        with self._lock:
            child = self._children.get(key)
            if child is None:
                child = Counter(self.name, self.documentation)
                self._children[key] = child
            return child

    def _samples(self) -> Iterator[_Sample]:
        with self._lock:
            children = sorted(self._children.items())
        for values, child in children:
            yield self.name, tuple(zip(self.label_names, values)), child.value


class Histogram:
    """Counts observations in cumulative buckets."""

    kind = "histogram"

    def __init__(
        self,
        name: str,
        documentation: str,
        buckets: Sequence[float] = DEFAULT_BUCKETS,
    ) -> None:
        _check_name(name)
        bounds = [float(bound) for bound in buckets] or list(DEFAULT_BUCKETS)
        if bounds and math.isinf(bounds[-1]) and bounds[-1] > 0:
            bounds.pop()
        for lower, upper in zip(bounds, bounds[1:]):
            if lower >= upper:
                raise ValueError(
                    f"histogram buckets must be in increasing order: {lower} >= {upper}"
                )
        self.name = name
        self.documentation = documentation
        self.buckets = tuple(bounds)
        self._counts = [0] * len(bounds)
        self._sum = 0.0
        self._count = 0
        self._lock = threading.Lock()

    def observe(self, value: float) -> None:
        """Record one observation."""
        index = bisect.bisect_left(self.buckets, value)
        with self._lock:
            if index < len(self._counts):
                self._counts[index] += 1
            self._sum += value
            self._count += 1

    def _samples(self) -> Iterator[_Sample]:
        with self._lock:
            counts = list(self._counts)
            total_sum = self._sum
            total_count = self._count
        cumulative = 0
        for bound, count in zip(self.buckets, counts):
            cumulative += count
            yield f"{self.name}_bucket", (("le", _format_value(bound)),), cumulative
        yield f"{self.name}_bucket", (("le", "+Inf"),), total_count
        yield f"{self.name}_sum", (), total_sum
        yield f"{self.name}_count", (), total_count


Metric = Counter | CounterVec | Histogram


class Registry:
    """A set of metrics rendered together."""

    def __init__(self) -> None:
        self._metrics: dict[str, Metric] = {}
        self._lock = threading.Lock()

    def register(self, metric: Metric) -> None:
        """Add ``metric``; its name must not be taken yet."""
        with self._lock:
            if metric.name in self._metrics:
                raise ValueError(f"duplicate metrics collector registration: {metric.name}")
            self._metrics[metric.name] = metric

    def render(self) -> str:
        """Return every registered metric in the text exposition format."""
        with self._lock:
            metrics = sorted(self._metrics.items())
        lines = []
        for name, metric in metrics:
            samples = list(metric._samples())
            if not samples:
                continue
            lines.append(f"# HELP {name} {_escape_help(metric.documentation)}")
            lines.append(f"# TYPE {name} {metric.kind}")
            for sample_name, labels, value in samples:
                if labels:
                    rendered = ",".join(f'{key}="{_escape_label(val)}"' for key, val in labels)
                    lines.append(f"{sample_name}{{{rendered}}} {_format_value(value)}")
                else:
                    lines.append(f"{sample_name} {_format_value(value)}")
        return "".join(line + "\n" for line in lines)


RESOURCE_READS_TOTAL = CounterVec(
    "resource_reads_total", "KBS resource read count", ["resource_path"]
)
RESOURCE_WRITES_TOTAL = CounterVec(
    "resource_writes_total", "KBS resource write count", ["resource_path"]
)
REQUEST_TOTAL = Counter("http_requests_total", "Total HTTP requests count")
REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "Distribution of request handling duration",
    [0.0005, 0.001, 0.005, 0.01, 0.05, 0.5, 1.0],
)
REQUEST_SIZES = Histogram(
    "http_request_size_bytes",
    "Distribution of request body sizes",
    exponential_buckets(32.0, 4.0, 5),
)
RESPONSE_SIZES = Histogram(
    "http_response_size_bytes",
    "Distribution of response body sizes",
    exponential_buckets(32.0, 4.0, 5),
)

_REGISTRY = Registry()
for _metric in (
    RESOURCE_READS_TOTAL,
    RESOURCE_WRITES_TOTAL,
    REQUEST_TOTAL,
    REQUEST_DURATION,
    REQUEST_SIZES,
    RESPONSE_SIZES,
):
    _REGISTRY.register(_metric)


def export_metrics() -> str:
    """Render the service's metrics."""
    return _REGISTRY.render()