"""
Metrics module.
Process-wide request/response counters rendered in the Prometheus text format.
"""
import threading
from typing import Dict, List, Tuple, Union


def _escape_label_value(value: str) -> str:
    return value.replace('\\', '\\\\').replace('"', '\\"').replace('\n', '\\n')


class Counter:
    """A monotonically increasing integer counter."""

    def __init__(self, name: str, documentation: str):
        self.name = name
        self.documentation = documentation
        self._value = 0
        self._lock = threading.Lock()

    def inc(self, amount: int = 1):
        """Increment the counter (minimal lock time)."""
        if amount < 0:
            raise ValueError('Counters can only be incremented by non-negative amounts')
        with self._lock:
            self._value += amount

    def get(self) -> int:
        with self._lock:
            return self._value

    def samples(self) -> List[Tuple[str, int]]:
        """Return (series, value) pairs for the exposition format."""
        return [(self.name, self.get())]


class LabeledCounter:
    """A family of counters keyed by the value of a single label."""

    def __init__(self, name: str, documentation: str, label: str):
        self.name = name
        self.documentation = documentation
        self.label = label
        self._children: Dict[str, Counter] = {}
        self._lock = threading.Lock()

    def labels(self, value: str) -> Counter:
        """
        Get the child counter for a label value, creating it on first use.
        Only child creation takes the family lock; increments lock the child.
        """
        child = self._children.get(value)
        if child is None:
            with self._lock:
                child = self._children.setdefault(value, Counter(self.name, self.documentation))
        return child

    def get(self, value: str) -> int:
        child = self._children.get(value)
        return child.get() if child is not None else 0

    def samples(self) -> List[Tuple[str, int]]:
        with self._lock:
            children = sorted(self._children.items())
        return [
            (f'{self.name}{{{self.label}="{_escape_label_value(value)}"}}', child.get())
            for value, child in children
        ]


class MetricsRegistry:
    """Holds the counters for a single server instance."""

    def __init__(self):
        self._metrics: Dict[str, object] = {}
        self.total_requests = self.register(
            Counter('argus_total_requests', 'Total number of requests'))
        self.requests_by_method = self.register(
            LabeledCounter('argus_requests_by_method', 'Number of requests by HTTP method', 'method'))
        self.responses_by_status = self.register(
            LabeledCounter('argus_responses_by_status', 'Number of responses by HTTP status code', 'status'))

    def register(self, metric):
        """
        Register a metric by name.

        Raises:
            ValueError: If a metric with the same name is already registered
        """
        if metric.name in self._metrics:
            raise ValueError(f"Duplicated metric name: {metric.name}")
        self._metrics[metric.name] = metric
        return metric

    def record_request(self, method: str):
        self.total_requests.inc()
        self.requests_by_method.labels(method).inc()

    def record_response(self, status: int):
        self.responses_by_status.labels(str(status)).inc()

    def export(self) -> bytes:
        """
        Render all registered metrics in the Prometheus text exposition format.

        Returns:
            The exposition as UTF-8 bytes, families sorted by name
        """
        lines = []
        for name in sorted(self._metrics):
            metric = self._metrics[name]
            lines.append(f'# HELP {name} {metric.documentation}')
            lines.append(f'# TYPE {name} counter')
            for series, value in metric.samples():
                lines.append(f'{series} {value}')
        return ('\n'.join(lines) + '\n').encode('utf-8')


class NullMetrics:
    """Stand-in registry used when metrics are disabled."""

    def record_request(self, method: str):
        pass

    def record_response(self, status: int):
        pass

    def export(self) -> bytes:
        return b''


def create_metrics(enabled: bool) -> Union[MetricsRegistry, NullMetrics]:
    """Create a registry, or the no-op stand-in when metrics are disabled."""
    if enabled:
        return MetricsRegistry()
    return NullMetrics()
