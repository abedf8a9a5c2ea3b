"""
Prometheus Metrics

Provides application metrics in Prometheus text format:
- HTTP request metrics (count, duration)
- Reservation outcomes, fallbacks and provider latency
- Sweep results (reconciliation, hold GC)
"""

from typing import Dict
from collections import defaultdict
from threading import Lock


class Counter:
    """Simple counter metric."""

    def __init__(self, name: str, description: str, labels: tuple = ()):
        self.name = name
        self.description = description
        self.labels = labels
        self._values: Dict[tuple, float] = defaultdict(float)
        self._lock = Lock()

    def inc(self, value: float = 1, **label_values):
        key = tuple(label_values.get(l, '') for l in self.labels)
        with self._lock:
            self._values[key] += value

    def get_all(self) -> Dict[tuple, float]:
        with self._lock:
            return dict(self._values)

    def reset(self):
        with self._lock:
            self._values.clear()


class Histogram:
    """Simple histogram metric (sum and count only are exported)."""

    DEFAULT_BUCKETS = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, float('inf'))

    def __init__(self, name: str, description: str, labels: tuple = (), buckets: tuple = None):
        self.name = name
        self.description = description
        self.labels = labels
        self.buckets = buckets or self.DEFAULT_BUCKETS
        self._counts: Dict[tuple, Dict[float, int]] = defaultdict(lambda: defaultdict(int))
        self._sums: Dict[tuple, float] = defaultdict(float)
        self._totals: Dict[tuple, int] = defaultdict(int)
        self._lock = Lock()

    def observe(self, value: float, **label_values):
        key = tuple(label_values.get(l, '') for l in self.labels)
        with self._lock:
            self._sums[key] += value
            self._totals[key] += 1
            for bucket in self.buckets:
                if value <= bucket:
                    self._counts[key][bucket] += 1

    def get_all(self) -> Dict:
        with self._lock:
            return {
                'counts': dict(self._counts),
                'sums': dict(self._sums),
                'totals': dict(self._totals)
            }


# ================================
# APPLICATION METRICS
# ================================

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labels=("method", "path", "status_code")
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    labels=("method", "path")
)

reservations_total = Counter(
    "reservations_total",
    "Reservation attempts by outcome",
    labels=("kind", "outcome")
)

provider_calls_total = Counter(
    "provider_calls_total",
    "Create-booking calls to the provider",
    labels=("status",)
)

provider_call_duration_seconds = Histogram(
    "provider_call_duration_seconds",
    "Provider create-booking latency in seconds",
    labels=("status",)
)

finalize_fallbacks_total = Counter(
    "finalize_fallbacks_total",
    "Orders written as pending_local_sync after a failed finalize"
)

reconciliation_total = Counter(
    "reconciliation_total",
    "Reconciliation outcomes per order",
    labels=("outcome",)
)

hold_gc_total = Counter(
    "hold_gc_total",
    "Hold garbage collector actions",
    labels=("action",)
)

provider_webhooks_total = Counter(
    "provider_webhooks_total",
    "Provider status webhooks received",
    labels=("event", "status")
)

ALL_COUNTERS = (
    http_requests_total,
    reservations_total,
    provider_calls_total,
    finalize_fallbacks_total,
    reconciliation_total,
    hold_gc_total,
    provider_webhooks_total,
)

ALL_HISTOGRAMS = (
    http_request_duration_seconds,
    provider_call_duration_seconds,
)


def _label_str(names: tuple, key: tuple) -> str:
    return ",".join(f'{k}="{v}"' for k, v in zip(names, key))


def format_prometheus_metrics() -> str:
    """Format all metrics in Prometheus text format."""
    lines = []

    for counter in ALL_COUNTERS:
        lines.append(f"# HELP {counter.name} {counter.description}")
        lines.append(f"# TYPE {counter.name} counter")
        for key, value in counter.get_all().items():
            if counter.labels:
                lines.append(f"{counter.name}{{{_label_str(counter.labels, key)}}} {value}")
            else:
                lines.append(f"{counter.name} {value}")

    for histogram in ALL_HISTOGRAMS:
        data = histogram.get_all()
        lines.append(f"# HELP {histogram.name} {histogram.description}")
        lines.append(f"# TYPE {histogram.name} histogram")
        for key in data['sums'].keys():
            label_str = _label_str(histogram.labels, key)
            lines.append(f'{histogram.name}_sum{{{label_str}}} {data["sums"][key]}')
            lines.append(f'{histogram.name}_count{{{label_str}}} {data["totals"][key]}')

    return "\n".join(lines) + "\n"


# ================================
# CONVENIENCE FUNCTIONS
# ================================

def record_http_request(method: str, path: str, status_code: int, duration: float):
    http_requests_total.inc(method=method, path=path, status_code=str(status_code))
    http_request_duration_seconds.observe(duration, method=method, path=path)


def record_reservation(kind: str, outcome: str):
    reservations_total.inc(kind=kind, outcome=outcome)


def record_provider_call(status: str, duration: float):
    provider_calls_total.inc(status=status)
    provider_call_duration_seconds.observe(duration, status=status)


def record_finalize_fallback():
    finalize_fallbacks_total.inc()


def record_reconciliation(outcome: str, count: int = 1):
    if count:
        reconciliation_total.inc(count, outcome=outcome)


def record_hold_gc(action: str, count: int):
    if count:
        hold_gc_total.inc(count, action=action)


def record_provider_webhook(event: str, success: bool):
    status = "success" if success else "error"
    provider_webhooks_total.inc(event=event, status=status)
