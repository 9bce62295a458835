"""
In-process counters for the booking service, exported at /metrics in the
Prometheus text format.

Each counter family has exactly one label:

    booking_transitions_total{status}     a booking entered `status`
    partner_matches_total{outcome}        matched, no_candidates, failed
    notifications_sent_total{status}      sent, skipped, failed

Usage:
    from carenow.lib.metrics import get_metrics_collector

    metrics = get_metrics_collector()
    metrics.increment_transitions("confirmed")
    text = metrics.export_prometheus()
"""
from threading import Lock
from typing import Dict, NamedTuple


class CounterFamily(NamedTuple):
    name: str
    label: str
    help: str


BOOKING_TRANSITIONS = CounterFamily(
    "booking_transitions_total", "status", "Total number of booking state transitions"
)
PARTNER_MATCHES = CounterFamily(
    "partner_matches_total", "outcome", "Total number of partner matching attempts by outcome"
)
NOTIFICATIONS_SENT = CounterFamily(
    "notifications_sent_total", "status", "Total number of booking notifications by delivery status"
)

FAMILIES = {f.name: f for f in (BOOKING_TRANSITIONS, PARTNER_MATCHES, NOTIFICATIONS_SENT)}


class MetricsCollector:
    """Thread-safe counter registry keyed by family and label value."""

    def __init__(self):
        self._lock = Lock()
        self._counters: Dict[str, Dict[str, int]] = {name: {} for name in FAMILIES}

    def _increment(self, family: CounterFamily, value: str, amount: int = 1):
        value = value.lower()
        with self._lock:
            samples = self._counters[family.name]
            samples[value] = samples.get(value, 0) + amount

    def increment_transitions(self, status: str, amount: int = 1):
        self._increment(BOOKING_TRANSITIONS, status, amount)

    def increment_matches(self, outcome: str, amount: int = 1):
        self._increment(PARTNER_MATCHES, outcome, amount)

    def increment_notifications(self, status: str, amount: int = 1):
        self._increment(NOTIFICATIONS_SENT, status, amount)

    def get_counter_value(self, metric_name: str, labels: Dict[str, str]) -> int:
        family = FAMILIES.get(metric_name)
        if family is None or set(labels) != {family.label}:
            return 0
        with self._lock:
            return self._counters[metric_name].get(labels[family.label], 0)

    def export_prometheus(self) -> str:
        """
        Render every family that has samples, sorted by metric name and
        label value. Returns an empty string when nothing was counted.
        """
        with self._lock:
            snapshot = {name: dict(samples) for name, samples in self._counters.items() if samples}

        output_lines = []
        for name in sorted(snapshot):
            family = FAMILIES[name]
            output_lines.append(f"# HELP {name} {family.help}")
            output_lines.append(f"# TYPE {name} counter")
            for value, count in sorted(snapshot[name].items()):
                output_lines.append(f'{name}{{{family.label}="{value}"}} {count}')
            output_lines.append("")

        return "\n".join(output_lines)

    def reset_all(self):
        with self._lock:
            for samples in self._counters.values():
                samples.clear()


_metrics_collector: MetricsCollector | None = None
_metrics_lock = Lock()


def get_metrics_collector() -> MetricsCollector:
    """Process-wide collector shared by the services and /metrics."""
    global _metrics_collector
    if _metrics_collector is None:
        with _metrics_lock:
            if _metrics_collector is None:
                _metrics_collector = MetricsCollector()
    return _metrics_collector


def reset_metrics():
    """Zero the process-wide collector (test isolation)."""
    with _metrics_lock:
        if _metrics_collector is not None:
            _metrics_collector.reset_all()
