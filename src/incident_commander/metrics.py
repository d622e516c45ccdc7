"""
Prometheus-format metrics for Incident Commander.

Counters and histograms are kept in process and rendered in the Prometheus
text exposition format by ``get_metrics_text()``.
"""

import threading
from typing import Dict, List, Optional


class MetricsCollector:
    """
    Thread-safe metrics store.

    A module-level default instance backs the ``track_*`` helpers. Tests and
    embedders can create their own collector.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._gauges: Dict[str, Dict[str, float]] = {}
        self._counters: Dict[str, Dict[str, int]] = {}
        # name -> label key -> [count, sum]
        self._histograms: Dict[str, Dict[str, List[float]]] = {}

    def set_gauge(self, name: str, value: float, labels: Optional[Dict[str, str]] = None):
        """Set a gauge metric value."""
        label_key = self._make_label_key(labels or {})
        with self._lock:
            self._gauges.setdefault(name, {})[label_key] = value

    def increment_counter(self, name: str, value: int = 1, labels: Optional[Dict[str, str]] = None):
        """Increment a counter metric."""
        label_key = self._make_label_key(labels or {})
        with self._lock:
            series = self._counters.setdefault(name, {})
            series[label_key] = series.get(label_key, 0) + value

    def record_histogram(self, name: str, value: float, labels: Optional[Dict[str, str]] = None):
        """Record a histogram observation."""
        label_key = self._make_label_key(labels or {})
        with self._lock:
            series = self._histograms.setdefault(name, {}).setdefault(label_key, [0, 0.0])
            series[0] += 1
            series[1] += value

    def get_counter(self, name: str, labels: Optional[Dict[str, str]] = None) -> int:
        """Current value of a counter series, 0 if never incremented."""
        label_key = self._make_label_key(labels or {})
        with self._lock:
            return self._counters.get(name, {}).get(label_key, 0)

    def get_metrics(self) -> str:
        """
        Get all metrics in Prometheus text format.

        Returns:
            Prometheus-formatted metrics string
        """
        lines = []

        with self._lock:
            for name, labels_dict in self._gauges.items():
                lines.append(f"# TYPE {name} gauge")
                for label_key, value in labels_dict.items():
                    lines.append(f"{name}{{{label_key}}} {value}")

            for name, labels_dict in self._counters.items():
                lines.append(f"# TYPE {name} counter")
                for label_key, value in labels_dict.items():
                    lines.append(f"{name}{{{label_key}}} {value}")

            # Histograms (count and sum only)
            for name, labels_dict in self._histograms.items():
                lines.append(f"# TYPE {name} histogram")
                for label_key, (count, total) in labels_dict.items():
                    lines.append(f"{name}_count{{{label_key}}} {count}")
                    lines.append(f"{name}_sum{{{label_key}}} {total}")

        return "\n".join(lines)

    def reset(self):
        """Drop all recorded series."""
        with self._lock:
            self._gauges.clear()
            self._counters.clear()
            self._histograms.clear()

    def _make_label_key(self, labels: Dict[str, str]) -> str:
        """Convert label dict to string key."""
        if not labels:
            return ""
        return ",".join(f'{k}="{v}"' for k, v in sorted(labels.items()))


# Default process-wide collector
metrics = MetricsCollector()


def track_incident_total(state: str):
    """Count an incident reaching a terminal state."""
    metrics.increment_counter("incident_commander_incidents_total", 1, {"state": state})


def track_incident_duration(duration_seconds: float, state: str):
    """Time from detection to terminal state."""
    metrics.record_histogram(
        "incident_commander_incident_duration_seconds",
        duration_seconds,
        {"state": state}
    )


def track_active_incidents(count: int):
    """Number of incidents not yet terminal."""
    metrics.set_gauge("incident_commander_active_incidents", count)


def track_action_total(provider: str, action: str, outcome: str):
    """Count a dispatched action."""
    metrics.increment_counter(
        "incident_commander_actions_total",
        1,
        {"provider": provider, "action": action, "outcome": outcome}
    )


def track_approval_decision(reason: str, approved: bool):
    """Count an approval gate decision."""
    metrics.increment_counter(
        "incident_commander_approval_decisions_total",
        1,
        {"reason": reason, "approved": str(approved).lower()}
    )


def track_planner_fallback(cause: str):
    """Count a switch to the rule-based planner."""
    metrics.increment_counter(
        "incident_commander_planner_fallback_total",
        1,
        {"cause": cause}
    )


def get_metrics_text() -> str:
    """
    Get all metrics in Prometheus text format.

    This can be exposed via an HTTP endpoint (e.g., /metrics).
    """
    return metrics.get_metrics()
