"""
In-memory metrics for the authorization layer.

One :class:`MetricsCollector` is created per application and kept on
``app.state.metrics``.  Counters recorded here:

- auth_denied_total{kind}: guard denials by error kind
- auth_login_total{outcome}: login attempts (success / failure)
- permission_lookup_seconds: histogram of effective-permission query time
- rate_limited_total: requests rejected by the rate limiter

Histogram count, sum and avg are cumulative; min, max and p95 are
computed over the most recent ``window`` observations only.
"""
import re as _re
from collections import defaultdict, deque
from typing import Any
import logging

logger = logging.getLogger("wasteops.metrics")

DEFAULT_HISTOGRAM_WINDOW = 1024


class MetricsCollector:
    """Simple in-memory metrics collector."""

    def __init__(self, prefix: str = "wasteops_", window: int = DEFAULT_HISTOGRAM_WINDOW):
        self.prefix = prefix
        self.window = window
        self.counters: dict[str, int] = defaultdict(int)
        self.histograms: dict[str, deque[float]] = defaultdict(lambda: deque(maxlen=self.window))
        # key -> [count, sum] over every observation ever made
        self._histogram_totals: dict[str, list[float]] = defaultdict(lambda: [0, 0.0])

    def increment_counter(self, name: str, value: int = 1, labels: dict[str, str] | None = None):
        """Increment a counter metric."""
        key = self._build_key(name, labels)
        self.counters[key] += value

    def observe_histogram(self, name: str, value: float, labels: dict[str, str] | None = None):
        """Record a histogram observation."""
        key = self._build_key(name, labels)
        self.histograms[key].append(value)
        totals = self._histogram_totals[key]
        totals[0] += 1
        totals[1] += value

    def get_counter(self, name: str, labels: dict[str, str] | None = None) -> int:
        key = self._build_key(name, labels)
        return self.counters.get(key, 0)

    def get_histogram_stats(self, name: str, labels: dict[str, str] | None = None) -> dict[str, Any]:
        """Get histogram statistics (count, sum, min, max, avg, p95)."""
        key = self._build_key(name, labels)
        values = self.histograms.get(key)

        if not values:
            return {"count": 0, "sum": 0, "min": 0, "max": 0, "avg": 0, "p95": 0}

        count, total = self._histogram_totals[key]
        sorted_vals = sorted(values)
        n = len(sorted_vals)
        p95_idx = max(0, int(n * 0.95) - 1)
        return {
            "count": count,
            "sum": total,
            "min": sorted_vals[0],
            "max": sorted_vals[-1],
            "avg": total / count,
            "p95": sorted_vals[p95_idx],
        }

    def get_all_metrics(self) -> dict[str, Any]:
        return {
            "counters": dict(self.counters),
            "histograms": {k: self.get_histogram_stats(k) for k in self.histograms.keys()},
        }

    def reset(self):
        self.counters.clear()
        self.histograms.clear()
        self._histogram_totals.clear()

    @staticmethod
    def _build_key(name: str, labels: dict[str, str] | None) -> str:
        """Build metric key from name and labels."""
        if not labels:
            return name
        label_str = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        return f"{name}{{{label_str}}}"

    # ── Domain helpers ──────────────────────────────────────────

    def record_denial(self, kind: str) -> None:
        self.increment_counter("auth_denied_total", labels={"kind": kind})

    def record_login(self, outcome: str) -> None:
        self.increment_counter("auth_login_total", labels={"outcome": outcome})

    def record_permission_lookup(self, duration_seconds: float) -> None:
        self.observe_histogram("permission_lookup_seconds", duration_seconds)

    def record_rate_limited(self) -> None:
        self.increment_counter("rate_limited_total")


def _parse_metric_key(key: str) -> tuple[str, str]:
    """Split an internal metric key into (base_name, prometheus_label_string).

    ``name{k1=v1,k2=v2}`` becomes ``("name", '{k1="v1",k2="v2"}')``.
    """
    m = _re.match(r'^([^{]+)(?:\{(.+)\})?$', key)
    if not m:
        return key, ""
    base_name = m.group(1)
    raw_labels = m.group(2) or ""
    if not raw_labels:
        return base_name, ""
    label_parts: list[str] = []
    for pair in raw_labels.split(","):
        if "=" in pair:
            k, v = pair.split("=", 1)
            label_parts.append(f'{k.strip()}="{v.strip()}"')
    label_str = "{" + ",".join(label_parts) + "}" if label_parts else ""
    return base_name, label_str


def _append_quantile_label(label_str: str, quantile: str) -> str:
    q_pair = f'quantile="{quantile}"'
    if label_str:
        return label_str[:-1] + "," + q_pair + "}"
    return "{" + q_pair + "}"


def to_prometheus_text(collector: MetricsCollector) -> str:
    """Render *collector* in Prometheus text exposition format.

    Each metric family gets exactly one ``# TYPE`` line; histograms are
    rendered as summaries (count, sum, p95 and max quantiles).
    """
    summary = collector.get_all_metrics()
    lines: list[str] = []

    counter_families: dict[str, list[tuple[str, int]]] = defaultdict(list)
    for key, val in summary["counters"].items():
        base_name, label_str = _parse_metric_key(key)
        counter_families[collector.prefix + base_name].append((label_str, val))
    for prom_name, entries in counter_families.items():
        lines.append(f"# TYPE {prom_name} counter")
        for label_str, val in entries:
            lines.append(f"{prom_name}{label_str} {val}")

    histogram_families: dict[str, list[tuple[str, dict]]] = defaultdict(list)
    for key, stats in summary["histograms"].items():
        base_name, label_str = _parse_metric_key(key)
        histogram_families[collector.prefix + base_name].append((label_str, stats))
    for prom_name, entries in histogram_families.items():
        lines.append(f"# TYPE {prom_name} summary")
        for label_str, stats in entries:
            lines.append(f"{prom_name}_count{label_str} {stats['count']}")
            lines.append(f"{prom_name}_sum{label_str} {stats['sum']:.6f}")
            if stats["count"]:
                lines.append(f"{prom_name}{_append_quantile_label(label_str, '0.95')} {stats['p95']:.6f}")
                lines.append(f"{prom_name}{_append_quantile_label(label_str, '1.0')} {stats['max']:.6f}")
    return "\n".join(lines) + "\n"
