"""
Shared metrics configuration for the Subscription Entitlement Engine.

Metrics are created against an explicit registry. With the default of
``None`` nothing is registered globally, so several engines (one per test,
or one per session) can coexist in a process.
"""

from prometheus_client import Counter, Histogram, CollectorRegistry, generate_latest
from typing import Dict, Any, Optional
import time
import threading
from contextlib import contextmanager


class MetricsCollector:
    """Centralized metrics collector for the engine."""

    def __init__(self, component: str = "entitlements", registry: Optional[CollectorRegistry] = None):
        self.component = component
        self.registry = registry
        self._metrics: Dict[str, Any] = {}
        self._lock = threading.Lock()
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up engine metrics."""
        self._metrics["entitlement_checks_total"] = Counter(
            "entitlement_checks_total",
            "Total entitlement checks",
            ["decision"],
            registry=self.registry
        )

        self._metrics["guard_decisions_total"] = Counter(
            "guard_decisions_total",
            "Total route guard decisions",
            ["outcome"],
            registry=self.registry
        )

        self._metrics["notifier_events_total"] = Counter(
            "notifier_events_total",
            "Total events published by the notifier",
            ["event_type"],
            registry=self.registry
        )

        self._metrics["listener_failures_total"] = Counter(
            "listener_failures_total",
            "Total listener callbacks that raised",
            ["event_type"],
            registry=self.registry
        )

        self._metrics["subscription_refresh_total"] = Counter(
            "subscription_refresh_total",
            "Total subscription refresh attempts",
            ["status"],
            registry=self.registry
        )

        self._metrics["evaluation_duration_seconds"] = Histogram(
            "evaluation_duration_seconds",
            "Duration of a full evaluation pass in seconds",
            registry=self.registry
        )

    def get_metric(self, name: str):
        """Get a metric by name."""
        return self._metrics.get(name)

    def record_check(self, allowed: bool):
        self._metrics["entitlement_checks_total"].labels(
            decision="allow" if allowed else "deny"
        ).inc()

    def record_guard(self, outcome: str):
        self._metrics["guard_decisions_total"].labels(outcome=outcome).inc()

    def record_event(self, event_type: str):
        self._metrics["notifier_events_total"].labels(event_type=event_type).inc()

    def record_listener_failure(self, event_type: str):
        self._metrics["listener_failures_total"].labels(event_type=event_type).inc()

    def record_refresh(self, status: str):
        self._metrics["subscription_refresh_total"].labels(status=status).inc()

    @contextmanager
    def time_evaluation(self):
        """Context manager to time an evaluation pass."""
        start_time = time.perf_counter()
        try:
            yield
        finally:
            with self._lock:
                self._metrics["evaluation_duration_seconds"].observe(time.perf_counter() - start_time)

    def sample_value(self, metric_name: str, **labels) -> float:
        """Read back the current value of a counter."""
        metric = self._metrics[metric_name]
        target = metric.labels(**labels) if labels else metric
        for family in target.collect():
            for sample in family.samples:
                if sample.name.endswith("_total") or sample.name.endswith("_count"):
                    return sample.value
        return 0.0

    def export(self) -> bytes:
        """Render the metrics in Prometheus text exposition format."""
        if self.registry is None:
            return b""
        return generate_latest(self.registry)


def get_metrics_collector(component: str = "entitlements", registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a component."""
    return MetricsCollector(component, registry)
