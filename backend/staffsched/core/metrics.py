"""Prometheus counters for schedule creation and notification outcomes."""

from __future__ import annotations

from typing import Dict, Optional, Protocol

from prometheus_client import CollectorRegistry, Counter, generate_latest

SCHEDULES_CREATED = "schedules_created"
CONFLICTS_PREVENTED = "conflicts_prevented"
NOTIFICATIONS_SENT = "notifications_sent"
NOTIFICATIONS_FAILED = "notifications_failed"

NAMESPACE = "staffsched"

COUNTERS = {
    SCHEDULES_CREATED: "Schedules persisted",
    CONFLICTS_PREVENTED: "Schedule requests rejected by a weekly conflict",
    NOTIFICATIONS_SENT: "Assignment emails delivered",
    NOTIFICATIONS_FAILED: "Assignment emails that failed",
}


class MetricsRecorder(Protocol):
    def increment(self, name: str, value: int = 1) -> None: ...

    def snapshot(self) -> dict[str, int]: ...

    def reset(self) -> None: ...

    def exposition(self) -> bytes: ...


class PrometheusMetrics:
    """Counter set bound to its own :class:`CollectorRegistry`.

    Each service wiring gets a separate registry, so tests and multiple
    services in one process never share counts. ``reset`` swaps in a fresh
    registry.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None) -> None:
        self._bind(registry or CollectorRegistry())

    def _bind(self, registry: CollectorRegistry) -> None:
        self.registry = registry
        self._counters: Dict[str, Counter] = {
            name: Counter(name, doc, namespace=NAMESPACE, registry=registry)
            for name, doc in COUNTERS.items()
        }

    def increment(self, name: str, value: int = 1) -> None:
        self._counters[name].inc(value)

    def snapshot(self) -> dict[str, int]:
        return {
            name: int(self.registry.get_sample_value(f"{NAMESPACE}_{name}_total") or 0)
            for name in self._counters
        }

    def reset(self) -> None:
        self._bind(CollectorRegistry())

    def exposition(self) -> bytes:
        """Current counters in the Prometheus text format."""
        return generate_latest(self.registry)
