"""ServiceMonitor - entry point for instrumenting service calls.

Composes the CallTracker and the MetricsAggregator: every call ended through
the tracker is folded into the aggregator's statistics.

Usage:
    from src.monitoring.service_monitor import ServiceMonitor

    monitor = ServiceMonitor()
    call_id = monitor.start_call("SpeechToText", "transcribe")
    try:
        text = await stt.transcribe(audio)
        monitor.end_call(call_id, text)
    except Exception as e:
        monitor.end_call_with_error(call_id, e)
        raise
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from src.monitoring.aggregator import MetricsAggregator
from src.monitoring.models import ServiceCall, ServiceMetrics
from src.monitoring.tracker import DEFAULT_HISTORY_SIZE, CallTracker

logger = logging.getLogger(__name__)

# Methods without a call in this window are left out of the health summary
RECENT_ACTIVITY_WINDOW = timedelta(minutes=5)


@dataclass(frozen=True)
class HealthSummary:
    """Per-method health counts over recently active metrics."""

    total_services: int
    healthy_services: int
    degraded_services: int
    unhealthy_services: int
    active_calls: int

    def to_dict(self) -> dict[str, int]:
        return {
            "total_services": self.total_services,
            "healthy_services": self.healthy_services,
            "degraded_services": self.degraded_services,
            "unhealthy_services": self.unhealthy_services,
            "active_calls": self.active_calls,
        }


class ServiceMonitor:
    """Tracks service calls, performance metrics, and error rates."""

    def __init__(self, history_size: int = DEFAULT_HISTORY_SIZE) -> None:
        self._aggregator = MetricsAggregator()
        self._tracker = CallTracker(on_complete=self._aggregator.record, history_size=history_size)

    def start_call(
        self,
        service_name: str,
        method_name: str,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        return self._tracker.start_call(service_name, method_name, metadata)

    def end_call(self, call_id: str, result: Any = None) -> bool:
        return self._tracker.end_call(call_id, result)

    def end_call_with_error(self, call_id: str, error: BaseException | str) -> bool:
        return self._tracker.end_call_with_error(call_id, error)

    def get_service_metrics(
        self, service_name: str, method_name: str | None = None
    ) -> ServiceMetrics | dict[str, ServiceMetrics]:
        return self._aggregator.get_service_metrics(service_name, method_name)

    def get_all_metrics(self) -> dict[str, ServiceMetrics]:
        return self._aggregator.get_all_metrics()

    def get_active_calls(self) -> list[ServiceCall]:
        return self._tracker.get_active_calls()

    def get_call_history(self, limit: int | None = None) -> list[ServiceCall]:
        return self._tracker.get_call_history(limit)

    def get_health_summary(self) -> HealthSummary:
        """Summarize health by per-method error rate.

        Only methods called within the last five minutes are classified:
        error rate 0 is healthy, below 10% degraded, otherwise unhealthy.

        Returns:
            HealthSummary with counts and the number of in-flight calls
        """
        now = datetime.now(tz=timezone.utc)
        service_names: set[str] = set()
        healthy = degraded = unhealthy = 0

        for key, metrics in self._aggregator.get_all_metrics().items():
            service_names.add(key.split(".", 1)[0])

            if metrics.last_call is None or now - metrics.last_call >= RECENT_ACTIVITY_WINDOW:
                continue

            if metrics.error_rate == 0:
                healthy += 1
            elif metrics.error_rate < 0.1:
                degraded += 1
            else:
                unhealthy += 1

        return HealthSummary(
            total_services=len(service_names),
            healthy_services=healthy,
            degraded_services=degraded,
            unhealthy_services=unhealthy,
            active_calls=self._tracker.active_count,
        )

    def reset(self) -> None:
        """Clear all metrics, in-flight calls and history atomically."""
        with self._tracker.lock, self._aggregator.lock:
            self._tracker.clear()
            self._aggregator.clear()

        logger.info("Service monitor reset completed")
