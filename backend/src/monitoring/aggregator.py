"""Metrics aggregator for terminated service calls.

Folds each terminated call into per-(service, method) running statistics
using an online mean, so the full duration history is never stored.
"""

from __future__ import annotations

import logging
import threading

from src.monitoring.models import ServiceCall, ServiceMetrics

logger = logging.getLogger(__name__)


def metrics_key(service_name: str, method_name: str) -> str:
    return f"{service_name}.{method_name}"


class MetricsAggregator:
    """Per-key running statistics, created lazily on first completion.

    Every returned value is a copy; callers can never mutate internal state
    through what they get back.
    """

    def __init__(self) -> None:
        self._metrics: dict[str, ServiceMetrics] = {}
        self._lock = threading.Lock()

    @property
    def lock(self) -> threading.Lock:
        return self._lock

    def record(self, call: ServiceCall) -> None:
        """Fold one terminated call into its key's statistics.

        Args:
            call: A terminated ServiceCall (duration_ms and success set)
        """
        if call.duration_ms is None or call.success is None:
            logger.warning("Ignoring unterminated call for %s", call.key)
            return

        with self._lock:
            metrics = self._metrics.get(call.key)
            if metrics is None:
                metrics = ServiceMetrics()
                self._metrics[call.key] = metrics
            metrics.record(call.duration_ms, call.success)

    def get_service_metrics(
        self, service_name: str, method_name: str | None = None
    ) -> ServiceMetrics | dict[str, ServiceMetrics]:
        """Get metrics for one method, or all methods of a service.

        Args:
            service_name: Service to look up
            method_name: If given, return that method's snapshot (zero-valued
                default when never called); otherwise a dict method -> metrics

        Returns:
            ServiceMetrics copy, or dict of method name to ServiceMetrics copy
        """
        with self._lock:
            if method_name is not None:
                metrics = self._metrics.get(metrics_key(service_name, method_name))
                return metrics.copy() if metrics is not None else ServiceMetrics()

            prefix = f"{service_name}."
            return {
                key[len(prefix) :]: metrics.copy()
                for key, metrics in self._metrics.items()
                if key.startswith(prefix)
            }

    def get_all_metrics(self) -> dict[str, ServiceMetrics]:
        """Copy of all metrics keyed "service.method"."""
        with self._lock:
            return {key: metrics.copy() for key, metrics in self._metrics.items()}

    def clear(self) -> None:
        """Drop all metrics. Caller must hold the lock."""
        self._metrics.clear()
