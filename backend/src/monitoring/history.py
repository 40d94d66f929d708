"""Metrics history and derived trends.

Snapshots are appended on each health tick and pruned to the retention
window. Trends and critical failure indicators are recomputed from stored
data on demand, so changing thresholds re-colors history.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta, timezone

from src.monitoring.config import AlertThresholds
from src.monitoring.models import (
    Alert,
    CriticalFailureIndicator,
    CriticalFailureReport,
    HealthState,
    HealthTrendPoint,
    IndicatorSeverity,
    MetricsSnapshot,
    ServiceHealth,
    SystemHealth,
    SystemMetrics,
)

logger = logging.getLogger(__name__)

DEGRADED_TREND_FACTOR = 0.8

MEMORY_EXHAUSTION_PERCENT = 90.0
CPU_OVERLOAD_PERCENT = 95.0
HIGH_ERROR_RATE = 0.2
CASCADING_MIN_UNHEALTHY = 2


class HistoryStore:
    """Time-ordered ring of MetricsSnapshots bounded by a retention window."""

    def __init__(self, retention_seconds: float = 86400) -> None:
        if retention_seconds <= 0:
            raise ValueError(f"retention_seconds must be positive, got {retention_seconds}")
        self._retention = timedelta(seconds=retention_seconds)
        self._snapshots: list[MetricsSnapshot] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._snapshots)

    def record(
        self,
        metrics: SystemMetrics,
        services: dict[str, ServiceHealth] | None = None,
        timestamp: datetime | None = None,
    ) -> MetricsSnapshot:
        """Append a snapshot and drop everything older than the retention window.

        Args:
            metrics: System metrics at snapshot time
            services: Per-service health at snapshot time
            timestamp: Snapshot time, defaults to now

        Returns:
            The stored snapshot
        """
        snapshot = MetricsSnapshot(
            timestamp=timestamp or datetime.now(tz=timezone.utc),
            metrics=metrics,
            services=dict(services or {}),
        )
        with self._lock:
            self._snapshots.append(snapshot)
            self._prune()
        return snapshot

    def get_metrics_history(self, hours: float | None = None) -> list[MetricsSnapshot]:
        """Snapshots from the last `hours`, oldest first.

        The retention window always applies, so asking for more hours than are
        retained returns only retained snapshots.
        """
        now = datetime.now(tz=timezone.utc)
        cutoff = now - self._retention
        if hours is not None:
            cutoff = max(cutoff, now - timedelta(hours=hours))

        with self._lock:
            return [s for s in self._snapshots if s.timestamp > cutoff]

    def get_health_trends(
        self,
        hours: float,
        thresholds: AlertThresholds,
        alerts: list[Alert] | None = None,
    ) -> list[HealthTrendPoint]:
        """Coarse health per stored snapshot.

        Args:
            hours: How far back to look
            thresholds: Current thresholds used to classify each snapshot
            alerts: If given, alert_count is the number of these alerts that
                were open at each snapshot's time

        Returns:
            One HealthTrendPoint per snapshot, oldest first
        """
        return [
            HealthTrendPoint(
                timestamp=s.timestamp,
                overall_health=classify_snapshot(s.metrics, thresholds),
                service_health_counts=_service_health_counts(s.services),
                alert_count=_open_alert_count(alerts or [], s.timestamp),
            )
            for s in self.get_metrics_history(hours)
        ]

    def clear(self) -> None:
        with self._lock:
            self._snapshots.clear()

    def _prune(self) -> None:
        cutoff = datetime.now(tz=timezone.utc) - self._retention
        drop = 0
        while drop < len(self._snapshots) and self._snapshots[drop].timestamp <= cutoff:
            drop += 1
        if drop:
            del self._snapshots[:drop]
            logger.debug("Pruned %d metrics snapshots", drop)


def classify_snapshot(metrics: SystemMetrics, thresholds: AlertThresholds) -> HealthState:
    memory_percent = metrics.memory_usage.percent

    if (
        metrics.error_rate > thresholds.error_rate
        or memory_percent > thresholds.memory_usage
        or metrics.cpu_usage > thresholds.cpu_usage
    ):
        return HealthState.UNHEALTHY
    if (
        metrics.error_rate > thresholds.error_rate * 0.5
        or memory_percent > thresholds.memory_usage * DEGRADED_TREND_FACTOR
        or metrics.cpu_usage > thresholds.cpu_usage * DEGRADED_TREND_FACTOR
    ):
        return HealthState.DEGRADED
    return HealthState.HEALTHY


def _service_health_counts(services: dict[str, ServiceHealth]) -> dict[str, int]:
    counts = {state.value: 0 for state in HealthState}
    for health in services.values():
        counts[health.status.value] += 1
    return counts


def _open_alert_count(alerts: list[Alert], at: datetime) -> int:
    return sum(
        1
        for a in alerts
        if a.timestamp <= at and (a.resolved_at is None or a.resolved_at > at)
    )


def derive_critical_failure_indicators(system_health: SystemHealth) -> CriticalFailureReport:
    """Compute critical failure indicators from one health snapshot.

    Two or more unhealthy services count as a cascading failure, which
    replaces the plain service unavailability indicator.
    """
    metrics = system_health.metrics
    report = CriticalFailureReport()

    unhealthy = [
        name for name, h in system_health.services.items() if h.status == HealthState.UNHEALTHY
    ]

    if len(unhealthy) >= CASCADING_MIN_UNHEALTHY:
        report.cascading_failures = True
        report.indicators.append(
            CriticalFailureIndicator(
                type="cascading_failures",
                severity=IndicatorSeverity.CRITICAL,
                description=f"{len(unhealthy)} services are unhealthy: {', '.join(unhealthy)}",
            )
        )

    memory_percent = metrics.memory_usage.percent
    if memory_percent > MEMORY_EXHAUSTION_PERCENT:
        report.memory_exhaustion = True
        report.indicators.append(
            CriticalFailureIndicator(
                type="memory_exhaustion",
                severity=IndicatorSeverity.CRITICAL,
                description=f"Memory usage at {memory_percent:.1f}%",
            )
        )

    if metrics.cpu_usage > CPU_OVERLOAD_PERCENT:
        report.cpu_overload = True
        report.indicators.append(
            CriticalFailureIndicator(
                type="cpu_overload",
                severity=IndicatorSeverity.HIGH,
                description=f"CPU usage at {metrics.cpu_usage:.1f}%",
            )
        )

    if metrics.error_rate > HIGH_ERROR_RATE:
        report.high_error_rate = True
        report.indicators.append(
            CriticalFailureIndicator(
                type="high_error_rate",
                severity=IndicatorSeverity.HIGH,
                description=f"System error rate at {metrics.error_rate * 100:.1f}%",
            )
        )

    if unhealthy:
        report.service_unavailability = True
        if not report.cascading_failures:
            report.indicators.append(
                CriticalFailureIndicator(
                    type="service_unavailability",
                    severity=IndicatorSeverity.MEDIUM,
                    description=f"Service {unhealthy[0]} is unavailable",
                )
            )

    return report
