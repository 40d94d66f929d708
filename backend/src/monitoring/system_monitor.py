"""System monitor - periodic health checks, alert evaluation and history.

Each health tick:
1. Builds a SystemHealth snapshot from the health evaluator
2. Evaluates alert thresholds (when alerts are enabled)
3. Stores a metrics snapshot (when metrics collection is enabled)
4. Publishes a "health_check" event

A failing tick is logged and turned into a critical alert; it never stops
the schedule.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from typing import Any, Literal

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from src.monitoring.activity import RequestActivity
from src.monitoring.alerts import AlertManager, AlertProcessor
from src.monitoring.config import MonitoringConfig
from src.monitoring.events import EventChannel
from src.monitoring.health import HealthEvaluator
from src.monitoring.history import HistoryStore, derive_critical_failure_indicators
from src.monitoring.models import (
    Alert,
    AlertLevel,
    CriticalFailureReport,
    HealthState,
    HealthTrendPoint,
    MetricsSnapshot,
    SystemHealth,
)
from src.monitoring.resources import ResourceSampler
from src.monitoring.service_monitor import ServiceMonitor

logger = logging.getLogger(__name__)

HEALTH_CHECK_EVENT = "health_check"
HEALTH_CHECK_JOB_ID = "health_check"

DASHBOARD_HISTORY_HOURS = 24
DASHBOARD_RECENT_ALERTS = 50
SUMMARY_RECENT_ALERTS = 10


class SystemMonitor:
    """Owns health evaluation, alerting and metrics history for the process."""

    def __init__(
        self,
        config: MonitoringConfig,
        service_monitor: ServiceMonitor,
        events: EventChannel,
        dispatcher: AlertProcessor | None = None,
        activity: RequestActivity | None = None,
        sampler: ResourceSampler | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        """Initialize SystemMonitor.

        Args:
            config: Monitoring configuration
            service_monitor: Source of per-service call metrics
            events: Channel for health_check/alert events
            dispatcher: Optional alert delivery collaborator
            activity: Request/session activity tracker
            sampler: Process resource sampler
            loop: Loop used for work scheduled from foreign threads
        """
        self._config = config
        self._events = events
        self._service_monitor = service_monitor
        self.activity = activity or RequestActivity()
        self.evaluator = HealthEvaluator(
            config, service_monitor, self.activity, sampler or ResourceSampler()
        )
        self.alerts = AlertManager(config, events, dispatcher=dispatcher, loop=loop)
        self.history = HistoryStore(config.metrics_retention_seconds)
        self._scheduler: AsyncIOScheduler | None = None

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None

    def start(self) -> None:
        """Start periodic health checks. Must be called from a running loop."""
        if self._scheduler is not None:
            return

        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            self.perform_health_check,
            IntervalTrigger(seconds=self._config.health_check_interval_seconds),
            id=HEALTH_CHECK_JOB_ID,
            name="Perform system health check",
        )
        self._scheduler.start()
        logger.info(
            "System monitor started (interval=%ss)", self._config.health_check_interval_seconds
        )

    def stop(self) -> None:
        """Stop periodic health checks and pending auto-resolutions."""
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("System monitor stopped")
        self.alerts.stop()

    async def perform_health_check(self) -> SystemHealth | None:
        """Run one health tick.

        Returns:
            The snapshot, or None if the tick failed
        """
        try:
            health = await self.get_system_health()

            if self._config.enable_alerts:
                self.alerts.evaluate(health)
                health.alerts = self.alerts.get_active_alerts()

            if self._config.enable_metrics_collection:
                self.history.record(health.metrics, health.services, timestamp=health.timestamp)

            self._events.publish(HEALTH_CHECK_EVENT, health)
            logger.debug(
                "Health check completed (status=%s, services=%d, alerts=%d)",
                health.status.value,
                len(health.services),
                len(health.alerts),
            )
            return health
        except Exception as e:
            logger.exception("Health check failed: %s", e)
            self.alerts.create_alert(
                AlertLevel.CRITICAL,
                "Health check system failure",
                "system",
                {"error": str(e)},
            )
            return None

    async def get_system_health(self) -> SystemHealth:
        return await self.evaluator.get_system_health(self.alerts.get_active_alerts())

    async def get_critical_failure_indicators(self) -> CriticalFailureReport:
        """Critical failure indicators derived from a fresh health snapshot."""
        return derive_critical_failure_indicators(await self.get_system_health())

    def get_metrics_history(self, hours: float | None = None) -> list[MetricsSnapshot]:
        return self.history.get_metrics_history(hours)

    def get_health_trends(self, hours: float = 24) -> list[HealthTrendPoint]:
        return self.history.get_health_trends(
            hours, self._config.alert_thresholds, self.alerts.get_all_alerts()
        )

    def get_active_alerts(self) -> list[Alert]:
        return self.alerts.get_active_alerts()

    def get_all_alerts(self, limit: int | None = None) -> list[Alert]:
        return self.alerts.get_all_alerts(limit)

    def resolve_alert(self, alert_id: str) -> bool:
        return self.alerts.resolve_alert(alert_id)

    def track_session(self, session_id: str, action: Literal["start", "end"]) -> None:
        self.activity.track_session(session_id, action)

    def track_request(self) -> None:
        self.activity.track_request()

    async def get_dashboard_data(self) -> dict[str, Any]:
        health = await self.get_system_health()
        return {
            "health": health.to_dict(),
            "metrics_history": [
                s.to_dict() for s in self.get_metrics_history(DASHBOARD_HISTORY_HOURS)
            ],
            "recent_alerts": [a.to_dict() for a in self.get_all_alerts(DASHBOARD_RECENT_ALERTS)],
            "service_metrics": {
                key: m.to_dict() for key, m in self._service_monitor.get_all_metrics().items()
            },
        }

    async def get_comprehensive_dashboard_data(self) -> dict[str, Any]:
        """Dashboard data with chart series and summaries.

        Returns:
            Dict with system_health, performance_metrics (one
            [{timestamp, value}] series per metric), alert_summary and
            service_health_summary
        """
        health = await self.get_system_health()
        snapshots = self.get_metrics_history(DASHBOARD_HISTORY_HOURS)
        all_alerts = self.get_all_alerts()

        def series(value_of: Any) -> list[dict[str, Any]]:
            return [
                {"timestamp": s.timestamp.isoformat(), "value": value_of(s)} for s in snapshots
            ]

        service_counts = {state.value: 0 for state in HealthState}
        for service_health in health.services.values():
            service_counts[service_health.status.value] += 1

        return {
            "system_health": health.to_dict(),
            "performance_metrics": {
                "response_time_history": series(lambda s: s.metrics.average_response_time),
                "error_rate_history": series(lambda s: s.metrics.error_rate * 100),
                "memory_usage_history": series(lambda s: s.metrics.memory_usage.percent),
                "cpu_usage_history": series(lambda s: s.metrics.cpu_usage),
            },
            "alert_summary": {
                "total": len(all_alerts),
                "by_level": dict(Counter(a.level.value for a in all_alerts)),
                "recent": [a.to_dict() for a in all_alerts[:SUMMARY_RECENT_ALERTS]],
            },
            "service_health_summary": service_counts,
        }

    def reset(self) -> None:
        """Drop alerts, history and request activity. Scheduling is untouched."""
        self.alerts.reset()
        self.history.clear()
        self.activity.reset()
