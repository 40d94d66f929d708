"""Monitoring coordinator - unified view over system and component health.

Responsibilities:
- Component health checks (registered per component, run concurrently)
- System overview merging generic health with component health
- Performance insights and real-time metrics
- Dashboard refresh and service health polling ticks
- Extra scrutiny for critical services
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any, cast

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from src.monitoring.alerts import ALERT_EVENT
from src.monitoring.config import MonitoringConfig
from src.monitoring.delivery import AlertChannel, AlertDispatcher, AlertRule
from src.monitoring.events import EventChannel, Subscription
from src.monitoring.history import derive_critical_failure_indicators
from src.monitoring.models import (
    Alert,
    ComponentHealth,
    HealthState,
    IndicatorSeverity,
    PerformanceInsights,
    RealTimeMetrics,
    ServiceMetrics,
    SystemHealth,
    SystemOverview,
    worst_of,
)
from src.monitoring.service_monitor import ServiceMonitor
from src.monitoring.system_monitor import HEALTH_CHECK_EVENT, SystemMonitor

logger = logging.getLogger(__name__)

SYSTEM_HEALTH_UPDATE_EVENT = "system_health_update"
DASHBOARD_UPDATE_EVENT = "dashboard_update"
SERVICE_HEALTH_DEGRADED_EVENT = "service_health_degraded"
CRITICAL_SERVICE_ALERT_EVENT = "critical_service_alert"
CRITICAL_SERVICE_ISSUE_EVENT = "critical_service_issue"

ComponentHealthCheck = Callable[[], Awaitable[ComponentHealth]]

# Insight heuristics
RESOURCE_RECOMMENDATION_PERCENT = 80.0
ERROR_RATE_RECOMMENDATION = 0.05
ACTIVE_ALERTS_RECOMMENDATION = 5
TREND_WINDOW = 5
IMPROVING_RATIO = 0.9
DEGRADING_RATIO = 1.1

TREND_HOURS = 24


class MonitoringCoordinator:
    """Coordinates system monitoring, component checks and alert delivery."""

    def __init__(
        self,
        config: MonitoringConfig,
        service_monitor: ServiceMonitor,
        system_monitor: SystemMonitor,
        events: EventChannel,
        dispatcher: AlertDispatcher | None = None,
    ) -> None:
        """Initialize the coordinator and register default component checks.

        Args:
            config: Monitoring configuration
            service_monitor: Source of per-service call metrics
            system_monitor: Health, alert and history owner
            events: Shared event channel
            dispatcher: Alert delivery, needed for add_alert_channel/add_alert_rule
        """
        self._config = config
        self._service_monitor = service_monitor
        self._system_monitor = system_monitor
        self._events = events
        self._dispatcher = dispatcher
        self._critical_services = frozenset(config.critical_services)
        self._health_checks: dict[str, ComponentHealthCheck] = {}
        self._scheduler: AsyncIOScheduler | None = None

        self._subscriptions: list[Subscription] = [
            events.subscribe(HEALTH_CHECK_EVENT, self._handle_health_check),
            events.subscribe(ALERT_EVENT, self._handle_alert),
        ]

        self._register_default_health_checks()

    @property
    def critical_services(self) -> frozenset[str]:
        return self._critical_services

    @property
    def components(self) -> list[str]:
        return list(self._health_checks)

    def start(self) -> None:
        """Start dashboard refresh and service polling. Must run inside a loop."""
        if self._scheduler is not None:
            return

        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            self.refresh_dashboard,
            IntervalTrigger(seconds=self._config.dashboard_refresh_interval_seconds),
            id="dashboard_refresh",
            name="Publish dashboard update",
        )
        self._scheduler.add_job(
            self.poll_service_health,
            IntervalTrigger(seconds=self._config.service_poll_interval_seconds),
            id="service_health_poll",
            name="Poll service health summary",
        )
        self._scheduler.start()
        logger.info(
            "Monitoring coordinator started (critical_services=%s)",
            sorted(self._critical_services),
        )

    def stop(self) -> None:
        """Stop ticks and event handling. Safe to call multiple times."""
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        logger.info("Monitoring coordinator stopped")

    def register_component_health_check(
        self, component: str, health_check: ComponentHealthCheck
    ) -> None:
        """Register (or replace) the health check for a component."""
        self._health_checks[component] = health_check
        logger.info("Component health check registered (component=%s)", component)

    async def check_all_components_health(self) -> list[ComponentHealth]:
        """Run every registered check concurrently.

        A check that raises yields an UNKNOWN result describing the failure.
        """
        items = list(self._health_checks.items())
        results = await asyncio.gather(*(check() for _, check in items), return_exceptions=True)

        healths: list[ComponentHealth] = []
        for (component, _), result in zip(items, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.warning("Health check for %s failed: %s", component, result)
                healths.append(
                    ComponentHealth(
                        component=component,
                        status=HealthState.UNKNOWN,
                        last_check=datetime.now(tz=timezone.utc),
                        issues=[f"Health check failed: {result}"],
                    )
                )
            else:
                healths.append(result)
        return healths

    async def get_system_overview(self) -> SystemOverview:
        health, components = await asyncio.gather(
            self._system_monitor.get_system_health(),
            self.check_all_components_health(),
        )
        return self._build_overview(health, components)

    async def get_comprehensive_monitoring_data(self) -> dict[str, Any]:
        """Everything a monitoring dashboard shows, in one call.

        Returns:
            Dict with system_overview, dashboard_data, health_trends,
            critical_failures and performance_insights
        """
        overview, dashboard = await asyncio.gather(
            self.get_system_overview(),
            self._system_monitor.get_comprehensive_dashboard_data(),
        )
        critical_failures = await self._system_monitor.get_critical_failure_indicators()
        trends = self._system_monitor.get_health_trends(TREND_HOURS)
        response_times = [
            point["value"]
            for point in dashboard["performance_metrics"]["response_time_history"]
        ]

        return {
            "system_overview": overview.to_dict(),
            "dashboard_data": dashboard,
            "health_trends": [t.to_dict() for t in trends],
            "critical_failures": critical_failures.to_dict(),
            "performance_insights": analyze_performance(overview, response_times).to_dict(),
        }

    async def get_performance_insights(self) -> PerformanceInsights:
        overview = await self.get_system_overview()
        response_times = [
            s.metrics.average_response_time
            for s in self._system_monitor.get_metrics_history(TREND_HOURS)
        ]
        return analyze_performance(overview, response_times)

    async def get_real_time_metrics(self) -> RealTimeMetrics:
        health, components = await asyncio.gather(
            self._system_monitor.get_system_health(),
            self.check_all_components_health(),
        )
        overview = self._build_overview(health, components)
        report = derive_critical_failure_indicators(health)

        return RealTimeMetrics(
            timestamp=datetime.now(tz=timezone.utc),
            system_health=overview.overall_health,
            active_alerts=len(overview.active_alerts),
            critical_failures=report.count(IndicatorSeverity.CRITICAL),
            memory_usage=overview.performance["memory_usage"],
            cpu_usage=overview.performance["cpu_usage"],
            error_rate=health.metrics.error_rate * 100,
            response_time=health.metrics.average_response_time,
            active_sessions=health.metrics.active_sessions,
            requests_per_minute=health.metrics.requests_per_minute,
        )

    def add_alert_channel(self, channel: AlertChannel) -> None:
        if self._dispatcher is None:
            raise RuntimeError("No alert dispatcher configured")
        self._dispatcher.add_channel(channel)

    def add_alert_rule(self, rule: AlertRule) -> None:
        if self._dispatcher is None:
            raise RuntimeError("No alert dispatcher configured")
        self._dispatcher.add_rule(rule)

    async def refresh_dashboard(self) -> None:
        """Dashboard tick: publish a fresh system overview."""
        try:
            overview = await self.get_system_overview()
            self._events.publish(DASHBOARD_UPDATE_EVENT, overview)
        except Exception as e:
            logger.exception("Dashboard update failed: %s", e)

    async def poll_service_health(self) -> None:
        """Service poll tick: publish when any recently active method is unhealthy."""
        try:
            summary = self._service_monitor.get_health_summary()
            if summary.unhealthy_services > 0:
                self._events.publish(SERVICE_HEALTH_DEGRADED_EVENT, summary)
        except Exception as e:
            logger.exception("Service health poll failed: %s", e)

    def check_critical_service_health(self, health: SystemHealth) -> list[str]:
        """Publish an issue for each critical service breaching the stricter limits.

        Returns:
            Names of the services that breached
        """
        thresholds = self._config.critical_service_thresholds
        breached: list[str] = []

        for name in sorted(self._critical_services):
            service = health.services.get(name)
            if service is None or service.status == HealthState.UNKNOWN:
                continue

            if (
                service.response_time > thresholds.response_time_ms
                or service.error_rate > thresholds.error_rate
                or service.availability < thresholds.availability
            ):
                breached.append(name)
                self._events.publish(
                    CRITICAL_SERVICE_ISSUE_EVENT,
                    {"service": name, "health": service, "thresholds": thresholds},
                )
        return breached

    def _handle_health_check(self, health: SystemHealth) -> None:
        self._events.publish(SYSTEM_HEALTH_UPDATE_EVENT, health)
        self.check_critical_service_health(health)

    def _handle_alert(self, alert: Alert) -> None:
        if alert.service not in self._critical_services:
            return
        self._events.publish(CRITICAL_SERVICE_ALERT_EVENT, alert)
        logger.error(
            "Critical service alert (service=%s, level=%s, alert_id=%s): %s",
            alert.service,
            alert.level.value,
            alert.id,
            alert.message,
        )

    def _build_overview(
        self, health: SystemHealth, components: list[ComponentHealth]
    ) -> SystemOverview:
        metrics = health.metrics
        performance = {
            "memory_usage": metrics.memory_usage.percent,
            "cpu_usage": metrics.cpu_usage,
        }
        if metrics.disk_usage is not None:
            performance["disk_usage"] = metrics.disk_usage

        return SystemOverview(
            overall_health=worst_of([health.status, *(c.status for c in components)]),
            components=components,
            active_alerts=health.alerts,
            system_metrics={
                "uptime": health.uptime,
                "total_requests": metrics.total_requests,
                "requests_per_minute": metrics.requests_per_minute,
                "error_rate": metrics.error_rate,
                "average_response_time": metrics.average_response_time,
                "active_sessions": metrics.active_sessions,
            },
            performance=performance,
        )

    def _register_default_health_checks(self) -> None:
        for service in sorted(self._critical_services):
            self.register_component_health_check(service, self._metrics_check(service))

    def _metrics_check(self, service: str) -> ComponentHealthCheck:
        async def check() -> ComponentHealth:
            return self._component_health_from_metrics(service)

        return check

    def _component_health_from_metrics(self, service: str) -> ComponentHealth:
        """Check a service from its recorded call metrics.

        UNKNOWN without metrics. A method whose error rate or average
        response time exceeds the alert thresholds makes the component
        DEGRADED.
        """
        method_metrics = cast(
            dict[str, ServiceMetrics], self._service_monitor.get_service_metrics(service)
        )
        thresholds = self._config.alert_thresholds
        status = HealthState.HEALTHY
        issues: list[str] = []

        if not method_metrics:
            status = HealthState.UNKNOWN
            issues.append("No metrics available")

        for method, m in sorted(method_metrics.items()):
            if m.error_rate > thresholds.error_rate:
                status = HealthState.DEGRADED
                issues.append(f"High error rate in {method}: {m.error_rate * 100:.1f}%")
            if m.average_response_time > thresholds.response_time_ms:
                status = HealthState.DEGRADED
                issues.append(
                    f"Slow response time in {method}: {m.average_response_time:.0f}ms"
                )

        return ComponentHealth(
            component=service,
            status=status,
            last_check=datetime.now(tz=timezone.utc),
            metrics={method: m.to_dict() for method, m in method_metrics.items()},
            issues=issues,
        )


def analyze_performance(
    overview: SystemOverview, response_times: list[float]
) -> PerformanceInsights:
    """Heuristic bottlenecks, recommendations and response-time trend.

    Args:
        overview: Current system overview
        response_times: Average response time per stored snapshot, oldest first

    Returns:
        PerformanceInsights
    """
    insights = PerformanceInsights()

    for component in overview.components:
        if component.status == HealthState.UNHEALTHY:
            insights.bottlenecks.append(
                {
                    "component": component.component,
                    "issue": ", ".join(component.issues) or "Service unhealthy",
                    "severity": "high",
                }
            )
        elif component.status == HealthState.DEGRADED:
            insights.bottlenecks.append(
                {
                    "component": component.component,
                    "issue": ", ".join(component.issues) or "Service degraded",
                    "severity": "medium",
                }
            )

    if overview.performance["memory_usage"] > RESOURCE_RECOMMENDATION_PERCENT:
        insights.recommendations.append(
            "Consider increasing memory allocation or optimizing memory usage"
        )
    if overview.performance["cpu_usage"] > RESOURCE_RECOMMENDATION_PERCENT:
        insights.recommendations.append(
            "Consider scaling CPU resources or optimizing CPU-intensive operations"
        )
    if overview.system_metrics["error_rate"] > ERROR_RATE_RECOMMENDATION:
        insights.recommendations.append("Investigate and resolve high error rate issues")
    if len(overview.active_alerts) > ACTIVE_ALERTS_RECOMMENDATION:
        insights.recommendations.append("Review and resolve multiple active alerts")
    if not insights.bottlenecks and not overview.active_alerts:
        insights.recommendations.append("System is operating optimally")

    recent = response_times[-TREND_WINDOW:]
    older = response_times[-2 * TREND_WINDOW : -TREND_WINDOW]
    if recent and older:
        recent_avg = sum(recent) / len(recent)
        older_avg = sum(older) / len(older)
        if recent_avg < older_avg * IMPROVING_RATIO:
            insights.improving.append("Response time improving")
        elif recent_avg > older_avg * DEGRADING_RATIO:
            insights.degrading.append("Response time degrading")

    return insights
