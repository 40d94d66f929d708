"""Health evaluation for services and the whole system.

Classifies each service in the fixed registry from its aggregated metrics,
then derives the system status as the worst of all service statuses.

Status thresholds (most severe wins):
- UNHEALTHY: error_rate > T_err or response_time > T_rt
- DEGRADED:  error_rate > 0.5 * T_err or response_time > 0.7 * T_rt
- HEALTHY:   otherwise
- UNKNOWN:   no metrics recorded for the service
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import cast

from src.monitoring.activity import RequestActivity
from src.monitoring.config import AlertThresholds, MonitoringConfig
from src.monitoring.models import (
    Alert,
    HealthState,
    ServiceHealth,
    ServiceMetrics,
    SystemHealth,
    SystemMetrics,
    worst_of,
)
from src.monitoring.resources import ResourceSampler
from src.monitoring.service_monitor import ServiceMonitor

logger = logging.getLogger(__name__)

DEGRADED_ERROR_RATE_FACTOR = 0.5
DEGRADED_RESPONSE_TIME_FACTOR = 0.7

# Transport status codes used by the API layer
STATUS_CODES: dict[HealthState, int] = {
    HealthState.HEALTHY: 200,
    HealthState.DEGRADED: 206,
    HealthState.UNHEALTHY: 503,
    HealthState.UNKNOWN: 503,
}


def status_code_for(status: HealthState) -> int:
    return STATUS_CODES[status]


def classify_status(
    error_rate: float, response_time: float, thresholds: AlertThresholds
) -> HealthState:
    """Classify a service from its error rate and average response time.

    Monotonic: raising either input can only move the result from healthy
    to degraded to unhealthy, never back.
    """
    if error_rate > thresholds.error_rate or response_time > thresholds.response_time_ms:
        return HealthState.UNHEALTHY
    if (
        error_rate > thresholds.error_rate * DEGRADED_ERROR_RATE_FACTOR
        or response_time > thresholds.response_time_ms * DEGRADED_RESPONSE_TIME_FACTOR
    ):
        return HealthState.DEGRADED
    return HealthState.HEALTHY


def aggregate_status(statuses: list[HealthState]) -> HealthState:
    """System status: worst of all service statuses, not weighted by volume."""
    return worst_of(statuses)


class HealthEvaluator:
    """Derives ServiceHealth, SystemMetrics and SystemHealth on demand."""

    def __init__(
        self,
        config: MonitoringConfig,
        service_monitor: ServiceMonitor,
        activity: RequestActivity,
        sampler: ResourceSampler,
    ) -> None:
        self._config = config
        self._service_monitor = service_monitor
        self._activity = activity
        self._sampler = sampler
        self._start_mono = time.monotonic()

    @property
    def uptime(self) -> float:
        """Seconds since the evaluator was created."""
        return time.monotonic() - self._start_mono

    def check_service_health(self, service_name: str) -> ServiceHealth:
        """Aggregate all methods of a service into one ServiceHealth.

        Response time is the unweighted mean of the per-method averages: a
        method with one call counts as much as one with a thousand.

        Args:
            service_name: Service to evaluate

        Returns:
            ServiceHealth, UNKNOWN when no calls have been recorded
        """
        now = datetime.now(tz=timezone.utc)
        method_metrics = cast(
            dict[str, ServiceMetrics], self._service_monitor.get_service_metrics(service_name)
        )

        if not method_metrics:
            return ServiceHealth(
                status=HealthState.UNKNOWN,
                last_check=now,
                response_time=0.0,
                error_rate=0.0,
                availability=0.0,
                details={"message": "No metrics available"},
            )

        total_calls = sum(m.total_calls for m in method_metrics.values())
        total_successful = sum(m.successful_calls for m in method_metrics.values())
        response_time = sum(m.average_response_time for m in method_metrics.values()) / len(
            method_metrics
        )

        error_rate = (total_calls - total_successful) / total_calls if total_calls else 0.0
        availability = total_successful / total_calls if total_calls else 0.0

        return ServiceHealth(
            status=classify_status(error_rate, response_time, self._config.alert_thresholds),
            last_check=now,
            response_time=response_time,
            error_rate=error_rate,
            availability=availability,
            details={
                "total_calls": total_calls,
                "method_count": len(method_metrics),
                "methods": sorted(method_metrics),
            },
        )

    def check_all_services(self) -> dict[str, ServiceHealth]:
        """Evaluate every service in the configured registry."""
        return {name: self.check_service_health(name) for name in self._config.core_services}

    async def collect_system_metrics(self) -> SystemMetrics:
        """Collect request, call and resource metrics for the whole system."""
        all_metrics: dict[str, ServiceMetrics] = self._service_monitor.get_all_metrics()

        total_requests = sum(m.total_calls for m in all_metrics.values())
        total_errors = sum(m.failed_calls for m in all_metrics.values())
        average_response_time = (
            sum(m.average_response_time for m in all_metrics.values()) / len(all_metrics)
            if all_metrics
            else 0.0
        )
        error_rate = total_errors / total_requests if total_requests else 0.0

        return SystemMetrics(
            total_requests=total_requests,
            requests_per_minute=self._activity.requests_per_minute(),
            average_response_time=average_response_time,
            error_rate=error_rate,
            active_sessions=self._activity.active_sessions,
            memory_usage=self._sampler.memory_usage(),
            cpu_usage=await self._sampler.cpu_usage(),
            disk_usage=self._sampler.disk_usage(),
        )

    async def get_system_health(self, alerts: list[Alert]) -> SystemHealth:
        """Compose a full SystemHealth snapshot.

        Args:
            alerts: Currently active alerts to include in the snapshot

        Returns:
            SystemHealth with worst-of status across services
        """
        services = self.check_all_services()
        metrics = await self.collect_system_metrics()

        return SystemHealth(
            status=aggregate_status([s.status for s in services.values()]),
            timestamp=datetime.now(tz=timezone.utc),
            uptime=self.uptime,
            version=self._config.version,
            services=services,
            metrics=metrics,
            alerts=alerts,
        )
