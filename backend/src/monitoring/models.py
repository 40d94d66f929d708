"""Core models for service telemetry, health and alerting.

This module defines the data structures shared by every monitoring component:
service calls and their aggregated metrics, derived health snapshots, alerts,
history entries and the composed overview returned to dashboard consumers.

Key design constraints:
- ServiceCall uses dual timestamps: wall time (display) + monotonic (duration)
- ServiceHealth, SystemHealth and SystemOverview are derived, never persisted
- Alert.resolved only ever transitions False -> True
"""

from __future__ import annotations

import copy
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


class HealthState(str, Enum):
    """Health classification of a service, component or the whole system."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


def worst_of(states: list[HealthState]) -> HealthState:
    """Worst-of aggregation: any unhealthy wins, then any degraded, else healthy.

    UNKNOWN never escalates the aggregate.
    """
    if HealthState.UNHEALTHY in states:
        return HealthState.UNHEALTHY
    if HealthState.DEGRADED in states:
        return HealthState.DEGRADED
    return HealthState.HEALTHY


class AlertLevel(str, Enum):
    """Alert levels, ordered from least to most severe."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class IndicatorSeverity(str, Enum):
    """Severity of a critical failure indicator."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass(frozen=True)
class ServiceCall:
    """One instrumented invocation of a named operation on a named service.

    In-flight calls have no end_time/duration/success. A terminated call is a
    new frozen instance produced by finish(); the in-flight one is discarded.
    """

    service_name: str
    method_name: str
    start_time: datetime
    start_mono: float
    end_time: datetime | None = None
    duration_ms: float | None = None
    success: bool | None = None
    error: str | None = None
    metadata: dict[str, Any] | None = None

    @property
    def key(self) -> str:
        return f"{self.service_name}.{self.method_name}"

    @property
    def is_active(self) -> bool:
        return self.end_time is None

    def finish(self, success: bool, error: str | None = None) -> ServiceCall:
        """Return the terminated version of this call."""
        end_mono = time.monotonic()
        return replace(
            self,
            end_time=datetime.now(tz=timezone.utc),
            duration_ms=max(0.0, (end_mono - self.start_mono) * 1000),
            success=success,
            error=error,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "service_name": self.service_name,
            "method_name": self.method_name,
            "start_time": self.start_time.isoformat(),
            "end_time": _iso(self.end_time),
            "duration_ms": self.duration_ms,
            "success": self.success,
            "error": self.error,
            "metadata": self.metadata,
        }


@dataclass
class ServiceMetrics:
    """Running statistics for one (service, method) key.

    Invariants:
        total_calls == successful_calls + failed_calls
        error_rate == failed_calls / total_calls (0 when no calls)
        average_response_time is the mean of all terminated call durations
    """

    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    average_response_time: float = 0.0
    last_call: datetime | None = None
    error_rate: float = 0.0

    def record(self, duration_ms: float, success: bool) -> None:
        """Fold one terminated call into the running statistics."""
        self.total_calls += 1
        if success:
            self.successful_calls += 1
        else:
            self.failed_calls += 1
        self.average_response_time += (
            duration_ms - self.average_response_time
        ) / self.total_calls
        self.error_rate = self.failed_calls / self.total_calls
        self.last_call = datetime.now(tz=timezone.utc)

    def copy(self) -> ServiceMetrics:
        return replace(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_calls": self.total_calls,
            "successful_calls": self.successful_calls,
            "failed_calls": self.failed_calls,
            "average_response_time": self.average_response_time,
            "last_call": _iso(self.last_call),
            "error_rate": self.error_rate,
        }


@dataclass
class ServiceHealth:
    """Derived health of one service, recomputed on demand."""

    status: HealthState
    last_check: datetime
    response_time: float
    error_rate: float
    availability: float
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "last_check": self.last_check.isoformat(),
            "response_time": self.response_time,
            "error_rate": self.error_rate,
            "availability": self.availability,
            "details": self.details,
        }


@dataclass(frozen=True)
class MemoryUsage:
    """Process memory footprint.

    Attributes:
        rss: Resident set size of this process in bytes
        vms: Virtual memory size of this process in bytes
        used: Bytes counted as used (process RSS)
        total: Bytes available to count against (machine memory)
    """

    rss: int = 0
    vms: int = 0
    used: int = 0
    total: int = 0

    @property
    def percent(self) -> float:
        if self.total <= 0:
            return 0.0
        return self.used / self.total * 100

    def to_dict(self) -> dict[str, Any]:
        return {
            "rss": self.rss,
            "vms": self.vms,
            "used": self.used,
            "total": self.total,
            "percent": self.percent,
        }


@dataclass(frozen=True)
class SystemMetrics:
    """System-wide metrics collected on each health check."""

    total_requests: int = 0
    requests_per_minute: int = 0
    average_response_time: float = 0.0
    error_rate: float = 0.0
    active_sessions: int = 0
    memory_usage: MemoryUsage = field(default_factory=MemoryUsage)
    cpu_usage: float = 0.0
    disk_usage: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_requests": self.total_requests,
            "requests_per_minute": self.requests_per_minute,
            "average_response_time": self.average_response_time,
            "error_rate": self.error_rate,
            "active_sessions": self.active_sessions,
            "memory_usage": self.memory_usage.to_dict(),
            "cpu_usage": self.cpu_usage,
            "disk_usage": self.disk_usage,
        }


@dataclass
class Alert:
    """Timestamped, leveled, resolvable notification of a detected condition."""

    id: str
    level: AlertLevel
    message: str
    timestamp: datetime
    service: str | None = None
    resolved: bool = False
    resolved_at: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "level": self.level.value,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
            "service": self.service,
            "resolved": self.resolved,
            "resolved_at": _iso(self.resolved_at),
            "metadata": self.metadata,
        }


@dataclass
class SystemHealth:
    """Fully derived snapshot of the whole system."""

    status: HealthState
    timestamp: datetime
    uptime: float
    version: str
    services: dict[str, ServiceHealth]
    metrics: SystemMetrics
    alerts: list[Alert]

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "timestamp": self.timestamp.isoformat(),
            "uptime": self.uptime,
            "version": self.version,
            "services": {name: s.to_dict() for name, s in self.services.items()},
            "metrics": self.metrics.to_dict(),
            "alerts": [a.to_dict() for a in self.alerts],
        }


@dataclass(frozen=True)
class MetricsSnapshot:
    """One history entry: system metrics plus per-service health at a tick."""

    timestamp: datetime
    metrics: SystemMetrics
    services: dict[str, ServiceHealth] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "metrics": self.metrics.to_dict(),
        }


@dataclass
class HealthTrendPoint:
    """Coarse status recomputed for one historical snapshot."""

    timestamp: datetime
    overall_health: HealthState
    service_health_counts: dict[str, int]
    alert_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "overall_health": self.overall_health.value,
            "service_health_counts": dict(self.service_health_counts),
            "alert_count": self.alert_count,
        }


@dataclass(frozen=True)
class CriticalFailureIndicator:
    """A named, severity-tagged condition computed from a snapshot."""

    type: str
    severity: IndicatorSeverity
    description: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "severity": self.severity.value,
            "description": self.description,
        }


@dataclass
class CriticalFailureReport:
    """All critical failure indicators for one snapshot."""

    cascading_failures: bool = False
    memory_exhaustion: bool = False
    cpu_overload: bool = False
    high_error_rate: bool = False
    service_unavailability: bool = False
    indicators: list[CriticalFailureIndicator] = field(default_factory=list)

    def count(self, severity: IndicatorSeverity) -> int:
        return sum(1 for i in self.indicators if i.severity == severity)

    def to_dict(self) -> dict[str, Any]:
        return {
            "cascading_failures": self.cascading_failures,
            "memory_exhaustion": self.memory_exhaustion,
            "cpu_overload": self.cpu_overload,
            "high_error_rate": self.high_error_rate,
            "service_unavailability": self.service_unavailability,
            "indicators": [i.to_dict() for i in self.indicators],
        }


@dataclass
class ComponentHealth:
    """Result of a registered component health check."""

    component: str
    status: HealthState
    last_check: datetime
    metrics: dict[str, Any] = field(default_factory=dict)
    issues: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "component": self.component,
            "status": self.status.value,
            "last_check": self.last_check.isoformat(),
            "metrics": copy.deepcopy(self.metrics),
            "issues": list(self.issues),
        }


@dataclass
class SystemOverview:
    """Generic system health merged with registered component health."""

    overall_health: HealthState
    components: list[ComponentHealth]
    active_alerts: list[Alert]
    system_metrics: dict[str, float]
    performance: dict[str, float]

    def to_dict(self) -> dict[str, Any]:
        return {
            "overall_health": self.overall_health.value,
            "components": [c.to_dict() for c in self.components],
            "active_alerts": [a.to_dict() for a in self.active_alerts],
            "system_metrics": dict(self.system_metrics),
            "performance": dict(self.performance),
        }


@dataclass
class PerformanceInsights:
    """Heuristic bottlenecks, recommendations and moving-window trends."""

    bottlenecks: list[dict[str, str]] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    improving: list[str] = field(default_factory=list)
    degrading: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "bottlenecks": [dict(b) for b in self.bottlenecks],
            "recommendations": list(self.recommendations),
            "trends": {
                "improving": list(self.improving),
                "degrading": list(self.degrading),
            },
        }


@dataclass(frozen=True)
class RealTimeMetrics:
    """Low-latency snapshot for polling consumers."""

    timestamp: datetime
    system_health: HealthState
    active_alerts: int
    critical_failures: int
    memory_usage: float
    cpu_usage: float
    error_rate: float
    response_time: float
    active_sessions: int
    requests_per_minute: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "system_health": self.system_health.value,
            "active_alerts": self.active_alerts,
            "critical_failures": self.critical_failures,
            "memory_usage": self.memory_usage,
            "cpu_usage": self.cpu_usage,
            "error_rate": self.error_rate,
            "response_time": self.response_time,
            "active_sessions": self.active_sessions,
            "requests_per_minute": self.requests_per_minute,
        }
