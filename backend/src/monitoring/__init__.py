"""Service telemetry, health aggregation and alerting.

This package provides:
- Call tracking and per-method metrics aggregation
- Instrumented call helpers for collaborators
- Service and system health evaluation
- Alert creation, auto-resolution and delivery
- Metrics history, health trends and critical failure indicators
- A coordinator merging component checks into a system overview
"""

from src.monitoring.alerts import AlertManager
from src.monitoring.config import (
    CORE_SERVICES,
    CRITICAL_SERVICES,
    AlertThresholds,
    CriticalServiceThresholds,
    MonitoringConfig,
    get_config,
    set_config,
)
from src.monitoring.coordinator import MonitoringCoordinator
from src.monitoring.delivery import (
    AlertChannel,
    AlertDispatcher,
    AlertRule,
    FileChannel,
    LogChannel,
    WebhookChannel,
)
from src.monitoring.events import EventChannel, Subscription
from src.monitoring.health import HealthEvaluator, classify_status
from src.monitoring.history import HistoryStore, derive_critical_failure_indicators
from src.monitoring.instrument import instrumented_call, monitored
from src.monitoring.models import (
    Alert,
    AlertLevel,
    ComponentHealth,
    CriticalFailureIndicator,
    CriticalFailureReport,
    HealthState,
    IndicatorSeverity,
    ServiceCall,
    ServiceHealth,
    ServiceMetrics,
    SystemHealth,
    SystemMetrics,
)
from src.monitoring.service_monitor import ServiceMonitor
from src.monitoring.setup import (
    MonitoringContext,
    get_monitoring,
    init_monitoring,
    shutdown_monitoring,
)
from src.monitoring.system_monitor import SystemMonitor

__all__ = [
    # Config
    "CORE_SERVICES",
    "CRITICAL_SERVICES",
    "AlertThresholds",
    "CriticalServiceThresholds",
    "MonitoringConfig",
    "get_config",
    "set_config",
    # Models
    "Alert",
    "AlertLevel",
    "ComponentHealth",
    "CriticalFailureIndicator",
    "CriticalFailureReport",
    "HealthState",
    "IndicatorSeverity",
    "ServiceCall",
    "ServiceHealth",
    "ServiceMetrics",
    "SystemHealth",
    "SystemMetrics",
    # Components
    "AlertManager",
    "EventChannel",
    "HealthEvaluator",
    "HistoryStore",
    "MonitoringCoordinator",
    "ServiceMonitor",
    "Subscription",
    "SystemMonitor",
    "classify_status",
    "derive_critical_failure_indicators",
    "instrumented_call",
    "monitored",
    # Delivery
    "AlertChannel",
    "AlertDispatcher",
    "AlertRule",
    "FileChannel",
    "LogChannel",
    "WebhookChannel",
    # Setup
    "MonitoringContext",
    "get_monitoring",
    "init_monitoring",
    "shutdown_monitoring",
]
