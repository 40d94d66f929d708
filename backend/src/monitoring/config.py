"""Monitoring configuration.

Alert thresholds used by the health evaluator, alert manager and history store
come from this config. Fixed limits for critical failure indicators and
performance insights live beside the code that applies them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from src.config import Settings

# Services checked on every health tick. Not auto-discovered.
CORE_SERVICES: tuple[str, ...] = (
    "ConversationManager",
    "SOPGenerator",
    "SpeechToText",
    "TextToSpeech",
    "VisualGenerator",
    "DocumentExporter",
)

# Services that get a registered component check and critical-service checks.
CRITICAL_SERVICES: tuple[str, ...] = (
    "ConversationManager",
    "SOPGenerator",
    "SpeechToText",
    "TextToSpeech",
    "DocumentExporter",
)


@dataclass(frozen=True)
class AlertThresholds:
    """Thresholds that drive status classification and alert creation.

    Attributes:
        response_time_ms: Average response time above which a service is unhealthy
        error_rate: Error rate (0-1) above which a service is unhealthy
        memory_usage: Memory usage percent that raises a warning alert
        cpu_usage: CPU usage percent that raises a warning alert
    """

    response_time_ms: float = 5000.0
    error_rate: float = 0.1
    memory_usage: float = 80.0
    cpu_usage: float = 80.0

    def __post_init__(self) -> None:
        if self.response_time_ms <= 0:
            raise ValueError("response_time_ms must be positive")
        if not 0 <= self.error_rate <= 1:
            raise ValueError("error_rate must be between 0 and 1")
        for name in ("memory_usage", "cpu_usage"):
            value = getattr(self, name)
            if not 0 <= value <= 100:
                raise ValueError(f"{name} must be a percentage between 0 and 100")


@dataclass(frozen=True)
class CriticalServiceThresholds:
    """Stricter limits applied to critical services after each health check."""

    response_time_ms: float = 10000.0
    error_rate: float = 0.05
    availability: float = 0.95


@dataclass(frozen=True)
class MonitoringConfig:
    """Process-wide monitoring configuration, set once at construction."""

    # Scheduling
    health_check_interval_seconds: float = 30.0
    dashboard_refresh_interval_seconds: float = 30.0
    service_poll_interval_seconds: float = 10.0

    # History
    metrics_retention_seconds: float = 24 * 60 * 60
    call_history_size: int = 1000

    # Thresholds
    alert_thresholds: AlertThresholds = field(default_factory=AlertThresholds)
    critical_service_thresholds: CriticalServiceThresholds = field(
        default_factory=CriticalServiceThresholds
    )

    # Feature flags
    enable_alerts: bool = True
    enable_metrics_collection: bool = True

    # Alerts
    info_alert_auto_resolve_seconds: float = 300.0

    # Registry
    core_services: tuple[str, ...] = CORE_SERVICES
    critical_services: tuple[str, ...] = CRITICAL_SERVICES

    version: str = "1.0.0"

    def __post_init__(self) -> None:
        for name in (
            "health_check_interval_seconds",
            "dashboard_refresh_interval_seconds",
            "service_poll_interval_seconds",
            "metrics_retention_seconds",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.call_history_size < 1:
            raise ValueError("call_history_size must be at least 1")
        if self.info_alert_auto_resolve_seconds < 0:
            raise ValueError("info_alert_auto_resolve_seconds cannot be negative")

    @classmethod
    def from_settings(cls, settings: Settings) -> MonitoringConfig:
        """Build a config from application settings.

        Args:
            settings: Loaded pydantic Settings instance

        Returns:
            MonitoringConfig mirroring the settings values
        """
        return cls(
            health_check_interval_seconds=settings.health_check_interval_seconds,
            dashboard_refresh_interval_seconds=settings.dashboard_refresh_interval_seconds,
            service_poll_interval_seconds=settings.service_poll_interval_seconds,
            metrics_retention_seconds=settings.metrics_retention_seconds,
            alert_thresholds=AlertThresholds(
                response_time_ms=settings.response_time_threshold_ms,
                error_rate=settings.error_rate_threshold,
                memory_usage=settings.memory_usage_threshold,
                cpu_usage=settings.cpu_usage_threshold,
            ),
            enable_alerts=settings.enable_alerts,
            enable_metrics_collection=settings.enable_metrics_collection,
            info_alert_auto_resolve_seconds=settings.info_alert_auto_resolve_seconds,
            version=settings.app_version,
        )


# Global config instance
_config: MonitoringConfig | None = None


def get_config() -> MonitoringConfig:
    """Get the global monitoring config instance.

    Returns:
        The global MonitoringConfig, created with defaults on first access.
    """
    global _config
    if _config is None:
        _config = MonitoringConfig()
    return _config


def set_config(config: MonitoringConfig | None) -> None:
    """Set the global monitoring config (for testing).

    Args:
        config: The configuration instance to set as global, or None to
            fall back to defaults on next access.
    """
    global _config
    _config = config
