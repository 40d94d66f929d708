from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # App
    app_name: str = "voice-sop-monitoring"
    app_version: str = "1.0.0"
    log_level: str = "INFO"

    # Health check scheduling
    health_check_interval_seconds: float = 30.0
    dashboard_refresh_interval_seconds: float = 30.0
    service_poll_interval_seconds: float = 10.0
    metrics_retention_seconds: float = 24 * 60 * 60

    # Alert thresholds
    response_time_threshold_ms: float = 5000.0
    error_rate_threshold: float = 0.1
    memory_usage_threshold: float = 80.0
    cpu_usage_threshold: float = 80.0

    # Feature flags
    enable_alerts: bool = True
    enable_metrics_collection: bool = True

    # Alerts
    info_alert_auto_resolve_seconds: float = 300.0
    alert_cooldown_minutes: float = 5.0
    alert_webhook_url: str | None = None
    alert_log_path: str | None = None

    class Config:
        env_file = ".env"
        env_prefix = "MONITORING_"


settings = Settings()
