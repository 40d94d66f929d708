"""Tests for monitoring initialization and lifecycle."""

import asyncio

import pytest
from src.config import Settings
from src.monitoring.config import MonitoringConfig, get_config, set_config
from src.monitoring.coordinator import DASHBOARD_UPDATE_EVENT
from src.monitoring.delivery import FileChannel, LogChannel, WebhookChannel
from src.monitoring.models import AlertLevel
from src.monitoring.setup import (
    build_dispatcher,
    build_monitoring,
    get_monitoring,
    init_monitoring,
    shutdown_monitoring,
)


def _channel_types(dispatcher) -> list[type]:
    return [type(c) for c in dispatcher.channels]


class TestBuildDispatcher:
    """Tests for channel selection from settings."""

    def test_log_channel_only_by_default(self):
        dispatcher = build_dispatcher(Settings(alert_log_path=None, alert_webhook_url=None))

        assert _channel_types(dispatcher) == [LogChannel]
        assert dispatcher.default_channels == ["log"]

    def test_file_and_webhook_from_settings(self, tmp_path):
        dispatcher = build_dispatcher(
            Settings(
                alert_log_path=str(tmp_path / "alerts.log"),
                alert_webhook_url="https://hooks.example.com/alerts",
            )
        )

        assert _channel_types(dispatcher) == [LogChannel, FileChannel, WebhookChannel]
        assert dispatcher.default_channels == ["log", "file", "webhook"]
        assert dispatcher.rules


class TestBuildMonitoring:
    """Tests for wiring without scheduling."""

    def test_components_share_event_channel(self):
        context = build_monitoring(Settings(), config=MonitoringConfig(enable_alerts=False))

        assert context.config.enable_alerts is False
        assert context.system_monitor.is_running is False
        assert sorted(context.coordinator.components) == sorted(context.config.critical_services)

    def test_global_config_used_without_settings(self):
        custom = MonitoringConfig(enable_alerts=False, call_history_size=5)
        set_config(custom)

        context = build_monitoring()

        assert context.config is custom

    def test_explicit_config_wins_over_global(self):
        set_config(MonitoringConfig(enable_alerts=False))
        explicit = MonitoringConfig()

        assert build_monitoring(config=explicit).config is explicit

    def test_config_derived_from_settings(self):
        context = build_monitoring(Settings(error_rate_threshold=0.2, app_version="2.3.4"))

        assert context.config.alert_thresholds.error_rate == 0.2
        assert context.config.version == "2.3.4"

    def test_reset_clears_everything(self, record_calls):
        context = build_monitoring(Settings())
        record_calls(context.service_monitor, "SOPGenerator", "generate", [10.0])
        context.system_monitor.alerts.create_alert(AlertLevel.WARNING, "x")

        context.reset()

        assert context.service_monitor.get_all_metrics() == {}
        assert context.system_monitor.get_all_alerts() == []


class TestLifecycle:
    """Tests for init/shutdown/get."""

    @pytest.mark.asyncio
    async def test_init_registers_global_context(self):
        config = MonitoringConfig(health_check_interval_seconds=60)

        context = await init_monitoring(Settings(), config=config, start=False)

        assert get_monitoring() is context
        assert get_config() is config
        await shutdown_monitoring()
        assert get_monitoring() is None

    @pytest.mark.asyncio
    async def test_init_starts_ticks(self):
        context = await init_monitoring(Settings())

        assert context.system_monitor.is_running is True

        await shutdown_monitoring()
        assert context.system_monitor.is_running is False

    @pytest.mark.asyncio
    async def test_reinit_replaces_previous_context(self):
        first = await init_monitoring(Settings())
        second = await init_monitoring(Settings(), start=False)

        assert get_monitoring() is second
        assert first.system_monitor.is_running is False
        await shutdown_monitoring()

    @pytest.mark.asyncio
    async def test_shutdown_without_init_is_noop(self):
        await shutdown_monitoring()
        assert get_monitoring() is None

    @pytest.mark.asyncio
    async def test_started_monitoring_ticks_on_schedule(self):
        context = await init_monitoring(
            Settings(health_check_interval_seconds=0.1, dashboard_refresh_interval_seconds=0.1)
        )
        overviews = []
        context.events.subscribe(DASHBOARD_UPDATE_EVENT, overviews.append)

        try:
            await asyncio.sleep(0.8)
        finally:
            await shutdown_monitoring()

        assert len(context.system_monitor.get_metrics_history()) >= 1
        assert len(overviews) >= 1
