"""Monitoring initialization and lifecycle.

This module builds the monitoring engine once per process and exposes it
through a getter, the same way the rest of the application wires its
long-lived services.

Usage:
    from src.monitoring.setup import init_monitoring, get_monitoring

    # During startup (inside the running event loop):
    context = await init_monitoring(settings)

    # Later, anywhere in the app:
    context = get_monitoring()
    if context:
        call_id = context.service_monitor.start_call("SOPGenerator", "generate")
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from src.config import Settings
from src.monitoring.config import MonitoringConfig, get_config, set_config
from src.monitoring.coordinator import MonitoringCoordinator
from src.monitoring.delivery import (
    AlertChannel,
    AlertDispatcher,
    FileChannel,
    LogChannel,
    WebhookChannel,
    default_rules,
)
from src.monitoring.events import EventChannel
from src.monitoring.service_monitor import ServiceMonitor
from src.monitoring.system_monitor import SystemMonitor

logger = logging.getLogger(__name__)


@dataclass
class MonitoringContext:
    """All monitoring components of one process, wired together."""

    config: MonitoringConfig
    events: EventChannel
    service_monitor: ServiceMonitor
    dispatcher: AlertDispatcher
    system_monitor: SystemMonitor
    coordinator: MonitoringCoordinator

    def reset(self) -> None:
        """Clear calls, metrics, alerts, history and activity."""
        self.service_monitor.reset()
        self.system_monitor.reset()
        logger.info("Monitoring data reset")


_context: MonitoringContext | None = None


def build_dispatcher(settings: Settings) -> AlertDispatcher:
    """Create the alert dispatcher with channels from settings.

    The log channel is always present; file and webhook channels are added
    when their settings are configured.
    """
    channels: list[AlertChannel] = [LogChannel()]

    if settings.alert_log_path:
        channels.append(FileChannel("file", settings.alert_log_path))
        logger.info("File alert channel configured (path=%s)", settings.alert_log_path)

    if settings.alert_webhook_url:
        channels.append(
            WebhookChannel(
                "webhook",
                settings.alert_webhook_url,
                system_name=settings.app_name,
                system_version=settings.app_version,
            )
        )
        logger.info("Webhook alert channel configured")

    names = [c.name for c in channels]
    return AlertDispatcher(
        channels=channels,
        rules=default_rules(names),
        default_channels=names,
        global_cooldown_minutes=settings.alert_cooldown_minutes,
        loop=_running_loop(),
    )


def build_monitoring(
    settings: Settings | None = None,
    config: MonitoringConfig | None = None,
    dispatcher: AlertDispatcher | None = None,
) -> MonitoringContext:
    """Wire up monitoring components without starting any schedule.

    Args:
        settings: Application settings, defaults to a fresh Settings()
        config: Monitoring config, derived from settings when omitted, else
            the global config from get_config()
        dispatcher: Alert dispatcher, built from settings when omitted

    Returns:
        MonitoringContext with every component constructed
    """
    # Use provided config, else settings, else the global config
    if config is None:
        config = MonitoringConfig.from_settings(settings) if settings is not None else get_config()
    settings = settings or Settings()
    dispatcher = dispatcher or build_dispatcher(settings)
    loop = _running_loop()

    events = EventChannel()
    service_monitor = ServiceMonitor(history_size=config.call_history_size)
    system_monitor = SystemMonitor(
        config, service_monitor, events, dispatcher=dispatcher, loop=loop
    )
    coordinator = MonitoringCoordinator(
        config, service_monitor, system_monitor, events, dispatcher=dispatcher
    )

    return MonitoringContext(
        config=config,
        events=events,
        service_monitor=service_monitor,
        dispatcher=dispatcher,
        system_monitor=system_monitor,
        coordinator=coordinator,
    )


async def init_monitoring(
    settings: Settings | None = None,
    config: MonitoringConfig | None = None,
    dispatcher: AlertDispatcher | None = None,
    start: bool = True,
) -> MonitoringContext:
    """Build monitoring, register it globally and start periodic ticks.

    Args:
        settings: Application settings
        config: Monitoring config override
        dispatcher: Alert dispatcher override
        start: Whether to start health checks, dashboard refresh and polling

    Returns:
        The initialized MonitoringContext
    """
    global _context

    if _context is not None:
        await shutdown_monitoring()

    context = build_monitoring(settings, config, dispatcher)
    set_config(context.config)

    if start:
        context.system_monitor.start()
        context.coordinator.start()

    _context = context
    logger.info(
        "Monitoring initialized (version=%s, services=%d, alerts=%s)",
        context.config.version,
        len(context.config.core_services),
        context.config.enable_alerts,
    )
    return context


async def shutdown_monitoring() -> None:
    """Stop all periodic work and drop the global context."""
    global _context

    if _context is None:
        return

    logger.info("Shutting down monitoring...")
    _context.coordinator.stop()
    _context.system_monitor.stop()
    await _context.dispatcher.stop()
    _context = None
    logger.info("Monitoring shut down")


def get_monitoring() -> MonitoringContext | None:
    """Get the global monitoring context.

    Returns:
        The initialized MonitoringContext, or None if not yet initialized.
        Callers should check for None before using.
    """
    return _context


def set_monitoring(context: MonitoringContext | None) -> None:
    """Set the global monitoring context (for testing)."""
    global _context
    _context = context


def _running_loop() -> asyncio.AbstractEventLoop | None:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None
