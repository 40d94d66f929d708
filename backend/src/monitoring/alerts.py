"""AlertManager - creates, lists and resolves monitoring alerts.

Alerts are appended and flagged resolved, never deleted. resolved only ever
transitions False -> True.

Info-level alerts carry a deferred auto-resolution (default 5 minutes) that is
cancelled when the alert is resolved manually first.

Each threshold breach found by evaluate() produces its own alert on every
health tick. There is no de-duplication across ticks, so a persisting
condition raises a fresh alert each tick; only delivery is throttled, by the
dispatcher's cooldown.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Protocol
from uuid import uuid4

from src.monitoring.config import MonitoringConfig
from src.monitoring.events import EventChannel
from src.monitoring.models import Alert, AlertLevel, HealthState, SystemHealth

logger = logging.getLogger(__name__)

ALERT_EVENT = "alert"
ALERT_RESOLVED_EVENT = "alert_resolved"


class AlertProcessor(Protocol):
    """External alert-delivery collaborator."""

    def process_alert(self, alert: Alert) -> None:
        """Hand an alert over for delivery. Must not raise."""
        ...


class AlertManager:
    """In-memory alert list with subscriber fan-out and auto-resolution."""

    def __init__(
        self,
        config: MonitoringConfig,
        events: EventChannel,
        dispatcher: AlertProcessor | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        """Initialize AlertManager.

        Args:
            config: Monitoring configuration (thresholds, auto-resolve delay)
            events: Channel used to publish alert/alert_resolved events
            dispatcher: Optional delivery collaborator
            loop: Loop to schedule auto-resolution on when alerts are created
                from a thread without a running loop
        """
        self._config = config
        self._events = events
        self._dispatcher = dispatcher
        self._loop = loop
        self._alerts: list[Alert] = []
        self._by_id: dict[str, Alert] = {}
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._lock = threading.Lock()

    @property
    def pending_auto_resolutions(self) -> int:
        with self._lock:
            return len(self._timers)

    def create_alert(
        self,
        level: AlertLevel,
        message: str,
        service: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Alert:
        """Create, store and publish a new alert.

        Args:
            level: Alert level
            message: Human-readable description
            service: Service the alert concerns, if any
            metadata: Structured context (see evaluate() for the schema per kind)

        Returns:
            The new, unresolved Alert
        """
        alert = Alert(
            id=f"alert-{uuid4().hex}",
            level=level,
            message=message,
            timestamp=datetime.now(tz=timezone.utc),
            service=service,
            metadata=dict(metadata) if metadata else {},
        )

        with self._lock:
            self._alerts.append(alert)
            self._by_id[alert.id] = alert

        self._events.publish(ALERT_EVENT, alert)

        if self._dispatcher is not None:
            try:
                self._dispatcher.process_alert(alert)
            except Exception as e:
                logger.exception("Alert dispatcher failed for %s: %s", alert.id, e)

        logger.warning(
            "Alert created (alert_id=%s, level=%s, service=%s): %s",
            alert.id,
            alert.level.value,
            alert.service,
            alert.message,
        )

        if level == AlertLevel.INFO:
            self._schedule_auto_resolve(alert.id)

        return alert

    def resolve_alert(self, alert_id: str) -> bool:
        """Resolve an alert.

        Idempotent: unknown or already-resolved ids change nothing.

        Args:
            alert_id: Id of the alert to resolve

        Returns:
            True only if the alert went from unresolved to resolved
        """
        with self._lock:
            alert = self._by_id.get(alert_id)
            if alert is None or alert.resolved:
                return False

            alert.resolved = True
            alert.resolved_at = datetime.now(tz=timezone.utc)
            timer = self._timers.pop(alert_id, None)

        if timer is not None:
            timer.cancel()

        self._events.publish(ALERT_RESOLVED_EVENT, alert)
        logger.info("Alert resolved (alert_id=%s): %s", alert.id, alert.message)
        return True

    def get_active_alerts(self) -> list[Alert]:
        with self._lock:
            return [a for a in self._alerts if not a.resolved]

    def get_all_alerts(self, limit: int | None = None) -> list[Alert]:
        """All alerts, most recent first, optionally capped at limit."""
        with self._lock:
            alerts = list(reversed(self._alerts))
        return alerts[:limit] if limit else alerts

    def evaluate(self, system_health: SystemHealth) -> list[Alert]:
        """Raise one alert per threshold breach in a health snapshot.

        Metadata schema per alert kind:
            memory:            {"memory_usage": MemoryUsage.to_dict()}
            cpu:               {"cpu_usage": float}
            service:           {"error_rate": float, "response_time": float}
            system error rate: {"error_rate": float}

        Args:
            system_health: Snapshot produced by the health evaluator

        Returns:
            Alerts created for this snapshot
        """
        thresholds = self._config.alert_thresholds
        metrics = system_health.metrics
        created: list[Alert] = []

        memory_percent = metrics.memory_usage.percent
        if memory_percent > thresholds.memory_usage:
            created.append(
                self.create_alert(
                    AlertLevel.WARNING,
                    f"High memory usage: {memory_percent:.1f}%",
                    "system",
                    {"memory_usage": metrics.memory_usage.to_dict()},
                )
            )

        if metrics.cpu_usage > thresholds.cpu_usage:
            created.append(
                self.create_alert(
                    AlertLevel.WARNING,
                    f"High CPU usage: {metrics.cpu_usage:.1f}%",
                    "system",
                    {"cpu_usage": metrics.cpu_usage},
                )
            )

        for name, health in system_health.services.items():
            context = {"error_rate": health.error_rate, "response_time": health.response_time}
            if health.status == HealthState.UNHEALTHY:
                created.append(
                    self.create_alert(
                        AlertLevel.ERROR, f"Service {name} is unhealthy", name, context
                    )
                )
            elif health.status == HealthState.DEGRADED:
                created.append(
                    self.create_alert(
                        AlertLevel.WARNING, f"Service {name} is degraded", name, context
                    )
                )

        if metrics.error_rate > thresholds.error_rate:
            created.append(
                self.create_alert(
                    AlertLevel.ERROR,
                    f"High system error rate: {metrics.error_rate * 100:.1f}%",
                    "system",
                    {"error_rate": metrics.error_rate},
                )
            )

        return created

    def stop(self) -> None:
        """Cancel every pending auto-resolution. Safe to call multiple times."""
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()

    def reset(self) -> None:
        self.stop()
        with self._lock:
            self._alerts.clear()
            self._by_id.clear()

    def _schedule_auto_resolve(self, alert_id: str) -> None:
        delay = self._config.info_alert_auto_resolve_seconds

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is not None:
            self._register_timer(loop, alert_id, delay)
        elif self._loop is not None and self._loop.is_running():
            self._loop.call_soon_threadsafe(self._register_timer, self._loop, alert_id, delay)
        else:
            logger.debug("No event loop, auto-resolution not scheduled for %s", alert_id)

    def _register_timer(
        self, loop: asyncio.AbstractEventLoop, alert_id: str, delay: float
    ) -> None:
        with self._lock:
            alert = self._by_id.get(alert_id)
            if alert is None or alert.resolved:
                return
            self._timers[alert_id] = loop.call_later(delay, self._auto_resolve, alert_id)

    def _auto_resolve(self, alert_id: str) -> None:
        with self._lock:
            self._timers.pop(alert_id, None)
        if self.resolve_alert(alert_id):
            logger.debug("Info alert auto-resolved (alert_id=%s)", alert_id)
