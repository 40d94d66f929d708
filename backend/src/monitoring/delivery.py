"""Alert delivery: channels, routing rules and cooldown.

This module provides:
- AlertChannel: Abstract base class for delivery channels
- LogChannel: Writes alerts to the application log
- FileChannel: Appends alerts as JSON lines to a file
- WebhookChannel: POSTs alerts as JSON to an HTTP endpoint
- AlertRule: Predicate-based routing of alerts to named channels
- AlertDispatcher: Async delivery with cooldown and statistics

Routing logic:
1. Alerts whose "service:message" key was delivered within the cooldown are suppressed
2. Enabled rules whose predicate matches contribute their channels (union)
3. With no matching rule, the default channels are used
4. Channels are filtered by enabled flag and by the alert levels they accept

Delivery failures are logged and counted, never raised.
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any
from uuid import uuid4

import httpx

from src.monitoring.models import Alert, AlertLevel, HealthState, IndicatorSeverity

logger = logging.getLogger(__name__)

ALL_LEVELS: frozenset[AlertLevel] = frozenset(AlertLevel)

_LOG_LEVELS: dict[AlertLevel, int] = {
    AlertLevel.INFO: logging.INFO,
    AlertLevel.WARNING: logging.WARNING,
    AlertLevel.ERROR: logging.ERROR,
    AlertLevel.CRITICAL: logging.CRITICAL,
}

# A key seen more often than this within the recent window is a critical pattern
CRITICAL_PATTERN_MIN_COUNT = 5
CRITICAL_PATTERN_WINDOW = timedelta(minutes=5)
HIGH_ALERT_VOLUME = 50


def alert_key(alert: Alert) -> str:
    return f"{alert.service or 'system'}:{alert.message}"


class AlertChannel(ABC):
    """Abstract base class for alert delivery channels.

    Attributes:
        name: Unique channel name referenced by rules
        levels: Alert levels this channel accepts
        enabled: Disabled channels never receive alerts
    """

    channel_type: str = "abstract"

    def __init__(
        self,
        name: str,
        levels: frozenset[AlertLevel] = ALL_LEVELS,
        enabled: bool = True,
    ) -> None:
        self.name = name
        self.levels = frozenset(levels)
        self.enabled = enabled

    def accepts(self, alert: Alert) -> bool:
        return self.enabled and alert.level in self.levels

    @abstractmethod
    async def send(self, alert: Alert) -> None:
        """Deliver the alert. Raise on failure."""


class LogChannel(AlertChannel):
    """Writes alerts to the log at a level matching the alert level."""

    channel_type = "log"

    def __init__(self, name: str = "log", **kwargs: Any) -> None:
        super().__init__(name, **kwargs)
        self._logger = logging.getLogger("monitoring.alerts")

    async def send(self, alert: Alert) -> None:
        self._logger.log(
            _LOG_LEVELS[alert.level],
            "[ALERT %s] service=%s message=%s metadata=%s",
            alert.level.value.upper(),
            alert.service or "system",
            alert.message,
            json.dumps(alert.metadata, default=str) if alert.metadata else "{}",
        )


class FileChannel(AlertChannel):
    """Appends alerts as JSON lines to a file."""

    channel_type = "file"

    def __init__(self, name: str, path: Path | str, **kwargs: Any) -> None:
        super().__init__(name, **kwargs)
        self.path = Path(path)

    async def send(self, alert: Alert) -> None:
        line = json.dumps(
            {
                "timestamp": alert.timestamp.isoformat(),
                "level": alert.level.value,
                "service": alert.service,
                "message": alert.message,
                "metadata": alert.metadata,
            },
            default=str,
        )
        await asyncio.to_thread(self._append, line)

    def _append(self, line: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "a") as f:
            f.write(line + "\n")


class WebhookChannel(AlertChannel):
    """HTTP webhook channel.

    POSTs {"alert": {...}, "system": {...}} as JSON. Non-2xx responses are
    treated as delivery failures.
    """

    channel_type = "webhook"

    def __init__(
        self,
        name: str,
        url: str,
        headers: dict[str, str] | None = None,
        system_name: str = "voice-sop-monitoring",
        system_version: str = "1.0.0",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(name, **kwargs)
        self.url = url
        self.headers = headers or {}
        self.system_name = system_name
        self.system_version = system_version
        self.timeout = timeout
        self._client = client

    async def send(self, alert: Alert) -> None:
        payload = {
            "alert": alert.to_dict(),
            "system": {"name": self.system_name, "version": self.system_version},
        }
        if self._client is not None:
            response = await self._client.post(self.url, json=payload, headers=self.headers)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.url, json=payload, headers=self.headers)
        response.raise_for_status()


@dataclass
class AlertRule:
    """Routes matching alerts to named channels.

    Attributes:
        id: Unique rule id
        name: Human-readable name
        condition: Predicate deciding whether the rule applies
        channels: Channel names the alert is delivered to
        enabled: Disabled rules never match
        cooldown_minutes: Overrides the global cooldown for matching alerts
    """

    id: str
    name: str
    condition: Callable[[Alert], bool]
    channels: list[str]
    enabled: bool = True
    cooldown_minutes: float | None = None

    def matches(self, alert: Alert) -> bool:
        if not self.enabled:
            return False
        try:
            return bool(self.condition(alert))
        except Exception as e:
            logger.warning("Alert rule %s raised: %s", self.id, e)
            return False


@dataclass
class _KeyStats:
    count: int = 0
    last_occurrence: datetime = field(default_factory=lambda: datetime.now(tz=timezone.utc))


def _is_error_or_critical(alert: Alert) -> bool:
    return alert.level in (AlertLevel.ERROR, AlertLevel.CRITICAL)


def default_rules(channels: list[str]) -> list[AlertRule]:
    """Routing rules shipped with the application.

    Args:
        channels: Channel names every rule delivers to
    """
    return [
        AlertRule(
            id="critical-system-failures",
            name="Critical System Failures",
            condition=lambda a: a.level == AlertLevel.CRITICAL,
            channels=list(channels),
            cooldown_minutes=1,
        ),
        AlertRule(
            id="service-unavailable",
            name="Service Unavailable Alerts",
            condition=lambda a: a.level == AlertLevel.ERROR and "unavailable" in a.message.lower(),
            channels=list(channels),
            cooldown_minutes=5,
        ),
        AlertRule(
            id="high-error-rate",
            name="High Error Rate Alerts",
            condition=lambda a: a.level == AlertLevel.ERROR and "error rate" in a.message.lower(),
            channels=list(channels),
            cooldown_minutes=10,
        ),
        AlertRule(
            id="memory-alerts",
            name="Memory Usage Alerts",
            condition=lambda a: "memory" in a.message.lower(),
            channels=list(channels),
            cooldown_minutes=15,
        ),
        AlertRule(
            id="conversation-manager-alerts",
            name="Conversation Manager Critical Alerts",
            condition=lambda a: a.service == "ConversationManager" and _is_error_or_critical(a),
            channels=list(channels),
            cooldown_minutes=5,
        ),
        AlertRule(
            id="sop-generator-alerts",
            name="SOP Generator Critical Alerts",
            condition=lambda a: a.service == "SOPGenerator" and _is_error_or_critical(a),
            channels=list(channels),
            cooldown_minutes=5,
        ),
        AlertRule(
            id="speech-service-alerts",
            name="Speech Service Critical Alerts",
            condition=lambda a: a.service in ("SpeechToText", "TextToSpeech")
            and _is_error_or_critical(a),
            channels=list(channels),
            cooldown_minutes=3,
        ),
        AlertRule(
            id="document-export-alerts",
            name="Document Export Alerts",
            condition=lambda a: a.service == "DocumentExporter" and a.level == AlertLevel.ERROR,
            channels=list(channels),
            cooldown_minutes=10,
        ),
        AlertRule(
            id="performance-degradation",
            name="Performance Degradation Alerts",
            condition=lambda a: a.level == AlertLevel.WARNING
            and any(w in a.message.lower() for w in ("slow", "timeout", "response time")),
            channels=list(channels),
            cooldown_minutes=20,
        ),
    ]


class AlertDispatcher:
    """Async alert delivery with cooldown, rules and statistics.

    process_alert() is synchronous and never blocks: it schedules delivery
    on the event loop. deliver() performs the delivery and can be awaited
    directly.
    """

    def __init__(
        self,
        channels: list[AlertChannel] | None = None,
        rules: list[AlertRule] | None = None,
        default_channels: list[str] | None = None,
        enable_cooldown: bool = True,
        global_cooldown_minutes: float = 5.0,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            channels: Available delivery channels
            rules: Routing rules, evaluated in order
            default_channels: Channel names used when no rule matches
            enable_cooldown: Whether repeated alerts are suppressed
            global_cooldown_minutes: Cooldown for alerts matching no rule with its own
            loop: Loop used when process_alert() is called from another thread
        """
        self._channels: dict[str, AlertChannel] = {c.name: c for c in channels or []}
        self._rules: list[AlertRule] = list(rules or [])
        self._default_channels = list(default_channels or [])
        self._enable_cooldown = enable_cooldown
        self._global_cooldown = timedelta(minutes=global_cooldown_minutes)
        self._loop = loop

        self._last_delivered: dict[str, datetime] = {}
        self._key_stats: dict[str, _KeyStats] = {}
        self._level_counts: dict[AlertLevel, int] = {level: 0 for level in AlertLevel}
        self._suppressed = 0
        self._failures = 0
        self._lock = threading.Lock()
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def channels(self) -> list[AlertChannel]:
        return list(self._channels.values())

    @property
    def rules(self) -> list[AlertRule]:
        return list(self._rules)

    @property
    def default_channels(self) -> list[str]:
        return list(self._default_channels)

    @property
    def suppressed_count(self) -> int:
        return self._suppressed

    @property
    def failure_count(self) -> int:
        return self._failures

    def add_channel(self, channel: AlertChannel) -> None:
        self._channels[channel.name] = channel
        logger.info(
            "Alert channel added (name=%s, type=%s, enabled=%s)",
            channel.name,
            channel.channel_type,
            channel.enabled,
        )

    def add_rule(self, rule: AlertRule) -> None:
        self._rules.append(rule)
        logger.info("Alert rule added (name=%s, channels=%s)", rule.name, rule.channels)

    def process_alert(self, alert: Alert) -> None:
        """Schedule delivery of an alert without blocking the caller."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is not None:
            task = loop.create_task(self.deliver(alert))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
        elif self._loop is not None and self._loop.is_running():
            asyncio.run_coroutine_threadsafe(self.deliver(alert), self._loop)
        else:
            logger.warning("No event loop, alert %s not delivered", alert.id)

    async def deliver(self, alert: Alert) -> bool:
        """Deliver an alert to its channels.

        Args:
            alert: The alert to deliver

        Returns:
            False if suppressed by cooldown, True otherwise
        """
        matching = [rule for rule in self._rules if rule.matches(alert)]

        if self._enable_cooldown and self._in_cooldown(alert, matching):
            self._suppressed += 1
            logger.debug("Alert suppressed due to cooldown (alert_id=%s)", alert.id)
            return False

        if matching:
            names: list[str] = []
            for rule in matching:
                names.extend(n for n in rule.channels if n not in names)
        else:
            names = list(self._default_channels)

        self._record(alert)
        await self._send_to_channels(alert, names)
        return True

    async def process_critical_failure(
        self,
        type: str,
        component: str,
        description: str,
        severity: IndicatorSeverity,
        metadata: dict[str, Any] | None = None,
    ) -> Alert:
        """Build an alert for a reported critical failure and deliver it.

        Args:
            type: Failure type, e.g. "cascading_failures"
            component: Component that failed
            description: Human-readable description
            severity: Indicator severity; CRITICAL maps to a critical alert,
                anything else to an error alert
            metadata: Additional context

        Returns:
            The alert that was delivered
        """
        alert = Alert(
            id=f"critical-{uuid4().hex}",
            level=AlertLevel.CRITICAL if severity == IndicatorSeverity.CRITICAL else AlertLevel.ERROR,
            message=f"CRITICAL FAILURE: {description}",
            timestamp=datetime.now(tz=timezone.utc),
            service=component,
            metadata={"failure_type": type, "severity": severity.value, **(metadata or {})},
        )

        await self.deliver(alert)

        logger.error(
            "Critical system failure processed (alert_id=%s, type=%s, component=%s, severity=%s)",
            alert.id,
            type,
            component,
            severity.value,
        )
        return alert

    def get_critical_alerts(self) -> list[dict[str, Any]]:
        """Alert keys that are both recent and frequent, most frequent first."""
        now = datetime.now(tz=timezone.utc)
        with self._lock:
            items = list(self._key_stats.items())

        critical = [
            {
                "alert_key": key,
                "count": stats.count,
                "last_occurrence": stats.last_occurrence.isoformat(),
                "severity": "critical" if stats.count > 10 else "high",
            }
            for key, stats in items
            if now - stats.last_occurrence < CRITICAL_PATTERN_WINDOW
            and stats.count > CRITICAL_PATTERN_MIN_COUNT
        ]
        return sorted(critical, key=lambda c: c["count"], reverse=True)

    def get_health_status(self) -> dict[str, Any]:
        """Health of the alerting pipeline itself."""
        active_channels = sum(1 for c in self._channels.values() if c.enabled)
        total_channels = len(self._channels)
        critical_alerts = self.get_critical_alerts()
        one_hour_ago = datetime.now(tz=timezone.utc) - timedelta(hours=1)

        with self._lock:
            recent_volume = sum(
                s.count for s in self._key_stats.values() if s.last_occurrence > one_hour_ago
            )

        status = HealthState.HEALTHY
        issues: list[str] = []

        if active_channels == 0:
            status = HealthState.UNHEALTHY
            issues.append("No active alert channels")
        elif active_channels < total_channels * 0.5:
            status = HealthState.DEGRADED
            issues.append("Less than 50% of alert channels are active")

        if critical_alerts:
            if status != HealthState.UNHEALTHY:
                status = HealthState.DEGRADED
            issues.append(f"{len(critical_alerts)} critical alert patterns detected")

        if recent_volume > HIGH_ALERT_VOLUME:
            if status != HealthState.UNHEALTHY:
                status = HealthState.DEGRADED
            issues.append("High alert volume detected")

        return {
            "status": status.value,
            "active_channels": active_channels,
            "total_channels": total_channels,
            "recent_alert_volume": recent_volume,
            "critical_alerts_count": len(critical_alerts),
            "issues": issues,
        }

    def get_statistics(self) -> dict[str, Any]:
        with self._lock:
            by_level = {level.value: count for level, count in self._level_counts.items()}
            by_service: dict[str, int] = {}
            for key, stats in self._key_stats.items():
                service = key.split(":", 1)[0]
                by_service[service] = by_service.get(service, 0) + stats.count

        return {
            "total_alerts": sum(by_level.values()),
            "alerts_by_level": by_level,
            "alerts_by_service": by_service,
            "suppressed_alerts": self._suppressed,
            "delivery_failures": self._failures,
            "channel_status": [
                {"name": c.name, "enabled": c.enabled, "type": c.channel_type}
                for c in self._channels.values()
            ],
            "health_status": self.get_health_status(),
            "critical_alerts": self.get_critical_alerts(),
        }

    async def stop(self) -> None:
        """Wait for in-flight deliveries to finish. Safe to call multiple times."""
        if not self._pending:
            return
        await asyncio.gather(*list(self._pending), return_exceptions=True)
        self._pending.clear()

    def _in_cooldown(self, alert: Alert, matching: list[AlertRule]) -> bool:
        with self._lock:
            last = self._last_delivered.get(alert_key(alert))
        if last is None:
            return False

        rule_cooldowns = [r.cooldown_minutes for r in matching if r.cooldown_minutes is not None]
        cooldown = (
            timedelta(minutes=min(rule_cooldowns)) if rule_cooldowns else self._global_cooldown
        )
        return datetime.now(tz=timezone.utc) - last < cooldown

    def _record(self, alert: Alert) -> None:
        key = alert_key(alert)
        now = datetime.now(tz=timezone.utc)
        with self._lock:
            self._last_delivered[key] = now
            stats = self._key_stats.setdefault(key, _KeyStats())
            stats.count += 1
            stats.last_occurrence = now
            self._level_counts[alert.level] += 1

    async def _send_to_channels(self, alert: Alert, names: list[str]) -> None:
        channels = [
            self._channels[n] for n in names if n in self._channels and self._channels[n].accepts(alert)
        ]
        await asyncio.gather(*(self._send_to_channel(alert, c) for c in channels))

    async def _send_to_channel(self, alert: Alert, channel: AlertChannel) -> None:
        try:
            await channel.send(alert)
            logger.debug("Alert %s sent to channel %s", alert.id, channel.name)
        except Exception as e:
            self._failures += 1
            logger.error(
                "Failed to send alert %s to channel %s: %s",
                alert.id,
                channel.name,
                e,
            )
