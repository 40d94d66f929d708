"""Tests for MonitoringCoordinator."""

import asyncio
from datetime import datetime, timezone

import pytest
from src.monitoring.config import MonitoringConfig
from src.monitoring.coordinator import (
    CRITICAL_SERVICE_ALERT_EVENT,
    CRITICAL_SERVICE_ISSUE_EVENT,
    DASHBOARD_UPDATE_EVENT,
    SERVICE_HEALTH_DEGRADED_EVENT,
    SYSTEM_HEALTH_UPDATE_EVENT,
    MonitoringCoordinator,
    analyze_performance,
)
from src.monitoring.delivery import AlertDispatcher, AlertRule, LogChannel
from src.monitoring.models import (
    Alert,
    AlertLevel,
    ComponentHealth,
    HealthState,
    SystemOverview,
)
from src.monitoring.system_monitor import SystemMonitor


@pytest.fixture
def system_monitor(config, service_monitor, events, sampler):
    monitor = SystemMonitor(config, service_monitor, events, sampler=sampler)
    yield monitor
    monitor.stop()


@pytest.fixture
def coordinator(config, service_monitor, system_monitor, events):
    coordinator = MonitoringCoordinator(config, service_monitor, system_monitor, events)
    yield coordinator
    coordinator.stop()


def _component(name: str, status: HealthState, issues: list[str] | None = None):
    return ComponentHealth(
        component=name,
        status=status,
        last_check=datetime.now(tz=timezone.utc),
        issues=issues or [],
    )


def _overview(
    components: list[ComponentHealth] | None = None,
    memory: float = 10.0,
    cpu: float = 5.0,
    error_rate: float = 0.0,
    active_alerts: int = 0,
) -> SystemOverview:
    return SystemOverview(
        overall_health=HealthState.HEALTHY,
        components=components or [],
        active_alerts=[
            Alert(f"a{i}", AlertLevel.WARNING, "x", datetime.now(tz=timezone.utc))
            for i in range(active_alerts)
        ],
        system_metrics={"error_rate": error_rate},
        performance={"memory_usage": memory, "cpu_usage": cpu},
    )


class TestComponentHealth:
    """Tests for component checks."""

    def test_default_checks_for_critical_services(self, coordinator):
        assert sorted(coordinator.components) == sorted(MonitoringConfig().critical_services)

    @pytest.mark.asyncio
    async def test_check_without_metrics_is_unknown(self, coordinator):
        results = await coordinator.check_all_components_health()

        assert all(r.status == HealthState.UNKNOWN for r in results)
        assert all(r.issues == ["No metrics available"] for r in results)

    @pytest.mark.asyncio
    async def test_check_flags_degraded_methods(
        self, coordinator, service_monitor, record_calls
    ):
        record_calls(service_monitor, "ConversationManager", "reply", [6000.0])
        record_calls(service_monitor, "ConversationManager", "listen", [10.0] * 10, failures=2)

        results = {r.component: r for r in await coordinator.check_all_components_health()}

        manager = results["ConversationManager"]
        assert manager.status == HealthState.DEGRADED
        assert "High error rate in listen: 20.0%" in manager.issues
        assert "Slow response time in reply: 6000ms" in manager.issues
        assert set(manager.metrics) == {"reply", "listen"}

    @pytest.mark.asyncio
    async def test_failing_check_reports_unknown(self, coordinator):
        async def broken():
            raise ConnectionError("database unreachable")

        coordinator.register_component_health_check("Database", broken)

        results = {r.component: r for r in await coordinator.check_all_components_health()}

        assert results["Database"].status == HealthState.UNKNOWN
        assert results["Database"].issues == ["Health check failed: database unreachable"]
        assert len(results) == len(MonitoringConfig().critical_services) + 1

    @pytest.mark.asyncio
    async def test_overview_is_worst_of_system_and_components(self, coordinator):
        async def down():
            return _component("Cache", HealthState.UNHEALTHY, ["evicting"])

        coordinator.register_component_health_check("Cache", down)

        overview = await coordinator.get_system_overview()

        assert overview.overall_health == HealthState.UNHEALTHY
        assert "memory_usage" in overview.performance
        assert "disk_usage" not in overview.performance
        assert overview.system_metrics["total_requests"] == 0


class TestInsights:
    """Tests for analyze_performance heuristics."""

    def test_optimal_system(self):
        insights = analyze_performance(_overview(), [])

        assert insights.bottlenecks == []
        assert insights.recommendations == ["System is operating optimally"]

    def test_bottlenecks_from_components(self):
        insights = analyze_performance(
            _overview(
                [
                    _component("A", HealthState.UNHEALTHY),
                    _component("B", HealthState.DEGRADED, ["slow", "flaky"]),
                    _component("C", HealthState.HEALTHY),
                ]
            ),
            [],
        )

        assert insights.bottlenecks == [
            {"component": "A", "issue": "Service unhealthy", "severity": "high"},
            {"component": "B", "issue": "slow, flaky", "severity": "medium"},
        ]

    def test_resource_recommendations(self):
        insights = analyze_performance(
            _overview(memory=85, cpu=90, error_rate=0.06, active_alerts=6), []
        )

        assert len(insights.recommendations) == 4
        assert "System is operating optimally" not in insights.recommendations

    def test_response_time_degrading(self):
        history = [100.0] * 5 + [150.0] * 5
        insights = analyze_performance(_overview(), history)

        assert insights.degrading == ["Response time degrading"]
        assert insights.improving == []

    def test_response_time_improving(self):
        history = [200.0] * 5 + [100.0] * 5
        insights = analyze_performance(_overview(), history)

        assert insights.improving == ["Response time improving"]

    def test_stable_or_short_history_has_no_trend(self):
        assert analyze_performance(_overview(), [100.0] * 10).to_dict()["trends"] == {
            "improving": [],
            "degrading": [],
        }
        assert analyze_performance(_overview(), [100.0, 500.0]).degrading == []


class TestEventFanOut:
    """Tests for coordinator reactions to monitoring events."""

    @pytest.mark.asyncio
    async def test_health_check_fans_out(
        self, coordinator, system_monitor, events, service_monitor, record_calls
    ):
        updates, issues = [], []
        events.subscribe(SYSTEM_HEALTH_UPDATE_EVENT, updates.append)
        events.subscribe(CRITICAL_SERVICE_ISSUE_EVENT, issues.append)
        record_calls(service_monitor, "SOPGenerator", "generate", [100.0] * 10, failures=1)

        health = await system_monitor.perform_health_check()

        assert updates == [health]
        assert [i["service"] for i in issues] == ["SOPGenerator"]

    def test_critical_service_alert_event(self, coordinator, system_monitor, events):
        critical = []
        events.subscribe(CRITICAL_SERVICE_ALERT_EVENT, critical.append)

        system_monitor.alerts.create_alert(AlertLevel.ERROR, "down", "SpeechToText")
        system_monitor.alerts.create_alert(AlertLevel.ERROR, "down", "VisualGenerator")

        assert [a.service for a in critical] == ["SpeechToText"]

    @pytest.mark.asyncio
    async def test_poll_publishes_when_unhealthy(
        self, coordinator, events, service_monitor, record_calls
    ):
        degraded = []
        events.subscribe(SERVICE_HEALTH_DEGRADED_EVENT, degraded.append)

        await coordinator.poll_service_health()
        record_calls(service_monitor, "S", "m", [10.0] * 2, failures=1)
        await coordinator.poll_service_health()

        assert len(degraded) == 1
        assert degraded[0].unhealthy_services == 1

    @pytest.mark.asyncio
    async def test_refresh_dashboard_publishes_overview(self, coordinator, events):
        overviews = []
        events.subscribe(DASHBOARD_UPDATE_EVENT, overviews.append)

        await coordinator.refresh_dashboard()

        assert len(overviews) == 1
        assert isinstance(overviews[0], SystemOverview)

    def test_stop_unsubscribes(self, coordinator, system_monitor, events):
        critical = []
        events.subscribe(CRITICAL_SERVICE_ALERT_EVENT, critical.append)

        coordinator.stop()
        coordinator.stop()
        system_monitor.alerts.create_alert(AlertLevel.ERROR, "down", "SpeechToText")

        assert critical == []


class TestRealTimeAndComprehensive:
    """Tests for aggregated views."""

    @pytest.mark.asyncio
    async def test_real_time_metrics(self, coordinator, system_monitor, service_monitor, record_calls):
        record_calls(service_monitor, "SOPGenerator", "generate", [100.0, 300.0])
        system_monitor.track_request()

        metrics = await coordinator.get_real_time_metrics()

        assert metrics.system_health == HealthState.HEALTHY
        assert metrics.response_time == pytest.approx(200.0)
        assert metrics.requests_per_minute == 1
        assert metrics.critical_failures == 0

    @pytest.mark.asyncio
    async def test_comprehensive_monitoring_data(self, coordinator, system_monitor):
        await system_monitor.perform_health_check()

        data = await coordinator.get_comprehensive_monitoring_data()

        assert set(data) == {
            "system_overview",
            "dashboard_data",
            "health_trends",
            "critical_failures",
            "performance_insights",
        }
        assert len(data["health_trends"]) == 1
        assert data["critical_failures"]["cascading_failures"] is False

    def test_add_alert_channel_requires_dispatcher(self, coordinator):
        with pytest.raises(RuntimeError):
            coordinator.add_alert_channel(LogChannel())

    def test_add_alert_channel(self, config, service_monitor, system_monitor, events):
        dispatcher = AlertDispatcher()
        coordinator = MonitoringCoordinator(
            config, service_monitor, system_monitor, events, dispatcher=dispatcher
        )

        coordinator.add_alert_channel(LogChannel("ops-log"))

        assert dispatcher.get_statistics()["channel_status"][0]["name"] == "ops-log"
        coordinator.stop()

    def test_add_alert_rule_requires_dispatcher(self, coordinator):
        with pytest.raises(RuntimeError):
            coordinator.add_alert_rule(AlertRule("r", "r", lambda a: True, ["log"]))

    @pytest.mark.asyncio
    async def test_add_alert_rule_routes_deliveries(
        self, config, service_monitor, system_monitor, events
    ):
        sent = []

        class OpsChannel(LogChannel):
            async def send(self, alert):
                sent.append(alert)

        dispatcher = AlertDispatcher(channels=[LogChannel()], default_channels=["log"])
        coordinator = MonitoringCoordinator(
            config, service_monitor, system_monitor, events, dispatcher=dispatcher
        )
        coordinator.add_alert_channel(OpsChannel("ops"))

        coordinator.add_alert_rule(
            AlertRule("speech", "Speech alerts", lambda a: a.service == "SpeechToText", ["ops"])
        )
        await dispatcher.deliver(
            Alert("a1", AlertLevel.ERROR, "down", datetime.now(tz=timezone.utc), "SpeechToText")
        )
        await dispatcher.deliver(
            Alert("a2", AlertLevel.ERROR, "down", datetime.now(tz=timezone.utc), "SOPGenerator")
        )

        assert [a.id for a in sent] == ["a1"]
        assert [r.id for r in dispatcher.rules] == ["speech"]
        coordinator.stop()


class TestScheduling:
    """Tests for coordinator ticks."""

    @pytest.mark.asyncio
    async def test_start_stop_idempotent(self, coordinator):
        coordinator.start()
        coordinator.start()
        coordinator.stop()
        coordinator.stop()

    @pytest.mark.asyncio
    async def test_dashboard_tick_publishes_on_schedule(
        self, service_monitor, system_monitor, events
    ):
        overviews = []
        events.subscribe(DASHBOARD_UPDATE_EVENT, overviews.append)
        coordinator = MonitoringCoordinator(
            MonitoringConfig(dashboard_refresh_interval_seconds=0.1),
            service_monitor,
            system_monitor,
            events,
        )

        coordinator.start()
        try:
            await asyncio.sleep(0.35)
        finally:
            coordinator.stop()

        assert len(overviews) >= 1
        assert isinstance(overviews[0], SystemOverview)

    @pytest.mark.asyncio
    async def test_service_poll_runs_on_loop_for_async_subscribers(
        self, service_monitor, system_monitor, events, record_calls
    ):
        delivered = []

        async def on_degraded(summary):
            delivered.append(summary)

        events.subscribe(SERVICE_HEALTH_DEGRADED_EVENT, on_degraded)
        record_calls(service_monitor, "SOPGenerator", "generate", [10.0] * 4, failures=4)
        coordinator = MonitoringCoordinator(
            MonitoringConfig(service_poll_interval_seconds=0.1),
            service_monitor,
            system_monitor,
            events,
        )

        coordinator.start()
        try:
            await asyncio.sleep(0.35)
        finally:
            coordinator.stop()

        assert len(delivered) >= 1
        assert delivered[0].unhealthy_services == 1
