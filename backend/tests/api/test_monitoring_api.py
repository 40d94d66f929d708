# backend/tests/api/test_monitoring_api.py
"""Tests for monitoring API endpoints and request tracking middleware."""

from unittest.mock import patch

import pytest
from fastapi import FastAPI, Response
from fastapi.testclient import TestClient
from src.api.middleware import RequestTrackingMiddleware
from src.main import app
from src.monitoring.config import MonitoringConfig
from src.monitoring.coordinator import MonitoringCoordinator
from src.monitoring.delivery import AlertDispatcher, LogChannel
from src.monitoring.events import EventChannel
from src.monitoring.models import AlertLevel
from src.monitoring.service_monitor import ServiceMonitor
from src.monitoring.setup import MonitoringContext, set_monitoring
from src.monitoring.system_monitor import SystemMonitor


@pytest.fixture
def context(sampler):
    """Monitoring context with fixed resource readings, registered globally."""
    config = MonitoringConfig()
    events = EventChannel()
    service_monitor = ServiceMonitor()
    dispatcher = AlertDispatcher(channels=[LogChannel()], default_channels=["log"])
    system_monitor = SystemMonitor(
        config, service_monitor, events, dispatcher=dispatcher, sampler=sampler
    )
    coordinator = MonitoringCoordinator(
        config, service_monitor, system_monitor, events, dispatcher=dispatcher
    )
    ctx = MonitoringContext(
        config=config,
        events=events,
        service_monitor=service_monitor,
        dispatcher=dispatcher,
        system_monitor=system_monitor,
        coordinator=coordinator,
    )
    set_monitoring(ctx)
    yield ctx
    coordinator.stop()
    system_monitor.stop()


@pytest.fixture
def client():
    return TestClient(app)


class TestNotInitialized:
    """Tests for endpoints before monitoring starts."""

    def test_health_returns_503(self, client):
        response = client.get("/api/monitoring/health")

        assert response.status_code == 503
        assert response.json()["detail"] == "Monitoring not initialized"

    def test_simple_health_still_ok(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestHealthEndpoint:
    """Tests for /api/monitoring/health status codes."""

    def test_healthy_returns_200(self, client, context):
        response = client.get("/api/monitoring/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert set(data["services"]) == set(context.config.core_services)

    def test_degraded_returns_206(self, client, context, record_calls):
        record_calls(context.service_monitor, "SOPGenerator", "generate", [4000.0])

        response = client.get("/api/monitoring/health")

        assert response.status_code == 206
        assert response.json()["services"]["SOPGenerator"]["status"] == "degraded"

    def test_unhealthy_returns_503(self, client, context, record_calls):
        record_calls(context.service_monitor, "SpeechToText", "transcribe", [6000.0])

        response = client.get("/api/monitoring/health")

        assert response.status_code == 503
        assert response.json()["status"] == "unhealthy"


class TestServiceEndpoints:
    """Tests for service metrics and call endpoints."""

    def test_all_metrics(self, client, context, record_calls):
        record_calls(context.service_monitor, "SOPGenerator", "generate", [100.0, 200.0])

        response = client.get("/api/monitoring/services/metrics")

        assert response.status_code == 200
        metrics = response.json()["metrics"]["SOPGenerator.generate"]
        assert metrics["total_calls"] == 2
        assert metrics["average_response_time"] == pytest.approx(150.0)

    def test_service_metrics_by_method(self, client, context, record_calls):
        record_calls(context.service_monitor, "SOPGenerator", "generate", [100.0], failures=1)

        response = client.get(
            "/api/monitoring/services/SOPGenerator/metrics", params={"method": "generate"}
        )

        data = response.json()
        assert data["method"] == "generate"
        assert data["metrics"]["failed_calls"] == 1

    def test_unknown_method_is_zeroed(self, client, context):
        response = client.get(
            "/api/monitoring/services/SOPGenerator/metrics", params={"method": "missing"}
        )

        assert response.json()["metrics"]["total_calls"] == 0

    def test_active_calls_and_history(self, client, context):
        context.service_monitor.start_call("SpeechToText", "transcribe")
        done = context.service_monitor.start_call("SpeechToText", "transcribe")
        context.service_monitor.end_call(done)

        active = client.get("/api/monitoring/services/active-calls").json()
        history = client.get("/api/monitoring/services/call-history", params={"limit": 10}).json()

        assert active["count"] == 1
        assert history["count"] == 1
        assert history["call_history"][0]["success"] is True
        assert active["active_calls"][0]["end_time"] is None

    def test_call_history_limit_validated(self, client, context):
        response = client.get("/api/monitoring/services/call-history", params={"limit": 0})

        assert response.status_code == 422


class TestAlertEndpoints:
    """Tests for alert listing and resolution."""

    def test_list_alerts_most_recent_first(self, client, context):
        context.system_monitor.alerts.create_alert(AlertLevel.WARNING, "first")
        context.system_monitor.alerts.create_alert(AlertLevel.ERROR, "second")

        data = client.get("/api/monitoring/alerts").json()

        assert data["count"] == 2
        assert [a["message"] for a in data["alerts"]] == ["second", "first"]

    def test_list_active_alerts(self, client, context):
        open_alert = context.system_monitor.alerts.create_alert(AlertLevel.WARNING, "open")
        closed = context.system_monitor.alerts.create_alert(AlertLevel.WARNING, "closed")
        context.system_monitor.resolve_alert(closed.id)

        data = client.get("/api/monitoring/alerts", params={"active": True}).json()

        assert [a["id"] for a in data["alerts"]] == [open_alert.id]

    def test_resolve_alert(self, client, context):
        alert = context.system_monitor.alerts.create_alert(AlertLevel.WARNING, "Slow")

        response = client.patch(f"/api/monitoring/alerts/{alert.id}/resolve")

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert response.json()["resolved_at"] is not None

    def test_resolve_twice_returns_404(self, client, context):
        alert = context.system_monitor.alerts.create_alert(AlertLevel.WARNING, "Slow")
        client.patch(f"/api/monitoring/alerts/{alert.id}/resolve")

        response = client.patch(f"/api/monitoring/alerts/{alert.id}/resolve")

        assert response.status_code == 404

    def test_resolve_unknown_returns_404(self, client, context):
        response = client.patch("/api/monitoring/alerts/alert-missing/resolve")

        assert response.status_code == 404


class TestCriticalFailures:
    """Tests for critical failure reporting and indicators."""

    def test_report_critical_failure(self, client, context):
        response = client.post(
            "/api/monitoring/critical-failures",
            json={
                "type": "cascading_failures",
                "component": "ConversationManager",
                "description": "Speech services down",
                "severity": "critical",
                "metadata": {"services": 2},
            },
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["alert_id"].startswith("critical-")
        assert context.dispatcher.get_statistics()["alerts_by_level"]["critical"] == 1

    def test_report_rejects_invalid_severity(self, client, context):
        response = client.post(
            "/api/monitoring/critical-failures",
            json={
                "type": "x",
                "component": "y",
                "description": "z",
                "severity": "apocalyptic",
            },
        )

        assert response.status_code == 422

    def test_report_rejects_missing_description(self, client, context):
        response = client.post(
            "/api/monitoring/critical-failures",
            json={"type": "x", "component": "y", "description": "", "severity": "low"},
        )

        assert response.status_code == 422

    def test_indicators(self, client, context, record_calls):
        record_calls(context.service_monitor, "SpeechToText", "transcribe", [10.0] * 4, failures=2)
        record_calls(context.service_monitor, "TextToSpeech", "synthesize", [10.0] * 4, failures=2)

        data = client.get("/api/monitoring/critical-failures").json()

        assert data["cascading_failures"] is True
        assert "timestamp" in data


class TestDashboardEndpoints:
    """Tests for aggregated views."""

    def test_dashboard(self, client, context):
        data = client.get("/api/monitoring/dashboard").json()

        assert set(data) == {"health", "metrics_history", "recent_alerts", "service_metrics"}

    def test_history_and_trends(self, client, context):
        with patch.object(context.system_monitor, "get_metrics_history", return_value=[]):
            history = client.get("/api/monitoring/metrics/history", params={"hours": 1}).json()

        trends = client.get("/api/monitoring/trends").json()

        assert history == {"history": [], "count": 0}
        assert trends == {"trends": [], "hours": 24}

    def test_realtime(self, client, context):
        data = client.get("/api/monitoring/realtime").json()

        assert data["system_health"] == "healthy"
        assert data["memory_usage"] == pytest.approx(10.0)
        # the realtime request itself is counted
        assert data["requests_per_minute"] == 1

    def test_insights(self, client, context):
        data = client.get("/api/monitoring/insights").json()

        assert data["recommendations"] == ["System is operating optimally"]

    def test_overview(self, client, context):
        data = client.get("/api/monitoring/overview").json()

        assert data["system_overview"]["overall_health"] == "healthy"
        assert len(data["system_overview"]["components"]) == len(context.config.critical_services)

    def test_alerting_stats(self, client, context):
        data = client.get("/api/monitoring/alerting/stats").json()

        assert data["channel_status"] == [{"name": "log", "enabled": True, "type": "log"}]
        assert data["health_status"]["status"] == "healthy"

    def test_reset(self, client, context, record_calls):
        record_calls(context.service_monitor, "SOPGenerator", "generate", [100.0])
        context.system_monitor.alerts.create_alert(AlertLevel.WARNING, "x")

        response = client.post("/api/monitoring/reset")

        assert response.status_code == 200
        assert context.service_monitor.get_all_metrics() == {}
        assert context.system_monitor.get_all_alerts() == []


def _session_app() -> FastAPI:
    session_app = FastAPI()
    session_app.add_middleware(RequestTrackingMiddleware)

    @session_app.post("/api/sessions", status_code=201)
    async def create_session():
        return {"sessionId": "session-1"}

    @session_app.post("/api/broken/sessions", status_code=201)
    async def create_broken_session():
        return Response(content=b"not json", status_code=201, media_type="text/plain")

    @session_app.delete("/api/sessions/{session_id}", status_code=204)
    async def delete_session(session_id: str):
        return Response(status_code=204)

    @session_app.get("/boom")
    async def boom():
        raise RuntimeError("handler exploded")

    return session_app


class TestRequestTrackingMiddleware:
    """Tests for request and session tracking."""

    def test_headers_added(self, client):
        response = client.get("/health")

        assert response.headers["X-Request-ID"].startswith("req-")
        assert float(response.headers["X-Response-Time"]) >= 0

    def test_requests_counted(self, client, context):
        client.get("/health")
        client.get("/health")

        assert context.system_monitor.activity.requests_per_minute() == 2

    def test_session_lifecycle(self, context):
        session_client = TestClient(_session_app())

        created = session_client.post("/api/sessions")
        assert created.status_code == 201
        assert created.json() == {"sessionId": "session-1"}
        assert context.system_monitor.activity.active_sessions == 1

        deleted = session_client.delete("/api/sessions/session-1")
        assert deleted.status_code == 204
        assert context.system_monitor.activity.active_sessions == 0

    def test_unparseable_session_body_is_ignored(self, context):
        session_client = TestClient(_session_app())

        response = session_client.post("/api/broken/sessions")

        assert response.status_code == 201
        assert response.content == b"not json"
        assert context.system_monitor.activity.active_sessions == 0

    def test_handler_error_propagates(self, context):
        session_client = TestClient(_session_app())

        with pytest.raises(RuntimeError):
            session_client.get("/boom")
