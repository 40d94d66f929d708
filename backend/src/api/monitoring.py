# backend/src/api/monitoring.py
"""Monitoring API endpoints for health, metrics, alerts and dashboards."""

from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from pydantic import BaseModel, Field

from src.monitoring.health import status_code_for
from src.monitoring.models import IndicatorSeverity, ServiceMetrics
from src.monitoring.setup import MonitoringContext, get_monitoring


class CriticalFailureRequest(BaseModel):
    """Request body for reporting a critical failure."""

    type: str = Field(min_length=1)
    component: str = Field(min_length=1)
    description: str = Field(min_length=1)
    severity: IndicatorSeverity
    metadata: dict[str, Any] | None = None


class CriticalFailureResponse(BaseModel):
    """Response for a processed critical failure."""

    success: bool
    message: str
    alert_id: str
    timestamp: datetime


class ResolveAlertResponse(BaseModel):
    """Response for a resolved alert."""

    success: bool
    alert_id: str
    resolved_at: datetime | None


class ResetResponse(BaseModel):
    """Response for a monitoring reset."""

    success: bool
    message: str
    timestamp: datetime


def get_context() -> MonitoringContext:
    """Dependency returning the monitoring context, 503 until initialized."""
    context = get_monitoring()
    if context is None:
        raise HTTPException(status_code=503, detail="Monitoring not initialized")
    return context


router = APIRouter(prefix="/api/monitoring", tags=["monitoring"])


@router.get("/health")
async def get_health(
    response: Response, context: MonitoringContext = Depends(get_context)
) -> dict[str, Any]:
    """Get system health.

    Returns 200 if healthy, 206 if degraded, 503 if unhealthy.
    """
    health = await context.system_monitor.get_system_health()
    response.status_code = status_code_for(health.status)
    return health.to_dict()


@router.get("/dashboard")
async def get_dashboard(context: MonitoringContext = Depends(get_context)) -> dict[str, Any]:
    return await context.system_monitor.get_dashboard_data()


@router.get("/services/metrics")
async def get_all_service_metrics(
    context: MonitoringContext = Depends(get_context),
) -> dict[str, Any]:
    metrics = context.service_monitor.get_all_metrics()
    return {
        "metrics": {key: m.to_dict() for key, m in metrics.items()},
        "timestamp": datetime.now(tz=timezone.utc).isoformat(),
    }


@router.get("/services/active-calls")
async def get_active_calls(context: MonitoringContext = Depends(get_context)) -> dict[str, Any]:
    calls = context.service_monitor.get_active_calls()
    return {"active_calls": [c.to_dict() for c in calls], "count": len(calls)}


@router.get("/services/call-history")
async def get_call_history(
    limit: int = Query(default=100, ge=1, le=1000),
    context: MonitoringContext = Depends(get_context),
) -> dict[str, Any]:
    calls = context.service_monitor.get_call_history(limit)
    return {"call_history": [c.to_dict() for c in calls], "count": len(calls)}


@router.get("/services/{service_name}/metrics")
async def get_service_metrics(
    service_name: str,
    method: str | None = Query(default=None),
    context: MonitoringContext = Depends(get_context),
) -> dict[str, Any]:
    """Get metrics for one service.

    Args:
        service_name: Service to query
        method: If given, only this method's metrics (zeroed when never called)
    """
    metrics = context.service_monitor.get_service_metrics(service_name, method)
    if isinstance(metrics, ServiceMetrics):
        body: Any = metrics.to_dict()
    else:
        body = {name: m.to_dict() for name, m in metrics.items()}
    return {"service": service_name, "method": method, "metrics": body}


@router.get("/alerts")
async def get_alerts(
    active: bool = Query(default=False),
    limit: int | None = Query(default=None, ge=1),
    context: MonitoringContext = Depends(get_context),
) -> dict[str, Any]:
    """List alerts, most recent first.

    Args:
        active: Only unresolved alerts
        limit: Maximum number of alerts returned
    """
    if active:
        alerts = context.system_monitor.get_active_alerts()
        alerts = list(reversed(alerts))[:limit] if limit else list(reversed(alerts))
    else:
        alerts = context.system_monitor.get_all_alerts(limit)
    return {"alerts": [a.to_dict() for a in alerts], "count": len(alerts)}


@router.patch("/alerts/{alert_id}/resolve", response_model=ResolveAlertResponse)
async def resolve_alert(
    alert_id: str, context: MonitoringContext = Depends(get_context)
) -> ResolveAlertResponse:
    """Resolve an alert. 404 when the alert is unknown or already resolved."""
    if not context.system_monitor.resolve_alert(alert_id):
        raise HTTPException(
            status_code=404, detail=f"Alert {alert_id} not found or already resolved"
        )

    resolved_at = next(
        (a.resolved_at for a in context.system_monitor.get_all_alerts() if a.id == alert_id),
        None,
    )
    return ResolveAlertResponse(success=True, alert_id=alert_id, resolved_at=resolved_at)


@router.get("/metrics/history")
async def get_metrics_history(
    hours: float | None = Query(default=None, gt=0),
    context: MonitoringContext = Depends(get_context),
) -> dict[str, Any]:
    history = context.system_monitor.get_metrics_history(hours)
    return {"history": [s.to_dict() for s in history], "count": len(history)}


@router.get("/trends")
async def get_trends(
    hours: float = Query(default=24, gt=0),
    context: MonitoringContext = Depends(get_context),
) -> dict[str, Any]:
    trends = context.system_monitor.get_health_trends(hours)
    return {"trends": [t.to_dict() for t in trends], "hours": hours}


@router.get("/critical-failures")
async def get_critical_failures(
    context: MonitoringContext = Depends(get_context),
) -> dict[str, Any]:
    report = await context.system_monitor.get_critical_failure_indicators()
    return {**report.to_dict(), "timestamp": datetime.now(tz=timezone.utc).isoformat()}


@router.post("/critical-failures", response_model=CriticalFailureResponse)
async def report_critical_failure(
    request: CriticalFailureRequest, context: MonitoringContext = Depends(get_context)
) -> CriticalFailureResponse:
    alert = await context.dispatcher.process_critical_failure(
        request.type,
        request.component,
        request.description,
        request.severity,
        request.metadata,
    )
    return CriticalFailureResponse(
        success=True,
        message="Critical failure processed successfully",
        alert_id=alert.id,
        timestamp=alert.timestamp,
    )


@router.get("/alerting/stats")
async def get_alerting_stats(context: MonitoringContext = Depends(get_context)) -> dict[str, Any]:
    return context.dispatcher.get_statistics()


@router.get("/realtime")
async def get_realtime(context: MonitoringContext = Depends(get_context)) -> dict[str, Any]:
    metrics = await context.coordinator.get_real_time_metrics()
    return metrics.to_dict()


@router.get("/insights")
async def get_insights(context: MonitoringContext = Depends(get_context)) -> dict[str, Any]:
    insights = await context.coordinator.get_performance_insights()
    return insights.to_dict()


@router.get("/overview")
async def get_overview(context: MonitoringContext = Depends(get_context)) -> dict[str, Any]:
    return await context.coordinator.get_comprehensive_monitoring_data()


@router.post("/reset", response_model=ResetResponse)
async def reset_monitoring(context: MonitoringContext = Depends(get_context)) -> ResetResponse:
    """Clear all monitoring data. Intended for development and tests."""
    context.reset()
    return ResetResponse(
        success=True,
        message="Monitoring data reset",
        timestamp=datetime.now(tz=timezone.utc),
    )
