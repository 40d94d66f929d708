from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from src.monitoring.activity import RequestActivity
from src.monitoring.config import MonitoringConfig, set_config
from src.monitoring.events import EventChannel
from src.monitoring.models import MemoryUsage, ServiceCall
from src.monitoring.service_monitor import ServiceMonitor
from src.monitoring.setup import set_monitoring


@pytest.fixture(autouse=True)
def reset_monitoring_context():
    """Make sure no test leaks a global monitoring context or config."""
    set_monitoring(None)
    set_config(None)
    yield
    set_monitoring(None)
    set_config(None)


@pytest.fixture
def config():
    return MonitoringConfig()


@pytest.fixture
def events():
    return EventChannel()


@pytest.fixture
def service_monitor():
    return ServiceMonitor()


@pytest.fixture
def activity():
    return RequestActivity()


def _make_sampler(memory_percent: float = 10.0, cpu: float = 5.0, disk: float | None = None):
    """Resource sampler double with fixed readings."""
    sampler = MagicMock()
    total = 1000
    sampler.memory_usage.return_value = MemoryUsage(
        rss=int(total * memory_percent / 100),
        vms=2 * total,
        used=int(total * memory_percent / 100),
        total=total,
    )
    sampler.cpu_usage = AsyncMock(return_value=cpu)
    sampler.disk_usage.return_value = disk
    return sampler


@pytest.fixture
def sampler():
    return _make_sampler()


@pytest.fixture
def make_sampler():
    """Factory for resource sampler doubles."""
    return _make_sampler


def _finished_call(
    service: str, method: str, duration_ms: float, success: bool = True
) -> ServiceCall:
    """A terminated call with an exact duration."""
    now = datetime.now(tz=timezone.utc)
    return ServiceCall(
        service_name=service,
        method_name=method,
        start_time=now,
        start_mono=0.0,
        end_time=now,
        duration_ms=duration_ms,
        success=success,
        error=None if success else "boom",
    )


def _record_calls(
    monitor: ServiceMonitor, service: str, method: str, durations: list[float], failures: int = 0
) -> None:
    """Feed terminated calls straight into a monitor's aggregator.

    The first `failures` calls are recorded as failed.
    """
    for i, duration in enumerate(durations):
        monitor._aggregator.record(_finished_call(service, method, duration, success=i >= failures))


@pytest.fixture
def finished_call():
    return _finished_call


@pytest.fixture
def record_calls():
    return _record_calls
