"""Process resource sampling (memory, CPU, disk) via psutil."""

from __future__ import annotations

import asyncio
import logging

import psutil

from src.monitoring.models import MemoryUsage

logger = logging.getLogger(__name__)

# CPU is measured over this window, in a worker thread
CPU_SAMPLE_WINDOW_SECONDS = 0.1


class ResourceSampler:
    """Samples this process's resource usage.

    CPU sampling blocks for a short bounded window, so it runs off the event
    loop and never stalls the tick scheduler.
    """

    def __init__(
        self,
        process: psutil.Process | None = None,
        cpu_window_seconds: float = CPU_SAMPLE_WINDOW_SECONDS,
        disk_path: str | None = None,
    ) -> None:
        """Initialize the sampler.

        Args:
            process: Process to sample, defaults to the current one
            cpu_window_seconds: Length of the CPU measurement window
            disk_path: If set, disk usage percent of this path is reported
        """
        self._process = process or psutil.Process()
        self._cpu_window = cpu_window_seconds
        self._disk_path = disk_path

    def memory_usage(self) -> MemoryUsage:
        info = self._process.memory_info()
        total = psutil.virtual_memory().total
        return MemoryUsage(rss=info.rss, vms=info.vms, used=info.rss, total=total)

    async def cpu_usage(self) -> float:
        """CPU usage percent of this process, clamped to [0, 100]."""
        percent = await asyncio.to_thread(self._process.cpu_percent, self._cpu_window)
        return min(max(percent, 0.0), 100.0)

    def disk_usage(self) -> float | None:
        if self._disk_path is None:
            return None
        try:
            return psutil.disk_usage(self._disk_path).percent
        except OSError as e:
            logger.warning("Disk usage unavailable for %s: %s", self._disk_path, e)
            return None
