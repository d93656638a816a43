"""System vitals collection via psutil."""

import asyncio
from dataclasses import dataclass

import psutil

# Seconds psutil blocks to measure CPU load between two readings
CPU_SAMPLE_SECONDS = 0.5


@dataclass
class SystemMetrics:
    """One snapshot of host vitals. Percentages are rounded to whole numbers."""

    memory_percent: int
    disk_percent: int
    cpu_percent: int
    process_count: int

    def to_dict(self) -> dict:
        return {
            "memoryPercent": self.memory_percent,
            "diskPercent": self.disk_percent,
            "cpuPercent": self.cpu_percent,
            "processCount": self.process_count,
        }


def _memory_percent() -> float:
    """Percent of memory in use, counting reclaimable cache as free."""
    mem = psutil.virtual_memory()
    if mem.total <= 0:
        return 0.0
    return (mem.total - mem.available) / mem.total * 100


def _disk_percent(path: str = "/") -> float:
    return psutil.disk_usage(path).percent


def collect_system_metrics() -> SystemMetrics:
    """Collect a metrics snapshot (blocking)."""
    return SystemMetrics(
        memory_percent=round(_memory_percent()),
        disk_percent=round(_disk_percent()),
        cpu_percent=round(psutil.cpu_percent(interval=CPU_SAMPLE_SECONDS)),
        process_count=len(psutil.pids()),
    )


async def fetch_system_metrics() -> SystemMetrics:
    """Run collection in executor (psutil calls block)."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, collect_system_metrics)
