"""Threshold evaluation for system vitals."""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from premortem.collector import SystemMetrics
from premortem.config import ThresholdConfig


class BreachType(Enum):
    """Metric that crossed its ceiling."""

    MEMORY = "memory"
    DISK = "disk"
    CPU = "cpu"
    PROCESS = "process"  # Accepted in config, not evaluated


@dataclass(frozen=True)
class ThresholdBreach:
    """A single metric above its configured ceiling at evaluation time."""

    type: BreachType
    current_value: int
    threshold_value: int
    timestamp: datetime


# Evaluation order: the first exceeded metric wins
_CHECK_ORDER = (
    (BreachType.MEMORY, "memory_percent"),
    (BreachType.DISK, "disk_percent"),
    (BreachType.CPU, "cpu_percent"),
)


def check_thresholds(metrics: SystemMetrics, thresholds: ThresholdConfig) -> ThresholdBreach | None:
    """Return the first breached threshold in memory, disk, cpu order.

    A threshold is breached when the metric is strictly greater than it.
    Thresholds left as None are skipped.
    """
    for breach_type, attr in _CHECK_ORDER:
        threshold = getattr(thresholds, attr)
        if threshold is None:
            continue
        current = getattr(metrics, attr)
        if current > threshold:
            return ThresholdBreach(
                type=breach_type,
                current_value=current,
                threshold_value=threshold,
                timestamp=datetime.now(timezone.utc),
            )

    return None
