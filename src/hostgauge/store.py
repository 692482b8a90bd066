"""Thread-safe holder of the latest value for every metric."""

import threading
import time
from enum import Enum
from typing import Any

from hostgauge.models import (
    AllocationPolicy,
    AllocatorPolicyMetrics,
    DiskSnapshot,
    MemorySnapshot,
    NetworkSnapshot,
)


class MetricKind(Enum):
    """Slots held by the snapshot store."""

    CPU_USAGE = "cpu_usage"
    MEMORY = "memory"
    DISK = "disk"
    NETWORK = "network"
    RUNNING_PROCESSES = "running_processes"
    CONTEXT_SWITCHES = "context_switches"
    ALLOCATOR_FIRST_FIT = "allocator_first_fit"
    ALLOCATOR_BEST_FIT = "allocator_best_fit"
    ALLOCATOR_WORST_FIT = "allocator_worst_fit"

    @classmethod
    def for_policy(cls, policy: AllocationPolicy) -> "MetricKind":
        return _POLICY_KINDS[policy]


_POLICY_KINDS = {
    AllocationPolicy.FIRST: MetricKind.ALLOCATOR_FIRST_FIT,
    AllocationPolicy.BEST: MetricKind.ALLOCATOR_BEST_FIT,
    AllocationPolicy.WORST: MetricKind.ALLOCATOR_WORST_FIT,
}

# Value type accepted by each slot.
SLOT_TYPES: dict[MetricKind, type | tuple[type, ...]] = {
    MetricKind.CPU_USAGE: (int, float),
    MetricKind.MEMORY: MemorySnapshot,
    MetricKind.DISK: DiskSnapshot,
    MetricKind.NETWORK: NetworkSnapshot,
    MetricKind.RUNNING_PROCESSES: int,
    MetricKind.CONTEXT_SWITCHES: int,
    MetricKind.ALLOCATOR_FIRST_FIT: AllocatorPolicyMetrics,
    MetricKind.ALLOCATOR_BEST_FIT: AllocatorPolicyMetrics,
    MetricKind.ALLOCATOR_WORST_FIT: AllocatorPolicyMetrics,
}


def _sentinels() -> dict[MetricKind, Any]:
    return {
        MetricKind.CPU_USAGE: 0.0,
        MetricKind.MEMORY: MemorySnapshot(),
        MetricKind.DISK: DiskSnapshot(),
        MetricKind.NETWORK: NetworkSnapshot(),
        MetricKind.RUNNING_PROCESSES: 0,
        MetricKind.CONTEXT_SWITCHES: 0,
        MetricKind.ALLOCATOR_FIRST_FIT: AllocatorPolicyMetrics(AllocationPolicy.FIRST.report_name),
        MetricKind.ALLOCATOR_BEST_FIT: AllocatorPolicyMetrics(AllocationPolicy.BEST.report_name),
        MetricKind.ALLOCATOR_WORST_FIT: AllocatorPolicyMetrics(AllocationPolicy.WORST.report_name),
    }


class MetricsSnapshotStore:
    """
    Latest derived value per metric, guarded by one lock.

    Values are immutable (numbers or frozen dataclasses), so a reader always
    sees a complete value. Different kinds may come from different sampling
    cycles; only ``snapshot()`` copies all slots under a single acquisition.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._values: dict[MetricKind, Any] = _sentinels()
        self._updated_at: dict[MetricKind, float] = {}

    def update(self, kind: MetricKind, value: Any) -> None:
        """Replace the value held for ``kind``."""
        expected = SLOT_TYPES[kind]
        if isinstance(value, bool) or not isinstance(value, expected):
            raise TypeError(f"{kind.name} expects {expected}, got {type(value).__name__}")
        now = time.monotonic()
        with self._lock:
            self._values[kind] = value
            self._updated_at[kind] = now

    def read(self, kind: MetricKind) -> Any:
        with self._lock:
            return self._values[kind]

    def updated_at(self, kind: MetricKind) -> float | None:
        """Monotonic time of the last update, or None if still a sentinel."""
        with self._lock:
            return self._updated_at.get(kind)

    def snapshot(self) -> dict[MetricKind, Any]:
        """Copy of every slot taken under one lock acquisition."""
        with self._lock:
            return dict(self._values)
