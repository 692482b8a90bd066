"""Data models for hostgauge."""

from dataclasses import dataclass
from enum import Enum


@dataclass(slots=True, frozen=True)
class CpuSample:
    """Cumulative CPU tick counters from the aggregate ``cpu`` line."""

    user: int
    nice: int
    system: int
    idle: int
    iowait: int
    irq: int
    softirq: int
    steal: int

    @property
    def idle_total(self) -> int:
        return self.idle + self.iowait

    @property
    def non_idle(self) -> int:
        return self.user + self.nice + self.system + self.irq + self.softirq + self.steal

    @property
    def total(self) -> int:
        return self.idle_total + self.non_idle


@dataclass(slots=True, frozen=True)
class MemorySnapshot:
    """Instantaneous memory figures, sizes in MB."""

    total_mb: float = 0.0
    available_mb: float = 0.0
    used_mb: float = 0.0
    usage_percent: float = 0.0
    fragmentation_percent: float = 0.0


@dataclass(slots=True, frozen=True)
class DiskSnapshot:
    """Timing counters for a single block device."""

    device: str = ""
    read_time_ms: int = 0
    write_time_ms: int = 0
    io_in_progress: int = 0
    io_time_ms: int = 0


@dataclass(slots=True, frozen=True)
class NetworkSnapshot:
    """Counters for the last interface listed in net/dev."""

    interface: str = ""
    receive_bytes: int = 0
    receive_errors: int = 0
    receive_dropped: int = 0
    transmit_bytes: int = 0
    transmit_errors: int = 0
    transmit_dropped: int = 0


class AllocationPolicy(Enum):
    """Allocation policies understood by the allocator benchmark.

    The value is the argument passed to the benchmark executable; the
    report name is how the benchmark labels its result record.
    """

    FIRST = "FIRST"
    BEST = "BEST"
    WORST = "WORST"

    @property
    def report_name(self) -> str:
        return f"{self.value.capitalize()}_Fit"

    @classmethod
    def from_report_name(cls, name: str) -> "AllocationPolicy | None":
        for policy in cls:
            if policy.report_name == name:
                return policy
        return None


@dataclass(slots=True, frozen=True)
class AllocatorPolicyMetrics:
    """One result record produced by the allocator benchmark."""

    policy_name: str = ""
    iterations: int = 0
    time_taken: float = 0.0
    total_allocated: int = 0
    freed_blocks: int = 0
    free_blocks: int = 0
    free_size: int = 0
    avg_fragmentation: float = 0.0
    external_fragmentation: float = 0.0
