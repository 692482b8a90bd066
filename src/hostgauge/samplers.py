"""Samplers turning raw procfs counters into gauge values."""

from dataclasses import dataclass

import structlog

from hostgauge.errors import (
    DegenerateInterval,
    DeviceNotFound,
    FieldNotFound,
    InsufficientHistory,
    NoData,
)
from hostgauge.models import CpuSample, DiskSnapshot, MemorySnapshot, NetworkSnapshot
from hostgauge.procfs import DISKSTATS, MEMINFO, NET_DEV, STAT, ProcfsReader

log = structlog.get_logger(__name__)

# 0-based token positions within a diskstats line (kernel >= 2.6 layout).
DISK_FIELDS: dict[str, int] = {
    "read_time_ms": 4,
    "write_time_ms": 8,
    "io_in_progress": 9,
    "io_time_ms": 10,
}

# 0-based counter positions after the "iface:" prefix in net/dev.
# Receive: bytes packets errs drop fifo frame compressed multicast,
# then transmit: bytes packets errs drop ...
NET_FIELDS: dict[str, int] = {
    "receive_bytes": 0,
    "receive_errors": 2,
    "receive_dropped": 3,
    "transmit_bytes": 8,
    "transmit_errors": 10,
    "transmit_dropped": 11,
}

NET_HEADER_LINES = 2
KB_PER_MB = 1024.0


# ----------------------------------------------------------------------
# CPU
# ----------------------------------------------------------------------


def parse_cpu_line(line: str) -> CpuSample:
    """Parse the aggregate ``cpu`` line; guest columns are ignored."""
    tokens = line.split()
    if not tokens or tokens[0] != "cpu":
        raise FieldNotFound(f"expected aggregate cpu line, got {line[:20]!r}")
    try:
        values = [int(token) for token in tokens[1:9]]
    except ValueError as exc:
        raise FieldNotFound(f"non-numeric cpu counter in {line!r}") from exc
    if len(values) < 8:
        raise FieldNotFound(f"cpu line has {len(values)} counters, need 8")
    return CpuSample(*values)


def read_cpu_sample(reader: ProcfsReader) -> CpuSample:
    lines = reader.read_lines(STAT)
    if not lines:
        raise FieldNotFound(f"{STAT} is empty")
    return parse_cpu_line(lines[0])


def cpu_utilization(previous: CpuSample, current: CpuSample) -> float:
    """
    Busy percentage between two samples.

    Raises:
        DegenerateInterval: if no ticks elapsed (or counters went backwards).
    """
    total_delta = current.total - previous.total
    idle_delta = current.idle_total - previous.idle_total
    if total_delta <= 0:
        raise DegenerateInterval(f"total tick delta is {total_delta}")
    percent = (total_delta - idle_delta) / total_delta * 100.0
    return min(100.0, max(0.0, percent))


@dataclass(slots=True)
class CpuBaseline:
    """Previous CPU sample; ``None`` until the first read."""

    previous: CpuSample | None = None

    @property
    def ready(self) -> bool:
        return self.previous is not None


class CpuSampler:
    """
    Delta-based CPU utilization sampler.

    The baseline is owned by the sampler and must only be advanced by a
    single caller, normally the sampling loop thread.
    """

    def __init__(self, reader: ProcfsReader, baseline: CpuBaseline | None = None) -> None:
        self._reader = reader
        self.baseline = baseline if baseline is not None else CpuBaseline()

    def sample(self) -> float:
        """
        Return utilization since the previous call.

        The baseline always moves to the sample just read, so the next call
        measures from here even when this one fails.

        Raises:
            InsufficientHistory: on the very first call.
            DegenerateInterval: when no ticks elapsed.
        """
        current = read_cpu_sample(self._reader)
        previous, self.baseline.previous = self.baseline.previous, current
        if previous is None:
            raise InsufficientHistory("first CPU sample stored as baseline")
        return cpu_utilization(previous, current)


# ----------------------------------------------------------------------
# Memory
# ----------------------------------------------------------------------


def fragmentation_estimate(available_kb: float, free_kb: float) -> float:
    """
    Share of available memory that is reclaimable rather than free.

    Memory counted in MemAvailable but not in MemFree sits in page cache,
    buffers and reclaimable slabs; the larger that share, the more work the
    kernel needs before it can hand out contiguous free pages.
    """
    if available_kb <= 0:
        return 0.0
    reclaimable = max(0.0, available_kb - free_kb)
    return min(100.0, reclaimable / available_kb * 100.0)


def sample_memory(reader: ProcfsReader) -> MemorySnapshot:
    """
    Read MemTotal/MemAvailable and derive the memory gauges.

    MemFree only feeds the fragmentation estimate; without it the estimate
    is reported as 0.
    """
    try:
        total_kb = float(reader.read_labeled(MEMINFO, "MemTotal"))
        available_kb = float(reader.read_labeled(MEMINFO, "MemAvailable"))
    except FieldNotFound as exc:
        raise NoData(str(exc)) from exc
    if total_kb <= 0:
        raise NoData("MemTotal is zero")

    try:
        free_kb = float(reader.read_labeled(MEMINFO, "MemFree"))
        fragmentation = fragmentation_estimate(available_kb, free_kb)
    except FieldNotFound:
        log.debug("memfree_missing")
        fragmentation = 0.0

    used_kb = total_kb - available_kb
    return MemorySnapshot(
        total_mb=total_kb / KB_PER_MB,
        available_mb=available_kb / KB_PER_MB,
        used_mb=used_kb / KB_PER_MB,
        usage_percent=used_kb / total_kb * 100.0,
        fragmentation_percent=fragmentation,
    )


# ----------------------------------------------------------------------
# Disk
# ----------------------------------------------------------------------


def parse_disk_line(tokens: list[str], device: str) -> DiskSnapshot:
    """Apply DISK_FIELDS to a tokenized diskstats line."""
    values: dict[str, int] = {}
    for name, index in DISK_FIELDS.items():
        try:
            values[name] = int(tokens[index])
        except (IndexError, ValueError) as exc:
            raise FieldNotFound(f"diskstats line for {device!r} lacks field {index}") from exc
    return DiskSnapshot(device=device, **values)


def sample_disk(reader: ProcfsReader, device: str) -> DiskSnapshot:
    try:
        tokens = reader.find_line(DISKSTATS, device)
    except FieldNotFound as exc:
        raise DeviceNotFound(device) from exc
    return parse_disk_line(tokens, device)


# ----------------------------------------------------------------------
# Network
# ----------------------------------------------------------------------


def parse_net_dev(lines: list[str]) -> NetworkSnapshot:
    """
    Parse net/dev content, keeping only the last interface seen.

    Each interface line replaces the previously parsed one, so with several
    interfaces only the final line's counters are returned. Malformed lines
    are skipped.
    """
    snapshot: NetworkSnapshot | None = None
    for line in lines[NET_HEADER_LINES:]:
        name, sep, rest = line.partition(":")
        if not sep:
            continue
        counters = rest.split()
        try:
            values = {field: int(counters[index]) for field, index in NET_FIELDS.items()}
        except (IndexError, ValueError):
            log.debug("net_dev_line_skipped", interface=name.strip())
            continue
        snapshot = NetworkSnapshot(interface=name.strip(), **values)
    if snapshot is None:
        raise FieldNotFound(f"no interfaces listed in {NET_DEV}")
    return snapshot


def sample_network(reader: ProcfsReader) -> NetworkSnapshot:
    return parse_net_dev(reader.read_lines(NET_DEV))


# ----------------------------------------------------------------------
# Scheduler counters
# ----------------------------------------------------------------------


def sample_running_processes(reader: ProcfsReader) -> int:
    count = int(reader.read_labeled(STAT, "procs_running"))
    if count < 0:
        raise NoData(f"negative procs_running: {count}")
    return count


def sample_context_switches(reader: ProcfsReader) -> int:
    return int(reader.read_labeled(STAT, "ctxt"))
