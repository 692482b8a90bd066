"""Prometheus exposition of the snapshot store."""

from dataclasses import dataclass
from typing import Any, Iterable, Iterator

import structlog
from prometheus_client import CollectorRegistry, generate_latest, start_http_server
from prometheus_client.core import GaugeMetricFamily

from hostgauge.errors import ExpositionError
from hostgauge.models import AllocationPolicy
from hostgauge.store import MetricKind, MetricsSnapshotStore

log = structlog.get_logger(__name__)


@dataclass(slots=True, frozen=True)
class GaugeSpec:
    """One exported gauge: where its value lives in the store."""

    name: str
    documentation: str
    kind: MetricKind | None
    attribute: str | None = None

    def value_from(self, value: Any) -> float:
        if self.attribute is not None:
            value = getattr(value, self.attribute)
        return float(value)


def _memory(name: str, doc: str, attribute: str) -> GaugeSpec:
    return GaugeSpec(name, doc, MetricKind.MEMORY, attribute)


def _disk(name: str, doc: str, attribute: str) -> GaugeSpec:
    return GaugeSpec(name, doc, MetricKind.DISK, attribute)


def _network(name: str, doc: str, attribute: str) -> GaugeSpec:
    return GaugeSpec(name, doc, MetricKind.NETWORK, attribute)


def _allocator(name: str, doc: str, attribute: str) -> GaugeSpec:
    # kind is resolved per policy label at collect time
    return GaugeSpec(name, doc, None, attribute)


GAUGES: dict[str, list[GaugeSpec]] = {
    "cpu_usage": [
        GaugeSpec("cpu_usage_percentage", "CPU utilization percentage", MetricKind.CPU_USAGE),
    ],
    "memory_usage": [
        _memory("memory_usage_percentage", "Memory usage percentage", "usage_percent"),
        _memory("total_memory_mb", "Total memory in MB", "total_mb"),
        _memory("used_memory_mb", "Used memory in MB", "used_mb"),
        _memory("available_memory_mb", "Available memory in MB", "available_mb"),
        _memory(
            "memory_fragmentation_percentage",
            "Share of available memory held as reclaimable cache rather than free pages",
            "fragmentation_percent",
        ),
    ],
    "disk_usage": [
        _disk("disk_read_time_ms", "Time spent reading in ms", "read_time_ms"),
        _disk("disk_write_time_ms", "Time spent writing in ms", "write_time_ms"),
        _disk("disk_io_in_progress", "I/O operations in progress", "io_in_progress"),
        _disk("disk_io_time_ms", "Time spent doing I/O in ms", "io_time_ms"),
    ],
    "network_usage": [
        _network("network_received_bytes", "Bytes received", "receive_bytes"),
        _network("network_transmitted_bytes", "Bytes transmitted", "transmit_bytes"),
        _network("network_received_errors", "Receive errors", "receive_errors"),
        _network("network_transmitted_errors", "Transmit errors", "transmit_errors"),
        _network("network_received_dropped", "Received packets dropped", "receive_dropped"),
        _network("network_transmitted_dropped", "Transmitted packets dropped", "transmit_dropped"),
    ],
    "running_processes": [
        GaugeSpec("running_processes", "Processes in runnable state", MetricKind.RUNNING_PROCESSES),
    ],
    "context_switches": [
        GaugeSpec("context_switches", "Context switches since boot", MetricKind.CONTEXT_SWITCHES),
    ],
    "allocator_benchmark": [
        _allocator("allocator_iterations", "Benchmark iterations", "iterations"),
        _allocator("allocator_time_taken_seconds", "Benchmark run time", "time_taken"),
        _allocator("allocator_total_allocated_bytes", "Bytes allocated", "total_allocated"),
        _allocator("allocator_freed_blocks", "Blocks freed", "freed_blocks"),
        _allocator("allocator_free_blocks", "Blocks left free", "free_blocks"),
        _allocator("allocator_free_size_bytes", "Bytes left free", "free_size"),
        _allocator("allocator_avg_fragmentation", "Average fragmentation", "avg_fragmentation"),
        _allocator(
            "allocator_external_fragmentation", "External fragmentation", "external_fragmentation"
        ),
    ],
}


class SnapshotCollector:
    """Custom collector reading the store at scrape time."""

    def __init__(self, store: MetricsSnapshotStore, enabled: Iterable[str]) -> None:
        self._store = store
        groups = dict.fromkeys(group for group in enabled if group in GAUGES)
        self._specs = [spec for group in groups for spec in GAUGES[group]]

    @property
    def gauge_names(self) -> list[str]:
        return [spec.name for spec in self._specs]

    def describe(self) -> Iterator[GaugeMetricFamily]:
        for spec in self._specs:
            if spec.kind is None:
                yield GaugeMetricFamily(spec.name, spec.documentation, labels=["policy"])
            else:
                yield GaugeMetricFamily(spec.name, spec.documentation)

    def collect(self) -> Iterator[GaugeMetricFamily]:
        values = self._store.snapshot()
        for spec in self._specs:
            if spec.kind is not None:
                yield GaugeMetricFamily(
                    spec.name, spec.documentation, value=spec.value_from(values[spec.kind])
                )
                continue

            family = GaugeMetricFamily(spec.name, spec.documentation, labels=["policy"])
            for policy in AllocationPolicy:
                record = values[MetricKind.for_policy(policy)]
                family.add_metric([policy.report_name], spec.value_from(record))
            yield family


class GaugeRegistry:
    """
    Explicit registry owning the collector for the enabled metric groups.

    Constructed once at startup and shared by the HTTP endpoint and the
    dashboard; it never touches prometheus_client's global default registry.
    """

    def __init__(self, store: MetricsSnapshotStore, enabled: Iterable[str]) -> None:
        self.registry = CollectorRegistry()
        self.collector = SnapshotCollector(store, list(enabled))
        self._server = None
        try:
            self.registry.register(self.collector)
        except ValueError as exc:
            raise ExpositionError(f"gauge registration failed: {exc}") from exc
        log.info("gauges_registered", count=len(self.collector.gauge_names))

    @property
    def gauge_names(self) -> list[str]:
        return self.collector.gauge_names

    def values(self) -> dict[str, float]:
        """Current value of every exported series, keyed like the text format."""
        result: dict[str, float] = {}
        for family in self.collector.collect():
            for sample in family.samples:
                key = sample.name
                if sample.labels:
                    labels = ",".join(f'{k}="{v}"' for k, v in sorted(sample.labels.items()))
                    key = f"{key}{{{labels}}}"
                result[key] = sample.value
        return result

    def render(self) -> bytes:
        return generate_latest(self.registry)

    def serve(self, port: int, addr: str = "0.0.0.0") -> None:
        """Start the scrape endpoint on a daemon thread."""
        try:
            self._server, _ = start_http_server(port, addr=addr, registry=self.registry)
        except OSError as exc:
            raise ExpositionError(f"cannot listen on {addr}:{port}: {exc}") from exc
        log.info("exposition_listening", addr=addr, port=port)

    def shutdown(self) -> None:
        if self._server is not None:
            self._server.shutdown()
            self._server.server_close()
            self._server = None
