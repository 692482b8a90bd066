"""Sampling loop for hostgauge."""

import threading
from typing import Callable, Iterable

import structlog

from hostgauge.bridge import AllocatorBenchmarkBridge
from hostgauge.config import Settings
from hostgauge.errors import SamplerError
from hostgauge.models import AllocationPolicy
from hostgauge.procfs import ProcfsReader
from hostgauge.samplers import (
    CpuSampler,
    sample_context_switches,
    sample_disk,
    sample_memory,
    sample_network,
    sample_running_processes,
)
from hostgauge.store import MetricKind, MetricsSnapshotStore

log = structlog.get_logger(__name__)

MIN_INTERVAL = 0.1


class SamplingMonitor:
    """
    Runs the enabled samplers on a fixed interval and writes the store.

    Runs in a separate daemon thread. Each group is sampled in turn; a
    failing group is logged and left stale while the rest of the cycle
    carries on.
    """

    def __init__(
        self,
        store: MetricsSnapshotStore,
        groups: Iterable[str],
        interval: float = 10.0,
        reader: ProcfsReader | None = None,
        disk_device: str = "sda",
        cpu_sampler: CpuSampler | None = None,
        bridge: AllocatorBenchmarkBridge | None = None,
        policies: Iterable[AllocationPolicy] = tuple(AllocationPolicy),
    ) -> None:
        """
        Initialize the SamplingMonitor.

        Args:
            store: Snapshot store written after every successful sample.
            groups: Enabled metric groups, sampled in this order.
            interval: Seconds between cycles.
            reader: Procfs reader; defaults to the live /proc.
            disk_device: Device sampled by the disk_usage group.
            cpu_sampler: CPU sampler owning the delta baseline.
            bridge: Allocator benchmark bridge, or None when not configured.
            policies: Policies run by the allocator_benchmark group.
        """
        self._store = store
        self._reader = reader if reader is not None else ProcfsReader()
        self._disk_device = disk_device
        self._cpu_sampler = cpu_sampler if cpu_sampler is not None else CpuSampler(self._reader)
        self._bridge = bridge
        self._policies = tuple(policies)
        self._interval = max(MIN_INTERVAL, interval)
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._cycles = 0

        self._samplers: dict[str, Callable[[], None]] = {
            "cpu_usage": self._sample_cpu,
            "memory_usage": self._sample_memory,
            "disk_usage": self._sample_disk,
            "network_usage": self._sample_network,
            "running_processes": self._sample_processes,
            "context_switches": self._sample_context_switches,
            "allocator_benchmark": self._sample_allocator,
        }
        self._groups: list[str] = []
        for group in groups:
            if group not in self._samplers:
                log.warning("unknown_metric_group", group=group)
            elif group not in self._groups:
                self._groups.append(group)

    @classmethod
    def from_settings(cls, settings: Settings, store: MetricsSnapshotStore) -> "SamplingMonitor":
        reader = ProcfsReader(settings.proc_root)
        bridge = None
        if settings.benchmark_executable:
            bridge = AllocatorBenchmarkBridge(
                settings.benchmark_executable,
                fifo_path=settings.benchmark_fifo,
                timeout=settings.benchmark_timeout,
            )
        return cls(
            store,
            settings.metrics,
            interval=settings.sampling_interval,
            reader=reader,
            disk_device=settings.disk_device,
            bridge=bridge,
            policies=[AllocationPolicy(name) for name in settings.benchmark_policies],
        )

    @property
    def groups(self) -> list[str]:
        return list(self._groups)

    @property
    def interval(self) -> float:
        """Get the current sampling interval."""
        return self._interval

    @interval.setter
    def interval(self, value: float) -> None:
        self._interval = max(MIN_INTERVAL, value)

    @property
    def cycles(self) -> int:
        """Number of completed sampling cycles."""
        return self._cycles

    @property
    def is_running(self) -> bool:
        """Check if the sampling thread is running."""
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the sampling thread."""
        if self.is_running:
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._poll_loop,
            daemon=True,
            name="SamplingMonitor",
        )
        self._thread.start()
        log.info("sampling_started", groups=self._groups, interval=self._interval)

    def stop(self, timeout: float | None = 5.0) -> None:
        """
        Stop the sampling thread.

        Setting the stop event also cancels a pending benchmark pipe read.

        Args:
            timeout: How long to wait for thread to stop (seconds).
        """
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
            log.info("sampling_stopped", cycles=self._cycles)

    def _poll_loop(self) -> None:
        """Main sampling loop running in the background thread."""
        while not self._stop_event.is_set():
            self.run_cycle()
            # Wait for the interval or until stop is requested
            self._stop_event.wait(timeout=self._interval)

    def run_cycle(self) -> dict[str, bool]:
        """
        Sample every enabled group once, strictly in order.

        Returns:
            Mapping of group name to whether it updated the store.
        """
        outcome: dict[str, bool] = {}
        for group in self._groups:
            try:
                self._samplers[group]()
                outcome[group] = True
            except SamplerError as exc:
                log.warning("sampler_failed", group=group, error=str(exc), kind=type(exc).__name__)
                outcome[group] = False
            except Exception:
                log.exception("sampler_crashed", group=group)
                outcome[group] = False
        self._cycles += 1
        return outcome

    # ------------------------------------------------------------------
    # Per-group samplers
    # ------------------------------------------------------------------

    def _sample_cpu(self) -> None:
        self._store.update(MetricKind.CPU_USAGE, self._cpu_sampler.sample())

    def _sample_memory(self) -> None:
        self._store.update(MetricKind.MEMORY, sample_memory(self._reader))

    def _sample_disk(self) -> None:
        self._store.update(MetricKind.DISK, sample_disk(self._reader, self._disk_device))

    def _sample_network(self) -> None:
        self._store.update(MetricKind.NETWORK, sample_network(self._reader))

    def _sample_processes(self) -> None:
        self._store.update(MetricKind.RUNNING_PROCESSES, sample_running_processes(self._reader))

    def _sample_context_switches(self) -> None:
        self._store.update(MetricKind.CONTEXT_SWITCHES, sample_context_switches(self._reader))

    def _sample_allocator(self) -> None:
        if self._bridge is None:
            raise SamplerError("no benchmark executable configured")

        failures = 0
        for policy in self._policies:
            if self._stop_event.is_set():
                raise SamplerError("benchmark cancelled")
            result = self._bridge.run(policy, cancel=self._stop_event)
            if not result.ok:
                if self._stop_event.is_set():
                    raise SamplerError(f"benchmark cancelled during {policy.value}")
                failures += 1
                log.warning(
                    "benchmark_failed",
                    policy=policy.value,
                    status=result.status.value,
                    detail=result.detail,
                )
                continue

            reported = AllocationPolicy.from_report_name(result.metrics.policy_name)
            if reported is None:
                log.debug("benchmark_policy_ignored", name=result.metrics.policy_name)
                continue
            self._store.update(MetricKind.for_policy(reported), result.metrics)

        if failures and failures == len(self._policies):
            raise SamplerError(f"all {failures} benchmark runs failed")
