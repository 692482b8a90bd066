"""Verification Test: Load Test - hammer the snapshot store from many threads.

Writers publish self-consistent memory snapshots while readers and the
exposition layer read concurrently. A reader must never observe a torn
value and scrapes must keep completing under contention.
"""

import threading
import time

from hostgauge.exposition import GaugeRegistry
from hostgauge.models import MemorySnapshot
from hostgauge.store import MetricKind, MetricsSnapshotStore

NUM_WRITERS = 4
NUM_READERS = 8
DURATION = 1.5


def consistent_snapshot(total: float) -> MemorySnapshot:
    used = total / 4
    return MemorySnapshot(
        total_mb=total,
        available_mb=total - used,
        used_mb=used,
        usage_percent=25.0,
        fragmentation_percent=0.0,
    )


class TestLoadTest:
    """Load test verification suite tests."""

    def test_readers_never_see_torn_snapshots(self):
        """
        Test that concurrent readers only ever see whole snapshots.

        Every snapshot written satisfies used + available == total, so any
        violation seen by a reader means a partial write leaked through.
        """
        store = MetricsSnapshotStore()
        stop = threading.Event()
        violations: list[MemorySnapshot] = []
        reads = [0] * NUM_READERS

        def writer(seed: int) -> None:
            total = 1000.0 * (seed + 1)
            while not stop.is_set():
                store.update(MetricKind.MEMORY, consistent_snapshot(total))
                total += 1.0

        def reader(index: int) -> None:
            while not stop.is_set():
                memory = store.read(MetricKind.MEMORY)
                if memory.used_mb + memory.available_mb != memory.total_mb:
                    violations.append(memory)
                reads[index] += 1

        threads = [threading.Thread(target=writer, args=(i,)) for i in range(NUM_WRITERS)]
        threads += [threading.Thread(target=reader, args=(i,)) for i in range(NUM_READERS)]
        for thread in threads:
            thread.start()

        time.sleep(DURATION)
        stop.set()
        for thread in threads:
            thread.join(timeout=5.0)

        assert not violations, f"Observed {len(violations)} torn snapshots"
        assert all(count > 0 for count in reads)

    def test_scrapes_complete_under_write_load(self):
        """
        Test that rendering the exposition keeps up while writers run.

        Simulates a scraper polling every 10ms against a store updated in
        a tight loop.
        """
        store = MetricsSnapshotStore()
        registry = GaugeRegistry(store, ["memory_usage", "context_switches"])
        stop = threading.Event()

        def writer() -> None:
            counter = 0
            while not stop.is_set():
                store.update(MetricKind.MEMORY, consistent_snapshot(4096.0))
                store.update(MetricKind.CONTEXT_SWITCHES, counter)
                counter += 1

        threads = [threading.Thread(target=writer) for _ in range(NUM_WRITERS)]
        for thread in threads:
            thread.start()

        scrapes = 0
        try:
            start_time = time.time()
            while time.time() - start_time < DURATION:
                body = registry.render()
                assert b"total_memory_mb 4096.0" in body or b"total_memory_mb 0.0" in body
                scrapes += 1
                time.sleep(0.01)
        finally:
            stop.set()
            for thread in threads:
                thread.join(timeout=5.0)

        assert scrapes >= 30, f"Only {scrapes} scrapes completed"
        assert registry.values()["context_switches"] > 0

    def test_snapshot_copy_is_independent(self):
        """Test a snapshot taken under load is unaffected by later writes."""
        store = MetricsSnapshotStore()
        store.update(MetricKind.RUNNING_PROCESSES, 5)

        copy = store.snapshot()
        store.update(MetricKind.RUNNING_PROCESSES, 9)

        assert copy[MetricKind.RUNNING_PROCESSES] == 5
        assert store.read(MetricKind.RUNNING_PROCESSES) == 9
