"""Tests for the allocator benchmark bridge."""

import os
import stat
import threading
import time
from pathlib import Path

import pytest

from hostgauge.bridge import (
    AllocatorBenchmarkBridge,
    BridgeStatus,
    drain_fifo,
    ensure_fifo,
    parse_record,
)
from hostgauge.errors import MalformedRecord, PipeTimeout, PipeUnavailable
from hostgauge.models import AllocationPolicy, AllocatorPolicyMetrics

RECORD = "First_Fit 10 0.5 1024 2 3 512 1.5 2.5"


def make_benchmark(tmp_path: Path, body: str) -> str:
    """Write an executable shell script standing in for the benchmark."""
    script = tmp_path / "benchmark.sh"
    script.write_text("#!/bin/sh\n" + body + "\n")
    script.chmod(0o755)
    return str(script)


@pytest.fixture
def fifo_path(tmp_path: Path) -> str:
    return str(tmp_path / "bench_fifo")


class TestParseRecord:
    """Tests for the record parser."""

    def test_reference_payload(self):
        """Test the documented First_Fit payload."""
        metrics = parse_record(RECORD)

        assert metrics == AllocatorPolicyMetrics(
            policy_name="First_Fit",
            iterations=10,
            time_taken=0.5,
            total_allocated=1024,
            freed_blocks=2,
            free_blocks=3,
            free_size=512,
            avg_fragmentation=1.5,
            external_fragmentation=2.5,
        )

    def test_bytes_payload_with_newline(self):
        """Test a raw pipe buffer with trailing whitespace."""
        metrics = parse_record((RECORD + "\n").encode())
        assert metrics.iterations == 10

    def test_wrong_field_count(self):
        with pytest.raises(MalformedRecord):
            parse_record("First_Fit 10 0.5 1024 2 3 512 1.5")

    def test_wrong_type(self):
        with pytest.raises(MalformedRecord):
            parse_record("First_Fit ten 0.5 1024 2 3 512 1.5 2.5")

    def test_negative_unsigned(self):
        with pytest.raises(MalformedRecord):
            parse_record("First_Fit 10 0.5 -1 2 3 512 1.5 2.5")

    def test_empty(self):
        with pytest.raises(MalformedRecord):
            parse_record(b"")

    def test_invalid_utf8(self):
        with pytest.raises(MalformedRecord):
            parse_record(b"\xff\xfe")


class TestFifo:
    """Tests for named pipe handling."""

    def test_ensure_fifo_creates_pipe(self, fifo_path):
        ensure_fifo(fifo_path)
        assert stat.S_ISFIFO(os.stat(fifo_path).st_mode)

        # Existing FIFO is accepted as-is
        ensure_fifo(fifo_path)

    def test_ensure_fifo_rejects_regular_file(self, fifo_path):
        Path(fifo_path).write_text("not a pipe")
        with pytest.raises(PipeUnavailable):
            ensure_fifo(fifo_path)

    def test_drain_reads_until_eof(self, fifo_path):
        """Test a record written in pieces is read whole."""
        ensure_fifo(fifo_path)
        fd = os.open(fifo_path, os.O_RDONLY | os.O_NONBLOCK)

        def writer():
            with open(fifo_path, "w") as pipe:
                pipe.write("First_Fit 10 0.5 ")
                pipe.flush()
                time.sleep(0.05)
                pipe.write("1024 2 3 512 1.5 2.5")

        thread = threading.Thread(target=writer)
        thread.start()
        try:
            payload = drain_fifo(fd, timeout=5.0)
        finally:
            os.close(fd)
            thread.join()

        assert payload.decode() == RECORD

    def test_drain_times_out(self, fifo_path):
        """Test a pipe nobody writes to is abandoned at the deadline."""
        ensure_fifo(fifo_path)
        fd = os.open(fifo_path, os.O_RDONLY | os.O_NONBLOCK)
        start = time.monotonic()
        try:
            with pytest.raises(PipeTimeout):
                drain_fifo(fd, timeout=0.3)
        finally:
            os.close(fd)

        assert time.monotonic() - start < 2.0

    def test_drain_cancelled(self, fifo_path):
        """Test setting the cancel event unblocks the read."""
        ensure_fifo(fifo_path)
        fd = os.open(fifo_path, os.O_RDONLY | os.O_NONBLOCK)
        cancel = threading.Event()
        timer = threading.Timer(0.2, cancel.set)
        timer.start()
        start = time.monotonic()
        try:
            with pytest.raises(PipeTimeout):
                drain_fifo(fd, timeout=30.0, cancel=cancel)
        finally:
            os.close(fd)
            timer.cancel()

        assert time.monotonic() - start < 5.0


class TestAllocatorBenchmarkBridge:
    """End-to-end tests against a scripted benchmark."""

    def test_run_ok(self, tmp_path, fifo_path):
        """Test the record written by the benchmark is returned."""
        args_file = tmp_path / "args"
        executable = make_benchmark(
            tmp_path, f'echo "$@" > {args_file}\nprintf "{RECORD}" > {fifo_path}'
        )
        bridge = AllocatorBenchmarkBridge(executable, fifo_path=fifo_path, timeout=5.0)

        result = bridge.run(AllocationPolicy.FIRST)

        assert result.ok
        assert result.status is BridgeStatus.OK
        assert result.metrics == parse_record(RECORD)
        assert args_file.read_text().strip() == "FIRST"

    def test_collect_returns_metrics(self, tmp_path, fifo_path):
        executable = make_benchmark(
            tmp_path, f'printf "Best_Fit 7 1.25 2048 1 4 256 0.5 0.75\\n" > {fifo_path}'
        )
        bridge = AllocatorBenchmarkBridge(executable, fifo_path=fifo_path, timeout=5.0)

        metrics = bridge.collect(AllocationPolicy.BEST)

        assert metrics.policy_name == "Best_Fit"
        assert metrics.total_allocated == 2048

    def test_missing_executable(self, tmp_path, fifo_path):
        """Test a spawn failure is reported, not raised."""
        bridge = AllocatorBenchmarkBridge(str(tmp_path / "absent"), fifo_path=fifo_path, timeout=1.0)

        result = bridge.run(AllocationPolicy.BEST)

        assert result.status is BridgeStatus.PROCESS_ERROR
        assert result.metrics is None

    def test_benchmark_exits_without_writing(self, tmp_path, fifo_path):
        """Test an early exit is a process error rather than a timeout."""
        executable = make_benchmark(tmp_path, "exit 3")
        bridge = AllocatorBenchmarkBridge(executable, fifo_path=fifo_path, timeout=10.0)

        start = time.monotonic()
        result = bridge.run(AllocationPolicy.WORST)

        assert result.status is BridgeStatus.PROCESS_ERROR
        assert "3" in result.detail
        assert time.monotonic() - start < 5.0

    def test_benchmark_hangs(self, tmp_path, fifo_path):
        """Test a silent benchmark times out and is terminated."""
        executable = make_benchmark(tmp_path, "exec sleep 30")
        bridge = AllocatorBenchmarkBridge(
            executable, fifo_path=fifo_path, timeout=0.3, reap_timeout=0.2
        )

        start = time.monotonic()
        result = bridge.run(AllocationPolicy.FIRST)

        assert result.status is BridgeStatus.TIMEOUT
        assert time.monotonic() - start < 5.0

    def test_malformed_output(self, tmp_path, fifo_path):
        executable = make_benchmark(tmp_path, f'printf "garbage" > {fifo_path}')
        bridge = AllocatorBenchmarkBridge(executable, fifo_path=fifo_path, timeout=5.0)

        result = bridge.run(AllocationPolicy.FIRST)

        assert result.status is BridgeStatus.MALFORMED

    def test_pipe_path_is_not_a_fifo(self, tmp_path, fifo_path):
        Path(fifo_path).write_text("occupied")
        executable = make_benchmark(tmp_path, "exit 0")
        bridge = AllocatorBenchmarkBridge(executable, fifo_path=fifo_path, timeout=1.0)

        result = bridge.run(AllocationPolicy.FIRST)

        assert result.status is BridgeStatus.PIPE_ERROR
