"""Bridge to the external allocator benchmark.

The benchmark is launched once per policy and reports a single
whitespace-separated record on a named pipe:

    <policy_name> <iterations> <time_taken> <total_allocated> <freed_blocks>
    <free_blocks> <free_size> <avg_fragmentation> <external_fragmentation>

The read end of the pipe is opened before the benchmark starts, so its
open-for-write never blocks, and the read is bounded by a deadline.
"""

import os
import selectors
import stat
import subprocess
import threading
import time
from dataclasses import dataclass
from enum import Enum

import psutil
import structlog

from hostgauge.errors import (
    BridgeError,
    MalformedRecord,
    PipeTimeout,
    PipeUnavailable,
    ProcessSpawnFailed,
)
from hostgauge.models import AllocationPolicy, AllocatorPolicyMetrics

log = structlog.get_logger(__name__)

DEFAULT_FIFO_PATH = "/tmp/my_fifo"
RECORD_FIELDS = 9
READ_SIZE = 4096
POLL_SLICE = 0.1


class BridgeStatus(Enum):
    """Outcome of one benchmark invocation."""

    OK = "ok"
    TIMEOUT = "timeout"
    PROCESS_ERROR = "process_error"
    PIPE_ERROR = "pipe_error"
    MALFORMED = "malformed"


_STATUS_BY_ERROR: list[tuple[type[BridgeError], BridgeStatus]] = [
    (PipeTimeout, BridgeStatus.TIMEOUT),
    (ProcessSpawnFailed, BridgeStatus.PROCESS_ERROR),
    (PipeUnavailable, BridgeStatus.PIPE_ERROR),
    (MalformedRecord, BridgeStatus.MALFORMED),
]


@dataclass(slots=True, frozen=True)
class BridgeResult:
    """Result of ``AllocatorBenchmarkBridge.run``."""

    status: BridgeStatus
    policy: AllocationPolicy
    metrics: AllocatorPolicyMetrics | None = None
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.status is BridgeStatus.OK


def _unsigned(token: str, field: str) -> int:
    value = int(token)
    if value < 0:
        raise ValueError(f"{field} must be non-negative, got {value}")
    return value


def parse_record(payload: bytes | str) -> AllocatorPolicyMetrics:
    """
    Parse one benchmark record.

    Raises:
        MalformedRecord: on a wrong field count or a field of the wrong type.
    """
    if isinstance(payload, bytes):
        try:
            payload = payload.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedRecord("record is not valid UTF-8") from exc

    fields = payload.split()
    if len(fields) != RECORD_FIELDS:
        raise MalformedRecord(f"expected {RECORD_FIELDS} fields, got {len(fields)}: {payload!r}")

    try:
        return AllocatorPolicyMetrics(
            policy_name=fields[0],
            iterations=int(fields[1]),
            time_taken=float(fields[2]),
            total_allocated=_unsigned(fields[3], "total_allocated"),
            freed_blocks=int(fields[4]),
            free_blocks=int(fields[5]),
            free_size=_unsigned(fields[6], "free_size"),
            avg_fragmentation=float(fields[7]),
            external_fragmentation=float(fields[8]),
        )
    except ValueError as exc:
        raise MalformedRecord(f"bad field in {payload!r}: {exc}") from exc


def ensure_fifo(path: str) -> None:
    """Create the named pipe if missing; refuse a non-FIFO at ``path``."""
    try:
        mode = os.stat(path).st_mode
    except FileNotFoundError:
        try:
            os.mkfifo(path, 0o600)
        except FileExistsError:
            return
        except OSError as exc:
            raise PipeUnavailable(f"cannot create {path}: {exc}") from exc
        return
    except OSError as exc:
        raise PipeUnavailable(f"cannot stat {path}: {exc}") from exc

    if not stat.S_ISFIFO(mode):
        raise PipeUnavailable(f"{path} exists and is not a FIFO")


def drain_fifo(
    fd: int,
    timeout: float,
    process: psutil.Popen | None = None,
    cancel: threading.Event | None = None,
) -> bytes:
    """
    Read a non-blocking FIFO descriptor until end-of-stream.

    Raises:
        PipeTimeout: when the deadline passes or ``cancel`` is set.
        ProcessSpawnFailed: when ``process`` exits before writing anything.
        PipeUnavailable: on a read error.
    """
    deadline = time.monotonic() + timeout
    chunks: list[bytes] = []

    with selectors.DefaultSelector() as selector:
        selector.register(fd, selectors.EVENT_READ)
        while True:
            if cancel is not None and cancel.is_set():
                raise PipeTimeout("pipe read cancelled")
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise PipeTimeout(f"no complete record within {timeout:.1f}s")

            if not selector.select(min(remaining, POLL_SLICE)):
                if process is None or chunks:
                    continue
                returncode = process.poll()
                # Re-check the pipe so a record written just before exit is kept.
                if returncode is not None and not selector.select(0):
                    raise ProcessSpawnFailed(f"benchmark exited with status {returncode} before writing")
                continue

            try:
                chunk = os.read(fd, READ_SIZE)
            except BlockingIOError:
                continue
            except OSError as exc:
                raise PipeUnavailable(f"pipe read failed: {exc}") from exc
            if not chunk:
                break
            chunks.append(chunk)

    return b"".join(chunks)


class AllocatorBenchmarkBridge:
    """
    Run the allocator benchmark and collect its result record.

    Invocations share one pipe and must not overlap; the sampling loop
    calls the bridge serially.
    """

    def __init__(
        self,
        executable: str,
        fifo_path: str = DEFAULT_FIFO_PATH,
        timeout: float = 30.0,
        reap_timeout: float = 2.0,
    ) -> None:
        """
        Initialize the bridge.

        Args:
            executable: Path of the benchmark binary.
            fifo_path: Named pipe the benchmark writes its record to.
            timeout: Seconds to wait for a complete record.
            reap_timeout: Seconds to wait for the benchmark to exit after
                its record was read before terminating it.
        """
        self.executable = executable
        self.fifo_path = fifo_path
        self.timeout = timeout
        self.reap_timeout = reap_timeout

    def _spawn(self, policy: AllocationPolicy) -> psutil.Popen:
        try:
            process = psutil.Popen(
                [self.executable, policy.value],
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
            )
        except OSError as exc:
            raise ProcessSpawnFailed(f"cannot start {self.executable}: {exc}") from exc
        log.debug("benchmark_spawned", policy=policy.value, pid=process.pid)
        return process

    def _reap(self, process: psutil.Popen) -> None:
        try:
            process.wait(timeout=self.reap_timeout)
            return
        except psutil.TimeoutExpired:
            log.warning("benchmark_overran", pid=process.pid, timeout=self.reap_timeout)
        except psutil.NoSuchProcess:
            return

        try:
            process.terminate()
            process.wait(timeout=self.reap_timeout)
        except psutil.TimeoutExpired:
            process.kill()
            process.wait(timeout=self.reap_timeout)
        except psutil.NoSuchProcess:
            pass

    def collect(
        self, policy: AllocationPolicy, cancel: threading.Event | None = None
    ) -> AllocatorPolicyMetrics:
        """
        Run the benchmark for ``policy`` and return its parsed record.

        Raises:
            BridgeError: any spawn, pipe, timeout or parse failure.
        """
        ensure_fifo(self.fifo_path)
        try:
            fd = os.open(self.fifo_path, os.O_RDONLY | os.O_NONBLOCK)
        except OSError as exc:
            raise PipeUnavailable(f"cannot open {self.fifo_path}: {exc}") from exc

        process: psutil.Popen | None = None
        try:
            process = self._spawn(policy)
            payload = drain_fifo(fd, self.timeout, process=process, cancel=cancel)
        finally:
            os.close(fd)
            if process is not None:
                self._reap(process)

        return parse_record(payload)

    def run(self, policy: AllocationPolicy, cancel: threading.Event | None = None) -> BridgeResult:
        """Like ``collect`` but reports failures as a ``BridgeResult`` status."""
        try:
            metrics = self.collect(policy, cancel=cancel)
        except BridgeError as exc:
            status = next(
                (s for cls, s in _STATUS_BY_ERROR if isinstance(exc, cls)),
                BridgeStatus.PROCESS_ERROR,
            )
            return BridgeResult(status=status, policy=policy, detail=str(exc))
        return BridgeResult(status=BridgeStatus.OK, policy=policy, metrics=metrics)
