"""Shared fixtures: a synthetic procfs tree."""

from pathlib import Path

import pytest

from hostgauge.procfs import ProcfsReader

STAT_TEXT = """\
cpu  100 0 50 800 50 0 0 0 0 0
cpu0 50 0 25 400 25 0 0 0 0 0
cpu1 50 0 25 400 25 0 0 0 0 0
intr 123456 0 0 0
ctxt 987654
btime 1700000000
processes 54321
procs_running 3
procs_blocked 0
"""

MEMINFO_TEXT = """\
MemTotal:       16384000 kB
MemFree:         4096000 kB
MemAvailable:    8192000 kB
Buffers:          512000 kB
Cached:          3000000 kB
"""

DISKSTATS_TEXT = """\
   7       0 loop0 1 0 2 0 0 0 0 0 0 0 0 0 0 0 0
   8       0 sda 11 22 33 44 55 66 77 88 99 1010 1111 0 0 0 0
   8       1 sda1 1 2 3 4 5 6 7 8 9 10 11 0 0 0 0
"""

NET_DEV_TEXT = """\
Inter-|   Receive                                                |  Transmit
 face |bytes    packets errs drop fifo frame compressed multicast|bytes    packets errs drop fifo colls carrier compressed
    lo: 1000 10 0 0 0 0 0 0 1000 10 0 0 0 0 0 0
  eth0: 5000 50 1 2 0 0 0 0 6000 60 3 4 0 0 0 0
"""


def write_proc_tree(root: Path) -> Path:
    (root / "net").mkdir(parents=True, exist_ok=True)
    (root / "stat").write_text(STAT_TEXT)
    (root / "meminfo").write_text(MEMINFO_TEXT)
    (root / "diskstats").write_text(DISKSTATS_TEXT)
    (root / "net" / "dev").write_text(NET_DEV_TEXT)
    return root


@pytest.fixture
def proc_root(tmp_path: Path) -> Path:
    """A directory laid out like /proc with known counter values."""
    return write_proc_tree(tmp_path / "proc")


@pytest.fixture
def reader(proc_root: Path) -> ProcfsReader:
    return ProcfsReader(proc_root)
