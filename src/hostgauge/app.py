"""hostgauge - agent entry point and Textual dashboard."""

import argparse
import signal
import sys
import threading
from enum import Enum

import structlog
from textual.app import App, ComposeResult
from textual.containers import Container, Horizontal
from textual.css.query import NoMatches
from textual.widgets import DataTable, Footer, Static

from hostgauge.config import Settings, get_settings
from hostgauge.errors import ExpositionError
from hostgauge.exposition import GaugeRegistry
from hostgauge.logs import configure_logging
from hostgauge.models import MemorySnapshot
from hostgauge.monitor import SamplingMonitor
from hostgauge.store import MetricKind, MetricsSnapshotStore

log = structlog.get_logger(__name__)

EXIT_SUCCESS = 0
EXIT_FAILURE = 1


class SortKey(Enum):
    """Sort keys for the gauge table."""

    NAME = "name"
    VALUE = "value"


def format_mb(size_mb: float) -> str:
    """Format a size given in MB as a human-readable string."""
    if size_mb >= 1024:
        return f"{size_mb / 1024:.1f}G"
    return f"{size_mb:.0f}M"


def format_value(value: float) -> str:
    if value.is_integer():
        return f"{int(value):d}"
    return f"{value:.2f}"


def render_bar(percent: float, colour: str, width: int = 20) -> str:
    filled = min(width, max(0, int(percent / (100 / width))))
    return f"[{colour}]█[/{colour}]" * filled + "[dim]░[/dim]" * (width - filled)


class HeaderStats(Static):
    """Header widget showing CPU and memory usage."""

    DEFAULT_CSS = """
    HeaderStats {
        height: auto;
        min-height: 4;
        padding: 1;
        background: $surface;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        """Initialize HeaderStats."""
        super().__init__(*args, **kwargs)
        self._cpu_percent: float = 0.0
        self._memory = MemorySnapshot()
        self._cycles: int = 0

    def compose(self) -> ComposeResult:
        """Compose the header stats layout."""
        yield Horizontal(
            Static(self._get_cpu_info(), id="cpu-info"),
            Static(self._get_mem_info(), id="mem-info"),
        )

    def update_stats(self, cpu_percent: float, memory: MemorySnapshot, cycles: int) -> None:
        """Update the statistics from the latest store values."""
        self._cpu_percent = cpu_percent
        self._memory = memory
        self._cycles = cycles
        self._refresh_display()

    def _refresh_display(self) -> None:
        try:
            cpu_info = self.query_one("#cpu-info", Static)
            mem_info = self.query_one("#mem-info", Static)
        except NoMatches:
            return  # Widget not mounted yet
        cpu_info.update(self._get_cpu_info())
        mem_info.update(self._get_mem_info())

    def _get_cpu_info(self) -> str:
        if self._cycles == 0:
            return "Waiting for first sample..."
        bar = render_bar(self._cpu_percent, "green")
        return f"CPU \\[{bar}] {self._cpu_percent:5.1f}%\nCycles: {self._cycles}"

    def _get_mem_info(self) -> str:
        memory = self._memory
        if memory.total_mb == 0:
            return "Memory: no data"
        bar = render_bar(memory.usage_percent, "cyan")
        return (
            f"Mem\\[{bar}] {format_mb(memory.used_mb)}/{format_mb(memory.total_mb)}\n"
            f"Fragmentation: {memory.fragmentation_percent:5.1f}%"
        )


class GaugeTable(Container):
    """Container for the exported gauge table."""

    DEFAULT_CSS = """
    GaugeTable {
        height: 1fr;
        border: solid $primary;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        """Initialize GaugeTable."""
        super().__init__(*args, **kwargs)
        self._current: dict[str, float] = {}
        self._sort_key: SortKey = SortKey.NAME

    @property
    def sort_key(self) -> SortKey:
        return self._sort_key

    @property
    def gauge_names(self) -> set[str]:
        return set(self._current)

    def cycle_sort(self) -> SortKey:
        """Switch to the next sort key and return it."""
        keys = list(SortKey)
        self._sort_key = keys[(keys.index(self._sort_key) + 1) % len(keys)]
        self._rebuild()
        return self._sort_key

    def compose(self) -> ComposeResult:
        yield DataTable(id="gauge-table")

    def on_mount(self) -> None:
        table = self.query_one("#gauge-table", DataTable)
        table.cursor_type = "row"
        table.add_column("Gauge", key="name", width=48)
        table.add_column("Value", key="value", width=20)

    def update_gauges(self, values: dict[str, float]) -> None:
        """
        Update the table with the current gauge values.

        Rows are rebuilt only when the set of gauges or the value order
        changes; otherwise cells are updated in place.
        """
        changed_rows = set(values) != set(self._current)
        self._current = dict(values)
        if changed_rows or self._sort_key is SortKey.VALUE:
            self._rebuild()
            return

        try:
            table = self.query_one("#gauge-table", DataTable)
        except NoMatches:
            return
        for name, value in values.items():
            table.update_cell(name, "value", format_value(value))

    def _sorted(self) -> list[tuple[str, float]]:
        if self._sort_key is SortKey.VALUE:
            return sorted(self._current.items(), key=lambda item: item[1], reverse=True)
        return sorted(self._current.items())

    def _rebuild(self) -> None:
        try:
            table = self.query_one("#gauge-table", DataTable)
        except NoMatches:
            return
        table.clear()
        for name, value in self._sorted():
            table.add_row(name, format_value(value), key=name)


class HostgaugeApp(App):
    """Terminal dashboard over the snapshot store."""

    TITLE = "hostgauge"
    SUB_TITLE = "Host Metrics Agent"

    CSS = """
    Screen {
        layout: vertical;
    }

    #header-stats {
        dock: top;
        height: auto;
        min-height: 4;
    }

    Horizontal {
        height: auto;
    }

    #cpu-info {
        width: 1fr;
        padding-right: 2;
    }

    #mem-info {
        width: 1fr;
        padding-left: 2;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("f6", "sort", "Sort"),
    ]

    def __init__(
        self,
        store: MetricsSnapshotStore,
        registry: GaugeRegistry,
        monitor: SamplingMonitor,
        refresh_interval: float = 0.5,
    ) -> None:
        """Initialize the HostgaugeApp."""
        super().__init__()
        self._store = store
        self._gauges = registry
        self._monitor = monitor
        self._refresh_interval = refresh_interval

    def compose(self) -> ComposeResult:
        yield HeaderStats(id="header-stats")
        yield GaugeTable()
        yield Footer()

    def on_mount(self) -> None:
        """Start sampling when the app is mounted."""
        self._monitor.start()
        self.set_interval(self._refresh_interval, self.refresh_from_store)

    def refresh_from_store(self) -> None:
        """Copy the latest store values into the widgets."""
        values = self._store.snapshot()
        header = self.query_one("#header-stats", HeaderStats)
        header.update_stats(
            float(values[MetricKind.CPU_USAGE]),
            values[MetricKind.MEMORY],
            self._monitor.cycles,
        )
        self.query_one(GaugeTable).update_gauges(self._gauges.values())

    def action_sort(self) -> None:
        new_sort_key = self.query_one(GaugeTable).cycle_sort()
        self.notify(f"Sort: {new_sort_key.value.upper()}")

    def action_quit(self) -> None:
        """Handle quit action with graceful cleanup."""
        self._monitor.stop()
        self.exit()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="hostgauge", description="Host metrics sampling agent")
    parser.add_argument("--config", help="JSON configuration file (default: $HOSTGAUGE_CONFIG)")
    parser.add_argument("--dashboard", action="store_true", help="Show the terminal dashboard")
    parser.add_argument("--no-serve", action="store_true", help="Do not start the scrape endpoint")
    return parser


def _wait_for_shutdown() -> None:
    stop = threading.Event()

    def handle(signum, frame) -> None:
        log.info("shutdown_requested", signal=signal.Signals(signum).name)
        stop.set()

    signal.signal(signal.SIGTERM, handle)
    signal.signal(signal.SIGINT, handle)
    while not stop.wait(timeout=1.0):
        pass


def run(settings: Settings, dashboard: bool = False, serve: bool = True) -> int:
    """Run the agent until shutdown; returns the process exit status."""
    store = MetricsSnapshotStore()
    try:
        registry = GaugeRegistry(store, settings.metrics)
        if serve:
            registry.serve(settings.listen_port, settings.listen_address)
    except ExpositionError as exc:
        log.error("exposition_failed", error=str(exc))
        return EXIT_FAILURE

    monitor = SamplingMonitor.from_settings(settings, store)
    try:
        if dashboard:
            HostgaugeApp(store, registry, monitor).run()
        else:
            monitor.start()
            _wait_for_shutdown()
    finally:
        monitor.stop()
        registry.shutdown()
    return EXIT_SUCCESS


def main() -> None:
    """Entry point for the hostgauge console script."""
    args = build_parser().parse_args()
    settings = Settings.from_file(args.config) if args.config else get_settings()
    configure_logging(settings.log_level)
    sys.exit(run(settings, dashboard=args.dashboard, serve=not args.no_serve))


if __name__ == "__main__":
    main()
