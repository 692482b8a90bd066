"""Raw counter extraction from procfs text sources."""

from pathlib import Path

from hostgauge.errors import FieldNotFound, SourceUnavailable

STAT = "stat"
MEMINFO = "meminfo"
DISKSTATS = "diskstats"
NET_DEV = "net/dev"


def parse_number(token: str) -> int | float:
    """Parse a counter token as int, or float when it has a decimal point."""
    if "." in token:
        return float(token)
    return int(token)


class ProcfsReader:
    """
    Read individual fields from kernel text interfaces.

    Every call reads its source in full; no file handle is kept open
    between calls. The reader is stateless and safe to share.
    """

    def __init__(self, proc_root: str | Path = "/proc") -> None:
        """
        Initialize the reader.

        Args:
            proc_root: Directory holding the kernel sources. Tests point this
                at a synthetic tree.
        """
        self._root = Path(proc_root)

    @property
    def proc_root(self) -> Path:
        return self._root

    def path_of(self, source: str) -> Path:
        return self._root / source

    def read_lines(self, source: str) -> list[str]:
        """Read a source and return its lines."""
        path = self.path_of(source)
        try:
            text = path.read_text()
        except OSError as exc:
            raise SourceUnavailable(str(path), exc.strerror or str(exc)) from exc
        return text.splitlines()

    def read_labeled(self, source: str, label: str) -> int | float:
        """
        Return the value following ``label`` on the first line it starts.

        ``label`` matches the first token with or without a trailing colon,
        so both ``MemTotal`` and ``ctxt`` work.
        """
        wanted = label.rstrip(":")
        for line in self.read_lines(source):
            tokens = line.split()
            if len(tokens) < 2 or tokens[0].rstrip(":") != wanted:
                continue
            try:
                return parse_number(tokens[1])
            except ValueError as exc:
                raise FieldNotFound(f"{label} in {source} is not numeric: {tokens[1]!r}") from exc
        raise FieldNotFound(f"{label} not found in {source}")

    def find_line(self, source: str, token: str) -> list[str]:
        """Return the tokens of the first line containing ``token`` as a whole token."""
        for line in self.read_lines(source):
            tokens = line.split()
            if token in tokens:
                return tokens
        raise FieldNotFound(f"no line with {token!r} in {source}")

    def read_field(self, source: str, token: str, index: int) -> int | float:
        """Return the 0-based ``index`` field of the line containing ``token``."""
        tokens = self.find_line(source, token)
        try:
            return parse_number(tokens[index])
        except IndexError as exc:
            raise FieldNotFound(f"line for {token!r} in {source} has no field {index}") from exc
        except ValueError as exc:
            raise FieldNotFound(f"field {index} for {token!r} in {source} is not numeric") from exc
