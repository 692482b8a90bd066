"""Error taxonomy for hostgauge samplers and the benchmark bridge."""


class SamplerError(Exception):
    """Base class for every recoverable sampling failure."""


class SourceUnavailable(SamplerError):
    """A kernel text source could not be opened or read."""

    def __init__(self, path: str, reason: str = "") -> None:
        self.path = path
        message = f"cannot read {path}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class FieldNotFound(SamplerError):
    """The source was readable but the expected field was absent."""


class DeviceNotFound(FieldNotFound):
    """No diskstats line matched the configured device."""

    def __init__(self, device: str) -> None:
        self.device = device
        super().__init__(f"device {device!r} not found in diskstats")


class NoData(SamplerError):
    """A derived value could not be computed from the counters read."""


class InsufficientHistory(SamplerError):
    """The CPU sampler has no baseline yet."""


class DegenerateInterval(SamplerError):
    """Two CPU samples are separated by no (or negative) elapsed ticks."""


class BridgeError(SamplerError):
    """Base class for allocator benchmark bridge failures."""


class ProcessSpawnFailed(BridgeError):
    """The benchmark executable could not be started or died early."""


class PipeUnavailable(BridgeError):
    """The named pipe could not be created, opened or read."""


class PipeTimeout(BridgeError):
    """No complete record arrived on the pipe before the deadline."""


class MalformedRecord(BridgeError):
    """The pipe payload did not match the benchmark record layout."""


class ExpositionError(Exception):
    """Gauge registration failed; the agent cannot usefully run."""
