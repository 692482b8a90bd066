"""Agent settings loaded from a JSON file with environment overrides."""

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, List, Optional

import structlog
from pydantic import BaseModel, Field, ValidationError, field_validator

log = structlog.get_logger(__name__)

# Metric groups that may appear in the "metrics" list.
METRIC_GROUPS = (
    "cpu_usage",
    "memory_usage",
    "disk_usage",
    "network_usage",
    "running_processes",
    "context_switches",
    "allocator_benchmark",
)

POLICY_NAMES = ("FIRST", "BEST", "WORST")

DEFAULT_CONFIG_PATH = "config.json"


class Settings(BaseModel):
    sampling_interval: int = Field(
        default=10,
        ge=1,
        description="Seconds to sleep between sampling cycles",
    )
    metrics: List[str] = Field(
        default_factory=list,
        description="Enabled metric groups, e.g. ['cpu_usage', 'memory_usage']",
    )
    disk_device: str = Field(
        default="sda",
        description="Block device whose diskstats line is sampled",
    )
    proc_root: str = Field(
        default="/proc",
        description="Directory holding stat, meminfo, diskstats and net/dev",
    )

    listen_address: str = Field(default="0.0.0.0", description="Scrape endpoint bind address")
    listen_port: int = Field(default=8000, ge=0, le=65535, description="Scrape endpoint port")

    benchmark_executable: Optional[str] = Field(
        default=None,
        description="Path of the allocator benchmark binary (disabled when unset)",
    )
    benchmark_fifo: str = Field(
        default="/tmp/my_fifo",
        description="Named pipe the benchmark writes its result record to",
    )
    benchmark_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Seconds to wait for one benchmark record",
    )
    benchmark_policies: List[str] = Field(
        default_factory=lambda: list(POLICY_NAMES),
        description="Allocation policies to benchmark each cycle",
    )

    log_level: str = Field(default="INFO", description="Logging level name")

    @field_validator("metrics", mode="before")
    @classmethod
    def _clean_metrics(cls, value: Any) -> List[str]:
        # A broken list must never stop the agent: keep what is usable.
        if not isinstance(value, (list, tuple)):
            log.warning("config_metrics_not_a_list", value=repr(value))
            return []
        cleaned: List[str] = []
        for item in value:
            if not isinstance(item, str) or item not in METRIC_GROUPS:
                log.warning("config_unknown_metric", metric=repr(item))
                continue
            if item not in cleaned:
                cleaned.append(item)
        return cleaned

    @field_validator("benchmark_policies", mode="before")
    @classmethod
    def _clean_policies(cls, value: Any) -> List[str]:
        if not isinstance(value, (list, tuple)):
            return list(POLICY_NAMES)
        return [item for item in value if isinstance(item, str) and item in POLICY_NAMES]

    @classmethod
    def from_mapping(cls, raw: Any) -> "Settings":
        """
        Build settings from decoded JSON, dropping invalid fields.

        Fields that fail validation fall back to their defaults instead of
        rejecting the whole configuration.
        """
        if not isinstance(raw, dict):
            log.warning("config_not_an_object", type=type(raw).__name__)
            return cls()

        data = dict(raw)
        while True:
            try:
                return cls.model_validate(data)
            except ValidationError as exc:
                bad = {err["loc"][0] for err in exc.errors() if err["loc"]}
                bad &= set(data)
                if not bad:
                    log.warning("config_invalid", error=str(exc))
                    return cls()
                for key in bad:
                    log.warning("config_field_invalid", field=key, value=repr(data.pop(key)))

    @classmethod
    def from_file(cls, path: str | Path) -> "Settings":
        """Load settings from a JSON file; unreadable files yield defaults."""
        try:
            raw = json.loads(Path(path).read_text())
        except FileNotFoundError:
            log.warning("config_missing", path=str(path))
            raw = {}
        except (OSError, ValueError) as exc:
            log.warning("config_unreadable", path=str(path), error=str(exc))
            raw = {}
        return cls.from_mapping(raw)

    @classmethod
    def from_env(cls) -> "Settings":
        path = os.getenv("HOSTGAUGE_CONFIG", DEFAULT_CONFIG_PATH)
        settings = cls.from_file(path)

        overrides: dict[str, Any] = {}
        if os.getenv("HOSTGAUGE_SAMPLING_INTERVAL"):
            overrides["sampling_interval"] = os.environ["HOSTGAUGE_SAMPLING_INTERVAL"]
        if os.getenv("HOSTGAUGE_LISTEN_PORT"):
            overrides["listen_port"] = os.environ["HOSTGAUGE_LISTEN_PORT"]
        if os.getenv("HOSTGAUGE_LOG_LEVEL"):
            overrides["log_level"] = os.environ["HOSTGAUGE_LOG_LEVEL"]
        if not overrides:
            return settings

        return cls.from_mapping({**settings.model_dump(), **overrides})


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()
