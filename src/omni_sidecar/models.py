"""Centralized Pydantic models and enums for omni-sidecar."""

from __future__ import annotations

import tempfile
from enum import Enum
from pathlib import Path
from typing import ClassVar

from pydantic import BaseModel, ConfigDict, Field, field_validator

from omni_sidecar.constants import (
    DEFAULT_HOST,
    DEFAULT_VERSION,
    DISCOVERY_ATTEMPTS,
    DISCOVERY_INTERVAL,
    ENV_BUCKET,
    ENV_HOST,
    ENV_PREFIX,
    ENV_S3_ENDPOINT,
    HEALTH_ATTEMPTS,
    HEALTH_INTERVAL,
    LOG_FILE_NAME,
    SIDECAR_SUBCOMMAND,
)


# === Enums ===


class HealthState(str, Enum):
    """Readiness of the sidecar as seen by one start phase.

    Moves forward only: UNKNOWN -> HEALTHY or UNKNOWN -> FAILED.
    """

    UNKNOWN = "unknown"
    HEALTHY = "healthy"
    FAILED = "failed"


class ShutdownOutcome(str, Enum):
    """Terminal result of one shutdown invocation."""

    ALREADY_TERMINATED = "already_terminated"
    GRACEFUL_EXIT = "graceful_exit"
    FORCED_EXIT = "forced_exit"


# === Configuration ===


class PollSettings(BaseModel):
    """Attempt count and fixed delay for one polling loop."""

    attempts: int = Field(ge=0)
    interval: float = Field(ge=0.0)

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True)


def _default_log_file() -> Path:
    return Path(tempfile.gettempdir()) / LOG_FILE_NAME


class SidecarConfig(BaseModel):
    """Inputs of the start phase.

    Optional fields map to exactly one sidecar environment key each; a missing
    value omits the key instead of setting it empty.
    """

    bucket: str
    prefix: str | None = None
    host: str = DEFAULT_HOST
    storage_endpoint: str | None = None
    version_spec: str = DEFAULT_VERSION
    log_file: Path = Field(default_factory=_default_log_file)
    discovery: PollSettings = PollSettings(
        attempts=DISCOVERY_ATTEMPTS, interval=DISCOVERY_INTERVAL
    )
    health: PollSettings = PollSettings(
        attempts=HEALTH_ATTEMPTS, interval=HEALTH_INTERVAL
    )

    @field_validator("bucket")
    @classmethod
    def _require_bucket(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Input required and not supplied: bucket")
        return value

    @field_validator("prefix", "storage_endpoint")
    @classmethod
    def _blank_is_missing(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        return value.strip()

    @field_validator("host")
    @classmethod
    def _default_host(cls, value: str) -> str:
        return value.strip() or DEFAULT_HOST

    @field_validator("version_spec")
    @classmethod
    def _default_version(cls, value: str) -> str:
        return value.strip() or DEFAULT_VERSION

    @field_validator("health")
    @classmethod
    def _at_least_one_probe(cls, value: PollSettings) -> PollSettings:
        if value.attempts < 1:
            raise ValueError("health polling needs at least one attempt")
        return value

    def sidecar_env(self) -> dict[str, str]:
        """Environment keys to overlay on the inherited environment."""
        env = {ENV_BUCKET: self.bucket, ENV_HOST: self.host}
        if self.prefix is not None:
            env[ENV_PREFIX] = self.prefix
        if self.storage_endpoint is not None:
            env[ENV_S3_ENDPOINT] = self.storage_endpoint
        return env

    def sidecar_args(self) -> list[str]:
        """Command line arguments passed after the executable."""
        args = [SIDECAR_SUBCOMMAND, "--bucket", self.bucket, "--listen-addr", self.host]
        if self.prefix is not None:
            args += ["--prefix", self.prefix]
        if self.storage_endpoint is not None:
            args += ["--s3-endpoint", self.storage_endpoint]
        return args


# === Process and results ===


class ProcessHandle(BaseModel):
    """A spawned sidecar we are allowed to manage.

    create_time protects against PID reuse when it is known.
    """

    pid: int
    log_file: Path
    create_time: float | None = None

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True)


class ResolvedBinary(BaseModel):
    """A local sidecar executable and the version it represents."""

    path: Path
    version: str
    directory: Path | None = None

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True)


class StartResult(BaseModel):
    """Connection information published by the start phase."""

    address: str
    socket_path: Path
    version: str
    process: ProcessHandle
    health: HealthState = HealthState.UNKNOWN


class CacheStats(BaseModel):
    """Hit/miss counters reported by the metrics endpoint."""

    hits: int | float
    misses: int | float

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="ignore")

    @field_validator("hits", "misses", mode="before")
    @classmethod
    def _numeric_only(cls, value: object) -> object:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError("must be a number")
        return value

    @property
    def total(self) -> int | float:
        return self.hits + self.misses

    @property
    def hit_rate(self) -> float:
        """Percentage of hits, 0 when nothing was requested."""
        if self.total == 0:
            return 0.0
        return round(self.hits / self.total * 100, 1)

    def format_hit_rate(self) -> str:
        if self.total == 0:
            return "0%"
        return f"{self.hit_rate:.1f}%"

    def summary_rows(self) -> list[tuple[str, str]]:
        """Metric/value pairs for the job summary table."""
        return [
            ("Cache Hits", format_count(self.hits)),
            ("Cache Misses", format_count(self.misses)),
            ("Hit Rate", self.format_hit_rate()),
        ]


def format_count(value: int | float) -> str:
    """Render a counter, dropping the fraction of whole floats (``100.0`` -> ``100``)."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)
