"""Data models for speedlog measurements and cycle results."""

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from speedlog.errors import ConfigError, MalformedProbeResult

MEASUREMENT_FIELDS = ("ping_ms", "download_mbps", "upload_mbps")


@dataclass(frozen=True)
class MeasurementRecord:
    """Normalized result of one probe.

    A value of None means the measurement is unavailable. Zero is a real
    reading, never a stand-in for a failed one.
    """

    timestamp: datetime
    ping_ms: float | None
    download_mbps: float | None
    upload_mbps: float | None

    def __post_init__(self):
        """Reject negative or non-finite readings."""
        for name in MEASUREMENT_FIELDS:
            value = getattr(self, name)
            if value is None:
                continue
            if not math.isfinite(value) or value < 0:
                raise MalformedProbeResult(f"{name} must be a non-negative number, got {value!r}")

    def unavailable_fields(self) -> list[str]:
        """Names of the measurements that are unavailable in this record."""
        return [name for name in MEASUREMENT_FIELDS if getattr(self, name) is None]


@dataclass(frozen=True)
class ThresholdConfig:
    """Alert thresholds. An unset threshold disables that check."""

    ping_max_ms: float | None = None
    download_min_mbps: float | None = None
    upload_min_mbps: float | None = None

    def __post_init__(self):
        for name in ("ping_max_ms", "download_min_mbps", "upload_min_mbps"):
            value = getattr(self, name)
            if value is None:
                continue
            if not math.isfinite(value) or value < 0:
                raise ConfigError(f"{name} must be a non-negative number, got {value!r}")

    def is_enabled(self) -> bool:
        """True if at least one threshold is configured."""
        return any(
            value is not None
            for value in (self.ping_max_ms, self.download_min_mbps, self.upload_min_mbps)
        )


@dataclass(frozen=True)
class Verdict:
    """Result of evaluating a record against the thresholds."""

    violated: bool
    reasons: tuple[str, ...] = ()
    notes: tuple[str, ...] = ()


class CycleStatus(Enum):
    SUCCESS = "success"
    PROBE_FAILED = "probe_failed"
    PERSIST_FAILED = "persist_failed"
    NOTIFY_FAILED = "notify_failed"


@dataclass
class CycleOutcome:
    """What happened during one cycle. Only logged, never persisted."""

    cycle: int
    started_at: datetime
    finished_at: datetime | None = None
    record: MeasurementRecord | None = None
    verdict: Verdict | None = None
    probe_error: Exception | None = None
    persist_error: Exception | None = None
    notify_error: Exception | None = None
    persisted: bool = False
    notified: bool = False
    discarded: bool = False
    notes: list[str] = field(default_factory=list)

    @property
    def status(self) -> CycleStatus:
        """The first stage that failed, or SUCCESS."""
        if self.probe_error is not None:
            return CycleStatus.PROBE_FAILED
        if self.persist_error is not None:
            return CycleStatus.PERSIST_FAILED
        if self.notify_error is not None:
            return CycleStatus.NOTIFY_FAILED
        return CycleStatus.SUCCESS

    @property
    def error(self) -> Exception | None:
        """The error matching status, if any."""
        return self.probe_error or self.persist_error or self.notify_error
