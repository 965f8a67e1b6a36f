"""Conversion of raw probe results into MeasurementRecords."""

import logging
import math
import threading
from collections.abc import Mapping
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

from speedlog.errors import MalformedProbeResult
from speedlog.models import MeasurementRecord

logger = logging.getLogger(__name__)

BITS_PER_MEGABIT = Decimal(1_000_000)
MBPS_QUANTUM = Decimal("0.01")

RAW_FIELDS = ("ping_ms", "download_bps", "upload_bps")


def bits_to_mbps(bits_per_sec: float) -> float:
    """Convert bits/second to megabits/second, rounded half-up to 2 places.

    Decimal arithmetic avoids binary float artifacts, so 93,450,000 becomes
    exactly 93.45 and 12,345,000 rounds up to 12.35.

    Args:
        bits_per_sec: Raw throughput in bits per second

    Returns:
        Throughput in Mbps with two decimal places

    Examples:
        >>> bits_to_mbps(93_450_000)
        93.45
        >>> bits_to_mbps(12_345_000)
        12.35
    """
    mbps = Decimal(str(bits_per_sec)) / BITS_PER_MEGABIT
    return float(mbps.quantize(MBPS_QUANTUM, rounding=ROUND_HALF_UP))


def _numeric_field(raw: Mapping, name: str) -> float | None:
    if name not in raw:
        raise MalformedProbeResult(f"missing field {name!r}")

    value = raw[name]
    if value is None:
        return None

    # bool is an int subclass; a True ping is not a measurement
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MalformedProbeResult(f"field {name!r} is not numeric: {value!r}")

    value = float(value)
    if not math.isfinite(value) or value < 0:
        raise MalformedProbeResult(f"field {name!r} must be a non-negative number, got {value!r}")
    return value


def normalize(raw: Mapping, captured_at: datetime) -> MeasurementRecord:
    """Build a MeasurementRecord from a raw probe result.

    Args:
        raw: Mapping with ping_ms, download_bps and upload_bps. A key present
            with value None marks that measurement unavailable.
        captured_at: When the probe completed

    Returns:
        Immutable MeasurementRecord with throughput in Mbps

    Raises:
        MalformedProbeResult: If raw is not a mapping, a field is missing,
            or a value is non-numeric, negative or non-finite
    """
    if not isinstance(raw, Mapping):
        raise MalformedProbeResult(f"probe result must be a mapping, got {type(raw).__name__}")

    ping_ms = _numeric_field(raw, "ping_ms")
    download_bps = _numeric_field(raw, "download_bps")
    upload_bps = _numeric_field(raw, "upload_bps")

    record = MeasurementRecord(
        timestamp=captured_at,
        ping_ms=ping_ms,
        download_mbps=None if download_bps is None else bits_to_mbps(download_bps),
        upload_mbps=None if upload_bps is None else bits_to_mbps(upload_bps),
    )
    logger.debug("Normalized probe result: %s", record)
    return record


class MonotonicClock:
    """Wall clock that never steps backwards within a process.

    If the system clock is adjusted backwards, the previous timestamp is
    returned until real time catches up.
    """

    def __init__(self, now=datetime.now):
        self._now = now
        self._last: datetime | None = None
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            current = self._now()
            if self._last is not None and current < self._last:
                logger.debug("Clock stepped backwards (%s < %s), clamping", current, self._last)
                current = self._last
            self._last = current
            return current
