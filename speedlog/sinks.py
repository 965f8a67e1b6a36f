"""Persistence sinks for measurement records."""

import csv
import logging
import os
from pathlib import Path
from typing import Protocol

from speedlog.errors import PersistFailure
from speedlog.models import MeasurementRecord

logger = logging.getLogger(__name__)

CSV_HEADER = ["Timestamp", "Ping (ms)", "Download (Mbps)", "Upload (Mbps)"]
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


class Sink(Protocol):
    """Protocol for append-only record storage."""

    def persist(self, record: MeasurementRecord) -> None:
        """Store one record. Raises PersistFailure on error."""
        ...


def _format_value(value: float | None, fmt: str) -> str:
    # Unavailable readings are left blank rather than written as 0
    if value is None:
        return ""
    return format(value, fmt)


def format_row(record: MeasurementRecord) -> list[str]:
    """Render a record as one CSV row, matching CSV_HEADER.

    Ping is written as reported; throughput always has two decimals.
    """
    return [
        record.timestamp.strftime(TIMESTAMP_FORMAT),
        _format_value(record.ping_ms, "g"),
        _format_value(record.download_mbps, ".2f"),
        _format_value(record.upload_mbps, ".2f"),
    ]


class CsvSink:
    """Appends one row per record to a CSV file.

    The header is written once, when the file is missing or empty. Later runs
    append below the existing rows. The file is opened and closed on every
    write so nothing is left buffered between cycles.
    """

    def __init__(self, path: str | os.PathLike):
        self.path = Path(path)

    def _needs_header(self) -> bool:
        try:
            return self.path.stat().st_size == 0
        except FileNotFoundError:
            return True

    def persist(self, record: MeasurementRecord) -> None:
        try:
            write_header = self._needs_header()
            with self.path.open("a", newline="", encoding="utf-8") as f:
                writer = csv.writer(f)
                if write_header:
                    writer.writerow(CSV_HEADER)
                writer.writerow(format_row(record))
        except OSError as e:
            raise PersistFailure(f"Could not write to {self.path}: {e}") from e

        logger.debug("Record appended to %s", self.path)

    def __repr__(self):
        return f"CsvSink({str(self.path)!r})"
