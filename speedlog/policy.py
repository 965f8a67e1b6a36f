"""Threshold evaluation for measurement records."""

from speedlog.models import MeasurementRecord, ThresholdConfig, Verdict

PING_ABOVE = "ping above threshold"
DOWNLOAD_BELOW = "download below threshold"
UPLOAD_BELOW = "upload below threshold"


def evaluate(record: MeasurementRecord, config: ThresholdConfig) -> Verdict:
    """Decide whether a record breaches the configured thresholds (pure function).

    Each check is independent and only runs when its threshold is set and
    its measurement is available. Reasons are ordered ping, download, upload.
    Unavailable measurements become notes and never affect other checks.

    Args:
        record: Normalized measurement
        config: Thresholds; None disables a check

    Returns:
        Verdict with violated flag, reasons and diagnostic notes
    """
    reasons = []

    if (
        config.ping_max_ms is not None
        and record.ping_ms is not None
        and record.ping_ms > config.ping_max_ms
    ):
        reasons.append(PING_ABOVE)

    if (
        config.download_min_mbps is not None
        and record.download_mbps is not None
        and record.download_mbps < config.download_min_mbps
    ):
        reasons.append(DOWNLOAD_BELOW)

    if (
        config.upload_min_mbps is not None
        and record.upload_mbps is not None
        and record.upload_mbps < config.upload_min_mbps
    ):
        reasons.append(UPLOAD_BELOW)

    notes = tuple(f"{name} unavailable" for name in record.unavailable_fields())

    return Verdict(violated=bool(reasons), reasons=tuple(reasons), notes=notes)
