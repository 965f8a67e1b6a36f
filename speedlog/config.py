"""Startup configuration: command line and environment into one immutable value."""

import argparse
import logging
import math
import os
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from speedlog.errors import ConfigError
from speedlog.logging_config import LEVEL_NAMES
from speedlog.models import ThresholdConfig

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_MINUTES = 15
DEFAULT_OUTPUT = "log.csv"
DEFAULT_PROBE_TIMEOUT_S = 120.0
DEFAULT_SMTP_PORT = 587


@dataclass(frozen=True)
class SmtpSettings:
    """SMTP server used for email alerts."""

    host: str
    port: int = DEFAULT_SMTP_PORT
    username: str | None = None
    password: str | None = field(default=None, repr=False)
    sender: str = "speedlog@localhost"
    starttls: bool = True


@dataclass(frozen=True)
class AppConfig:
    """Everything the process needs, fixed at startup."""

    interval_minutes: int
    output: Path | None
    thresholds: ThresholdConfig
    email: str | None = None
    smtp: SmtpSettings | None = None
    cycle_timeout_s: float | None = None
    probe_timeout_s: float = DEFAULT_PROBE_TIMEOUT_S
    log_level: str | None = None

    @property
    def interval_ms(self) -> int:
        return self.interval_minutes * 60 * 1000

    @property
    def cycle_timeout_ms(self) -> int | None:
        if self.cycle_timeout_s is None:
            return None
        return int(self.cycle_timeout_s * 1000)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="speedlog",
        description="Run internet speed tests on an interval, log them to CSV and alert on thresholds.",
    )
    parser.add_argument(
        "-i",
        "--interval",
        metavar="MINUTES",
        default=str(DEFAULT_INTERVAL_MINUTES),
        help=f"Interval between tests in minutes (default: {DEFAULT_INTERVAL_MINUTES})",
    )
    parser.add_argument(
        "-o",
        "--output",
        metavar="FILE",
        default=DEFAULT_OUTPUT,
        help=f"Output CSV file (default: {DEFAULT_OUTPUT})",
    )
    parser.add_argument("--no-output", action="store_true", help="Do not write results to a file")
    parser.add_argument("--ping-threshold", metavar="MS", help="Alert when ping is above this")
    parser.add_argument("--download-threshold", metavar="MBPS", help="Alert when download is below this")
    parser.add_argument("--upload-threshold", metavar="MBPS", help="Alert when upload is below this")
    parser.add_argument("--email", metavar="ADDRESS", help="Email address for alerts")
    parser.add_argument("--timeout", metavar="SECONDS", help="Abandon a cycle that runs longer than this")
    parser.add_argument(
        "--probe-timeout",
        metavar="SECONDS",
        default=str(DEFAULT_PROBE_TIMEOUT_S),
        help=f"Time limit for one speedtest-cli run (default: {DEFAULT_PROBE_TIMEOUT_S:.0f})",
    )
    parser.add_argument(
        "--log-level",
        type=str.upper,
        choices=LEVEL_NAMES,
        help="Log verbosity (default: SPEEDLOG_LOG_LEVEL, else INFO)",
    )
    return parser


def _parse_positive_int(value: str, option: str) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{option} must be a positive integer, got {value!r}") from None
    if number <= 0:
        raise ConfigError(f"{option} must be a positive integer, got {value!r}")
    return number


def _parse_optional_number(value: str | None, option: str, positive: bool = False) -> float | None:
    # Absent means the check is off, not zero
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{option} must be a number, got {value!r}") from None
    if not math.isfinite(number):
        raise ConfigError(f"{option} must be a finite number, got {value!r}")
    if number < 0 or (positive and number == 0):
        qualifier = "positive" if positive else "non-negative"
        raise ConfigError(f"{option} must be {qualifier}, got {value!r}")
    return number


def _parse_bool(value: str, name: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise ConfigError(f"{name} must be a boolean, got {value!r}")


def load_smtp_settings(environ: Mapping[str, str]) -> SmtpSettings:
    """Read SMTP settings from SPEEDLOG_SMTP_* environment variables.

    Raises:
        ConfigError: If SPEEDLOG_SMTP_HOST is unset or a value is invalid
    """
    host = environ.get("SPEEDLOG_SMTP_HOST", "").strip()
    if not host:
        raise ConfigError("--email requires SPEEDLOG_SMTP_HOST to be set")

    port = _parse_positive_int(environ.get("SPEEDLOG_SMTP_PORT", str(DEFAULT_SMTP_PORT)), "SPEEDLOG_SMTP_PORT")
    username = environ.get("SPEEDLOG_SMTP_USER") or None
    password = environ.get("SPEEDLOG_SMTP_PASSWORD") or None
    sender = environ.get("SPEEDLOG_SMTP_SENDER") or username or "speedlog@localhost"
    starttls = _parse_bool(environ.get("SPEEDLOG_SMTP_STARTTLS", "true"), "SPEEDLOG_SMTP_STARTTLS")

    return SmtpSettings(
        host=host,
        port=port,
        username=username,
        password=password,
        sender=sender,
        starttls=starttls,
    )


def load_config(argv: Sequence[str] | None = None, environ: Mapping[str, str] | None = None) -> AppConfig:
    """Build the application configuration.

    Args:
        argv: Command-line arguments (defaults to sys.argv[1:])
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Immutable AppConfig

    Raises:
        ConfigError: If any value is invalid. Scheduling must not start.
        SystemExit: From argparse for --help or unknown options
    """
    if environ is None:
        environ = os.environ

    args = build_parser().parse_args(argv)

    interval = _parse_positive_int(args.interval, "--interval")
    thresholds = ThresholdConfig(
        ping_max_ms=_parse_optional_number(args.ping_threshold, "--ping-threshold"),
        download_min_mbps=_parse_optional_number(args.download_threshold, "--download-threshold"),
        upload_min_mbps=_parse_optional_number(args.upload_threshold, "--upload-threshold"),
    )

    output = None
    if not args.no_output and args.output:
        output = Path(args.output)

    email = (args.email or "").strip() or None
    smtp = load_smtp_settings(environ) if email else None

    cycle_timeout = _parse_optional_number(args.timeout, "--timeout", positive=True)
    probe_timeout = _parse_optional_number(args.probe_timeout, "--probe-timeout", positive=True)

    config = AppConfig(
        interval_minutes=interval,
        output=output,
        thresholds=thresholds,
        email=email,
        smtp=smtp,
        cycle_timeout_s=cycle_timeout,
        probe_timeout_s=probe_timeout,
        log_level=args.log_level,
    )
    logger.debug("Configuration loaded: %s", config)
    return config
