"""Speed test probe using the speedtest-cli command."""

import json
import logging
import shutil
import subprocess

from speedlog.errors import ProbeMalformedOutput, ProbeTimedOut, ProbeUnavailable
from speedlog.probe import RawProbeResult

logger = logging.getLogger(__name__)

SPEEDTEST_COMMAND = "speedtest-cli"


def parse_speedtest_json(output: str) -> RawProbeResult:
    """Parse `speedtest-cli --json` output into a raw probe result (pure function).

    speedtest-cli reports ping in milliseconds and download/upload in
    bits per second. Values are passed through unconverted; numeric
    validation happens during normalization. A key that speedtest-cli
    omitted is reported as None (unavailable).

    Args:
        output: Raw stdout of speedtest-cli --json

    Returns:
        Mapping with ping_ms, download_bps and upload_bps

    Raises:
        ProbeMalformedOutput: If the output is empty, not JSON, or not an object

    Examples:
        >>> parse_speedtest_json('{"ping": 12.5, "download": 9.3e7, "upload": 2e7}')
        {'ping_ms': 12.5, 'download_bps': 93000000.0, 'upload_bps': 20000000.0}
    """
    if not output or not output.strip():
        raise ProbeMalformedOutput("speedtest-cli produced no output")

    try:
        data = json.loads(output)
    except json.JSONDecodeError as e:
        raise ProbeMalformedOutput(f"Could not parse speedtest-cli output: {e}") from e

    if not isinstance(data, dict):
        raise ProbeMalformedOutput("speedtest-cli output is not a JSON object")

    return {
        "ping_ms": data.get("ping"),
        "download_bps": data.get("download"),
        "upload_bps": data.get("upload"),
    }


class SpeedtestCliProvider:
    """Probe provider that shells out to speedtest-cli.

    The speedtest-cli distribution is a package dependency, so the command is
    normally on PATH next to the interpreter. Failures are raised as probe
    errors rather than turned into empty results, so the cycle can report
    exactly what went wrong.
    """

    def __init__(self, timeout_s: float = 120.0, command: str = SPEEDTEST_COMMAND):
        """Initialize the provider.

        Args:
            timeout_s: Maximum time to wait for speedtest-cli in seconds
            command: Executable name or path
        """
        if timeout_s <= 0:
            raise ValueError("timeout_s must be positive")

        self.timeout_s = timeout_s
        self.command = command

        logger.debug("SpeedtestCliProvider initialized: command=%s, timeout=%.1fs", command, timeout_s)

    def is_available(self) -> bool:
        """Check whether speedtest-cli can be executed."""
        if shutil.which(self.command) is None:
            return False
        try:
            result = subprocess.run(
                [self.command, "--version"],
                capture_output=True,
                text=True,
                timeout=10,
                shell=False,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.debug("speedtest-cli --version failed: %s", e)
            return False
        return result.returncode == 0

    def measure(self) -> RawProbeResult:
        """Run one speed test.

        Returns:
            Raw result with ping_ms, download_bps and upload_bps

        Raises:
            ProbeUnavailable: Command missing or exited non-zero
            ProbeTimedOut: Command exceeded timeout_s
            ProbeMalformedOutput: Output could not be parsed
        """
        cmd = [self.command, "--json"]
        logger.debug("Executing speed test: %s (timeout=%.1fs)", " ".join(cmd), self.timeout_s)

        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout_s,
                shell=False,  # Security: never use shell=True
            )
        except FileNotFoundError as e:
            raise ProbeUnavailable(f"{self.command} not found") from e
        except subprocess.TimeoutExpired as e:
            raise ProbeTimedOut(f"{self.command} did not finish within {self.timeout_s:.0f}s") from e
        except OSError as e:
            raise ProbeUnavailable(f"Failed to run {self.command}: {e}") from e

        logger.debug("Speed test completed: returncode=%d", result.returncode)

        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            raise ProbeUnavailable(
                f"{self.command} exited with {result.returncode}: {stderr[:200] or '(no output)'}"
            )

        return parse_speedtest_json(result.stdout)
