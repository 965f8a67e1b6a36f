"""Fake probe provider for speedlog testing and simulation."""

import random

from speedlog.errors import ProbeUnavailable


class FakeProbe:
    """Generates fake speed test results for testing."""

    def __init__(self, seed: int | None = None):
        """Initialize with optional random seed for deterministic behavior."""
        # Create isolated random instance for thread safety
        self._random = random.Random(seed)

        # Simulation parameters
        self.base_ping = 25.0  # Base ping in ms
        self.ping_variance = 5.0
        self.base_download_bps = 95_000_000.0
        self.base_upload_bps = 20_000_000.0
        self.throughput_variance = 0.1  # Relative standard deviation
        self.degraded_probability = 0.05  # 5% chance of a congested sample
        self.degraded_factor = 0.3  # Congestion cuts throughput to 30%
        self.failure_probability = 0.0  # Chance the probe fails outright

    def measure(self) -> dict:
        """Generate a single raw probe result."""
        if self._random.random() < self.failure_probability:
            raise ProbeUnavailable("Simulated probe failure")

        factor = 1.0
        if self._random.random() < self.degraded_probability:
            factor = self.degraded_factor

        ping = max(0.1, self.base_ping / factor + self._random.gauss(0, self.ping_variance))
        download = self.base_download_bps * factor * (
            1 + self._random.gauss(0, self.throughput_variance)
        )
        upload = self.base_upload_bps * factor * (
            1 + self._random.gauss(0, self.throughput_variance)
        )

        return {
            "ping_ms": round(ping, 3),
            "download_bps": max(0.0, download),
            "upload_bps": max(0.0, upload),
        }
