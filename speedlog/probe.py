"""Probe provider abstraction for speedlog."""

from typing import Protocol, TypedDict

from speedlog.fake_probe import FakeProbe


class RawProbeResult(TypedDict):
    """Raw measurement as produced by a provider. None marks unavailable."""

    ping_ms: float | None
    download_bps: float | None
    upload_bps: float | None


class ProbeProvider(Protocol):
    """Protocol defining the interface for probe providers.

    measure() may return the result directly or an awaitable of it.
    """

    def measure(self) -> RawProbeResult:
        """Run one latency/throughput measurement."""
        ...


class FakeProbeAdapter:
    """Adapter that implements ProbeProvider protocol using FakeProbe."""

    def __init__(self, fake_probe: FakeProbe | None = None):
        """Initialize with optional FakeProbe instance."""
        if fake_probe is None:
            fake_probe = FakeProbe()
        self._fake_probe = fake_probe

    def measure(self) -> RawProbeResult:
        """Generate a result using the underlying FakeProbe."""
        return self._fake_probe.measure()
