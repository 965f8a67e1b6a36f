"""Exception hierarchy for speedlog."""


class SpeedlogError(Exception):
    """Base class for all speedlog errors."""


class ProbeFailure(SpeedlogError):
    """The probe provider could not produce a usable measurement."""


class ProbeUnavailable(ProbeFailure):
    """The probe tool is missing, unreachable, or exited with an error."""


class ProbeTimedOut(ProbeFailure):
    """The probe (or the whole cycle) did not finish in time."""


class ProbeMalformedOutput(ProbeFailure):
    """The probe produced output that could not be parsed."""


class MalformedProbeResult(ProbeMalformedOutput):
    """A raw probe result is missing required fields or holds non-numeric values."""


class PersistFailure(SpeedlogError):
    """The sink could not store a record."""


class NotifyFailure(SpeedlogError):
    """The notifier could not deliver an alert."""


class ConfigError(SpeedlogError, ValueError):
    """Invalid startup configuration. Fatal: scheduling never begins."""
