"""Logging setup for the speedlog process."""

import logging
import os
import sys
from collections.abc import Mapping

LOG_LEVEL_ENV = "SPEEDLOG_LOG_LEVEL"
LEVEL_NAMES = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
DEFAULT_LEVEL = "INFO"

# Cycles run on thread-pool threads, so the thread name tells a slow or
# abandoned cycle apart from the scheduler on the main thread
LOG_FORMAT = "%(asctime)s - %(threadName)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def resolve_level(level: str | None = None, environ: Mapping[str, str] | None = None) -> str:
    """Pick the log level name to use.

    An explicit level (from --log-level) wins over SPEEDLOG_LOG_LEVEL, which
    wins over INFO. Unknown names fall back to the next source.

    >>> resolve_level("debug", environ={})
    'DEBUG'
    >>> resolve_level(None, environ={"SPEEDLOG_LOG_LEVEL": "warning"})
    'WARNING'
    >>> resolve_level(None, environ={"SPEEDLOG_LOG_LEVEL": "chatty"})
    'INFO'
    """
    if environ is None:
        environ = os.environ

    for candidate in (level, environ.get(LOG_LEVEL_ENV)):
        if candidate and candidate.strip().upper() in LEVEL_NAMES:
            return candidate.strip().upper()
    return DEFAULT_LEVEL


def configure_logging(level: str | None = None, environ: Mapping[str, str] | None = None) -> str:
    """Send all speedlog logging to stderr at the resolved level.

    Safe to call twice: main() configures from the environment before the
    command line is parsed, then again once --log-level is known.

    Args:
        level: Level name from the command line, if given
        environ: Environment mapping (defaults to os.environ)

    Returns:
        The level name that was applied
    """
    name = resolve_level(level, environ)

    logging.basicConfig(
        level=getattr(logging, name),
        format=LOG_FORMAT,
        datefmt=DATE_FORMAT,
        stream=sys.stderr,
        force=True,  # Replace the handler installed by an earlier call
    )

    logging.getLogger(__name__).debug("Logging configured: level=%s", name)
    return name
