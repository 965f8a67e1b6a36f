"""Entry point for speedlog."""

import logging
import os
import signal
import sys

from PySide6.QtCore import QCoreApplication, QTimer

from speedlog.config import AppConfig, load_config
from speedlog.cycle import CycleRunner
from speedlog.errors import ConfigError
from speedlog.logging_config import configure_logging
from speedlog.notifiers import EmailNotifier
from speedlog.probe import FakeProbeAdapter
from speedlog.scheduler import CycleScheduler
from speedlog.sinks import CsvSink

logger = logging.getLogger(__name__)

# Wakes the interpreter so SIGINT/SIGTERM handlers run while Qt blocks
SIGNAL_POLL_MS = 250


def select_provider(config: AppConfig, environ=os.environ):
    """Pick the probe provider, falling back to simulated data.

    SPEEDLOG_PROBE=fake forces the fake provider. Otherwise speedtest-cli is
    used if it can be run.
    """
    if environ.get("SPEEDLOG_PROBE", "").lower() == "fake":
        logger.info("Fake probe explicitly requested via environment variable")
        return FakeProbeAdapter()

    # Step 1: Try importing the module
    try:
        from speedlog.probe_speedtest import SpeedtestCliProvider
    except ImportError as e:
        logger.warning("SpeedtestCliProvider unavailable: %s", e)
        return FakeProbeAdapter()

    # Step 2: Check the command actually runs
    provider = SpeedtestCliProvider(timeout_s=config.probe_timeout_s)
    if not provider.is_available():
        logger.warning("speedtest-cli not found or not runnable; using simulated data")
        return FakeProbeAdapter()

    logger.info("speedtest-cli is available")
    return provider


def build_runner(config: AppConfig, provider) -> CycleRunner:
    """Wire the configured sink and notifier around the provider."""
    sink = CsvSink(config.output) if config.output is not None else None

    notifier = None
    if config.email and config.smtp is not None:
        notifier = EmailNotifier(
            recipient=config.email,
            host=config.smtp.host,
            port=config.smtp.port,
            sender=config.smtp.sender,
            username=config.smtp.username,
            password=config.smtp.password,
            starttls=config.smtp.starttls,
        )

    if config.email and not config.thresholds.is_enabled():
        logger.warning("--email given but no thresholds set; no alerts will be sent")

    return CycleRunner(
        provider=provider,
        thresholds=config.thresholds,
        sink=sink,
        notifier=notifier,
    )


def main(argv=None):
    """Main entry point for speedlog."""
    configure_logging()

    try:
        config = load_config(argv)
    except ConfigError as e:
        logger.error("Invalid configuration: %s", e)
        return 2

    if config.log_level is not None:
        configure_logging(config.log_level)

    app = QCoreApplication.instance() or QCoreApplication(sys.argv[:1])

    provider = select_provider(config)
    runner = build_runner(config, provider)
    scheduler = CycleScheduler(
        runner,
        interval_ms=config.interval_ms,
        timeout_ms=config.cycle_timeout_ms,
    )
    scheduler.stopped.connect(app.quit)

    def request_stop(signum, frame):
        logger.info("Received signal %d, stopping after the current cycle", signum)
        scheduler.stop()

    signal.signal(signal.SIGINT, request_stop)
    signal.signal(signal.SIGTERM, request_stop)

    signal_timer = QTimer()
    signal_timer.timeout.connect(lambda: None)
    signal_timer.start(SIGNAL_POLL_MS)

    logger.info("Running speed test every %d minutes", config.interval_minutes)
    logger.info("Logging to: %s", config.output or "none")

    scheduler.start()
    return app.exec()


if __name__ == "__main__":
    sys.exit(main())
