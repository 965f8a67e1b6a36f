"""Fixed-delay measurement scheduler with per-cycle timeout."""

import logging
from datetime import datetime

from PySide6.QtCore import QObject, Qt, QThreadPool, QTimer, Signal

from speedlog.cycle import CycleRunner
from speedlog.errors import ProbeTimedOut
from speedlog.models import CycleOutcome, CycleStatus
from speedlog.workers import CycleWorker

logger = logging.getLogger(__name__)


class CycleScheduler(QObject):
    """Runs measurement cycles one at a time on a fixed delay.

    Key features:
    - First cycle starts immediately on start()
    - Fixed-delay: the next tick is armed only once the previous cycle has
      finished, so a slow cycle pushes the schedule back instead of
      overlapping with the next one
    - Optional per-cycle timeout: an overdue cycle is reported as a probe
      timeout and abandoned; its late result is discarded
    - Generation ID invalidates results from abandoned workers

    Thread-safe: All state access on Qt main thread via signals/slots.
    """

    # Signals
    cycle_finished = Signal(object)  # CycleOutcome
    stopped = Signal()  # Emitted once stop() has taken effect and nothing is in flight

    def __init__(
        self,
        runner: CycleRunner,
        interval_ms: int = 15 * 60 * 1000,
        timeout_ms: int | None = None,
        parent=None,
    ):
        """Initialize scheduler.

        Args:
            runner: CycleRunner executing each cycle
            interval_ms: Delay between the end of one cycle and the start of the next
            timeout_ms: Optional limit on a single cycle's duration
            parent: Qt parent object
        """
        super().__init__(parent)

        if interval_ms <= 0:
            raise ValueError("interval_ms must be positive")
        if timeout_ms is not None and timeout_ms <= 0:
            raise ValueError("timeout_ms must be positive")

        self.runner = runner
        self.interval_ms = interval_ms
        self.timeout_ms = timeout_ms

        # Cycle tracking
        self._cycle_count = 0
        self._in_flight = None  # CycleWorker currently running, if any
        self._cycle_started_at = None
        self._abandoned_running = 0  # Timed-out workers whose thread has not returned yet

        # Generation ID for invalidating abandoned results
        self._generation_id = 0

        # Threading
        self.thread_pool = QThreadPool(self)

        # Single-shot timer re-armed after every cycle (fixed delay)
        self.timer = QTimer(self)
        self.timer.setSingleShot(True)
        self.timer.setTimerType(Qt.TimerType.PreciseTimer)
        self.timer.timeout.connect(self._tick)

        self.timeout_timer = QTimer(self)
        self.timeout_timer.setSingleShot(True)
        self.timeout_timer.setTimerType(Qt.TimerType.PreciseTimer)
        self.timeout_timer.timeout.connect(self._on_cycle_timeout)

        # Scheduling state
        self.is_running = False

    def start(self):
        """Start the loop. The first cycle runs immediately."""
        if self.is_running:
            return

        self.is_running = True
        self.timer.start(0)
        logger.info(
            "Scheduler started: interval=%dms, timeout=%s",
            self.interval_ms,
            f"{self.timeout_ms}ms" if self.timeout_ms else "none",
        )

    def stop(self):
        """Stop scheduling new cycles.

        A cycle already in flight is allowed to finish and its outcome is
        still reported. `stopped` is emitted once nothing is in flight.
        """
        if not self.is_running:
            return

        self.is_running = False
        self.timer.stop()
        logger.info("Scheduler stopped (cycle in flight: %s)", self._in_flight is not None)

        if self._in_flight is None:
            self.stopped.emit()

    def set_interval(self, interval_ms: int):
        """Update the delay used for the next scheduled tick.

        Args:
            interval_ms: New interval in milliseconds
        """
        if interval_ms <= 0:
            raise ValueError("interval_ms must be positive")
        self.interval_ms = interval_ms
        logger.debug("Interval updated: %dms", interval_ms)

    def is_cycle_in_flight(self) -> bool:
        return self._in_flight is not None

    def _tick(self):
        """Handle timer tick - start exactly one cycle."""
        if not self.is_running:
            return

        # Cannot happen with a single-shot timer, but never overlap probes
        if self._in_flight is not None:
            logger.warning("Tick skipped: cycle %d still in flight", self._in_flight.cycle)
            return

        self._cycle_count += 1
        self._cycle_started_at = datetime.now()

        worker = CycleWorker(self.runner, self._cycle_count, self._generation_id)
        worker.signals.outcome_ready.connect(self._on_outcome_ready)
        worker.signals.finished.connect(self._on_worker_finished)
        self._in_flight = worker

        logger.debug("Cycle %d scheduled (generation_id=%d)", self._cycle_count, self._generation_id)
        self.thread_pool.start(worker)

        if self.timeout_ms is not None:
            self.timeout_timer.start(self.timeout_ms)

    def _on_outcome_ready(self, outcome, generation_id):
        """Handle cycle outcome from worker.

        Args:
            outcome: CycleOutcome
            generation_id: Generation ID when worker was scheduled
        """
        # Check if stale (cycle was abandoned after a timeout)
        if generation_id != self._generation_id:
            logger.debug(
                "Ignoring stale result: cycle=%d, generation_id=%d (current=%d)",
                outcome.cycle,
                generation_id,
                self._generation_id,
            )
            return

        self._finish_cycle(outcome)

    def _on_worker_finished(self, generation_id):
        """Release the slot held by an abandoned worker once its thread returns."""
        if generation_id != self._generation_id:
            self._abandoned_running = max(0, self._abandoned_running - 1)
            logger.debug(
                "Abandoned worker finished (generation_id=%d, still running: %d)",
                generation_id,
                self._abandoned_running,
            )

    def _on_cycle_timeout(self):
        """Abandon the in-flight cycle and report it as a probe timeout."""
        worker = self._in_flight
        if worker is None:
            return

        # Cooperative cancellation: the worker skips persist/notify once set
        worker.cancel.set()
        self._generation_id += 1
        self._abandoned_running += 1

        outcome = CycleOutcome(
            cycle=worker.cycle,
            started_at=self._cycle_started_at,
            finished_at=datetime.now(),
            probe_error=ProbeTimedOut(f"cycle exceeded timeout of {self.timeout_ms}ms"),
            discarded=True,
        )
        self._finish_cycle(outcome)

    def _finish_cycle(self, outcome: CycleOutcome):
        """Record the outcome and arm the next tick a full interval from now."""
        self.timeout_timer.stop()
        self._in_flight = None

        self._log_outcome(outcome)

        # A cycle_finished slot may call stop(), which emits stopped itself
        was_running = self.is_running
        self.cycle_finished.emit(outcome)

        if self.is_running:
            self.timer.start(self.interval_ms)
        elif not was_running:
            self.stopped.emit()

    def _log_outcome(self, outcome: CycleOutcome):
        status = outcome.status
        started = outcome.started_at.strftime("%Y-%m-%d %H:%M:%S") if outcome.started_at else "?"

        if status is CycleStatus.SUCCESS:
            record = outcome.record
            if record is None:
                logger.info("Cycle %d (%s): no result", outcome.cycle, started)
                return
            logger.info(
                "Cycle %d (%s): ok ping=%s ms download=%s Mbps upload=%s Mbps%s%s",
                outcome.cycle,
                started,
                record.ping_ms,
                record.download_mbps,
                record.upload_mbps,
                " persisted" if outcome.persisted else "",
                " alerted" if outcome.notified else "",
            )
            return

        stage = {
            CycleStatus.PROBE_FAILED: "probe",
            CycleStatus.PERSIST_FAILED: "persist",
            CycleStatus.NOTIFY_FAILED: "notify",
        }[status]
        logger.warning(
            "Cycle %d (%s): %s failed: %s: %s",
            outcome.cycle,
            started,
            stage,
            type(outcome.error).__name__,
            outcome.error,
        )
        if outcome.persist_error is not None and outcome.notify_error is not None:
            logger.warning("Cycle %d (%s): notify also failed: %s", outcome.cycle, started, outcome.notify_error)

    def get_stats(self):
        """Get scheduler statistics.

        Returns:
            Dict with scheduler state info
        """
        return {
            "interval_ms": self.interval_ms,
            "timeout_ms": self.timeout_ms,
            "running": self.is_running,
            "in_flight": self._in_flight is not None,
            "cycles": self._cycle_count,
            "generation_id": self._generation_id,
            "abandoned_running": self._abandoned_running,
        }
