"""Worker classes for background measurement cycles."""

import logging
import threading
from datetime import datetime

from PySide6.QtCore import QObject, QRunnable, Signal

from speedlog.cycle import CycleRunner
from speedlog.models import CycleOutcome

logger = logging.getLogger(__name__)


class WorkerSignals(QObject):
    """Signals for communicating between worker threads and main thread."""

    outcome_ready = Signal(object, int)  # Emits (CycleOutcome, generation_id)
    finished = Signal(int)  # Emits generation_id when worker completes


class CycleWorker(QRunnable):
    """Worker that executes runner.run_cycle() in a background thread."""

    def __init__(self, runner: CycleRunner, cycle: int, generation_id: int):
        super().__init__()
        self.runner = runner
        self.cycle = cycle
        self.generation_id = generation_id
        self.cancel = threading.Event()
        self.signals = WorkerSignals()

    def run(self):
        """Execute the cycle in background thread."""
        started_at = datetime.now()
        try:
            logger.debug("Worker starting: cycle=%d, generation_id=%d", self.cycle, self.generation_id)

            # May block for a long time (a real speed test takes ~30s)
            outcome = self.runner.run_cycle(self.cycle, cancel=self.cancel)

            logger.debug(
                "Worker completed: cycle=%d, generation_id=%d, status=%s",
                self.cycle,
                self.generation_id,
                outcome.status.value,
            )

        except Exception as e:
            # run_cycle records stage errors itself; this is a bug path
            logger.exception(
                "Worker exception: cycle=%d, generation_id=%d, error=%s",
                self.cycle,
                self.generation_id,
                str(e),
            )
            outcome = CycleOutcome(
                cycle=self.cycle,
                started_at=started_at,
                finished_at=datetime.now(),
                probe_error=e,
            )

        try:
            self.signals.outcome_ready.emit(outcome, self.generation_id)
        finally:
            # Always signal completion
            self.signals.finished.emit(self.generation_id)
