"""Per-cycle orchestration: probe, normalize, persist, evaluate, notify."""

import asyncio
import inspect
import logging
import threading
from datetime import datetime

from speedlog.errors import MalformedProbeResult, ProbeFailure
from speedlog.models import CycleOutcome, ThresholdConfig
from speedlog.normalize import MonotonicClock, normalize
from speedlog.notifiers import Notifier
from speedlog.policy import evaluate
from speedlog.probe import ProbeProvider
from speedlog.sinks import Sink

logger = logging.getLogger(__name__)


class CycleRunner:
    """Runs one measurement cycle and reports what happened.

    Every failure is caught and recorded on the returned CycleOutcome, so a
    bad cycle never propagates to the scheduler. Rules:
    1. A probe failure ends the cycle: nothing is persisted or notified
    2. A persist failure is recorded but evaluation and notification continue
    3. A notify failure is recorded and not retried
    4. Persist and notify each happen at most once per cycle
    5. Persist and notify never run concurrently across cycles of one runner
    """

    def __init__(
        self,
        provider: ProbeProvider,
        thresholds: ThresholdConfig,
        sink: Sink | None = None,
        notifier: Notifier | None = None,
        clock: MonotonicClock | None = None,
    ):
        """Initialize cycle runner.

        Args:
            provider: Probe provider to measure with
            thresholds: Alert thresholds, fixed for the lifetime of the runner
            sink: Optional record storage
            notifier: Optional alert channel
            clock: Timestamp source (defaults to a new MonotonicClock)
        """
        self.provider = provider
        self.thresholds = thresholds
        self.sink = sink
        self.notifier = notifier
        self.clock = clock or MonotonicClock()
        self._side_effect_lock = threading.Lock()

    def _call_provider(self):
        result = self.provider.measure()
        if inspect.isawaitable(result):
            # Worker threads have no running event loop of their own
            result = asyncio.run(_await(result))
        return result

    def run_cycle(self, cycle: int = 0, cancel: threading.Event | None = None) -> CycleOutcome:
        """Run one cycle.

        Args:
            cycle: Cycle number, used in log messages
            cancel: Set by the scheduler when the cycle has been abandoned.
                Checked before persisting and again before notifying; a
                cancelled cycle skips whatever side effects remain.

        Returns:
            CycleOutcome describing each stage
        """
        outcome = CycleOutcome(cycle=cycle, started_at=datetime.now())

        try:
            raw = self._call_provider()
            record = normalize(raw, self.clock.now())
        except MalformedProbeResult as e:
            logger.warning("Cycle %d: probe result malformed: %s", cycle, e)
            outcome.probe_error = e
        except ProbeFailure as e:
            logger.warning("Cycle %d: probe failed: %s", cycle, e)
            outcome.probe_error = e
        except Exception as e:
            logger.exception("Cycle %d: unexpected probe error", cycle)
            outcome.probe_error = e

        if outcome.probe_error is not None:
            outcome.finished_at = datetime.now()
            return outcome

        outcome.record = record

        # Side effects are serialized so an abandoned cycle that is still
        # writing never overlaps the next cycle's write
        with self._side_effect_lock:
            if self._abandoned(outcome, cancel, "persist"):
                return outcome

            if self.sink is not None:
                try:
                    self.sink.persist(record)
                    outcome.persisted = True
                except Exception as e:
                    logger.error("Cycle %d: persist failed: %s", cycle, e)
                    outcome.persist_error = e

        verdict = evaluate(record, self.thresholds)
        outcome.verdict = verdict
        outcome.notes.extend(verdict.notes)
        for note in verdict.notes:
            logger.info("Cycle %d: %s", cycle, note)

        if verdict.violated:
            with self._side_effect_lock:
                if self._abandoned(outcome, cancel, "notify"):
                    return outcome

                logger.warning("Cycle %d: threshold exceeded: %s", cycle, ", ".join(verdict.reasons))
                if self.notifier is not None:
                    try:
                        self.notifier.notify(record, verdict.reasons)
                        outcome.notified = True
                    except Exception as e:
                        logger.error("Cycle %d: notification failed: %s", cycle, e)
                        outcome.notify_error = e

        outcome.finished_at = datetime.now()
        return outcome

    def _abandoned(self, outcome: CycleOutcome, cancel: threading.Event | None, stage: str) -> bool:
        if cancel is None or not cancel.is_set():
            return False
        logger.debug("Cycle %d: abandoned before %s, discarding result", outcome.cycle, stage)
        outcome.discarded = True
        outcome.finished_at = datetime.now()
        return True


async def _await(awaitable):
    return await awaitable
