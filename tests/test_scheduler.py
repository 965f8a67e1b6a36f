"""Unit tests for CycleScheduler (runs a real Qt event loop)."""

import threading
import time

import pytest
from PySide6.QtCore import QThreadPool

from speedlog.cycle import CycleRunner
from speedlog.errors import ProbeTimedOut, ProbeUnavailable
from speedlog.models import CycleStatus, ThresholdConfig
from speedlog.scheduler import CycleScheduler

GOOD_RESULT = {"ping_ms": 80.0, "download_bps": 100_000_000, "upload_bps": 20_000_000}


class TimedProvider:
    """Provider that sleeps, records call windows and tracks concurrency."""

    def __init__(self, delay_s=0.0, errors=None):
        self.delay_s = delay_s
        self.errors = list(errors or [])  # Raised on the first calls, in order
        self.windows = []  # (start, end) monotonic seconds
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def measure(self):
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
            error = self.errors.pop(0) if self.errors else None
        start = time.monotonic()
        try:
            if self.delay_s:
                time.sleep(self.delay_s)
            if error is not None:
                raise error
            return dict(GOOD_RESULT)
        finally:
            with self._lock:
                self.active -= 1
                self.windows.append((start, time.monotonic()))


@pytest.fixture
def make_scheduler(qapp):
    """Create schedulers and make sure they are stopped and drained afterwards."""
    created = []

    def _make(provider, interval_ms=20, timeout_ms=None, sink=None, notifier=None, thresholds=None):
        runner = CycleRunner(provider, thresholds or ThresholdConfig(), sink=sink, notifier=notifier)
        scheduler = CycleScheduler(runner, interval_ms=interval_ms, timeout_ms=timeout_ms)
        outcomes = []
        scheduler.cycle_finished.connect(outcomes.append)
        created.append(scheduler)
        return scheduler, outcomes

    yield _make

    for scheduler in created:
        scheduler.stop()
        scheduler.thread_pool.waitForDone(5000)
    qapp.processEvents()


class TestCycleScheduler:
    """Test suite for CycleScheduler class."""

    def test_initial_state(self, make_scheduler):
        """Verify scheduler starts in correct initial state."""
        scheduler, _ = make_scheduler(TimedProvider(), interval_ms=1000)

        assert not scheduler.is_running
        assert not scheduler.is_cycle_in_flight()
        assert scheduler.get_stats() == {
            "interval_ms": 1000,
            "timeout_ms": None,
            "running": False,
            "in_flight": False,
            "cycles": 0,
            "generation_id": 0,
            "abandoned_running": 0,
        }
        assert isinstance(scheduler.thread_pool, QThreadPool)

    def test_invalid_interval(self, qapp):
        runner = CycleRunner(TimedProvider(), ThresholdConfig())

        with pytest.raises(ValueError, match="interval_ms"):
            CycleScheduler(runner, interval_ms=0)
        with pytest.raises(ValueError, match="timeout_ms"):
            CycleScheduler(runner, interval_ms=1000, timeout_ms=-1)

    def test_first_cycle_runs_immediately(self, make_scheduler, wait_until):
        """Test start() runs a cycle without waiting a full interval."""
        scheduler, outcomes = make_scheduler(TimedProvider(), interval_ms=60_000)

        scheduler.start()

        assert wait_until(lambda: len(outcomes) == 1, timeout_s=2.0)
        assert outcomes[0].status is CycleStatus.SUCCESS
        assert outcomes[0].cycle == 1
        # The next tick is a minute away
        assert scheduler.timer.isActive()
        assert scheduler.get_stats()["cycles"] == 1

    def test_start_twice_is_noop(self, make_scheduler, wait_until):
        scheduler, outcomes = make_scheduler(TimedProvider(), interval_ms=60_000)

        scheduler.start()
        scheduler.start()

        assert wait_until(lambda: len(outcomes) == 1, timeout_s=2.0)
        wait_until(lambda: False, timeout_s=0.1)
        assert len(outcomes) == 1

    def test_fixed_delay_when_cycle_slower_than_interval(self, make_scheduler, wait_until):
        """Test next probe starts a full interval after the previous one ends."""
        provider = TimedProvider(delay_s=0.12)
        scheduler, outcomes = make_scheduler(provider, interval_ms=50)

        scheduler.start()

        assert wait_until(lambda: len(outcomes) >= 3, timeout_s=5.0)
        scheduler.stop()

        windows = sorted(provider.windows)
        for (_, prev_end), (next_start, _) in zip(windows, windows[1:]):
            # Small slack for timer granularity
            assert next_start - prev_end >= 0.045
        assert provider.max_active == 1

    def test_probe_failure_does_not_stop_loop(self, make_scheduler, wait_until, sink, notifier):
        """Test a failed cycle is reported and the next one still runs."""
        provider = TimedProvider(errors=[ProbeUnavailable("speedtest-cli not found")])
        scheduler, outcomes = make_scheduler(
            provider,
            interval_ms=20,
            sink=sink,
            notifier=notifier,
            thresholds=ThresholdConfig(ping_max_ms=50),
        )

        scheduler.start()

        assert wait_until(lambda: len(outcomes) >= 2, timeout_s=3.0)
        scheduler.stop()
        assert wait_until(lambda: not scheduler.is_cycle_in_flight(), timeout_s=3.0)

        assert outcomes[0].status is CycleStatus.PROBE_FAILED
        assert outcomes[1].status is CycleStatus.SUCCESS
        # Only successful cycles persisted and alerted
        assert len(sink.records) == len([o for o in outcomes if o.persisted])
        assert all(o.record is None for o in outcomes if o.status is CycleStatus.PROBE_FAILED)
        assert len(notifier.alerts) == len([o for o in outcomes if o.notified])

    def test_unexpected_error_does_not_stop_loop(self, make_scheduler, wait_until):
        provider = TimedProvider(errors=[RuntimeError("bug in provider")])
        scheduler, outcomes = make_scheduler(provider, interval_ms=20)

        scheduler.start()

        assert wait_until(lambda: len(outcomes) >= 2, timeout_s=3.0)
        assert outcomes[0].status is CycleStatus.PROBE_FAILED
        assert outcomes[1].status is CycleStatus.SUCCESS

    def test_end_to_end_single_cycle(self, make_scheduler, wait_until, sink, notifier):
        """Test one tick with ping over threshold persists once and alerts once."""
        scheduler, outcomes = make_scheduler(
            TimedProvider(),
            interval_ms=60_000,
            sink=sink,
            notifier=notifier,
            thresholds=ThresholdConfig(ping_max_ms=50),
        )

        scheduler.start()

        assert wait_until(lambda: len(outcomes) == 1, timeout_s=2.0)
        assert len(sink.records) == 1
        assert len(notifier.alerts) == 1
        assert notifier.alerts[0][1] == ("ping above threshold",)

    def test_timeout_abandons_cycle_and_discards_late_result(self, make_scheduler, wait_until, sink, notifier):
        """Test an overdue cycle is reported as a timeout and its result dropped."""
        provider = TimedProvider(delay_s=0.4)
        scheduler, outcomes = make_scheduler(
            provider,
            interval_ms=60_000,
            timeout_ms=50,
            sink=sink,
            notifier=notifier,
            thresholds=ThresholdConfig(ping_max_ms=50),
        )

        scheduler.start()

        assert wait_until(lambda: len(outcomes) == 1, timeout_s=2.0)
        assert outcomes[0].status is CycleStatus.PROBE_FAILED
        assert isinstance(outcomes[0].error, ProbeTimedOut)
        assert scheduler.get_stats()["generation_id"] == 1
        assert scheduler.get_stats()["abandoned_running"] == 1

        # Let the abandoned probe finish and deliver its stale result
        assert wait_until(lambda: len(provider.windows) == 1, timeout_s=2.0)
        scheduler.thread_pool.waitForDone(2000)
        wait_until(lambda: False, timeout_s=0.1)

        assert len(outcomes) == 1
        assert sink.records == []
        assert notifier.alerts == []
        assert scheduler.get_stats()["abandoned_running"] == 0

    def test_next_cycle_runs_after_timeout(self, make_scheduler, wait_until):
        provider = TimedProvider(delay_s=0.3)
        scheduler, outcomes = make_scheduler(provider, interval_ms=20, timeout_ms=50)

        scheduler.start()

        assert wait_until(lambda: len(outcomes) >= 2, timeout_s=3.0)
        assert outcomes[0].cycle == 1
        assert outcomes[1].cycle == 2

    def test_timeout_during_persist_sends_no_alert(self, make_scheduler, wait_until, slow_side_effects):
        """Test a cycle that times out while writing never alerts afterwards."""
        slow = slow_side_effects(persist_s=0.3)
        scheduler, outcomes = make_scheduler(
            TimedProvider(),
            interval_ms=60_000,
            timeout_ms=50,
            sink=slow,
            notifier=slow,
            thresholds=ThresholdConfig(ping_max_ms=50),
        )

        scheduler.start()

        assert wait_until(lambda: len(outcomes) == 1, timeout_s=2.0)
        assert outcomes[0].status is CycleStatus.PROBE_FAILED
        assert isinstance(outcomes[0].error, ProbeTimedOut)

        # Let the abandoned write finish
        scheduler.thread_pool.waitForDone(2000)
        assert wait_until(lambda: scheduler.get_stats()["abandoned_running"] == 0, timeout_s=1.0)

        assert slow.alerts == []
        assert len(slow.records) <= 1
        assert len(outcomes) == 1

    def test_no_overlapping_writes_after_timeout(self, make_scheduler, wait_until, slow_side_effects):
        """Test the next cycle never writes while an abandoned cycle is still writing."""
        slow = slow_side_effects(persist_s=0.15)
        scheduler, outcomes = make_scheduler(TimedProvider(), interval_ms=20, timeout_ms=50, sink=slow)

        scheduler.start()

        assert wait_until(lambda: len(outcomes) >= 4, timeout_s=5.0)
        scheduler.stop()
        scheduler.thread_pool.waitForDone(5000)
        assert wait_until(lambda: scheduler.get_stats()["abandoned_running"] == 0, timeout_s=1.0)

        assert all(isinstance(o.error, ProbeTimedOut) for o in outcomes)
        assert len(slow.records) >= 1
        assert slow.max_active == 1

    def test_timeout_during_notify_blocks_next_cycle_side_effects(
        self, make_scheduler, wait_until, slow_side_effects
    ):
        """Test a slow alert from an abandoned cycle is not overlapped by later writes."""
        slow = slow_side_effects(notify_s=0.3)
        scheduler, outcomes = make_scheduler(
            TimedProvider(),
            interval_ms=20,
            timeout_ms=50,
            sink=slow,
            notifier=slow,
            thresholds=ThresholdConfig(ping_max_ms=50),
        )

        scheduler.start()

        assert wait_until(lambda: len(outcomes) >= 3, timeout_s=5.0)
        scheduler.stop()
        scheduler.thread_pool.waitForDone(5000)
        wait_until(lambda: False, timeout_s=0.1)

        assert all(isinstance(o.error, ProbeTimedOut) for o in outcomes)
        assert slow.max_active == 1
        # Every alert belongs to a cycle whose record was written first
        assert len(slow.alerts) <= len(slow.records)

    def test_stop_lets_in_flight_cycle_finish(self, make_scheduler, wait_until, sink):
        """Test stop() mid-cycle keeps the cycle's result and schedules nothing more."""
        provider = TimedProvider(delay_s=0.2)
        scheduler, outcomes = make_scheduler(provider, interval_ms=20, sink=sink)
        stopped = []
        scheduler.stopped.connect(lambda: stopped.append(True))

        scheduler.start()
        assert wait_until(scheduler.is_cycle_in_flight, timeout_s=2.0)
        scheduler.stop()

        assert not scheduler.is_running
        assert stopped == []

        assert wait_until(lambda: stopped == [True], timeout_s=2.0)
        assert len(outcomes) == 1
        assert outcomes[0].status is CycleStatus.SUCCESS
        assert len(sink.records) == 1

        wait_until(lambda: False, timeout_s=0.1)
        assert len(provider.windows) == 1
        assert not scheduler.timer.isActive()

    def test_stop_when_idle_emits_stopped(self, make_scheduler, wait_until):
        scheduler, outcomes = make_scheduler(TimedProvider(), interval_ms=60_000)
        stopped = []
        scheduler.stopped.connect(lambda: stopped.append(True))

        scheduler.start()
        assert wait_until(lambda: len(outcomes) == 1, timeout_s=2.0)
        scheduler.stop()

        assert stopped == [True]
        assert not scheduler.timer.isActive()

    def test_stop_from_cycle_finished_slot(self, make_scheduler, wait_until):
        """Test stopping inside a cycle_finished handler emits stopped once."""
        scheduler, outcomes = make_scheduler(TimedProvider(), interval_ms=20)
        stopped = []
        scheduler.stopped.connect(lambda: stopped.append(True))
        scheduler.cycle_finished.connect(lambda outcome: scheduler.stop())

        scheduler.start()

        assert wait_until(lambda: stopped, timeout_s=2.0)
        wait_until(lambda: False, timeout_s=0.1)
        assert stopped == [True]
        assert len(outcomes) == 1

    def test_set_interval(self, make_scheduler):
        scheduler, _ = make_scheduler(TimedProvider(), interval_ms=1000)

        scheduler.set_interval(2000)

        assert scheduler.interval_ms == 2000
        with pytest.raises(ValueError):
            scheduler.set_interval(0)
