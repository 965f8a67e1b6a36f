"""Shared fixtures for speedlog tests."""

import threading
import time
from datetime import datetime

import pytest
from PySide6.QtCore import QCoreApplication

from speedlog.errors import NotifyFailure, PersistFailure
from speedlog.models import MeasurementRecord


@pytest.fixture(scope="session")
def qapp():
    """Create QCoreApplication instance for tests."""
    app = QCoreApplication.instance()
    if app is None:
        app = QCoreApplication([])
    yield app


@pytest.fixture
def wait_until(qapp):
    """Pump the Qt event loop until a predicate holds or the timeout expires."""

    def _wait(predicate, timeout_s=5.0):
        deadline = time.monotonic() + timeout_s
        while time.monotonic() < deadline:
            qapp.processEvents()
            if predicate():
                return True
            time.sleep(0.002)
        qapp.processEvents()
        return predicate()

    return _wait


@pytest.fixture
def make_record():
    """Build MeasurementRecords with sensible defaults."""

    def _make(ping_ms=20.0, download_mbps=100.0, upload_mbps=20.0, timestamp=None):
        return MeasurementRecord(
            timestamp=timestamp or datetime(2024, 3, 1, 12, 0, 0),
            ping_ms=ping_ms,
            download_mbps=download_mbps,
            upload_mbps=upload_mbps,
        )

    return _make


class RecordingSink:
    """Sink that keeps records in memory, optionally failing."""

    def __init__(self, fail=False):
        self.fail = fail
        self.records = []
        self._lock = threading.Lock()

    def persist(self, record):
        if self.fail:
            raise PersistFailure("disk full")
        with self._lock:
            self.records.append(record)


class RecordingNotifier:
    """Notifier that keeps alerts in memory, optionally failing."""

    def __init__(self, fail=False):
        self.fail = fail
        self.alerts = []
        self._lock = threading.Lock()

    def notify(self, record, reasons):
        if self.fail:
            raise NotifyFailure("smtp refused")
        with self._lock:
            self.alerts.append((record, tuple(reasons)))


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def failing_sink():
    return RecordingSink(fail=True)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def failing_notifier():
    return RecordingNotifier(fail=True)


class SlowSideEffects:
    """Sink and notifier in one that sleeps in each call and tracks overlapping calls."""

    def __init__(self, persist_s=0.0, notify_s=0.0):
        self.persist_s = persist_s
        self.notify_s = notify_s
        self.records = []
        self.alerts = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def _enter(self, delay_s, entries, entry):
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            time.sleep(delay_s)
        finally:
            with self._lock:
                self.active -= 1
                entries.append(entry)

    def persist(self, record):
        self._enter(self.persist_s, self.records, record)

    def notify(self, record, reasons):
        self._enter(self.notify_s, self.alerts, (record, tuple(reasons)))


@pytest.fixture
def slow_side_effects():
    """Factory for SlowSideEffects(persist_s=..., notify_s=...)."""
    return SlowSideEffects
