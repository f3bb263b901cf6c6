"""
Pytest configuration and fixtures for bulk_writer.

Provides in-memory stand-ins for the store connection, the inbound queue,
the clock and the stop event so writer timing can be tested deterministically.
"""

import queue

import pytest

from bulk_writer.config import WriterSettings
from bulk_writer.errors import ConnectivityError


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeConnection:
    """StoreConnection stand-in.

    ``failures`` is consumed one entry per execute: an exception to raise, or
    None for success. Once exhausted every execute succeeds.
    ``connect_results`` is consumed one entry per connect; default True.
    """

    def __init__(self, failures=(), connect_results=(), clock=None):
        self._failures = list(failures)
        self._connect_results = list(connect_results)
        self._clock = clock
        self._connected = False
        self.attempts = []
        self.executed = []
        self.executed_at = []
        self.connect_calls = 0
        self.close_calls = 0

    @property
    def connected(self) -> bool:
        return self._connected

    def connect(self) -> bool:
        self.connect_calls += 1
        ok = self._connect_results.pop(0) if self._connect_results else True
        self._connected = ok
        return ok

    def execute(self, statement: str) -> None:
        self.attempts.append(statement)
        if not self._connected:
            raise ConnectivityError("Store connection is not open")
        if self._failures:
            exc = self._failures.pop(0)
            if exc is not None:
                if isinstance(exc, ConnectivityError):
                    self._connected = False
                raise exc
        self.executed.append(statement)
        if self._clock is not None:
            self.executed_at.append(self._clock())

    def close(self) -> None:
        self.close_calls += 1
        self._connected = False


class ScriptedQueue:
    """Queue stand-in serving a fixed list of records.

    Every empty poll advances the fake clock by the poll timeout. After
    ``idle_polls`` empty polls ``on_idle`` is called (typically writer.stop).
    """

    def __init__(self, clock: FakeClock, records=(), idle_polls: int = 3):
        self._clock = clock
        self._records = list(records)
        self._idle_left = idle_polls
        self.on_idle = None

    def put(self, record) -> None:
        self._records.append(record)

    def get(self, timeout=None):
        if self._records:
            return self._records.pop(0)
        self._clock.advance(timeout or 0)
        if self._idle_left <= 0 and self.on_idle is not None:
            self.on_idle()
        self._idle_left -= 1
        raise queue.Empty


class RecordingEvent:
    """threading.Event stand-in that records waits instead of sleeping.

    ``set_after_waits`` sets the event once that many waits were made.
    """

    def __init__(self, set_after_waits=None):
        self._set = False
        self._set_after = set_after_waits
        self.waits = []

    def is_set(self) -> bool:
        return self._set

    def set(self) -> None:
        self._set = True

    def wait(self, timeout=None) -> bool:
        self.waits.append(timeout)
        if self._set_after is not None and len(self.waits) >= self._set_after:
            self._set = True
        return self._set


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_connection():
    return FakeConnection


@pytest.fixture
def make_queue():
    return ScriptedQueue


@pytest.fixture
def make_event():
    return RecordingEvent


@pytest.fixture
def settings():
    """Small, fast settings independent of the environment."""
    return WriterSettings(
        _env_file=None,
        store_host="db.test",
        store_name="testdb",
        store_user="writer",
        store_credential="secret",
        batch_time_window_ms=100,
        batch_size_threshold=100,
        batch_retry_count=3,
        immediate_retry_count=3,
        connect_retry_delay_ms=10,
        contention_retry_delay_ms=10,
        max_value_bytes=200_000,
        flush_on_shutdown=False,
    )


def mergeable(value, prefix="INSERT INTO t VALUES", suffix=""):
    return {"prefix": prefix, "suffix": suffix, "value": value}


@pytest.fixture
def record():
    """Factory for mergeable queue records."""
    return mergeable
