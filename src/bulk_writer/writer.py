"""
Background batch writer.

Drains a queue of mergeable / immediate requests on one worker thread and
applies them to the store:

- mergeable requests are consolidated by (prefix, suffix) in a BatchAccumulator
- the batch is flushed when the time window elapses, the size threshold is
  reached, or a merged value grows past the byte threshold
- immediate requests run on their own with a small retry budget
- a flush that still fails after its retries is logged and discarded

Usage:
    q = queue.Queue()
    writer = BatchWriter(q, get_settings())
    writer.start()
    q.put({"prefix": "INSERT INTO t VALUES", "suffix": "", "value": "(1)"})
    q.put({"query": "DELETE FROM t WHERE id = 2"})
    ...
    writer.stop()
"""

from __future__ import annotations

import queue
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from loguru import logger

from .accumulator import BatchAccumulator
from .config import WriterSettings, get_settings
from .connection import StoreConnection
from .errors import FatalError, InvalidRequestError
from .metrics import WRITER_FLUSH_LATENCY, WRITER_FLUSHES_TOTAL, WRITER_REQUESTS_TOTAL
from .models import ImmediateRequest, describe, parse_request
from .retry import RetryExecutor


class WriterState(str, Enum):
    DISCONNECTED = "disconnected"  # initial connect failed, loop not started yet
    CONNECTING = "connecting"  # initial connect succeeded, loop not started yet
    RUNNING = "running"
    DRAINING = "draining"
    STOPPED = "stopped"


@dataclass(frozen=True)
class WriterHealth:
    """Point-in-time view of a writer, safe to build from any thread."""

    writer_id: str
    state: WriterState
    connected: bool
    pending_requests: int
    pending_keys: int
    flushes: int
    failed_flushes: int
    error: Optional[str] = None


class BatchWriter:
    """Single-threaded consumer that batches queue records into store writes.

    Args:
        inbound: Queue-like object with ``get(timeout=...)`` raising ``queue.Empty``
        settings: Writer settings (defaults to ``get_settings()``)
        connection: Store connection; built from settings when omitted
        writer_id: Name used for the thread, log lines and metric labels
        clock: Monotonic clock in seconds
    """

    def __init__(
        self,
        inbound: Any,
        settings: Optional[WriterSettings] = None,
        *,
        connection: Optional[StoreConnection] = None,
        writer_id: str = "writer",
        clock: Callable[[], float] = time.monotonic,
    ):
        self._settings = settings or get_settings()
        self._queue = inbound
        self._id = writer_id
        self._clock = clock

        self._stop_event = threading.Event()
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._started = False
        self._state = WriterState.DISCONNECTED
        self._error: Optional[FatalError] = None

        self._window = self._settings.batch_time_window_ms / 1000.0
        self._accumulator = BatchAccumulator(max_value_bytes=self._settings.max_value_bytes)
        self._flushes = 0
        self._failed_flushes = 0

        self._conn = connection or StoreConnection.from_settings(self._settings, name=writer_id)
        self._executor = RetryExecutor(
            self._conn,
            stop_event=self._stop_event,
            connect_retry_delay_ms=self._settings.connect_retry_delay_ms,
            contention_retry_delay_ms=self._settings.contention_retry_delay_ms,
            name=writer_id,
        )

        self._set_state(WriterState.CONNECTING)
        if not self._conn.connect():
            logger.warning(f"[{self._id}] Initial connect failed; first write will reconnect")
            self._set_state(WriterState.DISCONNECTED)

    # --------------------------- lifecycle

    def start(self) -> None:
        """Run the loop on a named daemon thread."""
        with self._lock:
            if self._thread is not None:
                return
            self._thread = threading.Thread(target=self.run, name=self._id, daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        """Signal shutdown and wait for the worker thread. Safe to call more than once."""
        with self._lock:
            if self._stop_event.is_set():
                return
            logger.info(f"[{self._id}] Stop requested")
            self._stop_event.set()
            started = self._started
            thread = self._thread

        if not started and thread is None:
            # loop never ran; nothing else will close the connection
            self._teardown()
            return
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # --------------------------- health

    def is_connected(self) -> bool:
        return self._conn.connected

    @property
    def state(self) -> WriterState:
        with self._lock:
            return self._state

    @property
    def error(self) -> Optional[FatalError]:
        return self._error

    def health(self) -> WriterHealth:
        # pending counts are read without the loop's cooperation; good enough for a probe
        return WriterHealth(
            writer_id=self._id,
            state=self.state,
            connected=self.is_connected(),
            pending_requests=self._accumulator.count,
            pending_keys=len(self._accumulator),
            flushes=self._flushes,
            failed_flushes=self._failed_flushes,
            error=str(self._error) if self._error else None,
        )

    # --------------------------- loop

    def run(self) -> None:
        with self._lock:
            if self._started:
                return
            self._started = True
        if self._stop_event.is_set():
            self._teardown()
            return

        self._set_state(WriterState.RUNNING)
        logger.debug(f"[{self._id}] Writer thread started")

        last_flush = self._clock()
        try:
            while not self._stop_event.is_set():
                now = self._clock()
                elapsed = now - last_flush
                acc = self._accumulator

                if (
                    elapsed >= self._window
                    or acc.count >= self._settings.batch_size_threshold
                    or acc.force_flush
                ):
                    if acc:
                        logger.trace(
                            f"[{self._id}] Max reached, doing flush: "
                            f"wait_ms={elapsed * 1000:.0f} bulk_count={acc.count}"
                        )
                        self._flush()
                    last_flush = self._clock()

                try:
                    record = self._queue.get(timeout=self._window)
                except queue.Empty:
                    continue
                self._dispatch(record)

        except Exception as e:
            logger.exception(f"[{self._id}] Writer loop aborted: {e}")
            self._record_fatal(e)

        self._teardown()
        logger.info(f"[{self._id}] Writer thread done")

    def _dispatch(self, record: Any) -> None:
        try:
            request = parse_request(record)
        except InvalidRequestError as e:
            WRITER_REQUESTS_TOTAL.labels(writer=self._id, kind="invalid").inc()
            logger.warning(f"[{self._id}] Dropping malformed record {describe(record)}: {e}")
            return

        if isinstance(request, ImmediateRequest):
            WRITER_REQUESTS_TOTAL.labels(writer=self._id, kind="immediate").inc()
            logger.debug(f"[{self._id}] Non bulk query")
            self._executor.execute(request.query, self._settings.immediate_retry_count)
            return

        WRITER_REQUESTS_TOTAL.labels(writer=self._id, kind="mergeable").inc()
        self._accumulator.add(request.key, request.value)

    def _flush(self) -> bool:
        """Render and apply the pending batch, then clear it whatever the outcome."""
        acc = self._accumulator
        statement = acc.render()
        if statement is None:
            return False

        count = acc.count
        t0 = time.perf_counter()
        ok = self._executor.execute(statement, self._settings.batch_retry_count)
        WRITER_FLUSH_LATENCY.labels(writer=self._id).observe(time.perf_counter() - t0)

        if ok:
            self._flushes += 1
            WRITER_FLUSHES_TOTAL.labels(writer=self._id, outcome="success").inc()
            logger.debug(f"[{self._id}] Flushed {count} requests in {len(acc)} statements")
        else:
            self._failed_flushes += 1
            WRITER_FLUSHES_TOTAL.labels(writer=self._id, outcome="failed").inc()
            logger.warning(f"[{self._id}] Discarding batch of {count} requests after failed flush")

        acc.clear()
        return ok

    def _teardown(self) -> None:
        with self._lock:
            if self._state in (WriterState.DRAINING, WriterState.STOPPED):
                return
            self._state = WriterState.DRAINING

        try:
            if self._settings.flush_on_shutdown and self._error is None and self._accumulator:
                logger.info(
                    f"[{self._id}] Final flush of {self._accumulator.count} pending requests"
                )
                self._flush()
        except Exception as e:
            logger.exception(f"[{self._id}] Final flush aborted: {e}")
            self._record_fatal(e)
        finally:
            self._conn.close()
            self._set_state(WriterState.STOPPED)

    def _set_state(self, state: WriterState) -> None:
        with self._lock:
            self._state = state
        logger.debug(f"[{self._id}] state -> {state.value}")

    def _record_fatal(self, e: Exception) -> None:
        err = FatalError(f"{type(e).__name__}: {e}")
        err.__cause__ = e
        self._error = err
