"""
Bounded statement retries with error-kind aware recovery.

- connectivity errors block on a reconnect loop (cancelled by the stop event)
- contention errors wait a fixed delay before the next attempt
- statement errors retry straight away
"""

from __future__ import annotations

import threading
from typing import Optional

from loguru import logger

from .connection import StoreConnection
from .errors import ConnectivityError, ContentionError, StatementError, StoreError
from .metrics import WRITER_RECONNECTS_TOTAL, WRITER_STATEMENT_FAILURES_TOTAL


class RetryExecutor:
    """Applies statements to a StoreConnection with bounded retries.

    Args:
        connection: Store connection to execute on and reconnect
        stop_event: Shared shutdown signal; waits and the reconnect loop end early once set
        connect_retry_delay_ms: Pause between failed reconnect attempts
        contention_retry_delay_ms: Pause after a deadlock / serialization failure
        name: Writer id used in logs and metric labels
    """

    def __init__(
        self,
        connection: StoreConnection,
        *,
        stop_event: Optional[threading.Event] = None,
        connect_retry_delay_ms: int = 4000,
        contention_retry_delay_ms: int = 2000,
        name: str = "writer",
    ):
        self._conn = connection
        self._stop = stop_event or threading.Event()
        self._connect_delay = connect_retry_delay_ms / 1000.0
        self._contention_delay = contention_retry_delay_ms / 1000.0
        self._name = name

    def execute(self, statement: str, max_retries: int) -> bool:
        """Run ``statement`` up to ``max_retries`` times.

        Returns:
            True on the first successful attempt, False once attempts are
            exhausted (zero attempts when ``max_retries`` <= 0) or a reconnect
            was cancelled by shutdown.
        """
        if max_retries <= 0:
            logger.debug(f"[{self._name}] Retry budget is 0, statement not attempted")
            return False

        for attempt in range(1, max_retries + 1):
            final = attempt == max_retries
            try:
                logger.trace(f"[{self._name}] SQL attempt {attempt}/{max_retries}: {statement}")
                self._conn.execute(statement)
                return True

            except ConnectivityError as e:
                self._record_failure(e)
                logger.error(f"[{self._name}] Not connected to store: {e}")
                if final:
                    # no attempt left to use the connection; the next statement reconnects
                    break
                if not self.reconnect():
                    logger.warning(f"[{self._name}] Reconnect cancelled by shutdown")
                    break

            except ContentionError as e:
                self._record_failure(e)
                logger.debug(
                    f"[{self._name}] Contention on attempt {attempt}/{max_retries} "
                    f"(sqlstate={e.sqlstate}): {e}"
                )
                if not final:
                    self._stop.wait(self._contention_delay)

            except StatementError as e:
                self._record_failure(e)
                if final:
                    logger.info(f"[{self._name}] SQL error state {e.sqlstate} on final attempt: {e}")

        logger.warning(f"[{self._name}] Failed to apply statement after {max_retries} max retries")
        logger.debug(f"[{self._name}] statement: {statement}")
        return False

    def reconnect(self) -> bool:
        """Block until the connection is re-established.

        Returns:
            True once connected, False if the stop event was set first.
        """
        while not self._stop.is_set():
            if self._conn.connect():
                WRITER_RECONNECTS_TOTAL.labels(writer=self._name, outcome="success").inc()
                return True
            WRITER_RECONNECTS_TOTAL.labels(writer=self._name, outcome="failed").inc()
            if self._stop.wait(self._connect_delay):
                break
        return False

    def _record_failure(self, e: StoreError) -> None:
        WRITER_STATEMENT_FAILURES_TOTAL.labels(writer=self._name, kind=e.kind.value).inc()
