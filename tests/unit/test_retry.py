"""
Unit tests for RetryExecutor.
"""

import pytest

from bulk_writer.errors import ConnectivityError, ContentionError, StatementError
from bulk_writer.retry import RetryExecutor


def _executor(conn, event, **kw):
    kw.setdefault("connect_retry_delay_ms", 4000)
    kw.setdefault("contention_retry_delay_ms", 2000)
    return RetryExecutor(conn, stop_event=event, **kw)


def test_success_on_first_attempt(make_connection, make_event):
    conn = make_connection()
    conn.connect()
    ex = _executor(conn, make_event())

    assert ex.execute("INSERT INTO t VALUES (1)", 3) is True
    assert conn.attempts == ["INSERT INTO t VALUES (1)"]


@pytest.mark.parametrize("error", [StatementError("bad"), ContentionError("deadlock", "40P01")])
def test_exhaustion_makes_exactly_max_attempts(make_connection, make_event, error):
    conn = make_connection(failures=[error] * 10)
    conn.connect()
    ex = _executor(conn, make_event())

    assert ex.execute("UPDATE t SET x = 1", 3) is False
    assert len(conn.attempts) == 3


def test_zero_retries_means_no_attempt(make_connection, make_event):
    conn = make_connection()
    conn.connect()
    ex = _executor(conn, make_event())

    assert ex.execute("UPDATE t SET x = 1", 0) is False
    assert conn.attempts == []


def test_contention_backs_off_without_reconnecting(make_connection, make_event):
    conn = make_connection(failures=[ContentionError("deadlock", "40P01")] * 2)
    conn.connect()
    event = make_event()
    ex = _executor(conn, event, contention_retry_delay_ms=2000)

    assert ex.execute("UPDATE t SET x = 1", 5) is True
    assert len(conn.attempts) == 3
    assert event.waits == [2.0, 2.0]
    assert conn.connect_calls == 1


def test_statement_error_retries_without_delay(make_connection, make_event):
    conn = make_connection(failures=[StatementError("syntax error", "42601")])
    conn.connect()
    event = make_event()
    ex = _executor(conn, event)

    assert ex.execute("INSRT INTO t", 2) is True
    assert event.waits == []


def test_connectivity_failure_reconnects_then_resumes_statement(make_connection, make_event):
    """Reconnects are spaced by the connect delay; the statement is retried afterwards."""
    conn = make_connection(
        failures=[ConnectivityError("server closed the connection unexpectedly")],
        connect_results=[True, False, False, True],
    )
    conn.connect()
    event = make_event()
    ex = _executor(conn, event, connect_retry_delay_ms=250)

    assert ex.execute("INSERT INTO t VALUES (1)", 3) is True
    # 1 initial + 3 reconnect attempts
    assert conn.connect_calls == 4
    assert event.waits == [0.25, 0.25]
    assert conn.attempts == ["INSERT INTO t VALUES (1)"] * 2
    assert conn.executed == ["INSERT INTO t VALUES (1)"]


def test_connectivity_failure_on_final_attempt_skips_reconnect(make_connection, make_event):
    """With no attempt left, the executor gives up instead of blocking on a reconnect."""
    conn = make_connection(failures=[ConnectivityError("broken pipe")] * 2)
    conn.connect()
    event = make_event()
    ex = _executor(conn, event)

    assert ex.execute("INSERT INTO t VALUES (1)", 1) is False
    assert conn.attempts == ["INSERT INTO t VALUES (1)"]
    assert conn.connect_calls == 1
    assert event.waits == []


def test_reconnect_is_cancelled_by_stop(make_connection, make_event):
    conn = make_connection(connect_results=[False] * 100)
    event = make_event(set_after_waits=3)
    ex = _executor(conn, event, connect_retry_delay_ms=10)

    assert ex.execute("INSERT INTO t VALUES (1)", 5) is False
    # the outer loop ends with the cancelled reconnect
    assert len(conn.attempts) == 1
    assert conn.connect_calls == 3


def test_reconnect_returns_false_when_already_stopped(make_connection, make_event):
    conn = make_connection()
    event = make_event()
    event.set()
    ex = _executor(conn, event)

    assert ex.reconnect() is False
    assert conn.connect_calls == 0


def test_unexpected_errors_propagate(make_connection, make_event):
    conn = make_connection(failures=[KeyError("boom")])
    conn.connect()
    ex = _executor(conn, make_event())

    with pytest.raises(KeyError):
        ex.execute("INSERT INTO t VALUES (1)", 3)
