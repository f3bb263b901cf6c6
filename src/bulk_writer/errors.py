"""
Custom exceptions for the bulk writer.

Store failures are mapped onto a small set of error kinds so the retry logic
can decide between reconnecting, backing off, or giving up.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """How a failed statement should be retried."""

    CONNECTIVITY = "connectivity"  # connection unusable, reconnect first
    CONTENTION = "contention"  # deadlock / serialization, back off
    STATEMENT = "statement"  # bad or oversized statement


class WriterError(Exception):
    """Base error for the bulk writer."""

    pass


class StoreError(WriterError):
    """A statement or connection failure reported by the store."""

    kind: ErrorKind = ErrorKind.STATEMENT

    def __init__(self, message: str, sqlstate: Optional[str] = None):
        super().__init__(message)
        self.sqlstate = sqlstate


class ConnectivityError(StoreError):
    """Connection refused, broken or timed out."""

    kind = ErrorKind.CONNECTIVITY


class ContentionError(StoreError):
    """Deadlock, serialization failure or lock timeout."""

    kind = ErrorKind.CONTENTION


class StatementError(StoreError):
    """Statement rejected by the store; retrying rarely helps."""

    kind = ErrorKind.STATEMENT


class FatalError(WriterError):
    """Unexpected fault that aborts the writer loop."""

    pass


class InvalidRequestError(WriterError, ValueError):
    """Inbound record matches neither request shape."""

    pass


# SQLSTATE codes, see https://www.postgresql.org/docs/current/errcodes-appendix.html
_CONNECTIVITY_STATES = {"57P01", "57P02", "57P03"}  # admin/crash shutdown, cannot connect now
_CONTENTION_STATES = {"40001", "40P01", "55P03", "57014"}

# Last-resort adapter for errors that carry no SQLSTATE
_CONNECTIVITY_MARKERS = (
    "connection refused",
    "broken pipe",
    "timed out",
    "server closed the connection",
    "connection is closed",
    "connection reset",
    "could not connect",
    "the connection is lost",
)
_CONTENTION_MARKERS = ("deadlock", "could not serialize", "lock timeout")


def _kind_from_message(message: str) -> Optional[ErrorKind]:
    text = message.lower()
    if any(m in text for m in _CONTENTION_MARKERS):
        return ErrorKind.CONTENTION
    if any(m in text for m in _CONNECTIVITY_MARKERS):
        return ErrorKind.CONNECTIVITY
    return None


def classify_error(e: BaseException) -> ErrorKind:
    """Return the retry kind for a driver (or socket) exception."""
    import psycopg

    if isinstance(e, StoreError):
        return e.kind

    sqlstate = getattr(e, "sqlstate", None)
    if sqlstate:
        if sqlstate.startswith("08") or sqlstate in _CONNECTIVITY_STATES:
            return ErrorKind.CONNECTIVITY
        if sqlstate in _CONTENTION_STATES:
            return ErrorKind.CONTENTION
        return ErrorKind.STATEMENT

    # Client-side failures carry no SQLSTATE; only the message is left
    by_message = _kind_from_message(str(e))
    if by_message is not None:
        return by_message
    if isinstance(e, (psycopg.OperationalError, psycopg.InterfaceError, OSError)):
        return ErrorKind.CONNECTIVITY
    return ErrorKind.STATEMENT


_ERRORS_BY_KIND = {
    ErrorKind.CONNECTIVITY: ConnectivityError,
    ErrorKind.CONTENTION: ContentionError,
    ErrorKind.STATEMENT: StatementError,
}


def map_db_error(e: BaseException) -> StoreError:
    if isinstance(e, StoreError):
        return e
    kind = classify_error(e)
    message = str(e).strip() or type(e).__name__
    return _ERRORS_BY_KIND[kind](message, sqlstate=getattr(e, "sqlstate", None))
