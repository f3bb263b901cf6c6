"""
Bulk Writer

Background writer that drains a queue of SQL mutation requests and applies them
to PostgreSQL in consolidated multi-statement batches.

Usage:
    import queue
    from bulk_writer import BatchWriter, get_settings

    q = queue.Queue()
    writer = BatchWriter(q, get_settings())
    writer.start()

    # merged into one "INSERT INTO t VALUES (1),(2) " statement
    q.put({"prefix": "INSERT INTO t VALUES", "suffix": "", "value": "(1)"})
    q.put({"prefix": "INSERT INTO t VALUES", "suffix": "", "value": "(2)"})

    # executed on its own
    q.put({"query": "DELETE FROM t WHERE id = 3"})

    writer.stop()
"""

from .accumulator import BatchAccumulator
from .config import WriterSettings, get_settings
from .connection import ConnectionState, StoreConnection
from .errors import (
    ConnectivityError,
    ContentionError,
    ErrorKind,
    FatalError,
    InvalidRequestError,
    StatementError,
    StoreError,
    WriterError,
)
from .models import BatchKey, ImmediateRequest, MergeableRequest, parse_request
from .retry import RetryExecutor
from .writer import BatchWriter, WriterHealth, WriterState

__version__ = "1.0.0"
__all__ = [
    # runtime
    "BatchWriter",
    "WriterHealth",
    "WriterState",
    "BatchAccumulator",
    "RetryExecutor",
    "StoreConnection",
    "ConnectionState",
    # config
    "WriterSettings",
    "get_settings",
    # models
    "BatchKey",
    "MergeableRequest",
    "ImmediateRequest",
    "parse_request",
    # errors
    "ErrorKind",
    "WriterError",
    "StoreError",
    "ConnectivityError",
    "ContentionError",
    "StatementError",
    "FatalError",
    "InvalidRequestError",
]
