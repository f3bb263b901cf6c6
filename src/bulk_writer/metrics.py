"""
Prometheus metrics for the bulk writer.

All series are labelled with the writer id so several writers sharing a
process can be told apart.
"""

from prometheus_client import Counter, Gauge, Histogram

WRITER_REQUESTS_TOTAL = Counter(
    "bulk_writer_requests_total",
    "Requests taken off the inbound queue",
    ["writer", "kind"],  # kind = mergeable|immediate|invalid
)

WRITER_FLUSHES_TOTAL = Counter(
    "bulk_writer_flushes_total",
    "Batch flush attempts",
    ["writer", "outcome"],  # outcome = success|failed
)

WRITER_FLUSH_LATENCY = Histogram(
    "bulk_writer_flush_latency_seconds",
    "Time spent applying one rendered batch, retries included",
    ["writer"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30],
)

WRITER_STATEMENT_FAILURES_TOTAL = Counter(
    "bulk_writer_statement_failures_total",
    "Failed statement attempts by error kind",
    ["writer", "kind"],
)

WRITER_RECONNECTS_TOTAL = Counter(
    "bulk_writer_reconnects_total",
    "Reconnect attempts",
    ["writer", "outcome"],
)

WRITER_CONNECTED = Gauge(
    "bulk_writer_connected",
    "1 when the writer holds a live store connection",
    ["writer"],
)
