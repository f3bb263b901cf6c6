from __future__ import annotations

from typing import Dict, List, Optional

from loguru import logger

from .models import BatchKey

MERGE_SEPARATOR = ","
STATEMENT_SEPARATOR = ";"


class BatchAccumulator:
    """
    Ordered merge map for pending mergeable requests.

    Values sharing a BatchKey are joined with a comma and rendered as a single
    ``prefix values suffix`` fragment; fragments keep the order in which their
    keys first arrived and are joined into one multi-statement string.

    Usage:
        acc = BatchAccumulator(max_value_bytes=200_000)
        acc.add(BatchKey("INSERT INTO t VALUES", ""), "(1)")
        acc.add(BatchKey("INSERT INTO t VALUES", ""), "(2)")
        acc.render()  # "INSERT INTO t VALUES (1),(2) "
        acc.clear()

    Not thread-safe: owned by the writer thread.
    """

    def __init__(self, max_value_bytes: int = 200_000):
        self._max_value_bytes = max_value_bytes
        self._values: Dict[BatchKey, List[str]] = {}
        self._bytes: Dict[BatchKey, int] = {}
        self._count = 0
        self._oversized = False

    # --------------------------- public API

    def add(self, key: BatchKey, value: str) -> int:
        """Merge one request value under ``key``. Returns merged-request count."""
        size = len(value.encode("utf-8"))
        values = self._values.get(key)
        if values is None:
            self._values[key] = [value]
            self._bytes[key] = size
        else:
            values.append(value)
            self._bytes[key] += len(MERGE_SEPARATOR) + size
        self._count += 1

        if not self._oversized and self._bytes[key] > self._max_value_bytes:
            self._oversized = True
            logger.debug(
                f"Merged value for {key.prefix!r} reached {self._bytes[key]} bytes, forcing flush"
            )
        return self._count

    def render(self) -> Optional[str]:
        """Render all entries as one statement, or None when empty."""
        if not self._values:
            return None
        return STATEMENT_SEPARATOR.join(
            f"{key.prefix} {MERGE_SEPARATOR.join(values)} {key.suffix}"
            for key, values in self._values.items()
        )

    def clear(self) -> None:
        self._values.clear()
        self._bytes.clear()
        self._count = 0
        self._oversized = False

    @property
    def count(self) -> int:
        """Number of requests merged in since the last clear."""
        return self._count

    @property
    def force_flush(self) -> bool:
        """True once a merged value exceeds the byte threshold."""
        return self._oversized

    def keys(self) -> List[BatchKey]:
        return list(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __bool__(self) -> bool:
        return bool(self._values)
