from __future__ import annotations

import threading
from typing import Optional

import psycopg
from loguru import logger

from .config import WriterSettings
from .errors import ConnectivityError, ErrorKind, map_db_error
from .metrics import WRITER_CONNECTED


class ConnectionState:
    """Connectivity flag shared between the writer thread and health checks."""

    def __init__(self, connected: bool = False):
        self._lock = threading.Lock()
        self._connected = connected

    def get(self) -> bool:
        with self._lock:
            return self._connected

    def set(self, connected: bool) -> None:
        with self._lock:
            self._connected = connected


class StoreConnection:
    """
    A single autocommit psycopg connection used by one writer.

    ``execute`` raises the typed errors from ``bulk_writer.errors``; a
    connectivity failure also flips the shared state to disconnected.
    """

    def __init__(self, conninfo: str, *, name: str = "writer"):
        self._conninfo = conninfo
        self._name = name
        self._conn: Optional[psycopg.Connection] = None
        self._state = ConnectionState()

    @classmethod
    def from_settings(cls, settings: WriterSettings, *, name: str = "writer") -> "StoreConnection":
        return cls(settings.conninfo(), name=name)

    @property
    def connected(self) -> bool:
        return self._state.get()

    def _set_connected(self, connected: bool) -> None:
        self._state.set(connected)
        WRITER_CONNECTED.labels(writer=self._name).set(1 if connected else 0)

    def connect(self) -> bool:
        """(Re)open the connection. Returns True when connected."""
        self._set_connected(False)
        self._close_quietly()

        logger.info(f"[{self._name}] Connecting to store")
        try:
            # no bind parameters are ever sent, so multi-statement strings go
            # through the simple query protocol
            self._conn = psycopg.connect(self._conninfo, autocommit=True)
        except (psycopg.Error, OSError) as e:
            logger.warning(f"[{self._name}] Failed to connect to store: {e}")
            return False

        logger.info(f"[{self._name}] Connected to store")
        self._set_connected(True)
        return True

    def execute(self, statement: str) -> None:
        """Run one (possibly multi-statement) write.

        Raises:
            ConnectivityError: connection missing, closed or lost
            ContentionError: deadlock / serialization conflict / lock timeout
            StatementError: statement rejected by the store
        """
        conn = self._conn
        if conn is None or conn.closed:
            self._set_connected(False)
            raise ConnectivityError("Store connection is not open")

        try:
            conn.execute(statement)
        except (psycopg.Error, OSError) as e:
            err = map_db_error(e)
            if err.kind is ErrorKind.CONNECTIVITY:
                self._set_connected(False)
            raise err from e

    def close(self) -> None:
        self._set_connected(False)
        self._close_quietly()

    def _close_quietly(self) -> None:
        conn, self._conn = self._conn, None
        if conn is None:
            return
        try:
            conn.close()
        except (psycopg.Error, OSError) as e:
            logger.debug(f"[{self._name}] Error closing store connection: {e}")
