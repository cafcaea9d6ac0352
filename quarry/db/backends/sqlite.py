"""
Quarry DB Backend — blocking SQLite adapter via the stdlib sqlite3 module.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .base import (
    CONNECTION_PRAGMAS,
    AdapterCapabilities,
    ExecResult,
    SyncDatabaseAdapter,
    sql_logger,
)

logger = logging.getLogger("quarry.db.backends.sqlite")

__all__ = ["SQLiteAdapter", "connect_args"]


def connect_args(options: Any) -> Dict[str, Any]:
    """
    Keyword arguments for ``sqlite3.connect`` (and ``aiosqlite.connect``).

    Read-only handles are opened through a ``mode=ro`` URI so the engine
    itself refuses writes as well.
    """
    if options.is_memory:
        database, uri = ":memory:", False
    elif options.readonly:
        database, uri = Path(options.filepath).resolve().as_uri() + "?mode=ro", True
    else:
        database, uri = options.filepath, False
    return {
        "database": database,
        "uri": uri,
        "timeout": options.timeout / 1000.0,
        "isolation_level": None,
        "check_same_thread": False,
    }


def connection_pragmas(options: Any) -> List[str]:
    pragmas = list(CONNECTION_PRAGMAS)
    if not options.readonly and not options.is_memory:
        pragmas.insert(0, "PRAGMA journal_mode=WAL")
    return pragmas


class SQLiteAdapter(SyncDatabaseAdapter):
    """
    SQLite adapter using sqlite3.

    Features:
    - WAL journal mode for concurrent reads
    - Foreign key enforcement
    - Optional statement tracing on the ``quarry.sql`` logger
    """

    capabilities = AdapterCapabilities(
        supports_returning=False,
        supports_savepoints=True,
        supports_wal=True,
        param_style="qmark",
        is_async=False,
        name="sqlite",
    )

    def __init__(self):
        self._connection: Optional[sqlite3.Connection] = None
        self._path: Optional[str] = None

    def connect(self, options: Any) -> None:
        if self._connection is not None:
            return
        conn = sqlite3.connect(**connect_args(options))
        try:
            conn.row_factory = sqlite3.Row
            for pragma in connection_pragmas(options):
                conn.execute(pragma)
            if options.verbose:
                conn.set_trace_callback(sql_logger.info)
        except sqlite3.Error:
            conn.close()
            raise
        self._connection = conn
        self._path = options.filepath
        logger.info(f"SQLite connected: {options.filepath}")

    def disconnect(self) -> None:
        if self._connection is None:
            return
        self._connection.close()
        self._connection = None
        logger.info(f"SQLite disconnected: {self._path}")

    def _conn(self) -> sqlite3.Connection:
        if self._connection is None:
            raise sqlite3.ProgrammingError("Not connected")
        return self._connection

    def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> ExecResult:
        cursor = self._conn().execute(sql, params or [])
        try:
            return ExecResult(rowcount=cursor.rowcount, lastrowid=cursor.lastrowid)
        finally:
            cursor.close()

    def fetch_all(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[Dict[str, Any]]:
        cursor = self._conn().execute(sql, params or [])
        try:
            return [dict(row) for row in cursor.fetchall()]
        finally:
            cursor.close()

    @property
    def is_connected(self) -> bool:
        return self._connection is not None

    @property
    def in_transaction(self) -> bool:
        return self._connection is not None and self._connection.in_transaction

    @property
    def engine_version(self) -> str:
        return sqlite3.sqlite_version
