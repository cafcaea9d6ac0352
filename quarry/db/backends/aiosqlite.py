"""
Quarry DB Backend — async SQLite adapter via aiosqlite.

Shares connection arguments and PRAGMAs with the blocking adapter; every
call suspends the caller only while aiosqlite's worker thread runs it.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence

import aiosqlite

from .base import AdapterCapabilities, DatabaseAdapter, ExecResult, sql_logger
from .sqlite import connect_args, connection_pragmas

logger = logging.getLogger("quarry.db.backends.aiosqlite")

__all__ = ["AioSQLiteAdapter"]


class AioSQLiteAdapter(DatabaseAdapter):
    """
    SQLite adapter using aiosqlite.

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
        is_async=True,
        name="aiosqlite",
    )

    def __init__(self):
        self._connection: Optional[aiosqlite.Connection] = None
        self._path: Optional[str] = None
        self._lock = asyncio.Lock()

    async def connect(self, options: Any) -> None:
        if self._connection is not None:
            return
        async with self._lock:
            if self._connection is not None:
                return
            kwargs = connect_args(options)
            conn = await aiosqlite.connect(kwargs.pop("database"), **kwargs)
            try:
                conn.row_factory = aiosqlite.Row
                for pragma in connection_pragmas(options):
                    await conn.execute(pragma)
                if options.verbose:
                    await conn.set_trace_callback(sql_logger.info)
            except aiosqlite.Error:
                await conn.close()
                raise
            self._connection = conn
            self._path = options.filepath
            logger.info(f"SQLite connected (async): {options.filepath}")

    async def disconnect(self) -> None:
        if self._connection is None:
            return
        async with self._lock:
            if self._connection is not None:
                await self._connection.close()
                self._connection = None
                logger.info(f"SQLite disconnected (async): {self._path}")

    def _conn(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise aiosqlite.ProgrammingError("Not connected")
        return self._connection

    async def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> ExecResult:
        cursor = await self._conn().execute(sql, params or [])
        try:
            return ExecResult(rowcount=cursor.rowcount, lastrowid=cursor.lastrowid)
        finally:
            await cursor.close()

    async def fetch_all(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[Dict[str, Any]]:
        cursor = await self._conn().execute(sql, params or [])
        try:
            rows = await cursor.fetchall()
            return [dict(row) for row in rows]
        finally:
            await cursor.close()

    @property
    def is_connected(self) -> bool:
        return self._connection is not None

    @property
    def in_transaction(self) -> bool:
        return self._connection is not None and self._connection.in_transaction

    @property
    def engine_version(self) -> str:
        return aiosqlite.sqlite_version
