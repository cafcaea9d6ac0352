"""
Quarry Database Backends — pluggable handle adapters.

Each adapter wraps one engine connection and exposes a uniform surface
(execute, fetch, catalog introspection). Two adapters ship:

- SQLiteAdapter: blocking, stdlib ``sqlite3``
- AioSQLiteAdapter: async, ``aiosqlite``
"""

from .base import (
    SyncDatabaseAdapter,
    DatabaseAdapter,
    AdapterCapabilities,
    ExecResult,
    ColumnInfo,
    IndexInfo,
    TableInfo,
    CONNECTION_PRAGMAS,
)
from .sqlite import SQLiteAdapter, connect_args
from .aiosqlite import AioSQLiteAdapter

__all__ = [
    "SyncDatabaseAdapter",
    "DatabaseAdapter",
    "AdapterCapabilities",
    "ExecResult",
    "ColumnInfo",
    "IndexInfo",
    "TableInfo",
    "CONNECTION_PRAGMAS",
    "SQLiteAdapter",
    "AioSQLiteAdapter",
    "connect_args",
]
