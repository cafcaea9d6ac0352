"""
Quarry Database — connection management.

Provides:
- ConnectionManager / AsyncConnectionManager: one reference-counted handle
  per logical database name
- Pluggable backend adapters (SyncDatabaseAdapter, DatabaseAdapter)
- Structured faults via quarry.faults (DatabaseConnectionFault,
  DatabaseNotFoundFault, ReadOnlyFault)
"""

from .engine import ConnectionManager, AsyncConnectionManager

# Backend adapters
from .backends import (
    SyncDatabaseAdapter,
    DatabaseAdapter,
    AdapterCapabilities,
    SQLiteAdapter,
    AioSQLiteAdapter,
)

# Re-export fault types for convenience
from ..faults.domains import (
    DatabaseConnectionFault,
    DatabaseNotFoundFault,
    ReadOnlyFault,
)

__all__ = [
    "ConnectionManager",
    "AsyncConnectionManager",
    "SyncDatabaseAdapter",
    "DatabaseAdapter",
    "AdapterCapabilities",
    "SQLiteAdapter",
    "AioSQLiteAdapter",
    "DatabaseConnectionFault",
    "DatabaseNotFoundFault",
    "ReadOnlyFault",
]
