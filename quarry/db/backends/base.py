"""
Quarry DB Backend — Base Adapter Interfaces.

An adapter owns one open SQLite handle. Both execution variants expose the
same surface: ``SyncDatabaseAdapter`` returns values directly and
``DatabaseAdapter`` returns awaitables. Adapters run SQL verbatim; fault
translation and read-only guards live above them.

Handles are opened in autocommit mode (``isolation_level=None``) so that the
BEGIN / SAVEPOINT / COMMIT statements planned by the transaction coordinator
are the only transaction control.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

logger = logging.getLogger("quarry.db.backends")

# Statements traced when a handle is opened with verbose=True
sql_logger = logging.getLogger("quarry.sql")

__all__ = [
    "SyncDatabaseAdapter",
    "DatabaseAdapter",
    "AdapterCapabilities",
    "ExecResult",
    "ColumnInfo",
    "IndexInfo",
    "TableInfo",
    "CONNECTION_PRAGMAS",
]


# Applied to every handle; journal_mode=WAL is added for writable files.
CONNECTION_PRAGMAS = (
    "PRAGMA synchronous=NORMAL",
    "PRAGMA cache_size=-64000",
    "PRAGMA temp_store=MEMORY",
    "PRAGMA foreign_keys=ON",
)


@dataclass
class AdapterCapabilities:
    """Describes what a specific backend supports."""

    supports_returning: bool = False
    supports_savepoints: bool = True
    supports_wal: bool = True
    param_style: str = "qmark"
    is_async: bool = False
    name: str = "base"


@dataclass
class ExecResult:
    """Outcome of a non-query statement."""

    rowcount: int = 0
    lastrowid: Optional[int] = None


@dataclass
class ColumnInfo:
    """Introspection result for a single column."""

    name: str
    data_type: str
    nullable: bool = True
    default: Optional[str] = None
    primary_key: bool = False


@dataclass
class IndexInfo:
    """Introspection result for a user-created index."""

    name: str
    table: str
    columns: List[str] = field(default_factory=list)
    unique: bool = False
    where: Optional[str] = None


@dataclass
class TableInfo:
    """Introspection result for a table."""

    name: str
    columns: List[ColumnInfo] = field(default_factory=list)
    indexes: List[IndexInfo] = field(default_factory=list)

    @property
    def column_names(self) -> List[str]:
        return [c.name for c in self.columns]


# ── Introspection SQL shared by both variants ───────────────────────────────

TABLE_EXISTS_SQL = "SELECT name FROM sqlite_master WHERE type='table' AND name=?"
TABLE_LIST_SQL = (
    "SELECT name FROM sqlite_master WHERE type='table' "
    "AND name NOT LIKE 'sqlite_%' ORDER BY name"
)
INDEX_TABLE_SQL = "SELECT tbl_name FROM sqlite_master WHERE type='index' AND name=?"
INDEX_DDL_SQL = "SELECT sql FROM sqlite_master WHERE type='index' AND name=?"


def quote_pragma_arg(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def index_where_from_sql(sql: Optional[str]) -> Optional[str]:
    """Condition of a partial index, taken from its stored CREATE INDEX text."""
    if not sql:
        return None
    _, sep, where = sql.partition(") WHERE ")
    if not sep:
        return None
    return where.strip() or None


def column_info_from_row(row: Dict[str, Any]) -> ColumnInfo:
    return ColumnInfo(
        name=row["name"],
        data_type=(row["type"] or "").upper(),
        nullable=not row["notnull"],
        default=row["dflt_value"],
        primary_key=bool(row["pk"]),
    )


class SyncDatabaseAdapter(ABC):
    """Blocking adapter interface."""

    capabilities: AdapterCapabilities = AdapterCapabilities()

    @abstractmethod
    def connect(self, options: Any) -> None:
        """Open the handle described by ConnectionOptions."""
        ...

    @abstractmethod
    def disconnect(self) -> None:
        """Close the handle."""
        ...

    @abstractmethod
    def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> ExecResult:
        """Execute a statement and report rowcount / lastrowid."""
        ...

    @abstractmethod
    def fetch_all(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[Dict[str, Any]]:
        """Execute and return all rows as dicts."""
        ...

    def fetch_one(self, sql: str, params: Optional[Sequence[Any]] = None) -> Optional[Dict[str, Any]]:
        rows = self.fetch_all(sql, params)
        return rows[0] if rows else None

    def fetch_val(self, sql: str, params: Optional[Sequence[Any]] = None) -> Any:
        row = self.fetch_one(sql, params)
        if row is None:
            return None
        return next(iter(row.values()))

    # ── Introspection ────────────────────────────────────────────────

    def table_exists(self, table_name: str) -> bool:
        return self.fetch_one(TABLE_EXISTS_SQL, [table_name]) is not None

    def get_tables(self) -> List[str]:
        return [r["name"] for r in self.fetch_all(TABLE_LIST_SQL)]

    def get_columns(self, table_name: str) -> List[ColumnInfo]:
        rows = self.fetch_all(f"PRAGMA table_info({quote_pragma_arg(table_name)})")
        return [column_info_from_row(r) for r in rows]

    def get_indexes(self, table_name: str) -> List[IndexInfo]:
        indexes = []
        for row in self.fetch_all(f"PRAGMA index_list({quote_pragma_arg(table_name)})"):
            if row["origin"] != "c":
                continue
            info = self.fetch_all(f"PRAGMA index_info({quote_pragma_arg(row['name'])})")
            where = None
            if row["partial"]:
                where = index_where_from_sql(self.fetch_val(INDEX_DDL_SQL, [row["name"]]))
            indexes.append(IndexInfo(
                name=row["name"],
                table=table_name,
                columns=[i["name"] for i in sorted(info, key=lambda i: i["seqno"])],
                unique=bool(row["unique"]),
                where=where,
            ))
        return indexes

    def index_table(self, index_name: str) -> Optional[str]:
        return self.fetch_val(INDEX_TABLE_SQL, [index_name])

    def introspect(self, table_name: str) -> Optional[TableInfo]:
        """Catalog view of one table, or None when it does not exist."""
        if not self.table_exists(table_name):
            return None
        return TableInfo(
            name=table_name,
            columns=self.get_columns(table_name),
            indexes=self.get_indexes(table_name),
        )

    @property
    def is_connected(self) -> bool:
        return False

    @property
    def in_transaction(self) -> bool:
        return False


class DatabaseAdapter(ABC):
    """Async adapter interface."""

    capabilities: AdapterCapabilities = AdapterCapabilities(is_async=True)

    @abstractmethod
    async def connect(self, options: Any) -> None:
        """Open the handle described by ConnectionOptions."""
        ...

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the handle."""
        ...

    @abstractmethod
    async def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> ExecResult:
        """Execute a statement and report rowcount / lastrowid."""
        ...

    @abstractmethod
    async def fetch_all(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[Dict[str, Any]]:
        """Execute and return all rows as dicts."""
        ...

    async def fetch_one(self, sql: str, params: Optional[Sequence[Any]] = None) -> Optional[Dict[str, Any]]:
        rows = await self.fetch_all(sql, params)
        return rows[0] if rows else None

    async def fetch_val(self, sql: str, params: Optional[Sequence[Any]] = None) -> Any:
        row = await self.fetch_one(sql, params)
        if row is None:
            return None
        return next(iter(row.values()))

    # ── Introspection ────────────────────────────────────────────────

    async def table_exists(self, table_name: str) -> bool:
        return await self.fetch_one(TABLE_EXISTS_SQL, [table_name]) is not None

    async def get_tables(self) -> List[str]:
        return [r["name"] for r in await self.fetch_all(TABLE_LIST_SQL)]

    async def get_columns(self, table_name: str) -> List[ColumnInfo]:
        rows = await self.fetch_all(f"PRAGMA table_info({quote_pragma_arg(table_name)})")
        return [column_info_from_row(r) for r in rows]

    async def get_indexes(self, table_name: str) -> List[IndexInfo]:
        indexes = []
        for row in await self.fetch_all(f"PRAGMA index_list({quote_pragma_arg(table_name)})"):
            if row["origin"] != "c":
                continue
            info = await self.fetch_all(f"PRAGMA index_info({quote_pragma_arg(row['name'])})")
            where = None
            if row["partial"]:
                where = index_where_from_sql(await self.fetch_val(INDEX_DDL_SQL, [row["name"]]))
            indexes.append(IndexInfo(
                name=row["name"],
                table=table_name,
                columns=[i["name"] for i in sorted(info, key=lambda i: i["seqno"])],
                unique=bool(row["unique"]),
                where=where,
            ))
        return indexes

    async def index_table(self, index_name: str) -> Optional[str]:
        return await self.fetch_val(INDEX_TABLE_SQL, [index_name])

    async def introspect(self, table_name: str) -> Optional[TableInfo]:
        """Catalog view of one table, or None when it does not exist."""
        if not await self.table_exists(table_name):
            return None
        return TableInfo(
            name=table_name,
            columns=await self.get_columns(table_name),
            indexes=await self.get_indexes(table_name),
        )

    @property
    def is_connected(self) -> bool:
        return False

    @property
    def in_transaction(self) -> bool:
        return False
