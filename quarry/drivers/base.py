"""
Quarry Drivers — shared core of the sync and async drivers.

Everything that does not touch a handle lives here: schema lookups,
statement compilation, engine-error translation and result shaping. The two
drivers only differ in how they run the statements this core produces.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .. import __version__
from ..faults.core import Fault
from ..faults.domains import (
    ConstraintViolationFault,
    DatabaseConnectionFault,
    QueryFault,
    ReadOnlyFault,
    ValidationFault,
)
from ..models import serialization
from ..models.lookups import quote_ident
from ..models.schema import SchemaManager
from ..models.sql_builder import QueryBuilder
from ..models.transactions import TransactionCoordinator
from ..models.types import (
    AggregateFunction,
    AggregateOptions,
    DriverMetadata,
    QueryOptions,
    Statement,
    TableSchema,
)

logger = logging.getLogger("quarry.drivers")

__all__ = ["DriverCore"]

_ZERO_WHEN_EMPTY = (AggregateFunction.COUNT, AggregateFunction.SUM)

CHECKPOINT_MODES = ("PASSIVE", "FULL", "RESTART", "TRUNCATE")


class DriverCore:
    """
    State and pure logic shared by SQLiteDriver and AsyncSQLiteDriver.

    Attributes:
        schemas: SchemaManager owning every defined TableSchema
        builder: QueryBuilder compiling descriptors into statements
        transactions: TransactionCoordinator holding the frame stacks
        connections: Connection manager, set by ``connect``
    """

    driver_name = "quarry-sqlite"
    is_async = False

    def __init__(self):
        self.schemas = SchemaManager()
        self.builder = QueryBuilder()
        self.transactions = TransactionCoordinator()
        self.connections: Any = None

    # ── State ────────────────────────────────────────────────────────

    @property
    def is_connected(self) -> bool:
        return self.connections is not None

    def _require_connected(self) -> Any:
        if self.connections is None:
            raise DatabaseConnectionFault(
                "<driver>", "driver is not connected; call connect() first", retryable=False
            )
        return self.connections

    def schema(self, database: str, table: str) -> TableSchema:
        """Registered schema of ``table`` (UnknownTableFault when undefined)."""
        return self.schemas.get(database, table)

    # ── Compilation ──────────────────────────────────────────────────

    def compile_select(self, database: str, table: str, options: Any = None) -> Statement:
        return self.builder.compile_select(table, self.schema(database, table), options)

    def compile_find_one(self, database: str, table: str, options: Any = None) -> Statement:
        opts = self.builder.coerce_options(table, QueryOptions, options)
        opts = QueryOptions(opts.where, opts.order_by, 1, opts.offset, opts.columns)
        return self.compile_select(database, table, opts)

    def compile_count(self, database: str, table: str, where: Optional[Mapping[str, Any]] = None) -> Statement:
        return self.builder.compile_count(table, self.schema(database, table), where)

    def compile_aggregate(self, database: str, table: str, options: Any) -> Statement:
        return self.builder.compile_aggregate(table, self.schema(database, table), options)

    def compile_insert(self, database: str, table: str, data: Mapping[str, Any]) -> Statement:
        return self.builder.compile_insert(table, self.schema(database, table), data)

    def compile_bulk_insert(self, database: str, table: str, rows: Sequence[Mapping[str, Any]]) -> List[Statement]:
        if isinstance(rows, Mapping) or not isinstance(rows, Sequence):
            raise ValidationFault(table, "bulk insert expects a list of records")
        return [self.compile_insert(database, table, row) for row in rows]

    def compile_update(self, database: str, table: str, options: Any) -> Statement:
        return self.builder.compile_update(table, self.schema(database, table), options)

    def compile_bulk_update(self, database: str, table: str, updates: Sequence[Any]) -> List[Statement]:
        if isinstance(updates, Mapping) or not isinstance(updates, Sequence):
            raise ValidationFault(table, "bulk update expects a list of update descriptors")
        return [self.compile_update(database, table, u) for u in updates]

    def compile_delete(
        self,
        database: str,
        table: str,
        where: Optional[Mapping[str, Any]] = None,
        *,
        all_rows: bool = False,
    ) -> Statement:
        return self.builder.compile_delete(table, self.schema(database, table), where, all_rows=all_rows)

    def reselect_statement(self, database: str, table: str, rowid: int) -> Statement:
        """Fetch a freshly inserted row by rowid, in declared column order."""
        schema = self.schema(database, table)
        cols = ", ".join(quote_ident(c) for c in schema.column_names)
        return Statement(
            f"SELECT {cols} FROM {quote_ident(table)} WHERE rowid = ?",
            (rowid,),
            operation="insert",
            table=table,
        )

    @staticmethod
    def checkpoint_sql(mode: str) -> str:
        mode = mode.upper()
        if mode not in CHECKPOINT_MODES:
            raise ValidationFault("<database>", f"checkpoint mode must be one of {list(CHECKPOINT_MODES)}")
        return f"PRAGMA wal_checkpoint({mode})"

    # ── Results ──────────────────────────────────────────────────────

    def shape_rows(self, database: str, table: str, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        schema = self.schema(database, table)
        return [serialization.row_to_python(schema, row) for row in rows]

    def shape_aggregate(self, database: str, table: str, options: Any, rows: List[Dict[str, Any]]) -> Any:
        """
        Scalar for ungrouped aggregates, list of rows (with ``result``) when grouped.

        COUNT and SUM over no rows are 0; AVG, MIN and MAX are None.
        """
        schema = self.schema(database, table)
        opts = AggregateOptions.coerce(options)

        def value(raw: Any) -> Any:
            if raw is None:
                return 0 if opts.function in _ZERO_WHEN_EMPTY else None
            if opts.function in (AggregateFunction.MIN, AggregateFunction.MAX) and opts.column:
                return serialization.to_python(schema[opts.column], raw)
            return raw

        if not opts.group_by:
            return value(rows[0]["result"] if rows else None)
        shaped = []
        for row in rows:
            groups = {k: v for k, v in row.items() if k != "result"}
            shaped.append({**serialization.row_to_python(schema, groups), "result": value(row["result"])})
        return shaped

    # ── Errors ───────────────────────────────────────────────────────

    @staticmethod
    def translate_error(
        exc: BaseException,
        database: str,
        table: str,
        operation: str,
        sql: Optional[str] = None,
    ) -> Fault:
        """Map an engine exception onto the fault taxonomy."""
        if isinstance(exc, Fault):
            return exc
        metadata = {"database": database}
        if sql:
            metadata["sql"] = sql[:200]
        if isinstance(exc, sqlite3.IntegrityError):
            return ConstraintViolationFault(table, operation, str(exc), metadata=metadata)
        if isinstance(exc, sqlite3.OperationalError) and "readonly" in str(exc).lower():
            return ReadOnlyFault(database, operation, metadata=metadata)
        return QueryFault(table, operation, str(exc), metadata=metadata)

    # ── Metadata ─────────────────────────────────────────────────────

    def _metadata(self, engine_version: str) -> DriverMetadata:
        names = tuple(self.connections.names()) if self.connections is not None else ()
        return DriverMetadata(
            name=self.driver_name,
            version=__version__,
            engine="sqlite",
            engine_version=engine_version,
            is_async=self.is_async,
            supports_savepoints=True,
            supports_returning=False,
            databases=names,
        )
