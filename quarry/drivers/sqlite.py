"""
Quarry SQLite Driver — blocking driver on the stdlib sqlite3 module.

Usage:
    from quarry import SQLiteDriver

    driver = SQLiteDriver().connect({"storage_dir": "./data"})
    driver.define("main", "users", {
        "id": {"type": "INTEGER", "primary_key": True, "auto_increment": True},
        "name": {"type": "TEXT", "not_null": True, "unique": True},
    })
    driver.insert("main", "users", {"name": "alice"})   # {'id': 1, 'name': 'alice'}

    with driver.transaction("main") as txn:
        driver.insert("main", "users", {"name": "bob"})
        txn.on_commit(lambda: print("saved"))
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence

from ..db.backends.base import SyncDatabaseAdapter
from ..db.engine import ConnectionManager
from ..faults.domains import TransactionFault
from ..models.transactions import TransactionFrame, TransactionState
from ..models.types import DriverMetadata, Statement, TableSchema
from .base import DriverCore

logger = logging.getLogger("quarry.drivers.sqlite")

__all__ = ["SQLiteDriver"]


class SQLiteDriver(DriverCore):
    """Blocking driver. Every method returns its result directly."""

    driver_name = "quarry-sqlite"
    is_async = False

    # ── Lifecycle ────────────────────────────────────────────────────

    def connect(self, config: Any = None) -> "SQLiteDriver":
        """
        Bind the driver to a DriverConfig (or mapping) and open every
        database it names explicitly; other names open lazily.
        """
        if self.connections is not None:
            return self
        manager = ConnectionManager(config)
        self.connections = manager
        try:
            for name in manager.config.databases:
                manager.open(name)
        except Exception:
            manager.close_all()
            self.connections = None
            raise
        logger.info(f"Driver connected (storage_dir={manager.config.storage_dir})")
        return self

    def open(self, database: str, options: Any = None) -> SyncDatabaseAdapter:
        """Handle for ``database``, opened on first use."""
        return self._require_connected().open(database, options)

    def disconnect(self) -> None:
        if self.connections is None:
            return
        for database in self.connections.names():
            frames = self.transactions.reset(database)
            if frames:
                logger.warning(f"Rolling back {len(frames)} open transaction frame(s) on '{database}'")
                handle = self.connections.get(database)
                if handle.in_transaction:
                    self._run_quietly(handle, "ROLLBACK")
            self.schemas.forget_database(database)
        self.connections.close_all()
        self.connections = None
        logger.info("Driver disconnected")

    def __enter__(self) -> "SQLiteDriver":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.disconnect()
        return False

    @property
    def metadata(self) -> DriverMetadata:
        return self._metadata(sqlite3.sqlite_version)

    # ── Execution ────────────────────────────────────────────────────

    def _execute(self, database: str, stmt: Statement, *, fetch: bool = False) -> Any:
        """Run one statement; engine errors abort the innermost frame."""
        handle = self.open(database)
        if stmt.mutates:
            self.connections.ensure_writable(database, stmt.operation)
        self.transactions.guard(database)
        try:
            if fetch:
                return handle.fetch_all(stmt.sql, stmt.params)
            return handle.execute(stmt.sql, stmt.params)
        except sqlite3.Error as exc:
            fault = self.translate_error(exc, database, stmt.table, stmt.operation, stmt.sql)
            logger.debug(f"[{database}] {stmt.operation} on '{stmt.table}' failed: {exc}")
            self._abort(database)
            raise fault from exc

    @staticmethod
    def _run_quietly(handle: SyncDatabaseAdapter, sql: str) -> None:
        try:
            handle.execute(sql)
        except sqlite3.Error as exc:
            logger.error(f"'{sql}' failed during rollback: {exc}")

    def _abort(self, database: str) -> None:
        frame = self.transactions.plan_abort(database)
        if frame is None:
            return
        self._undo(database, frame)

    def _undo(self, database: str, frame: TransactionFrame) -> None:
        handle = self.connections.get(database)
        # the engine may already have ended the transaction on its own
        if handle.in_transaction:
            for sql in frame.rollback_statements():
                self._run_quietly(handle, sql)
        self.transactions.mark_undone(frame)

    # ── Transactions ─────────────────────────────────────────────────

    def begin_transaction(self, database: str, *, durable: bool = False) -> TransactionFrame:
        handle = self.open(database)
        frame = self.transactions.push(database, durable=durable)
        try:
            handle.execute(frame.begin_sql)
        except sqlite3.Error as exc:
            self.transactions.discard(frame)
            raise TransactionFault(database, f"begin failed: {exc}") from exc
        self.transactions.activate(frame)
        return frame

    def commit(self, database: str) -> None:
        frame = self.transactions.plan_commit(database)
        handle = self.connections.get(database)
        try:
            for sql in frame.commit_statements():
                handle.execute(sql)
        except sqlite3.Error as exc:
            self._undo(database, frame)
            self.transactions.fire_hooks(self.transactions.finish_rollback(frame))
            raise TransactionFault(database, f"commit failed: {exc}") from exc
        self.transactions.fire_hooks(self.transactions.finish_commit(frame))

    def rollback(self, database: str) -> None:
        frame = self.transactions.plan_rollback(database)
        if not frame.undone:
            self._undo(database, frame)
        self.transactions.fire_hooks(self.transactions.finish_rollback(frame))

    @contextmanager
    def transaction(self, database: str, *, durable: bool = False) -> Iterator[TransactionFrame]:
        """
        Run a block atomically.

        The outermost block commits on exit; nested blocks become savepoints.
        An exception rolls the block back and propagates. A block whose
        statement failed (and whose error was swallowed) is rolled back on
        exit and reported with TransactionFault.
        """
        frame = self.begin_transaction(database, durable=durable)
        try:
            yield frame
        except BaseException:
            if self.transactions.current(database) is frame:
                self.rollback(database)
            raise
        if self.transactions.current(database) is not frame:
            return
        if frame.state is TransactionState.ROLLED_BACK:
            self.rollback(database)
            raise TransactionFault(database, "transaction block was rolled back after a failed statement")
        self.commit(database)

    # ── Schema ───────────────────────────────────────────────────────

    def define(self, database: str, table: str, schema: Any) -> TableSchema:
        """Create or additively alter ``table``; identical re-definition is a no-op."""
        handle = self.open(database)
        schema = self.schemas.validate(table, schema)
        catalog = handle.introspect(table)
        foreign = []
        for spec in self.schemas.desired_indexes(table, schema):
            owner = handle.index_table(spec.name)
            if owner and owner != table:
                foreign.extend(i for i in handle.get_indexes(owner) if i.name == spec.name)
        plan = self.schemas.plan_define(database, table, schema, catalog, foreign)
        if plan.statements:
            self.connections.ensure_writable(database, "define")
            with self.transaction(database):
                for sql in plan.statements:
                    self._execute(database, Statement(sql, operation="define", table=table, mutates=True))
        return self.schemas.register(database, table, schema, plan)

    def drop_table(self, database: str, table: str) -> None:
        sql = self.schemas.plan_drop_table(database, table)
        self._execute(database, Statement(sql, operation="drop_table", table=table, mutates=True))
        self.schemas.unregister(database, table)

    def table_exists(self, database: str, table: str) -> bool:
        return self.open(database).table_exists(table)

    def create_index(self, database: str, table: str, options: Any) -> str:
        """Create an index; returns its name. Identical re-creation is a no-op."""
        handle = self.open(database)
        name = self.schemas.index_options(table, options).resolved_name(table)
        catalog_index = None
        owner = handle.index_table(name)
        if owner:
            catalog_index = next((i for i in handle.get_indexes(owner) if i.name == name), None)
        spec, sql = self.schemas.plan_create_index(database, table, options, catalog_index)
        if sql is not None:
            self._execute(database, Statement(sql, operation="create_index", table=table, mutates=True))
        self.schemas.register_index(database, spec)
        return spec.name

    def drop_index(self, database: str, name: str) -> None:
        sql = self.schemas.plan_drop_index(database, name)
        self._execute(database, Statement(sql, operation="drop_index", table="<index>", mutates=True))
        self.schemas.unregister_index(database, name)

    # ── Reads ────────────────────────────────────────────────────────

    def select(self, database: str, table: str, options: Any = None) -> List[Dict[str, Any]]:
        stmt = self.compile_select(database, table, options)
        return self.shape_rows(database, table, self._execute(database, stmt, fetch=True))

    find_all = select

    def find_one(self, database: str, table: str, options: Any = None) -> Optional[Dict[str, Any]]:
        stmt = self.compile_find_one(database, table, options)
        rows = self.shape_rows(database, table, self._execute(database, stmt, fetch=True))
        return rows[0] if rows else None

    def count(self, database: str, table: str, where: Optional[Mapping[str, Any]] = None) -> int:
        rows = self._execute(database, self.compile_count(database, table, where), fetch=True)
        return next(iter(rows[0].values())) if rows else 0

    def aggregate(self, database: str, table: str, options: Any) -> Any:
        rows = self._execute(database, self.compile_aggregate(database, table, options), fetch=True)
        return self.shape_aggregate(database, table, options, rows)

    # ── Writes ───────────────────────────────────────────────────────

    def _insert_one(self, database: str, table: str, stmt: Statement) -> Dict[str, Any]:
        result = self._execute(database, stmt)
        rows = self._execute(database, self.reselect_statement(database, table, result.lastrowid), fetch=True)
        return self.shape_rows(database, table, rows)[0]

    def insert(self, database: str, table: str, data: Mapping[str, Any]) -> Dict[str, Any]:
        """Insert one record; returns the stored row including engine-assigned keys."""
        stmt = self.compile_insert(database, table, data)
        return self._insert_one(database, table, stmt)

    def bulk_insert(self, database: str, table: str, rows: Sequence[Mapping[str, Any]]) -> List[Dict[str, Any]]:
        """Insert all records or none."""
        statements = self.compile_bulk_insert(database, table, rows)
        if not statements:
            return []
        self.connections.ensure_writable(database, "insert")
        with self.transaction(database):
            return [self._insert_one(database, table, stmt) for stmt in statements]

    def update(self, database: str, table: str, options: Any) -> int:
        """Apply ``set`` to rows matching ``where``; returns the affected-row count."""
        stmt = self.compile_update(database, table, options)
        return self._execute(database, stmt).rowcount

    def bulk_update(self, database: str, table: str, updates: Sequence[Any]) -> int:
        """Apply several scoped updates atomically; returns the total affected rows."""
        statements = self.compile_bulk_update(database, table, updates)
        if not statements:
            return 0
        self.connections.ensure_writable(database, "update")
        with self.transaction(database):
            return sum(self._execute(database, stmt).rowcount for stmt in statements)

    def delete(
        self,
        database: str,
        table: str,
        where: Optional[Mapping[str, Any]] = None,
        *,
        all_rows: bool = False,
    ) -> int:
        stmt = self.compile_delete(database, table, where, all_rows=all_rows)
        return self._execute(database, stmt).rowcount

    # ── Maintenance ──────────────────────────────────────────────────

    def _maintenance(self, database: str, sql: str, operation: str, *, fetch: bool = False) -> Any:
        if self.transactions.in_transaction(database):
            raise TransactionFault(database, f"{operation} cannot run inside a transaction")
        return self._execute(database, Statement(sql, operation=operation, table="<database>", mutates=True), fetch=fetch)

    def checkpoint(self, database: str, mode: str = "PASSIVE") -> Dict[str, Any]:
        """Run a WAL checkpoint; returns busy / log / checkpointed frame counts."""
        rows = self._maintenance(database, self.checkpoint_sql(mode), "checkpoint", fetch=True)
        return rows[0] if rows else {}

    def optimize(self, database: str) -> None:
        self._maintenance(database, "PRAGMA optimize", "optimize", fetch=True)

    def vacuum(self, database: str) -> None:
        self._maintenance(database, "VACUUM", "vacuum")

    def analyze(self, database: str) -> None:
        self._maintenance(database, "ANALYZE", "analyze")
