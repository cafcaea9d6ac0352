"""
Quarry Async SQLite Driver — aiosqlite-backed driver.

Same operations as SQLiteDriver; each returns an awaitable. Compilation and
validation run synchronously before the first await, so a malformed
descriptor fails without touching the handle.

Usage:
    driver = await AsyncSQLiteDriver().connect({"storage_dir": "./data"})
    await driver.define("main", "users", {...})

    async with driver.transaction("main") as txn:
        await driver.insert("main", "users", {"name": "bob"})
        txn.on_commit(notify)
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Sequence

import aiosqlite

from ..db.backends.base import DatabaseAdapter
from ..db.engine import AsyncConnectionManager
from ..faults.domains import TransactionFault
from ..models.transactions import TransactionFrame, TransactionState
from ..models.types import DriverMetadata, Statement, TableSchema
from .base import DriverCore

logger = logging.getLogger("quarry.drivers.aiosqlite")

__all__ = ["AsyncSQLiteDriver"]


class AsyncSQLiteDriver(DriverCore):
    """
    Async driver. Every I/O method is a coroutine.

    A transaction belongs to the task that opened it. While it is open,
    statements and transactions from other tasks on the same database wait
    for it to finish, so a failure in one task never undoes another's work.
    """

    driver_name = "quarry-aiosqlite"
    is_async = True

    def __init__(self):
        super().__init__()
        self._locks: Dict[str, asyncio.Lock] = {}
        self._owners: Dict[str, "asyncio.Task[Any]"] = {}

    # ── Lifecycle ────────────────────────────────────────────────────

    async def connect(self, config: Any = None) -> "AsyncSQLiteDriver":
        """
        Bind the driver to a DriverConfig (or mapping) and open every
        database it names explicitly; other names open lazily.
        """
        if self.connections is not None:
            return self
        manager = AsyncConnectionManager(config)
        self.connections = manager
        try:
            for name in manager.config.databases:
                await manager.open(name)
        except Exception:
            await manager.close_all()
            self.connections = None
            raise
        logger.info(f"Async driver connected (storage_dir={manager.config.storage_dir})")
        return self

    async def open(self, database: str, options: Any = None) -> DatabaseAdapter:
        """Handle for ``database``, opened on first use."""
        return await self._require_connected().open(database, options)

    async def disconnect(self) -> None:
        if self.connections is None:
            return
        for database in self.connections.names():
            frames = self.transactions.reset(database)
            if frames:
                logger.warning(f"Rolling back {len(frames)} open transaction frame(s) on '{database}'")
                handle = self.connections.get(database)
                if handle.in_transaction:
                    await self._run_quietly(handle, "ROLLBACK")
            self._release(database)
            self.schemas.forget_database(database)
        await self.connections.close_all()
        self.connections = None
        logger.info("Async driver disconnected")

    async def __aenter__(self) -> "AsyncSQLiteDriver":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.disconnect()
        return False

    @property
    def metadata(self) -> DriverMetadata:
        return self._metadata(aiosqlite.sqlite_version)

    # ── Task ownership ───────────────────────────────────────────────

    def _lock(self, database: str) -> asyncio.Lock:
        lock = self._locks.get(database)
        if lock is None:
            lock = self._locks[database] = asyncio.Lock()
        return lock

    def _owns(self, database: str) -> bool:
        """True when the calling task holds the open transaction on ``database``."""
        return self._owners.get(database) is asyncio.current_task()

    def _release(self, database: str) -> None:
        self._owners.pop(database, None)
        lock = self._locks.get(database)
        if lock is not None and lock.locked():
            lock.release()

    def _check_owner(self, database: str) -> None:
        if self.transactions.in_transaction(database) and not self._owns(database):
            raise TransactionFault(database, "the open transaction belongs to another task")

    # ── Execution ────────────────────────────────────────────────────

    async def _execute(self, database: str, stmt: Statement, *, fetch: bool = False) -> Any:
        """Run one statement, waiting for another task's transaction to end first."""
        handle = await self.open(database)
        if stmt.mutates:
            self.connections.ensure_writable(database, stmt.operation)
        if self._owns(database):
            return await self._run(database, handle, stmt, fetch)
        async with self._lock(database):
            return await self._run(database, handle, stmt, fetch)

    async def _run(self, database: str, handle: DatabaseAdapter, stmt: Statement, fetch: bool) -> Any:
        """Engine errors abort the innermost frame."""
        self.transactions.guard(database)
        try:
            if fetch:
                return await handle.fetch_all(stmt.sql, stmt.params)
            return await handle.execute(stmt.sql, stmt.params)
        except sqlite3.Error as exc:
            fault = self.translate_error(exc, database, stmt.table, stmt.operation, stmt.sql)
            logger.debug(f"[{database}] {stmt.operation} on '{stmt.table}' failed: {exc}")
            await self._abort(database)
            raise fault from exc

    @staticmethod
    async def _run_quietly(handle: DatabaseAdapter, sql: str) -> None:
        try:
            await handle.execute(sql)
        except sqlite3.Error as exc:
            logger.error(f"'{sql}' failed during rollback: {exc}")

    async def _abort(self, database: str) -> None:
        frame = self.transactions.plan_abort(database)
        if frame is None:
            return
        await self._undo(database, frame)

    async def _undo(self, database: str, frame: TransactionFrame) -> None:
        handle = self.connections.get(database)
        # the engine may already have ended the transaction on its own
        if handle.in_transaction:
            for sql in frame.rollback_statements():
                await self._run_quietly(handle, sql)
        self.transactions.mark_undone(frame)

    # ── Transactions ─────────────────────────────────────────────────

    async def begin_transaction(self, database: str, *, durable: bool = False) -> TransactionFrame:
        """Open a frame; waits while another task's transaction is open."""
        handle = await self.open(database)
        outermost = not self._owns(database)
        if outermost:
            await self._lock(database).acquire()
            self._owners[database] = asyncio.current_task()
        try:
            frame = self.transactions.push(database, durable=durable)
        except BaseException:
            if outermost:
                self._release(database)
            raise
        try:
            await handle.execute(frame.begin_sql)
        except sqlite3.Error as exc:
            self.transactions.discard(frame)
            if outermost:
                self._release(database)
            raise TransactionFault(database, f"begin failed: {exc}") from exc
        self.transactions.activate(frame)
        return frame

    def _closed(self, database: str, frame: TransactionFrame) -> None:
        if frame.is_outermost:
            self._release(database)

    async def commit(self, database: str) -> None:
        self._check_owner(database)
        frame = self.transactions.plan_commit(database)
        handle = self.connections.get(database)
        try:
            for sql in frame.commit_statements():
                await handle.execute(sql)
        except sqlite3.Error as exc:
            await self._undo(database, frame)
            hooks = self.transactions.finish_rollback(frame)
            self._closed(database, frame)
            await self.transactions.afire_hooks(hooks)
            raise TransactionFault(database, f"commit failed: {exc}") from exc
        hooks = self.transactions.finish_commit(frame)
        self._closed(database, frame)
        await self.transactions.afire_hooks(hooks)

    async def rollback(self, database: str) -> None:
        self._check_owner(database)
        frame = self.transactions.plan_rollback(database)
        if not frame.undone:
            await self._undo(database, frame)
        hooks = self.transactions.finish_rollback(frame)
        self._closed(database, frame)
        await self.transactions.afire_hooks(hooks)

    @asynccontextmanager
    async def transaction(self, database: str, *, durable: bool = False) -> AsyncIterator[TransactionFrame]:
        """
        Run a block atomically.

        The outermost block commits on exit; nested blocks become savepoints.
        An exception rolls the block back and propagates.
        """
        frame = await self.begin_transaction(database, durable=durable)
        try:
            yield frame
        except BaseException:
            if self.transactions.current(database) is frame:
                await self.rollback(database)
            raise
        if self.transactions.current(database) is not frame:
            return
        if frame.state is TransactionState.ROLLED_BACK:
            await self.rollback(database)
            raise TransactionFault(database, "transaction block was rolled back after a failed statement")
        await self.commit(database)

    # ── Schema ───────────────────────────────────────────────────────

    async def define(self, database: str, table: str, schema: Any) -> TableSchema:
        """Create or additively alter ``table``; identical re-definition is a no-op."""
        handle = await self.open(database)
        schema = self.schemas.validate(table, schema)
        catalog = await handle.introspect(table)
        foreign = []
        for spec in self.schemas.desired_indexes(table, schema):
            owner = await handle.index_table(spec.name)
            if owner and owner != table:
                foreign.extend(i for i in await handle.get_indexes(owner) if i.name == spec.name)
        plan = self.schemas.plan_define(database, table, schema, catalog, foreign)
        if plan.statements:
            self.connections.ensure_writable(database, "define")
            async with self.transaction(database):
                for sql in plan.statements:
                    await self._execute(database, Statement(sql, operation="define", table=table, mutates=True))
        return self.schemas.register(database, table, schema, plan)

    async def drop_table(self, database: str, table: str) -> None:
        sql = self.schemas.plan_drop_table(database, table)
        await self._execute(database, Statement(sql, operation="drop_table", table=table, mutates=True))
        self.schemas.unregister(database, table)

    async def table_exists(self, database: str, table: str) -> bool:
        handle = await self.open(database)
        return await handle.table_exists(table)

    async def create_index(self, database: str, table: str, options: Any) -> str:
        """Create an index; returns its name. Identical re-creation is a no-op."""
        handle = await self.open(database)
        name = self.schemas.index_options(table, options).resolved_name(table)
        catalog_index = None
        owner = await handle.index_table(name)
        if owner:
            catalog_index = next((i for i in await handle.get_indexes(owner) if i.name == name), None)
        spec, sql = self.schemas.plan_create_index(database, table, options, catalog_index)
        if sql is not None:
            await self._execute(database, Statement(sql, operation="create_index", table=table, mutates=True))
        self.schemas.register_index(database, spec)
        return spec.name

    async def drop_index(self, database: str, name: str) -> None:
        sql = self.schemas.plan_drop_index(database, name)
        await self._execute(database, Statement(sql, operation="drop_index", table="<index>", mutates=True))
        self.schemas.unregister_index(database, name)

    # ── Reads ────────────────────────────────────────────────────────

    async def select(self, database: str, table: str, options: Any = None) -> List[Dict[str, Any]]:
        stmt = self.compile_select(database, table, options)
        return self.shape_rows(database, table, await self._execute(database, stmt, fetch=True))

    find_all = select

    async def find_one(self, database: str, table: str, options: Any = None) -> Optional[Dict[str, Any]]:
        stmt = self.compile_find_one(database, table, options)
        rows = self.shape_rows(database, table, await self._execute(database, stmt, fetch=True))
        return rows[0] if rows else None

    async def count(self, database: str, table: str, where: Optional[Mapping[str, Any]] = None) -> int:
        rows = await self._execute(database, self.compile_count(database, table, where), fetch=True)
        return next(iter(rows[0].values())) if rows else 0

    async def aggregate(self, database: str, table: str, options: Any) -> Any:
        rows = await self._execute(database, self.compile_aggregate(database, table, options), fetch=True)
        return self.shape_aggregate(database, table, options, rows)

    # ── Writes ───────────────────────────────────────────────────────

    async def _insert_one(self, database: str, table: str, stmt: Statement) -> Dict[str, Any]:
        result = await self._execute(database, stmt)
        rows = await self._execute(database, self.reselect_statement(database, table, result.lastrowid), fetch=True)
        return self.shape_rows(database, table, rows)[0]

    async def insert(self, database: str, table: str, data: Mapping[str, Any]) -> Dict[str, Any]:
        """Insert one record; returns the stored row including engine-assigned keys."""
        stmt = self.compile_insert(database, table, data)
        return await self._insert_one(database, table, stmt)

    async def bulk_insert(self, database: str, table: str, rows: Sequence[Mapping[str, Any]]) -> List[Dict[str, Any]]:
        """Insert all records or none."""
        statements = self.compile_bulk_insert(database, table, rows)
        if not statements:
            return []
        await self.open(database)
        self.connections.ensure_writable(database, "insert")
        async with self.transaction(database):
            return [await self._insert_one(database, table, stmt) for stmt in statements]

    async def update(self, database: str, table: str, options: Any) -> int:
        """Apply ``set`` to rows matching ``where``; returns the affected-row count."""
        stmt = self.compile_update(database, table, options)
        return (await self._execute(database, stmt)).rowcount

    async def bulk_update(self, database: str, table: str, updates: Sequence[Any]) -> int:
        """Apply several scoped updates atomically; returns the total affected rows."""
        statements = self.compile_bulk_update(database, table, updates)
        if not statements:
            return 0
        await self.open(database)
        self.connections.ensure_writable(database, "update")
        total = 0
        async with self.transaction(database):
            for stmt in statements:
                total += (await self._execute(database, stmt)).rowcount
        return total

    async def delete(
        self,
        database: str,
        table: str,
        where: Optional[Mapping[str, Any]] = None,
        *,
        all_rows: bool = False,
    ) -> int:
        stmt = self.compile_delete(database, table, where, all_rows=all_rows)
        return (await self._execute(database, stmt)).rowcount

    # ── Maintenance ──────────────────────────────────────────────────

    async def _maintenance(self, database: str, sql: str, operation: str, *, fetch: bool = False) -> Any:
        if self._owns(database):
            raise TransactionFault(database, f"{operation} cannot run inside a transaction")
        stmt = Statement(sql, operation=operation, table="<database>", mutates=True)
        return await self._execute(database, stmt, fetch=fetch)

    async def checkpoint(self, database: str, mode: str = "PASSIVE") -> Dict[str, Any]:
        """Run a WAL checkpoint; returns busy / log / checkpointed frame counts."""
        rows = await self._maintenance(database, self.checkpoint_sql(mode), "checkpoint", fetch=True)
        return rows[0] if rows else {}

    async def optimize(self, database: str) -> None:
        await self._maintenance(database, "PRAGMA optimize", "optimize", fetch=True)

    async def vacuum(self, database: str) -> None:
        await self._maintenance(database, "VACUUM", "vacuum")

    async def analyze(self, database: str) -> None:
        await self._maintenance(database, "ANALYZE", "analyze")
