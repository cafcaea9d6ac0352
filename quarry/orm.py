"""
Quarry ORM — table proxies over a driver.

``ORM`` keeps one ``Model`` per (database, table) and forwards every call to
the driver it wraps. With SQLiteDriver the methods return results directly;
with AsyncSQLiteDriver they return awaitables.

Usage:
    orm = ORM(SQLiteDriver(), config={"storage_dir": "./data"})
    User = orm.define("main", "users", {
        "id": {"type": "INTEGER", "primary_key": True, "auto_increment": True},
        "name": {"type": "TEXT", "not_null": True, "unique": True},
    })
    alice = User.create({"name": "alice"})
    User.find_all({"where": {"name": {"$like": "al%"}}})

    # async
    orm = await ORM(AsyncSQLiteDriver(), config=cfg).setup()
    User = await orm.define("main", "users", {...})
    await User.create({"name": "alice"})
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .faults.domains import ValidationFault
from .models.types import DriverMetadata, TableSchema

logger = logging.getLogger("quarry.orm")

__all__ = ["ORM", "Model"]

DEFAULT_DATABASE = "default"


class Model:
    """
    Proxy for one table of one logical database.

    Created by ``ORM.define``; not meant to be instantiated directly.
    """

    def __init__(self, driver: Any, database: str, table: str):
        self.driver = driver
        self.database = database
        self.table = table

    @property
    def schema(self) -> TableSchema:
        return self.driver.schema(self.database, self.table)

    def __repr__(self) -> str:
        return f"<Model {self.database}.{self.table}>"

    # ── Reads ────────────────────────────────────────────────────────

    def find_one(self, options: Any = None):
        return self.driver.find_one(self.database, self.table, options)

    def find_all(self, options: Any = None):
        return self.driver.find_all(self.database, self.table, options)

    def find_by_id(self, value: Any):
        """Fetch by the single-column primary key."""
        pk = self.schema.primary_key
        if len(pk) != 1:
            raise ValidationFault(self.table, f"find_by_id needs a single-column primary key, table has {pk}")
        return self.find_one({"where": {pk[0]: value}})

    def count(self, where: Optional[Mapping[str, Any]] = None):
        return self.driver.count(self.database, self.table, where)

    # ── Writes ───────────────────────────────────────────────────────

    def create(self, data: Mapping[str, Any]):
        return self.driver.insert(self.database, self.table, data)

    def bulk_create(self, records: Sequence[Mapping[str, Any]]):
        return self.driver.bulk_insert(self.database, self.table, records)

    def update(self, data: Mapping[str, Any], where: Optional[Mapping[str, Any]], *, all_rows: bool = False):
        """Set ``data`` on rows matching ``where``; returns the affected-row count."""
        options = {"where": where, "set": data, "all_rows": all_rows}
        return self.driver.update(self.database, self.table, options)

    def bulk_update(self, updates: Sequence[Mapping[str, Any]]):
        """
        Run several ``{"where": ..., "set": ...}`` updates atomically.

        ``data`` is accepted in place of ``set``.
        """
        mapped = []
        for u in updates:
            u = dict(u)
            if "data" in u:
                u["set"] = u.pop("data")
            mapped.append(u)
        return self.driver.bulk_update(self.database, self.table, mapped)

    def delete(self, where: Optional[Mapping[str, Any]] = None, *, all_rows: bool = False):
        return self.driver.delete(self.database, self.table, where, all_rows=all_rows)

    def bulk_delete(self, conditions: Sequence[Mapping[str, Any]]):
        """Delete rows matching any of ``conditions`` in one transaction."""
        for where in conditions:
            self.driver.compile_delete(self.database, self.table, where)
        if self.driver.is_async:
            return self._abulk_delete(conditions)
        with self.driver.transaction(self.database):
            return sum(self.driver.delete(self.database, self.table, w) for w in conditions)

    async def _abulk_delete(self, conditions: Sequence[Mapping[str, Any]]) -> int:
        total = 0
        async with self.driver.transaction(self.database):
            for where in conditions:
                total += await self.driver.delete(self.database, self.table, where)
        return total

    # ── Indexes ──────────────────────────────────────────────────────

    def create_index(
        self,
        columns: Any,
        *,
        unique: bool = False,
        name: Optional[str] = None,
        where: Optional[Mapping[str, Any]] = None,
    ):
        """Create an index over ``columns`` (a list, or full IndexOptions); ``where`` makes it partial."""
        if isinstance(columns, (list, tuple)):
            options: Any = {"columns": list(columns), "unique": unique, "name": name, "where": where}
        else:
            options = columns
        return self.driver.create_index(self.database, self.table, options)

    def drop_index(self, name: str):
        return self.driver.drop_index(self.database, name)

    # ── Aggregates ───────────────────────────────────────────────────

    def aggregate(
        self,
        function: str,
        column: Optional[str] = None,
        where: Optional[Mapping[str, Any]] = None,
        group_by: Optional[List[str]] = None,
    ):
        options = {"function": function, "column": column, "where": where or {}, "group_by": group_by or []}
        return self.driver.aggregate(self.database, self.table, options)

    def sum(self, column: str, where: Optional[Mapping[str, Any]] = None):
        return self.aggregate("SUM", column, where)

    def avg(self, column: str, where: Optional[Mapping[str, Any]] = None):
        return self.aggregate("AVG", column, where)

    def min(self, column: str, where: Optional[Mapping[str, Any]] = None):
        return self.aggregate("MIN", column, where)

    def max(self, column: str, where: Optional[Mapping[str, Any]] = None):
        return self.aggregate("MAX", column, where)

    # ── Transactions ─────────────────────────────────────────────────

    def transaction(self, *, durable: bool = False):
        return self.driver.transaction(self.database, durable=durable)


class ORM:
    """
    Model registry bound to one driver.

    Args:
        driver: SQLiteDriver or AsyncSQLiteDriver
        config: DriverConfig (or mapping) passed to ``driver.connect``
        models: ``{table: schema}`` defined on the ``default`` database
    """

    def __init__(self, driver: Any, *, config: Any = None, models: Optional[Mapping[str, Any]] = None):
        self.driver = driver
        self._config = config
        self._pending: Dict[str, Any] = dict(models or {})
        self._models: Dict[str, Dict[str, Model]] = {}
        if not driver.is_async:
            self.setup()

    def setup(self):
        """
        Connect the driver (if needed) and define the constructor's models.

        Runs automatically for the sync driver; async callers await it.
        """
        if self.driver.is_async:
            return self._asetup()
        if not self.driver.is_connected:
            self.driver.connect(self._config)
        pending, self._pending = self._pending, {}
        for table, schema in pending.items():
            self.define(DEFAULT_DATABASE, table, schema)
        return self

    async def _asetup(self) -> "ORM":
        if not self.driver.is_connected:
            await self.driver.connect(self._config)
        pending, self._pending = self._pending, {}
        for table, schema in pending.items():
            await self.define(DEFAULT_DATABASE, table, schema)
        return self

    def define(self, database: str, table: str, schema: Any):
        """Create (or additively alter) ``table`` and return its Model."""
        if self.driver.is_async:
            return self._adefine(database, table, schema)
        self.driver.define(database, table, schema)
        return self._bind(database, table)

    async def _adefine(self, database: str, table: str, schema: Any) -> Model:
        await self.driver.define(database, table, schema)
        return self._bind(database, table)

    def _bind(self, database: str, table: str) -> Model:
        models = self._models.setdefault(database, {})
        if table not in models:
            models[table] = Model(self.driver, database, table)
            logger.debug(f"Model bound: {database}.{table}")
        return models[table]

    def model(self, database: str, table: str) -> Optional[Model]:
        return self._models.get(database, {}).get(table)

    def table(self, table: str, database: str = DEFAULT_DATABASE) -> Optional[Model]:
        return self.model(database, table)

    def has_model(self, database: str, table: str) -> bool:
        return table in self._models.get(database, {})

    def get_schemas(self, database: str) -> Dict[str, TableSchema]:
        return {t: m.schema for t, m in self._models.get(database, {}).items()}

    def get_models(self, database: str) -> Dict[str, Model]:
        return dict(self._models.get(database, {}))

    def get_databases(self) -> List[str]:
        return list(self._models)

    def driver_info(self) -> DriverMetadata:
        return self.driver.metadata

    def disconnect(self):
        self._models.clear()
        return self.driver.disconnect()
