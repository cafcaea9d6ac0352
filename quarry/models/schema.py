"""
Quarry Schema Manager — table registry and DDL planning.

The manager owns one TableSchema per (database, table). ``plan_define``
validates a schema and returns the DDL needed to bring the engine in line
with it; nothing is registered until the driver has applied that DDL and
calls ``register``. Planning is pure: the driver passes in the engine's
catalog view of the table (``TableInfo``) when the table already exists.

Re-definition rules:

- identical schema: no DDL
- new optional column, new index, newly unique column: additive DDL
  (``ALTER TABLE ... ADD COLUMN`` / ``CREATE INDEX``)
- anything else (dropped column, changed type or constraint): SchemaConflictFault
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from ..db.backends.base import IndexInfo, TableInfo
from ..faults.domains import (
    IndexConflictFault,
    InvalidSchemaFault,
    SchemaConflictFault,
    UnknownTableFault,
    ValidationFault,
)
from . import serialization
from .lookups import OperatorTranslator, quote_ident
from .types import FK_ACTIONS, ColumnDefinition, DataType, IndexOptions, TableSchema

logger = logging.getLogger("quarry.models.schema")

__all__ = ["SchemaManager", "SchemaPlan", "IndexSpec", "validate_identifier"]

_IDENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def validate_identifier(table: str, kind: str, name: Any) -> str:
    if not isinstance(name, str) or not _IDENT_RE.match(name) or name.lower().startswith("sqlite_"):
        raise InvalidSchemaFault(table, f"invalid {kind} name {name!r}")
    return name


@dataclass(frozen=True)
class IndexSpec:
    """Registered index: the identity used for idempotence checks."""

    name: str
    table: str
    columns: Tuple[str, ...]
    unique: bool
    where: Optional[str] = None

    @classmethod
    def from_info(cls, info: IndexInfo) -> "IndexSpec":
        return cls(info.name, info.table, tuple(info.columns), info.unique, info.where)

    def describe(self) -> str:
        kind = "UNIQUE " if self.unique else ""
        partial = f" WHERE {self.where}" if self.where else ""
        return f"{kind}INDEX ON {self.table}({', '.join(self.columns)}){partial}"

    def create_sql(self) -> str:
        unique = "UNIQUE " if self.unique else ""
        cols = ", ".join(quote_ident(c) for c in self.columns)
        return (
            f"CREATE {unique}INDEX IF NOT EXISTS {quote_ident(self.name)} "
            f"ON {quote_ident(self.table)} ({cols})"
            + (f" WHERE {self.where}" if self.where else "")
        )


@dataclass
class SchemaPlan:
    """DDL to apply for a define call, in order."""

    table: str
    statements: List[str] = field(default_factory=list)
    created: bool = False
    indexes: List[IndexSpec] = field(default_factory=list)

    @property
    def is_noop(self) -> bool:
        return not self.statements


# ── DDL rendering ────────────────────────────────────────────────────────────

def _sql_literal(value: Any) -> str:
    if value is None:
        return "NULL"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, bytes):
        return f"X'{value.hex()}'"
    return "'" + str(value).replace("'", "''") + "'"


_translator = OperatorTranslator()


def index_condition_sql(table: str, schema: TableSchema, where: Any) -> Optional[str]:
    """
    Render a partial-index condition with its operands inlined.

    DDL takes no bound parameters, so each value is written as a SQL literal.
    """
    if not where:
        return None
    if not isinstance(where, Mapping):
        raise InvalidSchemaFault(table, "index 'where' must map columns to conditions")
    try:
        predicate = _translator.translate_where(table, schema, where)
    except ValidationFault as e:
        raise InvalidSchemaFault(table, f"invalid index condition: {e.metadata.get('reason')}") from None
    pieces = predicate.sql.split("?")
    sql = [pieces[0]]
    for value, piece in zip(predicate.params, pieces[1:]):
        sql.append(_sql_literal(value))
        sql.append(piece)
    return "".join(sql)


def _column_sql(table: str, name: str, col: ColumnDefinition, inline_pk: bool) -> str:
    parts = [quote_ident(name), col.type.sql_type]
    if inline_pk and col.primary_key:
        parts.append("PRIMARY KEY")
        if col.auto_increment:
            parts.append("AUTOINCREMENT")
    if col.stores_not_null:
        parts.append("NOT NULL")
    if col.has_default() and not callable(col.default):
        stored = serialization.to_db(table, name, col, col.default)
        parts.append(f"DEFAULT {_sql_literal(stored)}")
    if col.references is not None:
        ref = col.references
        parts.append(f"REFERENCES {quote_ident(ref.table)} ({quote_ident(ref.column)})")
        if ref.on_delete:
            parts.append(f"ON DELETE {ref.on_delete.upper()}")
        if ref.on_update:
            parts.append(f"ON UPDATE {ref.on_update.upper()}")
    return " ".join(parts)


def create_table_sql(table: str, schema: TableSchema) -> str:
    pk = schema.primary_key
    inline_pk = len(pk) == 1
    body = [_column_sql(table, name, col, inline_pk) for name, col in schema.items()]
    if len(pk) > 1:
        body.append("PRIMARY KEY (" + ", ".join(quote_ident(c) for c in pk) + ")")
    return f"CREATE TABLE IF NOT EXISTS {quote_ident(table)} (\n  " + ",\n  ".join(body) + "\n)"


def add_column_sql(table: str, name: str, col: ColumnDefinition) -> str:
    return f"ALTER TABLE {quote_ident(table)} ADD COLUMN {_column_sql(table, name, col, inline_pk=False)}"


def _expected_not_null(col: ColumnDefinition) -> bool:
    return col.stores_not_null


# ── Manager ──────────────────────────────────────────────────────────────────

class SchemaManager:
    """
    Registry of table schemas and indexes per logical database.

    Not tied to a handle; drivers hand it catalog snapshots and execute the
    statements it plans.
    """

    def __init__(self):
        self._tables: Dict[Tuple[str, str], TableSchema] = {}
        self._indexes: Dict[Tuple[str, str], IndexSpec] = {}

    # ── Lookup ───────────────────────────────────────────────────────

    def get(self, database: str, table: str) -> TableSchema:
        schema = self._tables.get((database, table))
        if schema is None:
            raise UnknownTableFault(database, table)
        return schema

    def has(self, database: str, table: str) -> bool:
        return (database, table) in self._tables

    def tables(self, database: str) -> List[str]:
        return [t for (db, t) in self._tables if db == database]

    def databases(self) -> List[str]:
        return sorted({db for (db, _) in self._tables})

    def schemas(self, database: Optional[str] = None) -> Dict[str, Dict[str, TableSchema]]:
        result: Dict[str, Dict[str, TableSchema]] = {}
        for (db, table), schema in self._tables.items():
            if database is None or db == database:
                result.setdefault(db, {})[table] = schema
        return result

    def indexes(self, database: str, table: Optional[str] = None) -> List[IndexSpec]:
        return [
            spec for (db, _), spec in self._indexes.items()
            if db == database and (table is None or spec.table == table)
        ]

    # ── Validation ───────────────────────────────────────────────────

    def validate(self, table: str, schema: Any) -> TableSchema:
        """Coerce and check every column and table invariant."""
        validate_identifier(table, "table", table)
        try:
            schema = TableSchema.coerce(schema)
        except (TypeError, ValueError) as e:
            raise InvalidSchemaFault(table, str(e)) from None

        if not len(schema):
            raise InvalidSchemaFault(table, "a table needs at least one column")

        auto = [n for n, c in schema.items() if c.auto_increment]
        if len(auto) > 1:
            raise InvalidSchemaFault(table, f"at most one auto-increment column allowed, got {auto}")

        for name, col in schema.items():
            validate_identifier(table, "column", name)
            if col.auto_increment:
                if col.type is not DataType.INTEGER:
                    raise InvalidSchemaFault(table, f"auto-increment column '{name}' must be INTEGER")
                if not col.primary_key:
                    raise InvalidSchemaFault(table, f"auto-increment column '{name}' must be the primary key")
                if len(schema.primary_key) > 1:
                    raise InvalidSchemaFault(
                        table, f"auto-increment column '{name}' cannot be part of a composite key"
                    )
                if col.has_default():
                    raise InvalidSchemaFault(table, f"auto-increment column '{name}' cannot have a default")
            if col.has_default() and not callable(col.default):
                if col.default is None and col.stores_not_null:
                    raise InvalidSchemaFault(table, f"NOT NULL column '{name}' cannot default to null")
                try:
                    serialization.to_db(table, name, col, col.default)
                except ValidationFault as e:
                    raise InvalidSchemaFault(
                        table, f"default for column '{name}' does not match its type: {e.metadata.get('reason')}"
                    ) from None
            if col.references is not None:
                ref = col.references
                validate_identifier(table, "referenced table", ref.table)
                validate_identifier(table, "referenced column", ref.column)
                for action in (ref.on_delete, ref.on_update):
                    if action is not None and action.upper() not in FK_ACTIONS:
                        raise InvalidSchemaFault(
                            table, f"invalid foreign key action {action!r}; expected one of {list(FK_ACTIONS)}"
                        )

        seen = set()
        for index in schema.indexes:
            self._validate_index(table, schema, index)
            name = index.resolved_name(table)
            if name in seen:
                raise InvalidSchemaFault(table, f"duplicate index name '{name}'")
            seen.add(name)
        return schema

    def _validate_index(self, table: str, schema: TableSchema, index: IndexOptions) -> None:
        if not index.columns:
            raise InvalidSchemaFault(table, "an index needs at least one column")
        if len(set(index.columns)) != len(index.columns):
            raise InvalidSchemaFault(table, f"index repeats a column: {index.columns}")
        for column in index.columns:
            if column not in schema:
                raise InvalidSchemaFault(table, f"index references unknown column '{column}'")
        validate_identifier(table, "index", index.resolved_name(table))
        index_condition_sql(table, schema, index.where)

    def desired_indexes(self, table: str, schema: TableSchema) -> List[IndexSpec]:
        """Implicit unique indexes for unique columns, then declared indexes."""
        specs: Dict[str, IndexSpec] = {}
        for name, col in schema.items():
            if col.unique and not (col.primary_key and len(schema.primary_key) == 1):
                spec = IndexSpec(f"uq_{table}_{name}", table, (name,), True)
                specs[spec.name] = spec
        for index in schema.indexes:
            spec = IndexSpec(
                index.resolved_name(table), table, tuple(index.columns), index.unique,
                index_condition_sql(table, schema, index.where),
            )
            if spec.name in specs and specs[spec.name] != spec:
                raise IndexConflictFault(table, spec.name, "declared twice with different definitions")
            specs[spec.name] = spec
        return list(specs.values())

    # ── Compatibility ────────────────────────────────────────────────

    @staticmethod
    def _diff_registered(previous: TableSchema, schema: TableSchema) -> List[str]:
        conflicts = []
        for name, old in previous.items():
            new = schema.get(name)
            if new is None:
                conflicts.append(f"column '{name}' removed")
                continue
            for attr in ("type", "not_null", "primary_key", "auto_increment", "references"):
                if getattr(old, attr) != getattr(new, attr):
                    conflicts.append(
                        f"column '{name}' {attr} changed from {getattr(old, attr)!r} to {getattr(new, attr)!r}"
                    )
            if old.unique and not new.unique:
                conflicts.append(f"column '{name}' can no longer be made non-unique")
        return conflicts

    @staticmethod
    def _diff_catalog(catalog: TableInfo, schema: TableSchema) -> List[str]:
        conflicts = []
        for info in catalog.columns:
            new = schema.get(info.name)
            if new is None:
                conflicts.append(f"existing column '{info.name}' is missing from the schema")
                continue
            if info.data_type != new.type.sql_type:
                conflicts.append(
                    f"column '{info.name}' is {info.data_type or 'untyped'} in the database, "
                    f"schema declares {new.type.sql_type}"
                )
            if info.nullable == _expected_not_null(new):
                conflicts.append(f"column '{info.name}' NOT NULL differs from the database")
            if info.primary_key != new.primary_key:
                conflicts.append(f"column '{info.name}' PRIMARY KEY differs from the database")
        return conflicts

    @staticmethod
    def _check_additive(table: str, name: str, col: ColumnDefinition) -> Optional[str]:
        if col.primary_key or col.auto_increment:
            return f"new column '{name}' cannot be a primary key"
        if col.not_null and not (col.has_default() and not callable(col.default)):
            return f"new NOT NULL column '{name}' needs a constant default"
        return None

    # ── Planning ─────────────────────────────────────────────────────

    def plan_define(
        self,
        database: str,
        table: str,
        schema: Any,
        catalog: Optional[TableInfo] = None,
        catalog_indexes: Optional[Sequence[IndexInfo]] = None,
    ) -> SchemaPlan:
        """
        Plan the DDL for defining ``table``.

        Args:
            database: Logical database name
            table: Table name
            schema: TableSchema or mapping
            catalog: Engine view of the table, None when it does not exist
            catalog_indexes: Every user index in the database (any table),
                used to detect name clashes with indexes of other tables

        Raises:
            InvalidSchemaFault: Schema violates an invariant
            SchemaConflictFault: Re-definition is not compatible
            IndexConflictFault: An index name is taken by a different index
        """
        schema = self.validate(table, schema)
        previous = self._tables.get((database, table))

        conflicts: List[str] = []
        if previous is not None:
            conflicts.extend(self._diff_registered(previous, schema))
        if catalog is not None:
            conflicts.extend(c for c in self._diff_catalog(catalog, schema) if c not in conflicts)

        plan = SchemaPlan(table)
        if catalog is None and previous is None:
            plan.created = True
            plan.statements.append(create_table_sql(table, schema))
            existing_columns: List[str] = schema.column_names
        else:
            existing_columns = catalog.column_names if catalog is not None else previous.column_names

        for name, col in schema.items():
            if name in existing_columns:
                continue
            problem = self._check_additive(table, name, col)
            if problem:
                conflicts.append(problem)
            else:
                plan.statements.append(add_column_sql(table, name, col))

        if conflicts:
            raise SchemaConflictFault(table, conflicts)

        known: Dict[str, IndexSpec] = {
            name: spec for (db, name), spec in self._indexes.items() if db == database
        }
        for info in catalog_indexes or []:
            known.setdefault(info.name, IndexSpec.from_info(info))
        if catalog is not None:
            for info in catalog.indexes:
                known[info.name] = IndexSpec.from_info(info)

        for spec in self.desired_indexes(table, schema):
            plan.indexes.append(spec)
            current = known.get(spec.name)
            if current is None:
                plan.statements.append(spec.create_sql())
            elif current != spec:
                raise IndexConflictFault(
                    table, spec.name, f"already defined as {current.describe()}"
                )
        return plan

    def register(self, database: str, table: str, schema: Any, plan: Optional[SchemaPlan] = None) -> TableSchema:
        """Record a schema whose DDL has been applied."""
        schema = TableSchema.coerce(schema)
        self._tables[(database, table)] = schema
        specs = plan.indexes if plan is not None else self.desired_indexes(table, schema)
        for spec in specs:
            self._indexes[(database, spec.name)] = spec
        if plan is not None and plan.statements:
            logger.info(
                f"Schema for '{database}.{table}' applied "
                f"({'created' if plan.created else 'altered'}, {len(plan.statements)} statement(s))"
            )
        return schema

    @staticmethod
    def index_options(table: str, options: Any) -> IndexOptions:
        try:
            return IndexOptions.coerce(options)
        except (TypeError, ValueError) as e:
            raise InvalidSchemaFault(table, str(e)) from None

    def plan_create_index(
        self,
        database: str,
        table: str,
        options: Any,
        catalog_index: Optional[IndexInfo] = None,
    ) -> Tuple[IndexSpec, Optional[str]]:
        """
        Plan ``CREATE INDEX``; returns the IndexSpec and the SQL (None when an
        identical index already exists).
        """
        schema = self.get(database, table)
        index = self.index_options(table, options)
        self._validate_index(table, schema, index)
        spec = IndexSpec(
            index.resolved_name(table), table, tuple(index.columns), index.unique,
            index_condition_sql(table, schema, index.where),
        )

        current = self._indexes.get((database, spec.name))
        if current is None and catalog_index is not None:
            current = IndexSpec.from_info(catalog_index)
        if current is None:
            return spec, spec.create_sql()
        if current != spec:
            raise IndexConflictFault(table, spec.name, f"already defined as {current.describe()}")
        return spec, None

    def register_index(self, database: str, spec: IndexSpec) -> None:
        self._indexes[(database, spec.name)] = spec

    def plan_drop_index(self, database: str, name: str) -> str:
        validate_identifier("<index>", "index", name)
        return f"DROP INDEX IF EXISTS {quote_ident(name)}"

    def unregister_index(self, database: str, name: str) -> None:
        self._indexes.pop((database, name), None)

    def plan_drop_table(self, database: str, table: str) -> str:
        validate_identifier(table, "table", table)
        return f"DROP TABLE IF EXISTS {quote_ident(table)}"

    def unregister(self, database: str, table: str) -> None:
        self._tables.pop((database, table), None)
        for key in [k for k, spec in self._indexes.items() if k[0] == database and spec.table == table]:
            del self._indexes[key]
        logger.info(f"Dropped table '{database}.{table}'")

    def forget_database(self, database: str) -> None:
        for key in [k for k in self._tables if k[0] == database]:
            del self._tables[key]
        for key in [k for k in self._indexes if k[0] == database]:
            del self._indexes[key]
