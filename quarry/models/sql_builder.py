"""
Quarry SQL Builder — safe, parameterized SQL generation.

Two layers live here:

- Small fluent builders (SelectBuilder, InsertBuilder, UpdateBuilder,
  DeleteBuilder) that assemble SQL text from quoted identifiers and
  ``?`` placeholders. Every value, including LIMIT and OFFSET, is bound.
- QueryBuilder, which compiles engine-neutral descriptors against a
  TableSchema into Statements, validating every referenced column first.

Usage:
    from quarry.models.sql_builder import QueryBuilder

    stmt = QueryBuilder().compile_select("users", schema, {
        "where": {"name": {"$like": "al%"}},
        "order_by": ["-id"],
        "limit": 10,
    })
    # stmt.sql = 'SELECT "id", "name" FROM "users" WHERE "name" LIKE ? ESCAPE '\\'
    #             ORDER BY "id" DESC LIMIT ?'
    # stmt.params = ('al%', 10)
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from ..faults.domains import UnknownColumnFault, ValidationFault
from . import serialization
from .lookups import OperatorTranslator, quote_ident
from .types import (
    AggregateFunction,
    AggregateOptions,
    BulkUpdateOptions,
    Predicate,
    QueryOptions,
    Statement,
    TableSchema,
)


__all__ = [
    "SelectBuilder",
    "InsertBuilder",
    "UpdateBuilder",
    "DeleteBuilder",
    "QueryBuilder",
]


class SelectBuilder:
    """
    SELECT query builder with safe parameter binding.
    """

    def __init__(self, table: str):
        self._table = table
        self._columns: List[str] = []
        self._where: Optional[Predicate] = None
        self._group_by: List[str] = []
        self._order_by: List[str] = []
        self._limit_val: Optional[int] = None
        self._offset_val: Optional[int] = None

    def select(self, *columns: str) -> SelectBuilder:
        """Set quoted column expressions to select."""
        self._columns = list(columns)
        return self

    def where(self, predicate: Predicate) -> SelectBuilder:
        self._where = predicate if predicate.sql else None
        return self

    def group_by(self, *columns: str) -> SelectBuilder:
        self._group_by.extend(columns)
        return self

    def order_by(self, column: str, direction: str = "ASC") -> SelectBuilder:
        self._order_by.append(f"{quote_ident(column)} {direction}")
        return self

    def limit(self, n: Optional[int]) -> SelectBuilder:
        self._limit_val = n
        return self

    def offset(self, n: Optional[int]) -> SelectBuilder:
        self._offset_val = n
        return self

    def build(self) -> Tuple[str, List[Any]]:
        """
        Build the final SQL string and parameter list.

        Returns:
            Tuple of (sql_string, params_list)
        """
        parts: List[str] = []
        params: List[Any] = []

        cols = ", ".join(self._columns) if self._columns else "*"
        parts.append(f"SELECT {cols}")
        parts.append(f"FROM {quote_ident(self._table)}")

        if self._where is not None:
            parts.append(f"WHERE {self._where.sql}")
            params.extend(self._where.params)

        if self._group_by:
            parts.append("GROUP BY " + ", ".join(quote_ident(c) for c in self._group_by))

        if self._order_by:
            parts.append("ORDER BY " + ", ".join(self._order_by))

        # SQLite needs a LIMIT before OFFSET; -1 means unbounded
        if self._limit_val is not None or self._offset_val is not None:
            parts.append("LIMIT ?")
            params.append(self._limit_val if self._limit_val is not None else -1)
        if self._offset_val is not None:
            parts.append("OFFSET ?")
            params.append(self._offset_val)

        return " ".join(parts), params


class InsertBuilder:
    """INSERT query builder."""

    def __init__(self, table: str):
        self._table = table
        self._columns: List[str] = []
        self._values: List[Any] = []

    def from_dict(self, data: Dict[str, Any]) -> InsertBuilder:
        """Set columns and values from a dict."""
        self._columns = list(data.keys())
        self._values = list(data.values())
        return self

    def build(self) -> Tuple[str, List[Any]]:
        if not self._columns:
            return f"INSERT INTO {quote_ident(self._table)} DEFAULT VALUES", []
        col_names = ", ".join(quote_ident(c) for c in self._columns)
        placeholders = ", ".join("?" for _ in self._columns)
        sql = f"INSERT INTO {quote_ident(self._table)} ({col_names}) VALUES ({placeholders})"
        return sql, list(self._values)


class UpdateBuilder:
    """UPDATE query builder."""

    def __init__(self, table: str):
        self._table = table
        self._sets: Dict[str, Any] = {}
        self._where: Optional[Predicate] = None

    def set_dict(self, data: Dict[str, Any]) -> UpdateBuilder:
        self._sets.update(data)
        return self

    def where(self, predicate: Predicate) -> UpdateBuilder:
        self._where = predicate if predicate.sql else None
        return self

    def build(self) -> Tuple[str, List[Any]]:
        set_parts = [f"{quote_ident(k)} = ?" for k in self._sets]
        params = list(self._sets.values())
        sql = f"UPDATE {quote_ident(self._table)} SET {', '.join(set_parts)}"
        if self._where is not None:
            sql += f" WHERE {self._where.sql}"
            params.extend(self._where.params)
        return sql, params


class DeleteBuilder:
    """DELETE query builder."""

    def __init__(self, table: str):
        self._table = table
        self._where: Optional[Predicate] = None

    def where(self, predicate: Predicate) -> DeleteBuilder:
        self._where = predicate if predicate.sql else None
        return self

    def build(self) -> Tuple[str, List[Any]]:
        sql = f"DELETE FROM {quote_ident(self._table)}"
        if self._where is None:
            return sql, []
        return f"{sql} WHERE {self._where.sql}", list(self._where.params)


# ── Descriptor compiler ──────────────────────────────────────────────────────

def _normalize_order(table: str, entry: Any) -> Tuple[str, str]:
    if isinstance(entry, str):
        if entry.startswith("-"):
            return entry[1:], "DESC"
        return entry, "ASC"
    if isinstance(entry, (list, tuple)) and len(entry) == 2 and isinstance(entry[0], str):
        direction = str(entry[1]).upper()
        if direction not in ("ASC", "DESC"):
            raise ValidationFault(table, f"order direction must be ASC or DESC, got {entry[1]!r}")
        return entry[0], direction
    raise ValidationFault(table, f"invalid order_by entry {entry!r}")


class QueryBuilder:
    """
    Compiles descriptors into Statements. Stateless.

    Validation always completes before any SQL text is produced, so a
    descriptor that names an unknown column or operator never yields a
    statement.
    """

    def __init__(self, translator: Optional[OperatorTranslator] = None):
        self.translator = translator or OperatorTranslator()

    # -- helpers -------------------------------------------------------------

    @staticmethod
    def coerce_options(table: str, kind: Any, options: Any) -> Any:
        try:
            return kind.coerce(options)
        except TypeError as e:
            raise ValidationFault(table, f"malformed {kind.__name__}: {e}") from None

    @staticmethod
    def _check_columns(table: str, schema: TableSchema, columns: Sequence[str]) -> None:
        for column in columns:
            if column not in schema:
                raise UnknownColumnFault(table, column)

    def _where(self, table: str, schema: TableSchema, where: Mapping[str, Any]) -> Predicate:
        return self.translator.translate_where(table, schema, where)

    def _bind_row(self, table: str, schema: TableSchema, data: Mapping[str, Any]) -> Dict[str, Any]:
        return {
            name: serialization.to_db(table, name, schema[name], value)
            for name, value in data.items()
        }

    # -- reads ---------------------------------------------------------------

    def compile_select(self, table: str, schema: TableSchema, options: Any = None) -> Statement:
        """Compile a SELECT for QueryOptions (or an equivalent mapping)."""
        opts = self.coerce_options(table, QueryOptions, options)
        opts.validate_paging(table)

        projection = list(opts.columns) if opts.columns else schema.column_names
        self._check_columns(table, schema, projection)
        orders = [_normalize_order(table, e) for e in opts.order_by]
        self._check_columns(table, schema, [c for c, _ in orders])
        predicate = self._where(table, schema, opts.where)

        builder = SelectBuilder(table).select(*(quote_ident(c) for c in projection))
        builder.where(predicate)
        for column, direction in orders:
            builder.order_by(column, direction)
        builder.limit(opts.limit).offset(opts.offset)

        sql, params = builder.build()
        return Statement(sql, tuple(params), operation="select", table=table)

    def compile_count(self, table: str, schema: TableSchema, where: Optional[Mapping[str, Any]] = None) -> Statement:
        predicate = self._where(table, schema, where or {})
        sql, params = SelectBuilder(table).select("COUNT(*)").where(predicate).build()
        return Statement(sql, tuple(params), operation="count", table=table)

    def compile_aggregate(self, table: str, schema: TableSchema, options: Any) -> Statement:
        """
        Compile an aggregate.

        The aggregate value is aliased ``"result"``; grouped queries also
        select the group-by (or projected) columns.
        """
        opts = self.coerce_options(table, AggregateOptions, options)
        fn = opts.function

        if opts.column is None:
            if fn is not AggregateFunction.COUNT:
                raise ValidationFault(table, f"{fn.value} requires a column")
            target = "*"
        else:
            self._check_columns(table, schema, [opts.column])
            target = quote_ident(opts.column)

        self._check_columns(table, schema, opts.group_by)
        extra = list(opts.group_by)
        if opts.columns:
            self._check_columns(table, schema, opts.columns)
            missing = [c for c in opts.group_by if c not in opts.columns]
            if missing:
                raise ValidationFault(
                    table, f"group_by columns {missing} are not in the projected columns"
                )
            extra = list(opts.columns)

        predicate = self._where(table, schema, opts.where)
        select = [f'{fn.value}({target}) AS "result"'] + [quote_ident(c) for c in extra]
        builder = SelectBuilder(table).select(*select).where(predicate)
        if opts.group_by:
            builder.group_by(*opts.group_by)

        sql, params = builder.build()
        return Statement(sql, tuple(params), operation="aggregate", table=table)

    # -- writes --------------------------------------------------------------

    def prepare_insert(self, table: str, schema: TableSchema, data: Mapping[str, Any]) -> Dict[str, Any]:
        """Validate a record and fill in defaults; returns Python values."""
        if not isinstance(data, Mapping):
            raise ValidationFault(table, f"record must be a mapping, got {type(data).__name__}")
        self._check_columns(table, schema, list(data))

        row: Dict[str, Any] = {}
        for name, col in schema.items():
            if name in data:
                value = data[name]
                if value is None and col.auto_increment:
                    # engine assigns the key
                    continue
                if value is None and col.stores_not_null:
                    raise ValidationFault(
                        table, f"column '{name}' may not be null", metadata={"column": name}
                    )
                row[name] = value
            elif col.has_default():
                row[name] = col.get_default()
            elif col.required:
                raise ValidationFault(
                    table, f"missing required column '{name}'", metadata={"column": name}
                )
        return row

    def compile_insert(self, table: str, schema: TableSchema, data: Mapping[str, Any]) -> Statement:
        row = self.prepare_insert(table, schema, data)
        sql, params = InsertBuilder(table).from_dict(self._bind_row(table, schema, row)).build()
        return Statement(sql, tuple(params), operation="insert", table=table, mutates=True)

    def compile_update(self, table: str, schema: TableSchema, options: Any) -> Statement:
        """Compile a scoped UPDATE from BulkUpdateOptions."""
        opts = self.coerce_options(table, BulkUpdateOptions, options)
        if not opts.set:
            raise ValidationFault(table, "update requires at least one column in 'set'")
        self._check_columns(table, schema, list(opts.set))
        for name, value in opts.set.items():
            col = schema[name]
            if col.auto_increment:
                raise ValidationFault(
                    table, f"auto-increment column '{name}' cannot be assigned",
                    metadata={"column": name},
                )
            if value is None and (col.not_null or col.primary_key):
                raise ValidationFault(
                    table, f"column '{name}' may not be null", metadata={"column": name}
                )
        self._require_scope(table, opts.where, opts.all_rows, "update")

        predicate = self._where(table, schema, opts.where)
        builder = UpdateBuilder(table).set_dict(self._bind_row(table, schema, opts.set))
        sql, params = builder.where(predicate).build()
        return Statement(sql, tuple(params), operation="update", table=table, mutates=True)

    def compile_delete(
        self,
        table: str,
        schema: TableSchema,
        where: Optional[Mapping[str, Any]] = None,
        *,
        all_rows: bool = False,
    ) -> Statement:
        where = dict(where or {})
        self._require_scope(table, where, all_rows, "delete")
        predicate = self._where(table, schema, where)
        sql, params = DeleteBuilder(table).where(predicate).build()
        return Statement(sql, tuple(params), operation="delete", table=table, mutates=True)

    @staticmethod
    def _require_scope(table: str, where: Mapping[str, Any], all_rows: bool, operation: str) -> None:
        if not where and not all_rows:
            raise ValidationFault(
                table,
                f"{operation} without a where-condition; pass all_rows=True to affect every row",
            )
