"""
Quarry Lookups — operator translation for where-conditions.

A where-condition maps a column to either a literal (implicit equality) or an
operator object whose keys come from a closed set:

    {"age": {"$gte": 18, "$lt": 65}, "name": {"$like": "al%"}, "deleted_at": None}

Each ``$`` operator is one Lookup class. Lookups validate and serialize
their operand for the column's DataType and render a predicate fragment with
``?`` placeholders; operand values never appear in SQL text.

Usage:
    from quarry.models.lookups import OperatorTranslator

    pred = OperatorTranslator().translate_where("users", schema, {"id": {"$in": [3, 1, 2]}})
    pred.sql     # '"id" IN (?, ?, ?)'
    pred.params  # (3, 1, 2)
"""

from __future__ import annotations

from typing import Any, ClassVar, Dict, List, Mapping, Tuple, Type

from ..faults.domains import (
    UnknownColumnFault,
    UnknownOperatorFault,
    UnsupportedOperatorFault,
    ValidationFault,
)
from . import serialization
from .types import ColumnDefinition, Predicate, TableSchema


__all__ = [
    "Lookup",
    "Eq",
    "Ne",
    "Gt",
    "Gte",
    "Lt",
    "Lte",
    "In",
    "NotIn",
    "Like",
    "Between",
    "IsNull",
    "OperatorTranslator",
    "lookup_registry",
    "resolve_lookup",
    "escape_like",
    "quote_ident",
]


def quote_ident(name: str) -> str:
    """Quote an identifier for SQLite."""
    return '"' + name.replace('"', '""') + '"'


def escape_like(text: str, escape: str = "\\") -> str:
    """
    Escape LIKE wildcards so ``text`` matches literally.

    ``$like`` operands are bound verbatim: ``%`` and ``_`` keep their
    wildcard meaning unless the caller runs them through this helper.
    """
    return (
        text.replace(escape, escape + escape)
        .replace("%", escape + "%")
        .replace("_", escape + "_")
    )


class Lookup:
    """
    Base class for operator lookups.

    Each lookup knows:
    - lookup_name: the ``$`` key used in a where-condition
    - sql_operator: the SQL comparison operator
    - structured_ok: whether JSON/OBJECT/ARRAY columns accept it
    """

    lookup_name: ClassVar[str] = ""
    sql_operator: ClassVar[str] = "="
    structured_ok: ClassVar[bool] = False

    def __init__(self, table: str, column: str, column_def: ColumnDefinition, value: Any):
        self.table = table
        self.column = column
        self.column_def = column_def
        self.value = value

    def bind(self, value: Any) -> Any:
        return serialization.to_db(self.table, self.column, self.column_def, value)

    def invalid(self, reason: str) -> ValidationFault:
        return ValidationFault(
            self.table,
            f"{self.lookup_name} on column '{self.column}' {reason}",
            metadata={"column": self.column, "operator": self.lookup_name},
        )

    def as_sql(self) -> Tuple[str, List[Any]]:
        """Return (sql_clause, params) for this lookup."""
        return f"{quote_ident(self.column)} {self.sql_operator} ?", [self.bind(self.value)]

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}: {self.column}={self.value!r}>"


class Eq(Lookup):
    lookup_name = "$eq"
    structured_ok = True

    def as_sql(self) -> Tuple[str, List[Any]]:
        if self.value is None:
            return f"{quote_ident(self.column)} IS NULL", []
        return super().as_sql()


class Ne(Lookup):
    lookup_name = "$ne"
    sql_operator = "<>"

    def as_sql(self) -> Tuple[str, List[Any]]:
        if self.value is None:
            return f"{quote_ident(self.column)} IS NOT NULL", []
        return super().as_sql()


class _Comparison(Lookup):
    def as_sql(self) -> Tuple[str, List[Any]]:
        if self.value is None:
            raise self.invalid("requires a non-null operand")
        return super().as_sql()


class Gt(_Comparison):
    lookup_name = "$gt"
    sql_operator = ">"


class Gte(_Comparison):
    lookup_name = "$gte"
    sql_operator = ">="


class Lt(_Comparison):
    lookup_name = "$lt"
    sql_operator = "<"


class Lte(_Comparison):
    lookup_name = "$lte"
    sql_operator = "<="


class In(Lookup):
    lookup_name = "$in"
    sql_operator = "IN"

    def as_sql(self) -> Tuple[str, List[Any]]:
        if not isinstance(self.value, (list, tuple)) or not self.value:
            raise self.invalid("requires a non-empty list")
        params = [self.bind(v) for v in self.value]
        placeholders = ", ".join("?" for _ in params)
        return f"{quote_ident(self.column)} {self.sql_operator} ({placeholders})", params


class NotIn(In):
    lookup_name = "$nin"
    sql_operator = "NOT IN"


class Like(Lookup):
    """Pattern match; the operand is bound verbatim, see ``escape_like``."""
    lookup_name = "$like"

    def as_sql(self) -> Tuple[str, List[Any]]:
        if not isinstance(self.value, str):
            raise self.invalid("requires a string pattern")
        return f"{quote_ident(self.column)} LIKE ? ESCAPE '\\'", [self.value]


class Between(Lookup):
    """Inclusive range."""
    lookup_name = "$between"

    def as_sql(self) -> Tuple[str, List[Any]]:
        if not isinstance(self.value, (list, tuple)) or len(self.value) != 2:
            raise self.invalid("requires exactly two values [low, high]")
        low, high = self.value
        if low is None or high is None:
            raise self.invalid("bounds must not be null")
        return (
            f"{quote_ident(self.column)} BETWEEN ? AND ?",
            [self.bind(low), self.bind(high)],
        )


class IsNull(Lookup):
    lookup_name = "$isNull"
    structured_ok = True

    def as_sql(self) -> Tuple[str, List[Any]]:
        if not isinstance(self.value, bool):
            raise self.invalid("requires true or false")
        if self.value:
            return f"{quote_ident(self.column)} IS NULL", []
        return f"{quote_ident(self.column)} IS NOT NULL", []


# ── Registry ─────────────────────────────────────────────────────────────────

_REGISTRY: Dict[str, Type[Lookup]] = {}


def _register_builtins() -> None:
    """Register all built-in lookups."""
    for cls in [Eq, Ne, Gt, Gte, Lt, Lte, In, NotIn, Like, Between, IsNull]:
        _REGISTRY[cls.lookup_name] = cls


_register_builtins()


def lookup_registry() -> Dict[str, Type[Lookup]]:
    """Return a copy of the lookup registry."""
    return dict(_REGISTRY)


def resolve_lookup(
    table: str, column: str, column_def: ColumnDefinition, lookup_name: str, value: Any
) -> Lookup:
    """
    Resolve a ``$`` operator to a Lookup instance.

    Raises:
        UnknownOperatorFault: If the operator is not in the closed set
        UnsupportedOperatorFault: If the column's type does not allow it
    """
    cls = _REGISTRY.get(lookup_name)
    if cls is None:
        raise UnknownOperatorFault(table, column, lookup_name, available=_REGISTRY.keys())
    if column_def.type.is_structured and not cls.structured_ok:
        raise UnsupportedOperatorFault(table, column, lookup_name, column_def.type.value)
    return cls(table, column, column_def, value)


# ── Translator ───────────────────────────────────────────────────────────────

def _is_operator_object(column_def: ColumnDefinition, value: Any) -> bool:
    if not isinstance(value, Mapping):
        return False
    if column_def.type.is_structured:
        # a plain dict is an OBJECT literal unless it names an operator
        return any(isinstance(k, str) and k.startswith("$") for k in value)
    return True


class OperatorTranslator:
    """Translates where-conditions into predicate fragments. Stateless."""

    def translate(
        self,
        column: str,
        column_def: ColumnDefinition,
        condition: Any,
        *,
        table: str = "",
    ) -> Predicate:
        """Translate the condition for a single column."""
        if not _is_operator_object(column_def, condition):
            if isinstance(condition, (list, tuple)) and not column_def.type.is_structured:
                raise ValidationFault(
                    table,
                    f"list literal for column '{column}'; use $in for membership",
                    metadata={"column": column},
                )
            sql, params = Eq(table, column, column_def, condition).as_sql()
            return Predicate(sql, tuple(params))

        if not condition:
            raise ValidationFault(
                table,
                f"empty operator object for column '{column}'",
                metadata={"column": column},
            )

        parts = []
        for op, operand in condition.items():
            sql, params = resolve_lookup(table, column, column_def, op, operand).as_sql()
            parts.append(Predicate(sql, tuple(params)))
        return Predicate.conjoin(parts)

    def translate_where(
        self,
        table: str,
        schema: TableSchema,
        where: Mapping[str, Any],
    ) -> Predicate:
        """Translate a full where-condition; entries AND together in mapping order."""
        parts = []
        for column, condition in (where or {}).items():
            column_def = schema.get(column)
            if column_def is None:
                raise UnknownColumnFault(table, column)
            parts.append(self.translate(column, column_def, condition, table=table))
        return Predicate.conjoin(parts)
