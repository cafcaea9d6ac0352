"""
Quarry Model Types — schema and query descriptors.

Everything a caller hands to a driver is one of these engine-neutral
descriptors. Each descriptor accepts either its dataclass form or a plain
mapping with the same snake_case keys:

    from quarry.models.types import ColumnDefinition, DataType, TableSchema

    users = TableSchema({
        "id": ColumnDefinition(DataType.INTEGER, primary_key=True, auto_increment=True),
        "name": ColumnDefinition(DataType.TEXT, not_null=True, unique=True),
        "tags": {"type": "ARRAY", "default": list},
    })

    QueryOptions.coerce({"where": {"name": {"$like": "al%"}}, "order_by": ["-id"], "limit": 10})
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

from ..faults.domains import ValidationFault


__all__ = [
    "UNSET",
    "DataType",
    "JSON_TYPES",
    "ForeignKey",
    "ColumnDefinition",
    "IndexOptions",
    "TableSchema",
    "QueryOptions",
    "AggregateFunction",
    "AggregateOptions",
    "BulkUpdateOptions",
    "Predicate",
    "Statement",
    "DriverMetadata",
]


# ── Sentinel ─────────────────────────────────────────────────────────────────

class _Unset:
    """Sentinel for distinguishing 'not set' from None."""
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self):
        return "<UNSET>"

    def __bool__(self):
        return False

    def __deepcopy__(self, memo):
        return self


UNSET = _Unset()


# ── Data types ───────────────────────────────────────────────────────────────

class DataType(str, Enum):
    """Engine-neutral column types."""

    INTEGER = "INTEGER"
    REAL = "REAL"
    TEXT = "TEXT"
    STRING = "STRING"
    BLOB = "BLOB"
    BOOLEAN = "BOOLEAN"
    DATE = "DATE"
    DATETIME = "DATETIME"
    JSON = "JSON"
    OBJECT = "OBJECT"
    ARRAY = "ARRAY"
    NUMBER = "NUMBER"

    @property
    def sql_type(self) -> str:
        """SQLite storage type for this data type."""
        return _SQL_TYPES[self]

    @property
    def is_structured(self) -> bool:
        """True for types stored as serialized JSON text."""
        return self in JSON_TYPES

    @classmethod
    def coerce(cls, value: Union[str, "DataType"]) -> "DataType":
        if isinstance(value, DataType):
            return value
        try:
            return cls(str(value).upper())
        except ValueError:
            raise ValueError(
                f"Unknown data type {value!r}. Available: {[t.value for t in cls]}"
            ) from None


_SQL_TYPES = {
    DataType.INTEGER: "INTEGER",
    DataType.REAL: "REAL",
    DataType.TEXT: "TEXT",
    DataType.STRING: "TEXT",
    DataType.BLOB: "BLOB",
    DataType.BOOLEAN: "INTEGER",
    DataType.DATE: "TEXT",
    DataType.DATETIME: "TEXT",
    DataType.JSON: "TEXT",
    DataType.OBJECT: "TEXT",
    DataType.ARRAY: "TEXT",
    DataType.NUMBER: "NUMERIC",
}

JSON_TYPES = frozenset({DataType.JSON, DataType.OBJECT, DataType.ARRAY})


# ── Columns ──────────────────────────────────────────────────────────────────

FK_ACTIONS = ("CASCADE", "SET NULL", "RESTRICT", "NO ACTION")


@dataclass(frozen=True)
class ForeignKey:
    """Column reference to another table's column."""

    table: str
    column: str
    on_delete: Optional[str] = None
    on_update: Optional[str] = None

    @classmethod
    def coerce(cls, value: Any) -> "ForeignKey":
        if isinstance(value, ForeignKey):
            return value
        if isinstance(value, Mapping):
            return cls(**dict(value))
        raise TypeError(f"Cannot build ForeignKey from {type(value).__name__}")


@dataclass
class ColumnDefinition:
    """
    Declared shape of a single column.

    ``auto_increment`` implies ``not_null`` and ``primary_key`` and requires
    INTEGER; the schema manager rejects definitions that break this.
    A callable ``default`` is evaluated on every insert.
    """

    type: DataType
    not_null: bool = False
    unique: bool = False
    primary_key: bool = False
    auto_increment: bool = False
    default: Any = UNSET
    references: Optional[ForeignKey] = None

    def __post_init__(self) -> None:
        self.type = DataType.coerce(self.type)
        if self.references is not None:
            self.references = ForeignKey.coerce(self.references)

    @classmethod
    def coerce(cls, value: Any) -> "ColumnDefinition":
        if isinstance(value, ColumnDefinition):
            return value
        if isinstance(value, (str, DataType)):
            return cls(DataType.coerce(value))
        if isinstance(value, Mapping):
            return cls(**dict(value))
        raise TypeError(f"Cannot build ColumnDefinition from {type(value).__name__}")

    def has_default(self) -> bool:
        """Check if column has a default value."""
        return self.default is not UNSET

    def get_default(self) -> Any:
        """Get default value, calling it if callable."""
        if self.default is UNSET:
            return None
        if callable(self.default):
            return self.default()
        return copy.deepcopy(self.default)

    @property
    def stores_not_null(self) -> bool:
        """Emitted as NOT NULL: explicit not_null and every non-auto-increment key column."""
        return (self.not_null or self.primary_key) and not self.auto_increment

    @property
    def required(self) -> bool:
        """Must be supplied on insert."""
        return self.stores_not_null and not self.has_default()


# ── Indexes ──────────────────────────────────────────────────────────────────

@dataclass
class IndexOptions:
    """
    Index declaration; ``name`` is derived from table and columns when absent.

    ``where`` makes a partial index. It takes the same conditions as a query,
    with operands written into the DDL as literals.
    """

    columns: List[str]
    unique: bool = False
    name: Optional[str] = None
    where: Optional[Dict[str, Any]] = None

    def __post_init__(self) -> None:
        if isinstance(self.columns, str):
            self.columns = [self.columns]
        self.columns = list(self.columns)

    @classmethod
    def coerce(cls, value: Any) -> "IndexOptions":
        if isinstance(value, IndexOptions):
            return value
        if isinstance(value, Mapping):
            return cls(**dict(value))
        if isinstance(value, (list, tuple)):
            return cls(columns=list(value))
        raise TypeError(f"Cannot build IndexOptions from {type(value).__name__}")

    def resolved_name(self, table: str) -> str:
        if self.name:
            return self.name
        prefix = "uq" if self.unique else "idx"
        return f"{prefix}_{table}_{'_'.join(self.columns)}"


# ── Table schema ─────────────────────────────────────────────────────────────

class TableSchema:
    """
    Ordered mapping of column name → ColumnDefinition plus declared indexes.

    Insertion order is the declared column order and the default projection.
    """

    __slots__ = ("_columns", "indexes")

    def __init__(
        self,
        columns: Optional[Mapping[str, Any]] = None,
        indexes: Optional[Sequence[Any]] = None,
    ):
        self._columns: Dict[str, ColumnDefinition] = {}
        for name, definition in (columns or {}).items():
            self._columns[name] = ColumnDefinition.coerce(definition)
        self.indexes: List[IndexOptions] = [IndexOptions.coerce(i) for i in (indexes or [])]

    @classmethod
    def coerce(cls, value: Any) -> "TableSchema":
        if isinstance(value, TableSchema):
            return value
        if isinstance(value, Mapping):
            return cls(value)
        raise TypeError(f"Cannot build TableSchema from {type(value).__name__}")

    # Mapping protocol
    def __getitem__(self, name: str) -> ColumnDefinition:
        return self._columns[name]

    def __contains__(self, name: object) -> bool:
        return name in self._columns

    def __iter__(self) -> Iterator[str]:
        return iter(self._columns)

    def __len__(self) -> int:
        return len(self._columns)

    def items(self):
        return self._columns.items()

    def get(self, name: str, default: Any = None) -> Any:
        return self._columns.get(name, default)

    @property
    def column_names(self) -> List[str]:
        return list(self._columns)

    @property
    def primary_key(self) -> List[str]:
        return [n for n, c in self._columns.items() if c.primary_key]

    @property
    def auto_increment_column(self) -> Optional[str]:
        for name, col in self._columns.items():
            if col.auto_increment:
                return name
        return None

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TableSchema):
            return NotImplemented
        return (
            list(self._columns.items()) == list(other._columns.items())
            and self.indexes == other.indexes
        )

    def __repr__(self) -> str:
        return f"TableSchema(columns={self.column_names!r}, indexes={len(self.indexes)})"


# ── Query descriptors ────────────────────────────────────────────────────────

OrderEntry = Union[str, Tuple[str, str]]


def _check_non_negative(table: str, name: str, value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationFault(table, f"{name} must be a non-negative integer, got {value!r}")
    return value


@dataclass
class QueryOptions:
    """Filter, ordering, pagination and projection for SELECT."""

    where: Dict[str, Any] = field(default_factory=dict)
    order_by: List[OrderEntry] = field(default_factory=list)
    limit: Optional[int] = None
    offset: Optional[int] = None
    columns: Optional[List[str]] = None

    @classmethod
    def coerce(cls, value: Any) -> "QueryOptions":
        if value is None:
            return cls()
        if isinstance(value, QueryOptions):
            return value
        if isinstance(value, Mapping):
            data = dict(value)
            data["where"] = dict(data.get("where") or {})
            data["order_by"] = list(data.get("order_by") or [])
            return cls(**data)
        raise TypeError(f"Cannot build QueryOptions from {type(value).__name__}")

    def validate_paging(self, table: str) -> None:
        _check_non_negative(table, "limit", self.limit)
        _check_non_negative(table, "offset", self.offset)


class AggregateFunction(str, Enum):
    COUNT = "COUNT"
    SUM = "SUM"
    AVG = "AVG"
    MIN = "MIN"
    MAX = "MAX"


@dataclass
class AggregateOptions:
    """Aggregate over an optional column, filter and grouping."""

    function: AggregateFunction
    column: Optional[str] = None
    group_by: List[str] = field(default_factory=list)
    where: Dict[str, Any] = field(default_factory=dict)
    columns: Optional[List[str]] = None

    def __post_init__(self) -> None:
        try:
            self.function = AggregateFunction(str(getattr(self.function, "value", self.function)).upper())
        except ValueError:
            raise ValidationFault(
                "<aggregate>",
                f"unknown aggregate function {self.function!r}. "
                f"Available: {[f.value for f in AggregateFunction]}",
            ) from None
        self.group_by = list(self.group_by or [])
        self.where = dict(self.where or {})

    @classmethod
    def coerce(cls, value: Any) -> "AggregateOptions":
        if isinstance(value, AggregateOptions):
            return value
        if isinstance(value, Mapping):
            return cls(**dict(value))
        raise TypeError(f"Cannot build AggregateOptions from {type(value).__name__}")


@dataclass
class BulkUpdateOptions:
    """
    Scoped mutation: ``set`` values on rows matching ``where``.

    An empty ``where`` is rejected unless ``all_rows=True`` is passed.
    """

    where: Dict[str, Any] = field(default_factory=dict)
    set: Dict[str, Any] = field(default_factory=dict)
    all_rows: bool = False

    @classmethod
    def coerce(cls, value: Any) -> "BulkUpdateOptions":
        if isinstance(value, BulkUpdateOptions):
            return value
        if isinstance(value, Mapping):
            data = dict(value)
            data["where"] = dict(data.get("where") or {})
            data["set"] = dict(data.get("set") or {})
            return cls(**data)
        raise TypeError(f"Cannot build BulkUpdateOptions from {type(value).__name__}")


# ── Compiled statements ──────────────────────────────────────────────────────

@dataclass(frozen=True)
class Predicate:
    """Predicate fragment: SQL text with ``?`` placeholders plus ordered values."""

    sql: str
    params: Tuple[Any, ...] = ()

    @staticmethod
    def conjoin(parts: Sequence["Predicate"]) -> "Predicate":
        if not parts:
            return Predicate("")
        if len(parts) == 1:
            return parts[0]
        sql = " AND ".join(p.sql for p in parts)
        params: Tuple[Any, ...] = ()
        for p in parts:
            params += p.params
        return Predicate(sql, params)


@dataclass(frozen=True)
class Statement:
    """A compiled statement: SQL with ``?`` placeholders and its bound values."""

    sql: str
    params: Tuple[Any, ...] = ()
    operation: str = "select"
    table: str = ""
    mutates: bool = False


@dataclass(frozen=True)
class DriverMetadata:
    """Capability and version information reported by a driver."""

    name: str
    version: str
    engine: str
    engine_version: str
    is_async: bool
    supports_savepoints: bool = True
    supports_returning: bool = False
    databases: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "engine": self.engine,
            "engine_version": self.engine_version,
            "is_async": self.is_async,
            "supports_savepoints": self.supports_savepoints,
            "supports_returning": self.supports_returning,
            "databases": list(self.databases),
        }
