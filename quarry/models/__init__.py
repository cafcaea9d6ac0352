"""
Quarry Models — execution-agnostic core.

Everything in this package is pure: schema validation and DDL planning,
operator translation, statement compilation and transaction planning. None
of it performs I/O, so both drivers share it unchanged.
"""

from .types import (
    UNSET,
    DataType,
    JSON_TYPES,
    ForeignKey,
    ColumnDefinition,
    IndexOptions,
    TableSchema,
    QueryOptions,
    AggregateFunction,
    AggregateOptions,
    BulkUpdateOptions,
    Predicate,
    Statement,
    DriverMetadata,
)
from .lookups import OperatorTranslator, escape_like, quote_ident, lookup_registry
from .sql_builder import QueryBuilder
from .schema import SchemaManager, SchemaPlan, IndexSpec
from .transactions import TransactionCoordinator, TransactionFrame, TransactionState

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
    "OperatorTranslator",
    "escape_like",
    "quote_ident",
    "lookup_registry",
    "QueryBuilder",
    "SchemaManager",
    "SchemaPlan",
    "IndexSpec",
    "TransactionCoordinator",
    "TransactionFrame",
    "TransactionState",
]
