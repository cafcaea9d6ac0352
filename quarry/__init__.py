"""
Quarry - Schema-aware data-access layer for SQLite

Complete integration of:
- Models: Typed table schemas, operator translation and SQL compilation
- Schema: Validated DDL with additive, idempotent re-definition
- Transactions: Nested savepoint frames with commit / rollback hooks
- DB: Reference-counted handles per logical database, read-only guards
- Drivers: Blocking (sqlite3) and async (aiosqlite) facades over one core
- Faults: Structured error handling with fault domains
- Config: Layered file / .env / environment configuration
"""

__version__ = "0.1.0"

# ============================================================================
# Drivers & ORM
# ============================================================================

from .drivers import DriverCore, SQLiteDriver, AsyncSQLiteDriver
from .orm import ORM, Model

# ============================================================================
# Configuration
# ============================================================================

from .config import ConfigLoader, ConnectionOptions, DriverConfig, MEMORY

# ============================================================================
# Model Types
# ============================================================================

from .models import (
    UNSET,
    DataType,
    ForeignKey,
    ColumnDefinition,
    IndexOptions,
    TableSchema,
    QueryOptions,
    AggregateFunction,
    AggregateOptions,
    BulkUpdateOptions,
    DriverMetadata,
    OperatorTranslator,
    QueryBuilder,
    SchemaManager,
    TransactionCoordinator,
    TransactionFrame,
    TransactionState,
    escape_like,
)

# ============================================================================
# Faults
# ============================================================================

from .faults import (
    Fault,
    FaultDomain,
    Severity,
    ConfigInvalidFault,
    ConfigMissingFault,
    ValidationFault,
    UnknownTableFault,
    UnknownColumnFault,
    UnknownOperatorFault,
    UnsupportedOperatorFault,
    InvalidSchemaFault,
    SchemaFault,
    SchemaConflictFault,
    IndexConflictFault,
    QueryFault,
    ConstraintViolationFault,
    TransactionFault,
    DatabaseConnectionFault,
    DatabaseNotFoundFault,
    ReadOnlyFault,
    ValidationError,
    UnknownColumnError,
    UnsupportedOperatorError,
    SchemaConflictError,
    IndexConflictError,
    ReadOnlyError,
    DatabaseNotFoundError,
    ConstraintViolationError,
    TransactionError,
)

__all__ = [
    "__version__",
    # Drivers & ORM
    "DriverCore",
    "SQLiteDriver",
    "AsyncSQLiteDriver",
    "ORM",
    "Model",
    # Configuration
    "ConfigLoader",
    "ConnectionOptions",
    "DriverConfig",
    "MEMORY",
    # Model types
    "UNSET",
    "DataType",
    "ForeignKey",
    "ColumnDefinition",
    "IndexOptions",
    "TableSchema",
    "QueryOptions",
    "AggregateFunction",
    "AggregateOptions",
    "BulkUpdateOptions",
    "DriverMetadata",
    "OperatorTranslator",
    "QueryBuilder",
    "SchemaManager",
    "TransactionCoordinator",
    "TransactionFrame",
    "TransactionState",
    "escape_like",
    # Faults
    "Fault",
    "FaultDomain",
    "Severity",
    "ConfigInvalidFault",
    "ConfigMissingFault",
    "ValidationFault",
    "UnknownTableFault",
    "UnknownColumnFault",
    "UnknownOperatorFault",
    "UnsupportedOperatorFault",
    "InvalidSchemaFault",
    "SchemaFault",
    "SchemaConflictFault",
    "IndexConflictFault",
    "QueryFault",
    "ConstraintViolationFault",
    "TransactionFault",
    "DatabaseConnectionFault",
    "DatabaseNotFoundFault",
    "ReadOnlyFault",
    "ValidationError",
    "UnknownColumnError",
    "UnsupportedOperatorError",
    "SchemaConflictError",
    "IndexConflictError",
    "ReadOnlyError",
    "DatabaseNotFoundError",
    "ConstraintViolationError",
    "TransactionError",
]
