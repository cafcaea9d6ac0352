"""
Quarry Faults - Domain-specific fault types.

Provides concrete fault classes for each domain:
- CONFIG faults
- MODEL faults (validation, schema, query, constraint, transaction)
- IO faults (connection, missing file, read-only storage)
"""

from typing import Any, Optional, Sequence
from .core import Fault, FaultDomain, Severity


# ============================================================================
# CONFIG Faults
# ============================================================================

class ConfigFault(Fault):
    """Base class for configuration faults."""

    def __init__(
        self,
        code: str,
        message: str,
        *,
        severity: Severity = Severity.FATAL,
        metadata: Optional[dict[str, Any]] = None,
    ):
        super().__init__(
            code=code,
            message=message,
            domain=FaultDomain.CONFIG,
            severity=severity,
            retryable=False,
            public=False,
            metadata=metadata,
        )


class ConfigMissingFault(ConfigFault):
    """Required configuration key missing."""

    def __init__(self, key: str, **kwargs):
        super().__init__(
            code="CONFIG_MISSING",
            message=f"Required configuration key missing: {key}",
            metadata={"key": key, **kwargs.get("metadata", {})},
        )


class ConfigInvalidFault(ConfigFault):
    """Configuration value failed validation."""

    def __init__(self, key: str, reason: str, **kwargs):
        super().__init__(
            code="CONFIG_INVALID",
            message=f"Invalid configuration for '{key}': {reason}",
            metadata={"key": key, "reason": reason, **kwargs.get("metadata", {})},
        )


# ============================================================================
# MODEL Faults (schema / query / transaction)
# ============================================================================

class ModelFault(Fault):
    """Base class for model and database faults."""

    def __init__(
        self,
        code: str,
        message: str,
        *,
        severity: Severity = Severity.ERROR,
        retryable: bool = False,
        public: bool = False,
        metadata: Optional[dict[str, Any]] = None,
    ):
        super().__init__(
            code=code,
            message=message,
            domain=FaultDomain.MODEL,
            severity=severity,
            retryable=retryable,
            public=public,
            metadata=metadata,
        )


class ValidationFault(ModelFault):
    """A descriptor or schema was rejected before reaching the engine."""

    def __init__(self, table: str, reason: str, *, code: str = "VALIDATION_FAILED", **kwargs):
        super().__init__(
            code=code,
            message=f"Invalid request for '{table}': {reason}",
            public=True,
            metadata={"table": table, "reason": reason, **kwargs.get("metadata", {})},
        )


class UnknownTableFault(ValidationFault):
    """Table has not been defined on this logical database."""

    def __init__(self, database: str, table: str, **kwargs):
        super().__init__(
            table,
            f"table is not defined in database '{database}'; call define() first",
            code="UNKNOWN_TABLE",
            metadata={"database": database, **kwargs.get("metadata", {})},
        )


class UnknownColumnFault(ValidationFault):
    """Descriptor references a column the schema does not declare."""

    def __init__(self, table: str, column: str, **kwargs):
        super().__init__(
            table,
            f"unknown column '{column}'",
            code="UNKNOWN_COLUMN",
            metadata={"column": column, **kwargs.get("metadata", {})},
        )


class UnknownOperatorFault(ValidationFault):
    """Where-condition uses an operator outside the closed operator set."""

    def __init__(self, table: str, column: str, operator: str, available: Sequence[str] = (), **kwargs):
        super().__init__(
            table,
            f"unknown operator '{operator}' on column '{column}'. "
            f"Available: {sorted(available)}",
            code="UNKNOWN_OPERATOR",
            metadata={"column": column, "operator": operator, **kwargs.get("metadata", {})},
        )


class UnsupportedOperatorFault(ValidationFault):
    """Operator exists but is not defined for the column's data type."""

    def __init__(self, table: str, column: str, operator: str, data_type: str, **kwargs):
        super().__init__(
            table,
            f"operator '{operator}' is not supported on {data_type} column '{column}'",
            code="UNSUPPORTED_OPERATOR",
            metadata={
                "column": column,
                "operator": operator,
                "data_type": data_type,
                **kwargs.get("metadata", {}),
            },
        )


class InvalidSchemaFault(ValidationFault):
    """Table schema violates a column or table invariant."""

    def __init__(self, table: str, reason: str, **kwargs):
        super().__init__(
            table,
            reason,
            code="INVALID_SCHEMA",
            metadata=kwargs.get("metadata", {}),
        )


class SchemaFault(ModelFault):
    """Schema creation or alteration failed."""

    def __init__(self, table: str, reason: str, *, code: str = "SCHEMA_FAULT", **kwargs):
        super().__init__(
            code=code,
            message=f"Schema error for table '{table}': {reason}",
            severity=Severity.FATAL,
            metadata={"table": table, "reason": reason, **kwargs.get("metadata", {})},
        )


class SchemaConflictFault(SchemaFault):
    """Re-definition of a known table is not compatible with its current shape."""

    def __init__(self, table: str, conflicts: Sequence[str], **kwargs):
        super().__init__(
            table,
            "incompatible re-definition: " + "; ".join(conflicts),
            code="SCHEMA_CONFLICT",
            metadata={"conflicts": list(conflicts), **kwargs.get("metadata", {})},
        )


class IndexConflictFault(SchemaFault):
    """Index name already used with a different definition."""

    def __init__(self, table: str, index: str, reason: str, **kwargs):
        super().__init__(
            table,
            f"index '{index}' conflicts: {reason}",
            code="INDEX_CONFLICT",
            metadata={"index": index, **kwargs.get("metadata", {})},
        )


class QueryFault(ModelFault):
    """Query execution failed in the engine."""

    def __init__(self, table: str, operation: str, reason: str, **kwargs):
        super().__init__(
            code="QUERY_FAILED",
            message=f"Query on '{table}' ({operation}) failed: {reason}",
            retryable=True,
            metadata={"table": table, "operation": operation, "reason": reason, **kwargs.get("metadata", {})},
        )


class ConstraintViolationFault(ModelFault):
    """Engine rejected a write because of a unique, not-null, check or foreign-key constraint."""

    def __init__(self, table: str, operation: str, reason: str, **kwargs):
        super().__init__(
            code="CONSTRAINT_VIOLATION",
            message=f"Constraint violated on '{table}' ({operation}): {reason}",
            public=True,
            metadata={"table": table, "operation": operation, "reason": reason, **kwargs.get("metadata", {})},
        )


class TransactionFault(ModelFault):
    """Transaction could not begin, commit or roll back."""

    def __init__(self, database: str, reason: str, **kwargs):
        super().__init__(
            code="TRANSACTION_FAILED",
            message=f"Transaction on '{database}' failed: {reason}",
            metadata={"database": database, "reason": reason, **kwargs.get("metadata", {})},
        )


# ============================================================================
# IO Faults (storage handles)
# ============================================================================

class DatabaseConnectionFault(Fault):
    """Database handle could not be opened or closed."""

    def __init__(self, database: str, reason: str, *, code: str = "DB_CONNECTION_FAILED", **kwargs):
        super().__init__(
            code=code,
            message=f"Database connection failed ({database}): {reason}",
            domain=FaultDomain.IO,
            severity=Severity.FATAL,
            retryable=kwargs.get("retryable", True),
            metadata={"database": database, "reason": reason, **kwargs.get("metadata", {})},
        )


class DatabaseNotFoundFault(DatabaseConnectionFault):
    """Database file is absent and the handle may not create it."""

    def __init__(self, database: str, path: str, **kwargs):
        super().__init__(
            database,
            f"file '{path}' does not exist",
            code="DATABASE_NOT_FOUND",
            retryable=False,
            metadata={"path": path, **kwargs.get("metadata", {})},
        )


class ReadOnlyFault(Fault):
    """Mutating operation attempted on a read-only logical database."""

    def __init__(self, database: str, operation: str, **kwargs):
        super().__init__(
            code="READ_ONLY",
            message=f"Database '{database}' is read-only; refusing {operation}",
            domain=FaultDomain.IO,
            severity=Severity.ERROR,
            retryable=False,
            public=True,
            metadata={"database": database, "operation": operation, **kwargs.get("metadata", {})},
        )
