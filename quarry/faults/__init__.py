"""
Quarry Faults - typed fault signals for the data-access layer.

Errors in Quarry are NOT just exceptions — they are **typed fault signals**
carrying a stable code, a domain, a severity and metadata describing where
they happened (database, table, column, operator, SQL).

Core exports:
- Fault: Base fault class
- FaultDomain: Domain enumeration
- Severity: Severity levels
- Concrete faults for configuration, validation, schema, query,
  constraint, transaction and storage failures
"""

from .core import (
    Fault,
    FaultDomain,
    Severity,
    DOMAIN_DEFAULTS,
)

from .domains import (
    ConfigFault,
    ConfigMissingFault,
    ConfigInvalidFault,
    ModelFault,
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
)

# ── Error-style aliases ──────────────────────────────────────────────────────
ValidationError = ValidationFault
UnknownColumnError = UnknownColumnFault
UnsupportedOperatorError = UnsupportedOperatorFault
SchemaConflictError = SchemaConflictFault
IndexConflictError = IndexConflictFault
ReadOnlyError = ReadOnlyFault
DatabaseNotFoundError = DatabaseNotFoundFault
ConstraintViolationError = ConstraintViolationFault
TransactionError = TransactionFault

__all__ = [
    # Core types
    "Fault",
    "FaultDomain",
    "Severity",
    "DOMAIN_DEFAULTS",

    # Config
    "ConfigFault",
    "ConfigMissingFault",
    "ConfigInvalidFault",

    # Model
    "ModelFault",
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

    # IO
    "DatabaseConnectionFault",
    "DatabaseNotFoundFault",
    "ReadOnlyFault",

    # Aliases
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
