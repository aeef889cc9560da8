"""
Error taxonomy for the generic table surface.

Every failure leaves the core as one of these typed exceptions; raw engine
text is kept out of ``message`` so UI layers can render it directly.
"""

import enum
from typing import Any, Dict, List, Optional, Sequence

from loguru import logger
from sqlalchemy import exc as sa_exc


class TableGateError(Exception):
    """Base class for every error raised by the core"""

    code = "tablegate_error"
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "message": self.message, "details": self.details}


class PermissionDenied(TableGateError):
    code = "permission_denied"
    status_code = 403


class DatabaseNotAllowed(PermissionDenied):
    code = "database_not_allowed"

    def __init__(self, database: str):
        super().__init__(
            f"Database '{database}' is not available through this service",
            {"database": database},
        )


class SchemaNotFound(TableGateError):
    code = "schema_not_found"
    status_code = 404

    def __init__(self, database: str, table: str):
        super().__init__(
            f"Table '{table}' does not exist in database '{database}'",
            {"database": database, "table": table},
        )


class UnknownColumn(TableGateError):
    code = "unknown_column"
    status_code = 400

    def __init__(self, table: str, columns: Sequence[str]):
        self.columns = sorted(columns)
        super().__init__(
            f"Unknown column(s) for table '{table}': {', '.join(self.columns)}",
            {"table": table, "columns": self.columns},
        )


class InvalidKey(TableGateError):
    code = "invalid_key"
    status_code = 400

    def __init__(self, message: str, missing: Sequence[str] = (), unexpected: Sequence[str] = ()):
        self.missing = sorted(missing)
        self.unexpected = sorted(unexpected)
        super().__init__(message, {"missing": self.missing, "unexpected": self.unexpected})


class ValidationFailed(TableGateError):
    code = "validation_failed"
    status_code = 422

    def __init__(self, errors: List[Dict[str, str]]):
        self.errors = errors
        super().__init__(
            f"Record failed {len(errors)} validation rule(s)",
            {"errors": errors},
        )


class ConstraintKind(str, enum.Enum):
    check = "check"
    not_null = "not_null"
    foreign_key = "foreign_key"
    length = "length"
    data_type = "data_type"
    unique = "unique"


_CONSTRAINT_MESSAGES = {
    ConstraintKind.check: "The data does not satisfy a check constraint of the table.",
    ConstraintKind.not_null: "A required field cannot be null.",
    ConstraintKind.foreign_key: "The data references, or is referenced by, a row in another table.",
    ConstraintKind.length: "A value exceeds the maximum length allowed for its field.",
    ConstraintKind.data_type: "A value is not compatible with the type of its field.",
    ConstraintKind.unique: "A row with the same primary or unique key already exists.",
}


class ConstraintViolation(TableGateError):
    code = "constraint_violation"
    status_code = 409

    def __init__(self, kind: ConstraintKind, operation: str, table: str):
        self.kind = kind
        super().__init__(
            _CONSTRAINT_MESSAGES[kind],
            {"kind": kind.value, "operation": operation, "table": table},
        )


class ResourceExhausted(TableGateError):
    code = "resource_exhausted"
    status_code = 503


class RecordNotFound(TableGateError):
    code = "record_not_found"
    status_code = 404


class InvalidRequest(TableGateError):
    code = "invalid_request"
    status_code = 400


class ActivationNotFound(TableGateError):
    code = "activation_not_found"
    status_code = 404

    def __init__(self, database: str, table: str):
        super().__init__(
            f"Table {database}.{table} is not activated",
            {"database": database, "table": table},
        )


class ExecutionFailed(TableGateError):
    code = "execution_failed"
    status_code = 500


# Native codes per driver: MySQL errno, SQL Server error number, PostgreSQL SQLSTATE.
_NATIVE_CODES = {
    1451: ConstraintKind.foreign_key,
    1452: ConstraintKind.foreign_key,
    1216: ConstraintKind.foreign_key,
    1217: ConstraintKind.foreign_key,
    1048: ConstraintKind.not_null,
    1364: ConstraintKind.not_null,
    3819: ConstraintKind.check,
    1406: ConstraintKind.length,
    1264: ConstraintKind.data_type,
    1265: ConstraintKind.data_type,
    1292: ConstraintKind.data_type,
    1366: ConstraintKind.data_type,
    1062: ConstraintKind.unique,
    515: ConstraintKind.not_null,
    8152: ConstraintKind.length,
    2628: ConstraintKind.length,
    245: ConstraintKind.data_type,
    8114: ConstraintKind.data_type,
    241: ConstraintKind.data_type,
    2627: ConstraintKind.unique,
    2601: ConstraintKind.unique,
    "23503": ConstraintKind.foreign_key,
    "23502": ConstraintKind.not_null,
    "23514": ConstraintKind.check,
    "22001": ConstraintKind.length,
    "22P02": ConstraintKind.data_type,
    "22007": ConstraintKind.data_type,
    "22008": ConstraintKind.data_type,
    "23505": ConstraintKind.unique,
}

_MESSAGE_PATTERNS = (
    ("foreign key", ConstraintKind.foreign_key),
    ("check constraint", ConstraintKind.check),
    ("not null", ConstraintKind.not_null),
    ("cannot insert the value null", ConstraintKind.not_null),
    ("cannot be null", ConstraintKind.not_null),
    ("null value", ConstraintKind.not_null),
    ("would be truncated", ConstraintKind.length),
    ("data too long", ConstraintKind.length),
    ("value too long", ConstraintKind.length),
    ("conversion failed", ConstraintKind.data_type),
    ("datatype mismatch", ConstraintKind.data_type),
    ("data type", ConstraintKind.data_type),
    ("incorrect", ConstraintKind.data_type),
    ("invalid input syntax", ConstraintKind.data_type),
    ("unique constraint", ConstraintKind.unique),
    ("duplicate", ConstraintKind.unique),
    ("primary key", ConstraintKind.unique),
)


def _native_code(orig: Any) -> Any:
    pgcode = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if pgcode:
        return pgcode
    args = getattr(orig, "args", ())
    if args and isinstance(args[0], int):
        return args[0]
    return None


def constraint_kind_for(error: sa_exc.DBAPIError) -> Optional[ConstraintKind]:
    orig = error.orig
    code = _native_code(orig)
    # SQL Server reports both check and foreign-key failures as 547
    if code == 547:
        return ConstraintKind.foreign_key if "foreign key" in str(orig).lower() else ConstraintKind.check
    if code in _NATIVE_CODES:
        return _NATIVE_CODES[code]

    text = str(orig).lower()
    for pattern, kind in _MESSAGE_PATTERNS:
        if pattern in text:
            return kind
    if isinstance(error, sa_exc.DataError):
        return ConstraintKind.data_type
    return None


def classify_engine_error(error: Exception, operation: str, table: str) -> TableGateError:
    """Translate an exception raised by the underlying engine into the taxonomy."""
    if isinstance(error, TableGateError):
        return error
    if isinstance(error, sa_exc.TimeoutError):
        return ResourceExhausted(
            "Timed out waiting for a database connection",
            {"operation": operation, "table": table},
        )
    if isinstance(error, (sa_exc.IntegrityError, sa_exc.DataError)):
        kind = constraint_kind_for(error)
        if kind is not None:
            logger.warning(f"{operation} on {table} rejected by the engine ({kind.value}): {error.orig}")
            return ConstraintViolation(kind, operation, table)

    logger.error(f"Unclassified engine error during {operation} on {table}: {error}")
    return ExecutionFailed(
        f"The database could not complete the {operation} operation",
        {"operation": operation, "table": table},
    )
