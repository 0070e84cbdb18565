"""Custom exceptions for the SQL safety gate.

Every error surfaced to a caller carries a stable ``kind`` tag. Transports map
the tag onto their own status codes, so the mapping lives here and nowhere else.
"""

from __future__ import annotations

from typing import Any


class GateError(Exception):
    """Base class for all errors raised by the gate."""

    kind = "internal_error"
    status_code = 500

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_code": self.kind,
            "message": self.message,
            "details": self.details or None,
        }


class QueryValidationError(GateError):
    """Raised when a query fails read-only validation (opt-in, see validate_query_or_raise)."""

    kind = "validation_failure"
    status_code = 400

    def __init__(self, message: str, violations: list[str], warnings: list[str] | None = None) -> None:
        super().__init__(message, {"violations": list(violations), "warnings": list(warnings or [])})
        self.violations = list(violations)
        self.warnings = list(warnings or [])


class IdentifierRejectedError(GateError):
    """Raised when a schema/table name contains characters outside [A-Za-z0-9_.]."""

    kind = "identifier_rejected"
    status_code = 400

    def __init__(self, identifier: str) -> None:
        super().__init__(f"Invalid identifier: {identifier!r}", {"identifier": identifier})
        self.identifier = identifier


class ConfigurationError(GateError):
    """Raised when backend or gate configuration is incomplete or malformed."""

    kind = "configuration_error"
    status_code = 500


class BackendNotFoundError(GateError):
    """Raised when a caller names a backend that is not configured."""

    kind = "backend_not_found"
    status_code = 404

    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown backend: {name}", {"backend": name})


class DatabaseError(GateError):
    """Raised when a database operation fails."""

    kind = "database_error"
    status_code = 500

    def __init__(self, message: str, dialect: str | None = None, details: dict[str, Any] | None = None) -> None:
        merged = dict(details or {})
        if dialect:
            merged["dialect"] = dialect
        super().__init__(message, merged)
        self.dialect = dialect


class DatabaseConnectionError(DatabaseError):
    """Connection could not be established or was lost. Callers may retry with backoff."""

    kind = "connection_failure"
    status_code = 503


class QueryExecutionError(DatabaseError):
    """The backend rejected a statement that passed validation. Not retried automatically."""

    kind = "execution_failure"
    status_code = 422


class QueryTimeoutError(DatabaseError):
    """The statement exceeded its command timeout."""

    kind = "timeout"
    status_code = 408

    def __init__(self, message: str, timeout_seconds: float, dialect: str | None = None) -> None:
        super().__init__(message, dialect, {"timeout_seconds": timeout_seconds})
        self.timeout_seconds = timeout_seconds


class QueryCancelledError(DatabaseError):
    """The caller cancelled the statement while it was running."""

    kind = "cancelled"
    status_code = 499
