"""SQL Safety Gate.

Decides whether arbitrary (often LLM-generated) SQL is safe to run under a
strict read-only contract, then executes it with bounded rows and time.

Package Structure:
    core/       - Core infrastructure (config, pools, models, exceptions)
    security/   - Normalization, validation, identifier and limit enforcement
    backends/   - PostgreSQL and SQL Server adapters
    gateway.py  - SafetyGate orchestrating a request end to end
    main.py     - FastAPI transport
"""

from .backends import DatabaseAdapter, QueryPlan, QueryResult, create_adapter
from .core.config import BackendDescriptor, Dialect, Settings, get_settings
from .core.exceptions import (
    DatabaseError,
    GateError,
    IdentifierRejectedError,
    QueryValidationError,
)
from .gateway import GateResult, SafetyGate
from .security import (
    LimitOutcome,
    ValidationResult,
    enforce_limit,
    normalize_query,
    sanitize_identifier,
    validate_query,
)

__all__ = [
    "DatabaseAdapter",
    "QueryPlan",
    "QueryResult",
    "create_adapter",
    "BackendDescriptor",
    "Dialect",
    "Settings",
    "get_settings",
    "DatabaseError",
    "GateError",
    "IdentifierRejectedError",
    "QueryValidationError",
    "GateResult",
    "SafetyGate",
    "LimitOutcome",
    "ValidationResult",
    "enforce_limit",
    "normalize_query",
    "sanitize_identifier",
    "validate_query",
]
