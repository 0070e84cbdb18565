"""Core infrastructure module.

Contains configuration, connection pools, request models and exceptions.
"""

from .config import (
    BackendDescriptor,
    Dialect,
    Settings,
    clear_settings_cache,
    get_cached_settings,
    get_settings,
    parse_connection_string,
)
from .db import (
    ConnectionPool,
    OdbcConnectionPool,
    PostgresConnectionPool,
    create_pool,
    normalize_value,
)
from .exceptions import (
    BackendNotFoundError,
    ConfigurationError,
    DatabaseConnectionError,
    DatabaseError,
    GateError,
    IdentifierRejectedError,
    QueryCancelledError,
    QueryExecutionError,
    QueryTimeoutError,
    QueryValidationError,
)

__all__ = [
    # Config
    "BackendDescriptor",
    "Dialect",
    "Settings",
    "clear_settings_cache",
    "get_cached_settings",
    "get_settings",
    "parse_connection_string",
    # Pools
    "ConnectionPool",
    "OdbcConnectionPool",
    "PostgresConnectionPool",
    "create_pool",
    "normalize_value",
    # Exceptions
    "BackendNotFoundError",
    "ConfigurationError",
    "DatabaseConnectionError",
    "DatabaseError",
    "GateError",
    "IdentifierRejectedError",
    "QueryCancelledError",
    "QueryExecutionError",
    "QueryTimeoutError",
    "QueryValidationError",
]
