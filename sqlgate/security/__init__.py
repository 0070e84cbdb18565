"""Security and validation module.

Contains normalization, read-only validation, identifier sanitization and
row-limit enforcement. Everything here is pure and safe to call concurrently.
"""

from .blocklists import (
    DEFAULT_RULES,
    MSSQL_RULES,
    POSTGRES_RULES,
    BlockedCategory,
    DialectRules,
    load_rules_file,
    rules_for,
)
from .identifiers import sanitize_identifier, split_qualified_name
from .limits import LimitOutcome, enforce_limit, enforce_top, enforcer_for
from .normalizer import normalize_query
from .sql_validator import ValidationResult, validate_query, validate_query_or_raise

__all__ = [
    "DEFAULT_RULES",
    "MSSQL_RULES",
    "POSTGRES_RULES",
    "BlockedCategory",
    "DialectRules",
    "load_rules_file",
    "rules_for",
    "sanitize_identifier",
    "split_qualified_name",
    "LimitOutcome",
    "enforce_limit",
    "enforce_top",
    "enforcer_for",
    "normalize_query",
    "ValidationResult",
    "validate_query",
    "validate_query_or_raise",
]
