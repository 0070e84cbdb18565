"""Read-only SQL validation.

Classification is lexical: comments are stripped and the text is scanned for
blocked keywords, functions and structural patterns. Every check runs and
errors accumulate, so a caller (or an upstream LLM) sees everything it has to
fix in one pass.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import re

from ..core.exceptions import QueryValidationError
from .blocklists import DEFAULT_RULES, BlockedCategory, DialectRules
from .normalizer import is_blank, leading_keyword, normalize_query

_module_logger = logging.getLogger(__name__)

DEFAULT_MAX_QUERY_LENGTH = 50000

_QUOTED_LITERAL = re.compile(r"'(?:[^']|'')*'")
_LIMIT_CLAUSE = re.compile(r"\bLIMIT\s+(\d+|ALL)\b")
_TOP_CLAUSE = re.compile(r"\bTOP\s*\(?\s*\d+")
_SELECT_STAR = re.compile(r"\bSELECT\s+(DISTINCT\s+)?\*")


@dataclass(frozen=True)
class ValidationResult:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict[str, object]:
        return {
            "is_valid": self.is_valid,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
        }


def count_statements(normalized: str) -> int:
    """Number of non-empty ``;``-separated segments, ignoring quoted literals."""
    without_literals = _QUOTED_LITERAL.sub("''", normalized)
    return len([s for s in without_literals.split(";") if s.strip()])


def _check_starter(normalized: str, rules: DialectRules) -> str | None:
    first = leading_keyword(normalized)
    if first in rules.allowed_starters:
        return None
    return (
        f"Query must start with one of: {', '.join(rules.allowed_starters)}. "
        f"Got: {first or 'empty'} ({BlockedCategory.DISALLOWED_STARTER.label})"
    )


def _collect_warnings(normalized: str, rules: DialectRules) -> list[str]:
    warnings = []
    has_limit = bool(_LIMIT_CLAUSE.search(normalized))
    if rules.accepts_top and _TOP_CLAUSE.search(normalized):
        has_limit = True
    if not has_limit and leading_keyword(normalized) in ("SELECT", "WITH"):
        warnings.append("Query does not include a LIMIT clause - results will be capped at the row limit")
    if _SELECT_STAR.search(normalized):
        warnings.append("Using SELECT * may retrieve more data than necessary")
    return warnings


def validate_query(
    query: str,
    max_length: int = DEFAULT_MAX_QUERY_LENGTH,
    *,
    rules: DialectRules = DEFAULT_RULES,
    logger: logging.Logger | None = None,
) -> ValidationResult:
    """Validate a SQL query for read-only compliance.

    Never raises for malformed input; the verdict carries every problem found.

    Args:
        query: Raw SQL text as supplied by the caller
        max_length: Maximum accepted length in characters
        rules: Dialect keyword/function/pattern tables
        logger: Logger for rejection diagnostics

    Returns:
        ValidationResult with ordered errors and warnings
    """
    log = logger or _module_logger

    if is_blank(query):
        return ValidationResult(errors=["Query cannot be empty"])

    if len(query) > max_length:
        return ValidationResult(errors=[f"Query exceeds maximum length of {max_length} characters"])

    normalized = normalize_query(query)
    raw_upper = query.upper()
    errors: list[str] = []

    starter_error = _check_starter(normalized, rules)
    if starter_error:
        errors.append(starter_error)

    for category, keyword in rules.blocked_keywords(normalized):
        errors.append(f"Blocked keyword detected: {keyword} ({category.label})")

    for function in rules.blocked_functions(normalized):
        errors.append(
            f"Blocked function detected: {function} ({BlockedCategory.DANGEROUS_FUNCTION.label})"
        )

    for pattern in rules.dangerous_patterns(raw_upper):
        errors.append(f"Dangerous SQL pattern detected: {pattern.description} ({pattern.category.label})")

    if count_statements(normalized) > 1:
        errors.append(
            f"Multiple SQL statements are not allowed ({BlockedCategory.MULTIPLE_STATEMENTS.label})"
        )

    warnings = _collect_warnings(normalized, rules)

    if errors:
        log.warning(f"Query validation failed ({rules.name}): {errors} | query: {query[:100]!r}")

    return ValidationResult(errors=errors, warnings=warnings)


def validate_query_or_raise(
    query: str,
    max_length: int = DEFAULT_MAX_QUERY_LENGTH,
    *,
    rules: DialectRules = DEFAULT_RULES,
    logger: logging.Logger | None = None,
) -> ValidationResult:
    """Validate and raise QueryValidationError carrying every violation if invalid."""
    log = logger or _module_logger
    result = validate_query(query, max_length, rules=rules, logger=log)

    if not result.is_valid:
        raise QueryValidationError(
            f"Query validation failed: {', '.join(result.errors)}",
            result.errors,
            result.warnings,
        )

    if result.warnings:
        log.info(f"Query validation warnings: {result.warnings}")

    return result
