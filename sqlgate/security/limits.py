"""Row-limit enforcement.

Both enforcers rewrite the original text (never the normalized copy), keep
every existing clause in place and are idempotent for a fixed ``max_rows``.
"""

from __future__ import annotations

from dataclasses import dataclass
import re
from typing import Callable

from ..core.config import Dialect
from .normalizer import leading_keyword, mask_literals, normalize_query

_LIMIT_NUMBER = re.compile(r"\b(LIMIT\s+)(\d+)\b", re.IGNORECASE)
_LIMIT_ALL = re.compile(r"\b(LIMIT\s+)ALL\b", re.IGNORECASE)
_TRAILING_LIMIT = re.compile(r"\s*\bLIMIT\s+(\d+)\s*;*\s*$", re.IGNORECASE)
_TOP_NUMBER = re.compile(r"\b(TOP\s*\(?\s*)(\d+)", re.IGNORECASE)
_SELECT_TOKEN = re.compile(r"\(|\)|\bSELECT\b(\s+DISTINCT\b)?", re.IGNORECASE)


@dataclass(frozen=True)
class LimitOutcome:
    query: str
    limit_applied: bool


def _check_max_rows(max_rows: int) -> None:
    if max_rows < 1:
        raise ValueError(f"max_rows must be positive, got {max_rows}")


def _is_row_returning(query: str) -> bool:
    return leading_keyword(normalize_query(query)) in ("SELECT", "WITH")


def _append_clause(query: str, clause: str) -> str:
    trimmed = query.rstrip().rstrip(";").rstrip()
    last_line = trimmed.rsplit("\n", 1)[-1]
    separator = "\n" if "--" in last_line else " "
    return f"{trimmed}{separator}{clause}"


def _clamp_numbers(query: str, masked: str, pattern: re.Pattern[str], max_rows: int) -> str:
    """Clamp group 2 of every ``pattern`` match found outside comments and literals."""
    pieces = []
    last = 0
    for match in pattern.finditer(masked):
        if int(match.group(2)) > max_rows:
            pieces.append(query[last:match.start(2)])
            pieces.append(str(max_rows))
            last = match.end(2)
    pieces.append(query[last:])
    return "".join(pieces)


def enforce_limit(query: str, max_rows: int) -> LimitOutcome:
    """Guarantee every LIMIT in ``query`` is at most ``max_rows``.

    - ``LIMIT n`` with n above the maximum: the literal is replaced in place
    - ``LIMIT ALL``: becomes ``LIMIT max_rows``
    - no LIMIT on a SELECT/WITH query: ``LIMIT max_rows`` is appended
    - other starters (EXPLAIN, SHOW, ...) are left alone

    LIMIT text inside comments or quoted literals is neither counted nor rewritten.
    """
    _check_max_rows(max_rows)

    masked = mask_literals(query)
    if _LIMIT_NUMBER.search(masked) or _LIMIT_ALL.search(masked):
        rewritten = _clamp_numbers(query, masked, _LIMIT_NUMBER, max_rows)
        # clamped numbers can change length, so mask the rewritten text again
        masked = mask_literals(rewritten)
        for match in reversed(list(_LIMIT_ALL.finditer(masked))):
            rewritten = rewritten[:match.start()] + f"{match.group(1)}{max_rows}" + rewritten[match.end():]
        return LimitOutcome(query=rewritten, limit_applied=rewritten != query)

    if leading_keyword(normalize_query(query)) in ("SELECT", "WITH"):
        return LimitOutcome(query=_append_clause(query, f"LIMIT {max_rows}"), limit_applied=True)

    return LimitOutcome(query=query, limit_applied=False)


def _first_top_level_select(masked: str) -> re.Match[str] | None:
    """First SELECT outside parentheses (the main query of a CTE)."""
    depth = 0
    for match in _SELECT_TOKEN.finditer(masked):
        token = match.group(0)
        if token == "(":
            depth += 1
        elif token == ")":
            depth = max(depth - 1, 0)
        elif depth == 0:
            return match
    return None


def _inject_top(sql: str, limit_val: int) -> str:
    match = _first_top_level_select(mask_literals(sql))
    if not match:
        return sql
    distinct = "DISTINCT " if match.group(1) else ""
    start, end = match.span()
    return sql[:start] + f"SELECT {distinct}TOP ({limit_val})" + sql[end:]


def enforce_top(query: str, max_rows: int) -> LimitOutcome:
    """SQL Server variant: bound rows with ``TOP`` instead of ``LIMIT``.

    A trailing ``LIMIT n`` is converted to ``TOP (n)`` on the outermost SELECT.
    TOP or LIMIT text inside comments or quoted literals is ignored.
    """
    _check_max_rows(max_rows)

    masked = mask_literals(query)
    if _TOP_NUMBER.search(masked):
        rewritten = _clamp_numbers(query, masked, _TOP_NUMBER, max_rows)
        return LimitOutcome(query=rewritten, limit_applied=rewritten != query)

    if not _is_row_returning(query):
        return LimitOutcome(query=query, limit_applied=False)

    limit_val = max_rows
    body = query.rstrip().rstrip(";").rstrip()
    trailing = _TRAILING_LIMIT.search(mask_literals(body))
    if trailing:
        limit_val = min(int(trailing.group(1)), max_rows)
        body = body[: trailing.start()]

    rewritten = _inject_top(body, limit_val)
    if rewritten == body:
        return LimitOutcome(query=query, limit_applied=False)
    return LimitOutcome(query=rewritten, limit_applied=True)


LimitEnforcer = Callable[[str, int], LimitOutcome]


def enforcer_for(dialect: Dialect | None) -> LimitEnforcer:
    if dialect is Dialect.MSSQL:
        return enforce_top
    return enforce_limit
