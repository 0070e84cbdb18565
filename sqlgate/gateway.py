"""Safety gate: validate, bound and execute one query against a backend.

Lifecycle of a request: Received -> Normalized -> Validated -> LimitEnforced
-> Executed. Any failure before Executed returns an error without touching the
database.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import threading
from typing import Any, Optional

from .backends.base import DatabaseAdapter, QueryPlan, QueryResult
from .core.config import Dialect, Settings
from .core.exceptions import QueryValidationError
from .security.blocklists import DialectRules, load_rules_file, rules_for
from .security.identifiers import sanitize_identifier
from .security.limits import LimitOutcome, enforcer_for
from .security.normalizer import leading_keyword, normalize_query
from .security.sql_validator import ValidationResult, validate_query, validate_query_or_raise


@dataclass
class GateResult:
    result: QueryResult
    validation: ValidationResult
    limit_applied: bool
    query: str

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.result.to_dict(),
            "limit_applied": self.limit_applied,
            "query": self.query,
            "warnings": list(self.validation.warnings),
        }


class SafetyGate:
    """Stateless orchestrator over the security components and a backend adapter.

    Rule tables are resolved once at construction (built-ins, optionally
    extended from ``settings.blocklist_path``) and shared read-only afterwards.
    """

    def __init__(self, settings: Settings, logger: Optional[logging.Logger] = None) -> None:
        self.settings = settings
        self.logger = logger or logging.getLogger(__name__)
        self._rules: dict[Optional[Dialect], DialectRules] = {}
        for dialect in (None, *Dialect):
            rules = rules_for(dialect)
            if settings.blocklist_path:
                rules = load_rules_file(settings.blocklist_path, rules)
            self._rules[dialect] = rules

    def rules(self, dialect: Optional[Dialect] = None) -> DialectRules:
        return self._rules[dialect]

    def validate(self, query: str, dialect: Optional[Dialect] = None) -> ValidationResult:
        return validate_query(
            query,
            self.settings.max_query_length,
            rules=self.rules(dialect),
            logger=self.logger,
        )

    def enforce_limit(
        self, query: str, max_rows: Optional[int] = None, dialect: Optional[Dialect] = None
    ) -> LimitOutcome:
        return enforcer_for(dialect)(query, self.settings.clamp_rows(max_rows))

    def sanitize_identifier(self, identifier: str) -> str:
        return sanitize_identifier(identifier)

    def run(
        self,
        adapter: DatabaseAdapter,
        query: str,
        max_rows: Optional[int] = None,
        timeout: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> GateResult:
        """Validate, limit and execute ``query`` on ``adapter``.

        Raises:
            QueryValidationError: the query is not read-only; nothing is executed
            DatabaseError: connection, execution, timeout or cancellation failure
        """
        validation = validate_query_or_raise(
            query,
            self.settings.max_query_length,
            rules=self.rules(adapter.dialect),
            logger=self.logger,
        )

        row_cap = self.settings.clamp_rows(max_rows)
        effective_timeout = self.settings.clamp_timeout(timeout)
        outcome = adapter.enforce_limit(query, row_cap)
        if outcome.limit_applied:
            self.logger.info(f"Row limit {row_cap} applied for {adapter.descriptor.name}")

        result = adapter.execute_query(outcome.query, row_cap, effective_timeout, cancel_event)
        return GateResult(
            result=result,
            validation=validation,
            limit_applied=outcome.limit_applied,
            query=outcome.query,
        )

    def explain(self, adapter: DatabaseAdapter, query: str) -> QueryPlan:
        """Validate ``query`` and return its estimated execution plan."""
        validate_query_or_raise(
            query,
            self.settings.max_query_length,
            rules=self.rules(adapter.dialect),
            logger=self.logger,
        )
        # EXPLAIN (FORMAT JSON) and SHOWPLAN_XML wrap a plain row query
        starter = leading_keyword(normalize_query(query))
        if starter not in ("SELECT", "WITH"):
            message = f"Only SELECT or WITH queries can be explained, got {starter or 'empty query'}"
            self.logger.warning(f"Plan request rejected: {message}")
            raise QueryValidationError(message, [message])
        return adapter.get_query_plan(query)
