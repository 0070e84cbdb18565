"""Unit tests for the SQL validator module."""

from __future__ import annotations

import pytest

from sqlgate.core.exceptions import QueryValidationError
from sqlgate.security.blocklists import DEFAULT_RULES, MSSQL_RULES, POSTGRES_RULES
from sqlgate.security.sql_validator import (
    ValidationResult,
    count_statements,
    validate_query,
    validate_query_or_raise,
)

ALL_RULES = [POSTGRES_RULES, MSSQL_RULES, DEFAULT_RULES]


def _keyword_cases():
    for rules in ALL_RULES:
        for words in rules.keywords.values():
            for keyword in words:
                yield pytest.param(rules, keyword, id=f"{rules.name}-{keyword}")


def _function_cases():
    for rules in ALL_RULES:
        for name in rules.functions:
            yield pytest.param(rules, name, id=f"{rules.name}-{name}")


class TestValidationResult:
    """Tests for the ValidationResult value."""

    def test_valid_iff_no_errors(self):
        assert ValidationResult().is_valid
        assert ValidationResult(warnings=["w"]).is_valid
        assert not ValidationResult(errors=["e"]).is_valid

    def test_to_dict(self):
        assert ValidationResult(errors=["e"], warnings=["w"]).to_dict() == {
            "is_valid": False,
            "errors": ["e"],
            "warnings": ["w"],
        }


class TestValidateQuery:
    """Tests for validate_query function."""

    def test_select_star_without_limit(self):
        """SELECT * without LIMIT is valid but warned about twice."""
        result = validate_query("SELECT * FROM customers")
        assert result.is_valid
        assert any("LIMIT" in w for w in result.warnings)
        assert any("SELECT *" in w for w in result.warnings)

    def test_delete_rejected(self):
        """DELETE is rejected and named in the errors."""
        result = validate_query("DELETE FROM customers")
        assert not result.is_valid
        assert any("DELETE" in e for e in result.errors)

    def test_stacked_drop_rejected(self):
        """A trailing DROP yields both a multiple-statements and a DROP error."""
        result = validate_query("SELECT 1; DROP TABLE x;")
        assert not result.is_valid
        assert any("Multiple SQL statements" in e for e in result.errors)
        assert any("DROP" in e for e in result.errors)

    def test_clean_query_has_no_warnings(self):
        result = validate_query("SELECT id, name FROM customers WHERE id = 1 LIMIT 10")
        assert result.is_valid
        assert result.warnings == []

    @pytest.mark.parametrize("query", ["", "   ", "\n"])
    def test_empty_query(self, query):
        result = validate_query(query)
        assert result.errors == ["Query cannot be empty"]

    def test_query_too_long(self):
        result = validate_query("SELECT 1 FROM t", max_length=5)
        assert not result.is_valid
        assert "maximum length of 5" in result.errors[0]

    @pytest.mark.parametrize(
        "query",
        [
            "WITH recent AS (SELECT id FROM orders) SELECT id FROM recent LIMIT 5",
            "EXPLAIN SELECT id FROM orders",
            "SHOW search_path",
            "DESCRIBE orders",
            "select id from orders limit 5",
        ],
    )
    def test_allowed_starters(self, query):
        assert validate_query(query).is_valid

    @pytest.mark.parametrize("rules", ALL_RULES, ids=lambda r: r.name)
    @pytest.mark.parametrize(
        "query",
        [
            "INSERT INTO t VALUES (1)",
            "UPDATE t SET a = 1",
            "DELETE FROM t",
            "DROP TABLE t",
            "CREATE TABLE t (id int)",
            "ALTER TABLE t ADD c int",
            "TRUNCATE TABLE t",
            "GRANT SELECT ON t TO bob",
            "REVOKE SELECT ON t FROM bob",
        ],
    )
    def test_mutating_statements_rejected(self, rules, query):
        """Every mutating starter is rejected under every dialect."""
        result = validate_query(query, rules=rules)
        assert not result.is_valid
        assert any("Query must start with one of" in e for e in result.errors)

    @pytest.mark.parametrize("rules, keyword", list(_keyword_cases()))
    def test_blocked_keyword_named_in_error(self, rules, keyword):
        """A blocked keyword anywhere as a whole word invalidates the query."""
        result = validate_query(f"SELECT a FROM t WHERE {keyword} = 1", rules=rules)
        assert not result.is_valid
        assert any(f"Blocked keyword detected: {keyword}" in e for e in result.errors)

    @pytest.mark.parametrize("rules, name", list(_function_cases()))
    def test_blocked_function_named_in_error(self, rules, name):
        result = validate_query(f"SELECT {name}('x')", rules=rules)
        assert not result.is_valid
        assert any(f"Blocked function detected: {name}" in e for e in result.errors)

    @pytest.mark.parametrize("rules", ALL_RULES, ids=lambda r: r.name)
    def test_keyword_substrings_allowed(self, rules):
        """Identifiers that merely contain a keyword are not blocked."""
        query = "SELECT updated_at, created_by, deleted, offset_days FROM audit_log LIMIT 10"
        assert validate_query(query, rules=rules).is_valid

    def test_errors_accumulate(self):
        """All problems are reported, not only the first."""
        result = validate_query("DELETE FROM t; DROP TABLE u")
        categories = " ".join(result.errors)
        assert "disallowed starter" in categories
        assert "DELETE" in categories
        assert "DROP" in categories
        assert "multiple statements" in categories

    def test_mutating_keyword_in_line_comment_rejected(self):
        result = validate_query("SELECT 1 -- DELETE FROM t")
        assert not result.is_valid
        assert any("line comment" in e for e in result.errors)

    def test_mutating_keyword_in_block_comment_rejected(self):
        result = validate_query("SELECT /* DROP TABLE t */ 1")
        assert not result.is_valid
        assert any("block comment" in e for e in result.errors)

    def test_harmless_comment_allowed(self):
        assert validate_query("SELECT id FROM t -- active customers only\nLIMIT 5").is_valid

    def test_into_outfile_rejected(self):
        result = validate_query("SELECT * FROM users INTO OUTFILE '/tmp/users.csv'")
        assert any("exfiltration" in e for e in result.errors)

    def test_dollar_quoted_body_rejected(self):
        result = validate_query("SELECT $$ body $$")
        assert any("procedural" in e for e in result.errors)

    def test_semicolon_inside_literal_is_one_statement(self):
        """A ; inside a string literal does not split the statement."""
        result = validate_query("SELECT id FROM t WHERE note = 'a;b' LIMIT 5")
        assert result.is_valid

    def test_trailing_semicolon_allowed(self):
        assert validate_query("SELECT id FROM t LIMIT 5;").is_valid

    def test_top_counts_as_limit_for_mssql(self):
        result = validate_query("SELECT TOP 10 id FROM dbo.Users", rules=MSSQL_RULES)
        assert result.is_valid
        assert result.warnings == []

    def test_mssql_only_keywords(self):
        """DBCC is blocked for SQL Server but is an unknown word to PostgreSQL rules."""
        query = "SELECT a FROM t WHERE DBCC = 1"
        assert not validate_query(query, rules=MSSQL_RULES).is_valid
        assert validate_query(query, rules=POSTGRES_RULES).is_valid
        assert not validate_query(query, rules=DEFAULT_RULES).is_valid


class TestCountStatements:
    """Tests for count_statements function."""

    @pytest.mark.parametrize(
        "normalized, expected",
        [
            ("SELECT 1", 1),
            ("SELECT 1;", 1),
            ("SELECT 1; SELECT 2", 2),
            ("SELECT ';' FROM T", 1),
            ("SELECT 'IT''S;' FROM T; SELECT 2", 2),
        ],
    )
    def test_counts(self, normalized, expected):
        assert count_statements(normalized) == expected


class TestValidateQueryOrRaise:
    """Tests for validate_query_or_raise function."""

    def test_valid_returns_result(self):
        result = validate_query_or_raise("SELECT id FROM t LIMIT 1")
        assert result.is_valid

    def test_invalid_raises_with_violations(self):
        with pytest.raises(QueryValidationError) as exc_info:
            validate_query_or_raise("DROP TABLE t")
        err = exc_info.value
        assert err.kind == "validation_failure"
        assert any("DROP" in v for v in err.violations)
        assert err.to_dict()["details"]["violations"] == err.violations
