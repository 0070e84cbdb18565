"""Validate and limit-enforce SQL queries without touching a database.

Usage:
    python -m tools.check_query "SELECT * FROM users"
    python -m tools.check_query --dialect mssql --max-rows 100 "SELECT name FROM dbo.Users"
    python -m tools.check_query --file queries.sql   # queries separated by blank lines
    echo "DELETE FROM users" | python -m tools.check_query

Exits with status 1 when any query is rejected.
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any

from sqlgate.core.config import Dialect, get_settings
from sqlgate.security.blocklists import load_rules_file, rules_for
from sqlgate.security.limits import enforcer_for
from sqlgate.security.sql_validator import validate_query


def _read_queries(args: argparse.Namespace) -> list[str]:
    if args.queries:
        return list(args.queries)
    text = args.file.read_text(encoding="utf-8") if args.file else sys.stdin.read()
    # Blank lines separate queries so multi-statement input is still reported as such
    blocks = [block.strip() for block in text.split("\n\n")]
    return [block for block in blocks if block]


def check(query: str, dialect: Dialect | None, max_rows: int, max_length: int, rules) -> dict[str, Any]:
    result = validate_query(query, max_length, rules=rules)
    report: dict[str, Any] = {"query": query, **result.to_dict()}
    if result.is_valid:
        outcome = enforcer_for(dialect)(query, max_rows)
        report["limited_query"] = outcome.query
        report["limit_applied"] = outcome.limit_applied
    return report


def main() -> None:
    settings = get_settings()
    parser = argparse.ArgumentParser(
        description="Check SQL queries against the read-only rules and apply the row limit"
    )
    parser.add_argument("queries", nargs="*", help="Queries to check (default: read --file or stdin)")
    parser.add_argument(
        "--file",
        type=Path,
        default=None,
        help="File with queries separated by blank lines",
    )
    parser.add_argument(
        "--dialect",
        choices=[d.value for d in Dialect],
        default=None,
        help="Target dialect (default: union of all dialect rules)",
    )
    parser.add_argument(
        "--max-rows",
        type=int,
        default=settings.max_rows,
        help="Row cap to enforce",
    )
    parser.add_argument(
        "--blocklist",
        type=Path,
        default=Path(settings.blocklist_path) if settings.blocklist_path else None,
        help="YAML file extending the built-in blocklists",
    )
    args = parser.parse_args()

    if args.max_rows < 1:
        parser.error("--max-rows must be positive")

    dialect = Dialect(args.dialect) if args.dialect else None
    rules = rules_for(dialect)
    if args.blocklist:
        rules = load_rules_file(args.blocklist, rules)

    queries = _read_queries(args)
    if not queries:
        parser.error("no queries given")

    reports = [check(q, dialect, args.max_rows, settings.max_query_length, rules) for q in queries]
    print(json.dumps(reports if len(reports) > 1 else reports[0], indent=2, ensure_ascii=False))

    rejected = sum(1 for r in reports if not r["is_valid"])
    if rejected:
        print(f"{rejected} of {len(reports)} queries rejected", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
