"""Keyword, function and pattern tables used by the query validator.

Tables are immutable per dialect. A YAML file can extend a rule set at startup::

    keywords:
      data_modification: [UPSERT]
      maintenance: [OPTIMIZE]
    functions: [pg_file_write]
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import logging
from pathlib import Path
import re
from typing import Mapping

import yaml

from ..core.config import Dialect
from ..core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class BlockedCategory(str, Enum):
    """Why a construct is rejected. The value doubles as the YAML key."""
    DATA_MODIFICATION = "data_modification"
    SCHEMA_MODIFICATION = "schema_modification"
    PERMISSION = "permission"
    TRANSACTION_CONTROL = "transaction_control"
    LOCKING = "locking"
    MAINTENANCE = "maintenance"
    MESSAGING = "messaging"
    CONFIGURATION = "configuration"
    PROCEDURAL_CODE = "procedural_code"
    DANGEROUS_FUNCTION = "dangerous_function"
    EXFILTRATION = "exfiltration"
    MULTIPLE_STATEMENTS = "multiple_statements"
    DISALLOWED_STARTER = "disallowed_starter"

    @property
    def label(self) -> str:
        return self.value.replace("_", " ")


@dataclass(frozen=True)
class DangerousPattern:
    """Regex checked against the upper-cased raw text (comments included)."""
    description: str
    category: BlockedCategory
    regex: re.Pattern[str]


_MUTATING = r"(INSERT|UPDATE|DELETE|DROP|CREATE|ALTER|TRUNCATE|GRANT|REVOKE)"
_MUTATING_IN_COMMENT = r"(INSERT|UPDATE|DELETE|DROP|CREATE|ALTER)"

COMMON_PATTERNS: tuple[DangerousPattern, ...] = (
    DangerousPattern(
        "semicolon followed by a mutating statement",
        BlockedCategory.MULTIPLE_STATEMENTS,
        re.compile(rf";\s*{_MUTATING}\b"),
    ),
    DangerousPattern(
        "mutating keyword hidden in a line comment",
        BlockedCategory.DATA_MODIFICATION,
        re.compile(rf"--[^\n]*?\b{_MUTATING_IN_COMMENT}\b"),
    ),
    DangerousPattern(
        "mutating keyword hidden in a block comment",
        BlockedCategory.DATA_MODIFICATION,
        re.compile(rf"/\*.*?\b{_MUTATING_IN_COMMENT}\b.*?\*/", re.DOTALL),
    ),
    DangerousPattern(
        "INTO OUTFILE export",
        BlockedCategory.EXFILTRATION,
        re.compile(r"\bINTO\s+(OUTFILE|DUMPFILE)\b"),
    ),
    DangerousPattern(
        "LOAD_FILE file access",
        BlockedCategory.EXFILTRATION,
        re.compile(r"\bLOAD_FILE\b"),
    ),
    DangerousPattern(
        "procedural code block delimiter",
        BlockedCategory.PROCEDURAL_CODE,
        re.compile(r"\$(BODY)?\$"),
    ),
)

ALLOWED_STARTERS: tuple[str, ...] = ("SELECT", "WITH", "EXPLAIN", "SHOW", "DESCRIBE", "DESC")

COMMON_KEYWORDS: dict[BlockedCategory, tuple[str, ...]] = {
    BlockedCategory.DATA_MODIFICATION: (
        "INSERT", "UPDATE", "DELETE", "TRUNCATE", "MERGE", "UPSERT", "REPLACE", "COPY",
    ),
    BlockedCategory.SCHEMA_MODIFICATION: ("CREATE", "ALTER", "DROP", "RENAME", "COMMENT"),
    BlockedCategory.PERMISSION: ("GRANT", "REVOKE"),
    BlockedCategory.TRANSACTION_CONTROL: (
        "BEGIN", "COMMIT", "ROLLBACK", "SAVEPOINT", "START TRANSACTION",
    ),
    BlockedCategory.LOCKING: ("LOCK", "UNLOCK"),
    BlockedCategory.MAINTENANCE: ("VACUUM", "ANALYZE", "REINDEX", "CLUSTER", "CHECKPOINT"),
    BlockedCategory.MESSAGING: ("LISTEN", "NOTIFY", "UNLISTEN"),
    BlockedCategory.CONFIGURATION: ("SET", "RESET"),
    BlockedCategory.PROCEDURAL_CODE: ("DO", "CALL", "EXECUTE", "EXEC", "DECLARE"),
}

POSTGRES_FUNCTIONS: tuple[str, ...] = (
    "pg_read_file",
    "pg_read_binary_file",
    "pg_ls_dir",
    "pg_stat_file",
    "pg_execute",
    "pg_terminate_backend",
    "pg_cancel_backend",
    "pg_sleep",
    "pg_reload_conf",
    "pg_rotate_logfile",
    "lo_import",
    "lo_export",
    "dblink",
    "dblink_exec",
)

MSSQL_FUNCTIONS: tuple[str, ...] = (
    "xp_cmdshell",
    "sp_executesql",
    "OPENROWSET",
    "OPENDATASOURCE",
    "OPENQUERY",
    "xp_regread",
    "xp_regwrite",
    "xp_fileexist",
    "xp_dirtree",
    "sp_oacreate",
)

MSSQL_EXTRA_KEYWORDS: dict[BlockedCategory, tuple[str, ...]] = {
    BlockedCategory.PERMISSION: ("DENY",),
    BlockedCategory.MAINTENANCE: ("BACKUP", "RESTORE", "SHUTDOWN", "KILL", "DBCC", "BULK"),
}


def _keyword_regex(keyword: str) -> re.Pattern[str]:
    # Normalized text has single spaces, so multi-word keywords match literally
    return re.compile(rf"\b{re.escape(keyword.upper())}\b")


def _function_regex(name: str) -> re.Pattern[str]:
    return re.compile(rf"\b{re.escape(name.upper())}\s*\(")


@dataclass(frozen=True)
class DialectRules:
    """Complete rule set for one dialect."""
    name: str
    keywords: Mapping[BlockedCategory, tuple[str, ...]]
    functions: tuple[str, ...]
    patterns: tuple[DangerousPattern, ...] = COMMON_PATTERNS
    allowed_starters: tuple[str, ...] = ALLOWED_STARTERS
    accepts_top: bool = False
    _keyword_regexes: tuple[tuple[BlockedCategory, str, re.Pattern[str]], ...] = field(
        init=False, repr=False, compare=False
    )
    _function_regexes: tuple[tuple[str, re.Pattern[str]], ...] = field(
        init=False, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        # Compile once; rule sets are shared read-only across threads
        keyword_regexes = tuple(
            (category, keyword, _keyword_regex(keyword))
            for category, words in self.keywords.items()
            for keyword in words
        )
        function_regexes = tuple((name, _function_regex(name)) for name in self.functions)
        object.__setattr__(self, "_keyword_regexes", keyword_regexes)
        object.__setattr__(self, "_function_regexes", function_regexes)

    def blocked_keywords(self, normalized: str) -> list[tuple[BlockedCategory, str]]:
        return [
            (category, keyword)
            for category, keyword, regex in self._keyword_regexes
            if regex.search(normalized)
        ]

    def blocked_functions(self, normalized: str) -> list[str]:
        return [name for name, regex in self._function_regexes if regex.search(normalized)]

    def dangerous_patterns(self, raw_upper: str) -> list[DangerousPattern]:
        return [pattern for pattern in self.patterns if pattern.regex.search(raw_upper)]

    def extend(
        self,
        keywords: Mapping[BlockedCategory, tuple[str, ...]] | None = None,
        functions: tuple[str, ...] = (),
        name: str | None = None,
    ) -> DialectRules:
        """Return a new rule set with extra keywords/functions (duplicates dropped)."""
        merged = {category: tuple(words) for category, words in self.keywords.items()}
        for category, words in (keywords or {}).items():
            existing = merged.get(category, ())
            merged[category] = existing + tuple(
                w.upper() for w in words if w.upper() not in existing
            )
        known = {f.lower() for f in self.functions}
        extra = tuple(f for f in functions if f.lower() not in known)
        return DialectRules(
            name=name or self.name,
            keywords=merged,
            functions=self.functions + extra,
            patterns=self.patterns,
            allowed_starters=self.allowed_starters,
            accepts_top=self.accepts_top,
        )


POSTGRES_RULES = DialectRules(
    name="postgres",
    keywords=COMMON_KEYWORDS,
    functions=POSTGRES_FUNCTIONS,
)

MSSQL_RULES = DialectRules(
    name="mssql",
    keywords=COMMON_KEYWORDS,
    functions=MSSQL_FUNCTIONS,
    accepts_top=True,
).extend(keywords=MSSQL_EXTRA_KEYWORDS)

# Used when the target dialect is unknown: union of every dialect's tables
DEFAULT_RULES = POSTGRES_RULES.extend(
    keywords=MSSQL_EXTRA_KEYWORDS,
    functions=MSSQL_FUNCTIONS,
    name="default",
)


def rules_for(dialect: Dialect | None) -> DialectRules:
    if dialect is Dialect.POSTGRES:
        return POSTGRES_RULES
    if dialect is Dialect.MSSQL:
        return MSSQL_RULES
    return DEFAULT_RULES


def load_rules_file(path: str | Path, base: DialectRules) -> DialectRules:
    """Extend ``base`` with keywords/functions from a YAML file."""
    rules_path = Path(path)
    if not rules_path.exists():
        raise ConfigurationError(f"Blocklist file not found: {rules_path}")

    try:
        with open(rules_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid blocklist file {rules_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Blocklist file {rules_path} must contain a mapping")

    keywords: dict[BlockedCategory, tuple[str, ...]] = {}
    for key, words in (data.get("keywords") or {}).items():
        try:
            category = BlockedCategory(str(key).lower())
        except ValueError:
            raise ConfigurationError(f"Unknown blocklist category in {rules_path}: {key}") from None
        keywords[category] = tuple(str(w) for w in (words or []))

    functions = tuple(str(f) for f in (data.get("functions") or []))

    extended = base.extend(keywords=keywords, functions=functions)
    logger.info(
        f"Extended {base.name} blocklist from {rules_path}: "
        f"{sum(len(w) for w in keywords.values())} keywords, {len(functions)} functions"
    )
    return extended
