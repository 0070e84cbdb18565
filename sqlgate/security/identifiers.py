"""Schema/table/database name sanitization for catalog introspection calls.

Never used on full query text.
"""

from __future__ import annotations

import re

from ..core.exceptions import IdentifierRejectedError

_DISALLOWED = re.compile(r"[^A-Za-z0-9_.]")


def sanitize_identifier(identifier: str) -> str:
    """Return ``identifier`` unchanged or raise IdentifierRejectedError.

    Anything outside ``[A-Za-z0-9_.]`` rejects the whole name rather than being
    stripped, so a dropped suffix can never change which object is addressed.
    """
    if identifier is None or not identifier.strip():
        raise IdentifierRejectedError(identifier or "")
    if _DISALLOWED.search(identifier):
        raise IdentifierRejectedError(identifier)
    return identifier


def split_qualified_name(name: str, default_schema: str | None = None) -> tuple[str | None, str]:
    """Split ``schema.table`` into its parts after sanitizing."""
    sanitized = sanitize_identifier(name)
    parts = sanitized.split(".")
    if len(parts) == 1:
        return default_schema, parts[0]
    if len(parts) == 2 and all(parts):
        return parts[0], parts[1]
    raise IdentifierRejectedError(name)
