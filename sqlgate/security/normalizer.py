"""Analysis copy of SQL text.

The normalized copy is only ever inspected, never executed. Comment markers
inside quoted literals are kept by the sqlparse lexer, but keywords inside
literals are still visible to later scans (accepted false positives).
"""

from __future__ import annotations

import logging
import re

import sqlparse
from sqlparse import tokens as T
from sqlparse.exceptions import SQLParseError
from sqlparse.lexer import tokenize

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")
_LINE_COMMENT = re.compile(r"--[^\r\n]*")
_BLOCK_COMMENT = re.compile(r"/\*.*?(\*/|$)", re.DOTALL)
_LEADING_WORD = re.compile(r"^[A-Z_]+")
_NON_NEWLINE = re.compile(r"[^\r\n]")


def is_blank(text: str | None) -> bool:
    return text is None or not text.strip()


def _strip_comments(text: str) -> str:
    try:
        return sqlparse.format(text, strip_comments=True)
    except SQLParseError as e:
        # sqlparse enforces token/nesting limits on pathological input
        logger.debug(f"sqlparse could not strip comments, using lexical fallback: {e}")
        stripped = _BLOCK_COMMENT.sub(" ", text)
        return _LINE_COMMENT.sub(" ", stripped)


def normalize_query(text: str) -> str:
    """Return comment-free, whitespace-collapsed, upper-cased copy of ``text``."""
    if is_blank(text):
        return ""
    without_comments = _strip_comments(text)
    return _WHITESPACE.sub(" ", without_comments).strip().upper()


def leading_keyword(normalized: str) -> str:
    """First word of an already normalized query ("" when there is none)."""
    match = _LEADING_WORD.match(normalized)
    if match:
        return match.group(0)
    return normalized.split(" ", 1)[0] if normalized else ""


def mask_literals(text: str) -> str:
    """Same-length copy of ``text`` with comments and quoted tokens blanked out.

    Offsets into the mask are offsets into ``text``, so a match found on the
    mask can be used to edit the original. Line breaks are kept.
    """
    parts = []
    for ttype, value in tokenize(text):
        if ttype in T.Comment or value[:1] in ("'", '"'):
            parts.append(_NON_NEWLINE.sub(" ", value))
        else:
            parts.append(value)
    return "".join(parts)
