"""Unit tests for the normalizer module."""

from __future__ import annotations

import pytest

from sqlgate.security.normalizer import is_blank, leading_keyword, mask_literals, normalize_query


class TestNormalizeQuery:
    """Tests for normalize_query function."""

    def test_collapses_whitespace_and_uppercases(self):
        """Should collapse runs of whitespace and upper-case the text."""
        assert normalize_query("select  id,\n\tname   from customers") == "SELECT ID, NAME FROM CUSTOMERS"

    def test_strips_line_comments(self):
        """Should drop -- comments."""
        assert normalize_query("SELECT 1 -- drop everything\nFROM t") == "SELECT 1 FROM T"

    def test_strips_block_comments(self):
        """Should drop /* */ comments."""
        result = normalize_query("SELECT /* DELETE FROM users */ 1")
        assert "DELETE" not in result
        assert result.startswith("SELECT")
        assert result.endswith("1")

    def test_keeps_comment_markers_inside_literals(self):
        """A -- inside a quoted literal is not a comment."""
        assert normalize_query("SELECT '--x' FROM t") == "SELECT '--X' FROM T"

    @pytest.mark.parametrize("text", ["", "   ", "\n\t", None])
    def test_blank_input_returns_empty(self, text):
        """Should return empty string for blank input."""
        assert normalize_query(text) == ""

    def test_does_not_modify_input(self):
        """Normalization returns a copy."""
        original = "select * from t -- c"
        normalize_query(original)
        assert original == "select * from t -- c"


class TestLeadingKeyword:
    """Tests for leading_keyword function."""

    def test_returns_first_word(self):
        assert leading_keyword("SELECT 1") == "SELECT"

    def test_empty_text(self):
        assert leading_keyword("") == ""

    def test_parenthesized_query(self):
        """A leading parenthesis is not an allowed starter word."""
        assert leading_keyword("(SELECT 1)") == "(SELECT"


class TestIsBlank:
    """Tests for is_blank function."""

    def test_whitespace_is_blank(self):
        assert is_blank("  \n")

    def test_text_is_not_blank(self):
        assert not is_blank("SELECT 1")


class TestMaskLiterals:
    """Tests for mask_literals function."""

    def test_keeps_length_and_code(self):
        query = "SELECT 'LIMIT 5' AS a, \"TOP 3\" FROM t -- top 10\nLIMIT 7 /* x */"
        masked = mask_literals(query)
        assert len(masked) == len(query)
        assert "LIMIT 5" not in masked
        assert "TOP 3" not in masked
        assert "top 10" not in masked
        assert "LIMIT 7" in masked
        assert masked.startswith("SELECT ")

    def test_line_breaks_kept(self):
        assert mask_literals("-- note\nSELECT 1").split("\n")[1] == "SELECT 1"

    def test_plain_query_unchanged(self):
        assert mask_literals("SELECT id FROM t LIMIT 5") == "SELECT id FROM t LIMIT 5"
