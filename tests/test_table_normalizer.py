#!/usr/bin/env python3
"""
Tests for table_normalizer module.
"""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "scripts"))
from ingest_errors import TableParseError
from table_normalizer import (
    MODE_COMMA, MODE_WHITESPACE, has_numeric, normalize_table, parse_number,
    split_comments, split_line, strip_decor, to_lines,
)


class TestParseNumber:
    """Tests for parse_number."""

    @pytest.mark.parametrize("token,expected", [
        ("12.5", 12.5),
        ("-3", -3.0),
        ("0", 0.0),
        ("-8.8", -8.8),
        (" 7,", 7.0),
        ("│4.2", 4.2),
    ])
    def test_numbers(self, token, expected):
        assert parse_number(token) == expected

    @pytest.mark.parametrize("token", ["-9", "-9.0", "-99", "-999.0", "abc", "", None, "nan", "inf"])
    def test_missing_or_text(self, token):
        assert parse_number(token) is None


class TestLineHelpers:
    """Tests for the line-level helpers."""

    def test_to_lines_strips_bom_and_blanks(self):
        assert to_lines("\ufeffa\n\n  \nb  \n") == ["a", "b"]

    def test_split_comments_strips_marker(self):
        comments, data = split_comments(["# YYMMDDHHMI STN TA", "#START7777", "202501011200 108 1.0"])
        assert comments == ["YYMMDDHHMI STN TA", "START7777"]
        assert data == ["202501011200 108 1.0"]

    def test_strip_decor(self):
        lines = ["+-----+-----+", "│ 1 │ 2 │", "=====", "3 | 4"]
        assert [l.split() for l in strip_decor(lines)] == [["1", "2"], ["3", "4"]]

    def test_split_line_comma_honours_quotes(self):
        assert split_line('1,"a,b",3', MODE_COMMA) == ["1", "a,b", "3"]
        assert split_line('1,"say ""hi""",3', MODE_COMMA) == ["1", 'say "hi"', "3"]

    def test_split_line_whitespace(self):
        assert split_line("  1   2\t3 ", MODE_WHITESPACE) == ["1", "2", "3"]

    def test_has_numeric_counts_sentinels(self):
        assert has_numeric(["x", "-9"])
        assert not has_numeric(["STN", "TA"])


class TestNormalizeTable:
    """Tests for normalize_table."""

    def test_whitespace_table_with_header_comment(self):
        text = (
            "#START7777\n"
            "# YYMMDDHHMI STN TA HM WS\n"
            "202501011200 108 1.5 60 3.0\n"
            "202501011300 108 2.0 55 2.0\n"
            "#7777END\n"
        )
        table = normalize_table(text)
        assert table.mode == MODE_WHITESPACE
        assert table.width == 5
        assert len(table.rows) == 2
        assert "YYMMDDHHMI STN TA HM WS" in table.comments

    def test_comma_mode(self):
        text = (
            "202501011200,108,1.5,60,3.0\n"
            "202501011300,108,2.0,55,2.0\n"
            "202501011400,108,2.5,50,1.0,\n"
        )
        table = normalize_table(text)
        assert table.mode == MODE_COMMA
        # trailing comma adds an empty sixth token, so that row is off-width
        assert table.width == 5
        assert len(table.rows) == 2

    def test_modal_width_filter(self):
        text = (
            "202501011200 108 1.5 60 3.0\n"
            "202501011300 108 2.0 55 2.0\n"
            "202501011400 108 2.0\n"
        )
        table = normalize_table(text)
        assert table.width == 5
        assert len(table.rows) == 2

    def test_drops_rows_without_numbers(self):
        text = "TM STN TA\n202501011200 108 1.5\n"
        table = normalize_table(text)
        assert table.rows == [["202501011200", "108", "1.5"]]

    def test_disp_borders(self):
        text = (
            "+--------------+-----+-----+\n"
            "│ 202501011200 │ 108 │ 1.5 │\n"
            "+--------------+-----+-----+\n"
        )
        table = normalize_table(text)
        assert table.rows == [["202501011200", "108", "1.5"]]

    def test_empty_response_raises(self):
        with pytest.raises(TableParseError):
            normalize_table("#START7777\n#7777END\n")

    def test_text_only_response_raises(self):
        with pytest.raises(TableParseError):
            normalize_table("Service temporarily unavailable\n")

    def test_identical_input_gives_identical_table(self):
        text = "202501011200 108 1.5 60 3.0\n"
        assert normalize_table(text) == normalize_table(text)
