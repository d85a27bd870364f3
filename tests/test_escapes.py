# tests/test_escapes.py
"""
Tests for the ``%`` escape grammar.
"""

import pytest

from eiflint.escapes import (
    PLACEHOLDER,
    Escape,
    EscapeForm,
    decode,
    looks_like_escape,
    render_segments,
    scan_escape,
)


class TestNamedEscapes:

    @pytest.mark.parametrize("code,value", [
        ("N", "\n"), ("T", "\t"), ("%", "%"), ('"', '"'),
        ("Q", "`"), ("(", "["), (">", "}"), ("U", "\0"),
    ])
    def test_known_code(self, code, value):
        resolved, end, escape, issue = scan_escape("%" + code, 0)
        assert issue is None
        assert resolved == value
        assert end == 2
        assert escape.form is EscapeForm.NAMED
        assert escape.render() == "%" + code

    def test_unknown_code(self):
        resolved, end, escape, issue = scan_escape("%Z rest", 0)
        assert escape is None
        assert resolved == PLACEHOLDER
        assert end == 2
        assert issue.message == "unknown escape '%Z'"
        assert issue.offset == 0

    def test_percent_at_end_of_line(self):
        _, _, escape, issue = scan_escape("abc%\nnext", 3)
        assert escape is None
        assert issue.message == "'%' at end of line"

    def test_percent_at_limit(self):
        _, _, _, issue = scan_escape("%N", 0, limit=1)
        assert issue is not None


class TestNumericEscapes:

    @pytest.mark.parametrize("text,form,value", [
        ("%/65/", EscapeForm.DECIMAL, "A"),
        ("%/0x41/", EscapeForm.HEXADECIMAL, "A"),
        ("%/0X41/", EscapeForm.HEXADECIMAL, "A"),
        ("%/0c101/", EscapeForm.OCTAL, "A"),
        ("%/0b1000001/", EscapeForm.BINARY, "A"),
        ("%/8364/", EscapeForm.DECIMAL, "€"),
    ], ids=["decimal", "hex", "hex-upper", "octal", "binary", "euro"])
    def test_bases(self, text, form, value):
        resolved, end, escape, issue = scan_escape(text, 0)
        assert issue is None
        assert resolved == value
        assert end == len(text)
        assert escape.form is form
        assert escape.render() == text

    def test_prefix_case_is_preserved(self):
        _, _, escape, _ = scan_escape("%/0X41/", 0)
        assert escape.prefix == "0X"
        assert escape.code == "41"
        assert escape.code_point == 0x41

    def test_missing_closing_slash(self):
        resolved, end, escape, issue = scan_escape('%/12"', 0)
        assert escape is None
        assert resolved == PLACEHOLDER
        assert end == 4
        assert "missing closing '/'" in issue.message

    def test_invalid_binary_digit(self):
        _, _, escape, issue = scan_escape("%/0b102/", 0)
        assert escape is None
        assert issue.message == "invalid digit '2' in binary escape '%/0b102/'"

    def test_empty(self):
        _, end, _, issue = scan_escape("%//", 0)
        assert issue.message == "empty numeric escape"
        assert end == 3

    def test_out_of_range(self):
        _, _, escape, issue = scan_escape("%/1114112/", 0)
        assert escape is None
        assert "out of range" in issue.message

    def test_largest_code_point(self):
        resolved, _, escape, issue = scan_escape("%/0x10FFFF/", 0)
        assert issue is None
        assert resolved == "\U0010ffff"


class TestDecode:

    def test_mixed_content(self):
        value, segments, issues = decode("a%Nb%/66/c")
        assert value == "a\nbBc"
        assert issues == ()
        assert segments[0] == "a"
        assert isinstance(segments[1], Escape)
        assert segments[-1] == "c"

    def test_round_trip_of_segments(self):
        content = "x%/0x41/y%%z%T"
        _, segments, _ = decode(content)
        assert render_segments(segments) == content

    def test_issue_offsets_are_shifted(self):
        value, segments, issues = decode("ok%Zok", base_offset=10)
        assert value == "ok" + PLACEHOLDER + "ok"
        assert issues[0].offset == 12
        assert render_segments(segments) == "ok%Zok"

    def test_escape_offsets_are_shifted(self):
        _, segments, _ = decode("%N", base_offset=5)
        assert segments[0].offset == 5


class TestLooksLikeEscape:

    @pytest.mark.parametrize("text,expected", [
        ("%N", True),
        ("%/65/", True),
        ("50% off", False),
        ("%x", False),
        ("%", False),
    ])
    def test_comment_heuristic(self, text, expected):
        assert looks_like_escape(text, text.index("%")) is expected
