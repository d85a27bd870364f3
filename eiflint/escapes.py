"""eiflint/escapes.py – the ``%`` escape grammar of manifest strings.

Two families of escapes exist:

* **Named** escapes: ``%`` followed by one character from a closed table
  (``%N`` newline, ``%T`` tab, ``%"`` double quote, ...).
* **Numeric** character codes wrapped in ``%/.../``, in four bases::

      %/65/           decimal
      %/0x41/         hexadecimal
      %/0c101/        octal
      %/0b1000001/    binary

:func:`scan_escape` is the single entry point used by the lexer.  It never
raises: a malformed escape yields an :class:`EscapeIssue` and the
placeholder character so lexing can continue.  Every well-formed
:class:`Escape` remembers its exact spelling, so :meth:`Escape.render`
reproduces the source text byte for byte.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Final, Mapping, Optional, Sequence, Tuple, Union

#: Substituted for the value of a malformed escape.
PLACEHOLDER: Final[str] = "\ufffd"

ESCAPE_CHAR: Final[str] = "%"
NUMERIC_WRAPPER: Final[str] = "/"

MAX_CODE_POINT: Final[int] = 0x10FFFF

NAMED_ESCAPES: Final[Mapping[str, str]] = {
    "A": "@",
    "B": "\b",
    "C": "^",
    "D": "$",
    "F": "\f",
    "H": "\\",
    "L": "~",
    "N": "\n",
    "Q": "`",
    "R": "\r",
    "S": "#",
    "T": "\t",
    "U": "\0",
    "V": "|",
    "%": "%",
    "'": "'",
    '"': '"',
    "(": "[",
    ")": "]",
    "<": "{",
    ">": "}",
}


class EscapeForm(enum.Enum):
    NAMED = "named"
    DECIMAL = "decimal"
    HEXADECIMAL = "hexadecimal"
    OCTAL = "octal"
    BINARY = "binary"

    @property
    def base(self) -> int:
        return _BASES[self]


_BASES: Final[Mapping[EscapeForm, int]] = {
    EscapeForm.NAMED: 0,
    EscapeForm.DECIMAL: 10,
    EscapeForm.HEXADECIMAL: 16,
    EscapeForm.OCTAL: 8,
    EscapeForm.BINARY: 2,
}

_PREFIXES: Final[Mapping[str, EscapeForm]] = {
    "0x": EscapeForm.HEXADECIMAL,
    "0c": EscapeForm.OCTAL,
    "0b": EscapeForm.BINARY,
}

_DIGITS: Final[Mapping[EscapeForm, str]] = {
    EscapeForm.DECIMAL: "0123456789",
    EscapeForm.HEXADECIMAL: "0123456789abcdefABCDEF",
    EscapeForm.OCTAL: "01234567",
    EscapeForm.BINARY: "01",
}


@dataclass(frozen=True)
class Escape:
    """A well-formed escape sequence.

    ``code`` is the letter of a named escape or the digits of a numeric
    one; ``prefix`` keeps the base marker exactly as written (``0x``,
    ``0X``, ...).  ``offset`` is the source offset of the ``%``.
    """

    form: EscapeForm
    code: str
    value: str
    prefix: str = ""
    offset: int = 0

    def render(self) -> str:
        if self.form is EscapeForm.NAMED:
            return ESCAPE_CHAR + self.code
        return f"{ESCAPE_CHAR}{NUMERIC_WRAPPER}{self.prefix}{self.code}{NUMERIC_WRAPPER}"

    @property
    def code_point(self) -> int:
        return ord(self.value)


@dataclass(frozen=True)
class EscapeIssue:
    """A malformed escape: where it starts, how long it is, what is wrong."""

    offset: int
    length: int
    message: str


#: A piece of literal content: plain text or an escape.
Segment = Union[str, Escape]


def scan_escape(
    text: str, pos: int, limit: Optional[int] = None
) -> Tuple[str, int, Optional[Escape], Optional[EscapeIssue]]:
    """Scan one escape starting at ``text[pos] == '%'``.

    Returns ``(value, end, escape, issue)`` where *end* is the offset just
    past the consumed characters.  Exactly one of *escape* / *issue* is
    set.  Scanning never crosses *limit* or a newline.
    """
    if limit is None:
        limit = len(text)
    nxt = pos + 1
    if nxt >= limit or text[nxt] == "\n":
        return PLACEHOLDER, nxt, None, EscapeIssue(pos, 1, "'%' at end of line")

    char = text[nxt]
    if char == NUMERIC_WRAPPER:
        return _scan_numeric(text, pos, limit)

    value = NAMED_ESCAPES.get(char)
    if value is None:
        return (
            PLACEHOLDER,
            nxt + 1,
            None,
            EscapeIssue(pos, 2, f"unknown escape '%{char}'"),
        )
    return value, nxt + 1, Escape(EscapeForm.NAMED, char, value, offset=pos), None


def _scan_numeric(
    text: str, pos: int, limit: int
) -> Tuple[str, int, Optional[Escape], Optional[EscapeIssue]]:
    start = pos + 2
    close = start
    while close < limit and text[close] not in (NUMERIC_WRAPPER, "\n", '"', "'"):
        close += 1
    if close >= limit or text[close] != NUMERIC_WRAPPER:
        end = start
        while end < limit and (text[end].isalnum() or text[end] == "_"):
            end += 1
        return (
            PLACEHOLDER,
            end,
            None,
            EscapeIssue(pos, end - pos, "unterminated numeric escape (missing closing '/')"),
        )

    body = text[start:close]
    end = close + 1
    form = EscapeForm.DECIMAL
    prefix = ""
    digits = body
    marker = body[:2].lower()
    if len(body) > 2 and marker in _PREFIXES:
        form = _PREFIXES[marker]
        prefix = body[:2]
        digits = body[2:]

    if not digits:
        return PLACEHOLDER, end, None, EscapeIssue(pos, end - pos, "empty numeric escape")
    allowed = _DIGITS[form]
    for digit in digits:
        if digit not in allowed:
            return (
                PLACEHOLDER,
                end,
                None,
                EscapeIssue(
                    pos,
                    end - pos,
                    f"invalid digit {digit!r} in {form.value} escape '%/{body}/'",
                ),
            )
    code_point = int(digits, form.base)
    if code_point > MAX_CODE_POINT:
        return (
            PLACEHOLDER,
            end,
            None,
            EscapeIssue(pos, end - pos, f"character code {code_point} out of range"),
        )
    value = chr(code_point)
    return value, end, Escape(form, digits, value, prefix=prefix, offset=pos), None


def looks_like_escape(text: str, pos: int) -> bool:
    """Whether a ``%`` inside a comment is meant as an escape.

    Comments are free text, so only ``%`` followed by an upper-case letter
    or the numeric wrapper is taken as an escape attempt.
    """
    nxt = pos + 1
    if nxt >= len(text):
        return False
    char = text[nxt]
    return char == NUMERIC_WRAPPER or ("A" <= char <= "Z")


def decode(content: str, base_offset: int = 0) -> Tuple[str, Tuple[Segment, ...], Tuple[EscapeIssue, ...]]:
    """Resolve every escape of literal *content* (without its quotes).

    Returns ``(value, segments, issues)``; issue and escape offsets are
    shifted by *base_offset*.
    """
    value_parts = []
    segments = []
    issues = []
    plain_start = 0
    pos = 0
    while pos < len(content):
        if content[pos] != ESCAPE_CHAR:
            pos += 1
            continue
        if pos > plain_start:
            segments.append(content[plain_start:pos])
            value_parts.append(content[plain_start:pos])
        value, end, escape, issue = scan_escape(content, pos)
        value_parts.append(value)
        if escape is not None:
            segments.append(_shift(escape, base_offset))
        else:
            segments.append(content[pos:end])
            issues.append(EscapeIssue(issue.offset + base_offset, issue.length, issue.message))
        pos = end
        plain_start = end
    if plain_start < len(content):
        segments.append(content[plain_start:])
        value_parts.append(content[plain_start:])
    return "".join(value_parts), tuple(segments), tuple(issues)


def _shift(escape: Escape, base_offset: int) -> Escape:
    if not base_offset:
        return escape
    return Escape(
        escape.form,
        escape.code,
        escape.value,
        prefix=escape.prefix,
        offset=escape.offset + base_offset,
    )


def render_segments(segments: Sequence[Segment]) -> str:
    """Re-render literal content from its segments (exact round-trip)."""
    return "".join(seg if isinstance(seg, str) else seg.render() for seg in segments)
