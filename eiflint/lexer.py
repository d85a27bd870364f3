"""eiflint/lexer.py – source text → token sequence.

The lexer walks a :class:`~eiflint.source.SourceBuffer` once and yields
:class:`Token` objects lazily.  It is the only producer of two diagnostic
kinds, recorded on a side channel while tokens are produced:

``invalid-escape``
    a malformed ``%`` escape in a string, character or comment; the escape
    is replaced by :data:`~eiflint.escapes.PLACEHOLDER` and lexing goes on.
``tab-expected``
    a line whose leading whitespace contains a space character; reported
    once per line at the first space.  Whitespace itself never becomes a
    token other than the :attr:`TokenKind.INDENT` marker.

Lexing never raises on malformed input.  Unterminated literals and
unrecognised characters become tokens with a non-empty ``issue`` that the
parser turns into ``syntax-error`` diagnostics.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import FrozenSet, Iterator, List, Optional, Tuple

from eiflint.errors import Diagnostic, RuleId, Severity
from eiflint.escapes import (
    ESCAPE_CHAR,
    EscapeForm,
    Segment,
    looks_like_escape,
    scan_escape,
)
from eiflint.source import SourceBuffer, SourceLocation

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# TOKENS
# ═══════════════════════════════════════════════════════════════════════════

class TokenKind(enum.Enum):
    IDENTIFIER = "identifier"
    KEYWORD = "keyword"
    OPERATOR = "operator"
    STRING = "string-literal"
    CHARACTER = "character-literal"
    NUMERIC_ESCAPE = "numeric-escape"
    NUMBER = "number"
    COMMENT = "comment"
    INDENT = "indentation-marker"
    INVALID = "invalid"
    EOF = "end-of-file"


KEYWORDS: FrozenSet[str] = frozenset(
    {
        "across", "agent", "alias", "all", "and", "as", "assign", "attached",
        "attribute", "check", "class", "convert", "create", "current",
        "debug", "deferred", "detachable", "do", "else", "elseif", "end",
        "ensure", "expanded", "export", "external", "false", "feature",
        "from", "frozen", "if", "implies", "inherit", "inspect",
        "invariant", "is", "like", "local", "loop", "not", "note",
        "obsolete", "old", "once", "or", "precursor", "redefine", "rename",
        "require", "rescue", "result", "retry", "select", "separate", "some",
        "then", "true", "tuple", "undefine", "until", "variant", "void",
        "when", "xor",
    }
)

# Longest match first.
_MULTI_CHAR_OPERATORS: Tuple[str, ...] = (
    ":=", "?=", "/=", "/~", "<=", ">=", "->", "..", "//", "\\\\", "<<", ">>",
)
_SINGLE_CHAR_OPERATORS: FrozenSet[str] = frozenset("+-*/^=<>~(),;:.[]{}?!@#$&|\\∀∃¦")

#: Symbolic quantifiers and their body separator.
FOR_ALL = "∀"
THERE_EXISTS = "∃"
QUANTIFIER_BAR = "¦"


@dataclass(frozen=True)
class Token:
    """A lexical token with its source location.

    Attributes:
        kind: The kind of token.
        text: The exact source text of the token.
        location: Where the token starts.
        value: Resolved value for string/character literals (escapes
            applied); comment text after ``--``; ``text`` otherwise.
        segments: Literal content split into plain text and escapes.
        issue: Why the lexer could not complete the token, if it could not.
    """

    kind: TokenKind
    text: str
    location: SourceLocation
    value: str = ""
    segments: Tuple[Segment, ...] = ()
    issue: str = ""

    @property
    def line(self) -> int:
        return self.location.line

    @property
    def column(self) -> int:
        return self.location.column

    @property
    def offset(self) -> int:
        return self.location.offset

    @property
    def end_offset(self) -> int:
        return self.location.offset + len(self.text)

    @property
    def lowered(self) -> str:
        return self.text.lower()

    @property
    def is_trivia(self) -> bool:
        return self.kind in (TokenKind.COMMENT, TokenKind.INDENT)

    def is_keyword(self, *words: str) -> bool:
        return self.kind is TokenKind.KEYWORD and (not words or self.text.lower() in words)

    def is_op(self, *ops: str) -> bool:
        return self.kind is TokenKind.OPERATOR and (not ops or self.text in ops)

    def is_identifier(self) -> bool:
        return self.kind is TokenKind.IDENTIFIER

    def __repr__(self) -> str:
        return f"Token({self.kind.name}, {self.text!r}, {self.location})"


@dataclass(frozen=True)
class LineInfo:
    """Per-physical-line layout facts recorded while lexing.

    ``blank`` marks a line holding nothing but whitespace; ``verbatim``
    marks the content and closing lines of a verbatim string.
    """

    line: int
    verbatim: bool = False
    blank: bool = False


@dataclass(frozen=True)
class LexResult:
    buffer: SourceBuffer
    tokens: Tuple[Token, ...]
    diagnostics: Tuple[Diagnostic, ...]
    lines: Tuple[LineInfo, ...]

    @property
    def significant(self) -> Tuple[Token, ...]:
        return tuple(tok for tok in self.tokens if not tok.is_trivia)


# ═══════════════════════════════════════════════════════════════════════════
# LEXER
# ═══════════════════════════════════════════════════════════════════════════

class Lexer:
    """Single-pass scanner over one :class:`SourceBuffer`.

    Iterating a ``Lexer`` yields tokens lazily; :meth:`run` drains the
    iterator and packages tokens, diagnostics and line facts together.
    """

    def __init__(self, buffer: SourceBuffer) -> None:
        self.buffer = buffer
        self.text = buffer.text
        self.diagnostics: List[Diagnostic] = []
        self.lines: List[LineInfo] = []

    # ── public API ───────────────────────────────────────────────────

    def __iter__(self) -> Iterator[Token]:
        return self._scan()

    def run(self) -> LexResult:
        tokens = tuple(self._scan())
        logger.debug(
            "%s: %d tokens, %d lexer diagnostics",
            self.buffer.path,
            len(tokens),
            len(self.diagnostics),
        )
        return LexResult(
            buffer=self.buffer,
            tokens=tokens,
            diagnostics=tuple(self.diagnostics),
            lines=tuple(self.lines),
        )

    # ── helpers ──────────────────────────────────────────────────────

    def _loc(self, offset: int) -> SourceLocation:
        return self.buffer.location(offset)

    def _line_end(self, pos: int) -> int:
        end = self.text.find("\n", pos)
        return len(self.text) if end < 0 else end

    def _report(
        self, rule_id: str, severity: Severity, offset: int, message: str, fix: Optional[str] = None
    ) -> None:
        self.diagnostics.append(
            Diagnostic(
                rule_id=rule_id,
                severity=severity,
                message=message,
                location=self._loc(offset),
                fix=fix,
                path=self.buffer.path,
            )
        )

    def _report_escape(self, offset: int, message: str) -> None:
        self._report(RuleId.INVALID_ESCAPE, Severity.ERROR, offset, message)

    # ── main loop ────────────────────────────────────────────────────

    def _scan(self) -> Iterator[Token]:
        text = self.text
        n = len(text)
        pos = 0
        at_line_start = True
        while pos < n:
            if at_line_start:
                at_line_start = False
                indent_token, pos = self._line_start(pos)
                if indent_token is not None:
                    yield indent_token
                continue

            char = text[pos]
            if char == "\n":
                pos += 1
                at_line_start = True
                continue
            if char in " \t\f\v":
                pos += 1
                continue
            if char == "-" and text.startswith("--", pos):
                token, pos = self._comment(pos)
            elif char == '"':
                token, pos = self._string(pos)
            elif char == "'":
                token, pos = self._character(pos)
            elif char.isalpha() and char.isascii():
                token, pos = self._word(pos)
            elif char.isdigit():
                token, pos = self._number(pos)
            else:
                token, pos = self._operator(pos)
            yield token

        yield Token(TokenKind.EOF, "", self._loc(n))

    def _line_start(self, pos: int) -> Tuple[Optional[Token], int]:
        """Record layout facts for the line beginning at *pos*."""
        text = self.text
        end = pos
        while end < len(text) and text[end] in " \t":
            end += 1
        indent = text[pos:end]
        blank = end >= len(text) or text[end] == "\n"
        line = self._loc(pos).line
        self.lines.append(LineInfo(line=line, blank=blank))
        if not indent or blank:
            return None, end
        if " " in indent:
            self._report(
                RuleId.TAB_EXPECTED,
                Severity.WARNING,
                pos + indent.index(" "),
                "indentation contains space characters; use tabs",
                fix="indent with tab characters",
            )
        return Token(TokenKind.INDENT, indent, self._loc(pos), value=indent), end

    # ── comments ─────────────────────────────────────────────────────

    def _comment(self, pos: int) -> Tuple[Token, int]:
        end = self._line_end(pos)
        body = self.text[pos:end]
        scan = pos + 2
        while True:
            scan = self.text.find(ESCAPE_CHAR, scan, end)
            if scan < 0:
                break
            if looks_like_escape(self.text, scan):
                _, after, _, issue = scan_escape(self.text, scan, end)
                if issue is not None:
                    self._report_escape(issue.offset, f"{issue.message} in comment")
                scan = after
            else:
                scan += 1
        token = Token(TokenKind.COMMENT, body, self._loc(pos), value=body[2:].strip())
        return token, end

    # ── strings ──────────────────────────────────────────────────────

    def _string(self, pos: int) -> Tuple[Token, int]:
        text = self.text
        line_end = self._line_end(pos)
        opener = text[pos + 1:pos + 2]
        if opener in ("[", "{") and not text[pos + 2:line_end].strip():
            return self._verbatim_string(pos, opener, line_end)

        value: List[str] = []
        segments: List[Segment] = []
        plain_start = pos + 1
        i = pos + 1
        issue = ""
        while True:
            if i >= line_end:
                issue = "unterminated string literal"
                break
            char = text[i]
            if char == '"':
                break
            if char != ESCAPE_CHAR:
                i += 1
                continue
            if i > plain_start:
                segments.append(text[plain_start:i])
                value.append(text[plain_start:i])
            resolved, after, escape, problem = scan_escape(text, i, line_end)
            value.append(resolved)
            if escape is not None:
                segments.append(escape)
            else:
                segments.append(text[i:after])
                self._report_escape(problem.offset, problem.message)
            i = after
            plain_start = after
        if plain_start < i:
            segments.append(text[plain_start:i])
            value.append(text[plain_start:i])
        end = i if issue else i + 1
        token = Token(
            TokenKind.STRING,
            text[pos:end],
            self._loc(pos),
            value="".join(value),
            segments=tuple(segments),
            issue=issue,
        )
        return token, end

    def _verbatim_string(self, pos: int, opener: str, line_end: int) -> Tuple[Token, int]:
        """``"[`` ... ``]"`` spanning whole lines; content is taken as is."""
        text = self.text
        closer = ("]" if opener == "[" else "}") + '"'
        cursor = line_end + 1
        content_lines: List[str] = []
        end = -1
        while cursor <= len(text):
            next_end = self._line_end(cursor)
            line = text[cursor:next_end]
            stripped = line.lstrip(" \t")
            line_no = self._loc(cursor).line
            if stripped.startswith(closer):
                end = cursor + (len(line) - len(stripped)) + len(closer)
                self.lines.append(LineInfo(line=line_no, verbatim=True))
                break
            self.lines.append(LineInfo(line=line_no, verbatim=True))
            content_lines.append(line)
            if next_end >= len(text):
                break
            cursor = next_end + 1
        issue = ""
        if end < 0:
            issue = "unterminated verbatim string"
            end = len(text)
        value = "\n".join(content_lines)
        token = Token(
            TokenKind.STRING,
            text[pos:end],
            self._loc(pos),
            value=value,
            segments=(value,) if value else (),
            issue=issue,
        )
        return token, end

    def _character(self, pos: int) -> Tuple[Token, int]:
        text = self.text
        line_end = self._line_end(pos)
        i = pos + 1
        kind = TokenKind.CHARACTER
        segments: Tuple[Segment, ...] = ()
        value = ""
        if i >= line_end or text[i] == "'":
            closing = i + 1 if i < line_end else i
            return (
                Token(kind, text[pos:closing], self._loc(pos), issue="empty character literal"),
                closing,
            )
        if text[i] == ESCAPE_CHAR:
            value, after, escape, problem = scan_escape(text, i, line_end)
            if escape is not None:
                segments = (escape,)
                if escape.form is not EscapeForm.NAMED:
                    kind = TokenKind.NUMERIC_ESCAPE
            else:
                segments = (text[i:after],)
                self._report_escape(problem.offset, problem.message)
            i = after
        else:
            value = text[i]
            segments = (value,)
            i += 1
        if i < line_end and text[i] == "'":
            return Token(kind, text[pos:i + 1], self._loc(pos), value=value, segments=segments), i + 1
        closing = text.find("'", i, line_end)
        end = line_end if closing < 0 else closing + 1
        return (
            Token(
                kind,
                text[pos:end],
                self._loc(pos),
                value=value,
                segments=segments,
                issue="unterminated character literal" if closing < 0 else "character literal holds more than one character",
            ),
            end,
        )

    # ── words, numbers, operators ───────────────────────────────────

    def _word(self, pos: int) -> Tuple[Token, int]:
        text = self.text
        end = pos + 1
        while end < len(text) and text[end].isascii() and (text[end].isalnum() or text[end] == "_"):
            end += 1
        word = text[pos:end]
        kind = TokenKind.KEYWORD if word.lower() in KEYWORDS else TokenKind.IDENTIFIER
        return Token(kind, word, self._loc(pos), value=word), end

    def _number(self, pos: int) -> Tuple[Token, int]:
        text = self.text
        end = pos + 1
        if text[pos] == "0" and end < len(text) and text[end] in "xXcCbB":
            end += 1
            while end < len(text) and (text[end].isalnum() or text[end] == "_"):
                end += 1
        else:
            while end < len(text) and (text[end].isdigit() or text[end] == "_"):
                end += 1
            if end + 1 < len(text) and text[end] == "." and text[end + 1].isdigit():
                end += 1
                while end < len(text) and (text[end].isdigit() or text[end] == "_"):
                    end += 1
            if end < len(text) and text[end] in "eE":
                probe = end + 1
                if probe < len(text) and text[probe] in "+-":
                    probe += 1
                if probe < len(text) and text[probe].isdigit():
                    end = probe
                    while end < len(text) and text[end].isdigit():
                        end += 1
        word = text[pos:end]
        return Token(TokenKind.NUMBER, word, self._loc(pos), value=word), end

    def _operator(self, pos: int) -> Tuple[Token, int]:
        text = self.text
        for op in _MULTI_CHAR_OPERATORS:
            if text.startswith(op, pos):
                return Token(TokenKind.OPERATOR, op, self._loc(pos), value=op), pos + len(op)
        char = text[pos]
        if char in _SINGLE_CHAR_OPERATORS:
            return Token(TokenKind.OPERATOR, char, self._loc(pos), value=char), pos + 1
        return (
            Token(
                TokenKind.INVALID,
                char,
                self._loc(pos),
                value=char,
                issue=f"unexpected character {char!r}",
            ),
            pos + 1,
        )


def tokenize(text: str, path: str = "<string>") -> LexResult:
    """Lex *text* completely; convenience wrapper around :class:`Lexer`."""
    return Lexer(SourceBuffer(text, path)).run()
