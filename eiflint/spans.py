"""eiflint/spans.py – keyword-balance helpers over opaque token spans.

Routine bodies and assertion expressions are never parsed into
expressions.  What the parser and the checkers need from them is purely
structural:

* where a span ends (the ``end`` matching a ``do``, with nested
  ``if``/``from``/``across``/``inspect``/``check``/``debug`` blocks and
  inline agents balanced in between);
* where each top-level statement or assertion entry starts;
* which names a statement assigns to.

All helpers take significant tokens only (no comments or indentation
markers) and never raise.
"""

from __future__ import annotations

from typing import FrozenSet, List, Optional, Sequence, Tuple

from eiflint.lexer import Token, TokenKind

#: Keywords opening a block that a matching ``end`` closes.
BLOCK_KEYWORDS: FrozenSet[str] = frozenset(
    {"if", "from", "across", "inspect", "check", "debug"}
)

#: Keywords that start an inline routine (inline agent) inside a span.
ROUTINE_KEYWORDS: FrozenSet[str] = frozenset({"require", "local", "do", "once"})

_OPENING_BRACKETS = ("(", "[", "{")
_CLOSING_BRACKETS = (")", "]", "}")

# A statement cannot end on these tokens ...
_TRAILING_OPERATORS: FrozenSet[str] = frozenset(
    {
        "+", "-", "*", "/", "//", "\\\\", "^", "=", "/=", "~", "/~", "<", ">",
        "<=", ">=", ":=", "?=", ",", "(", "[", "{", ".", "->", "..", "|",
        "&", "@", "#", "$", ":", "!",
    }
)
_TRAILING_KEYWORDS: FrozenSet[str] = frozenset(
    {"and", "or", "xor", "implies", "not", "then", "else", "old", "attached", "as", "agent", "create", "like"}
)
# ... nor start with these.
_LEADING_OPERATORS: FrozenSet[str] = frozenset(
    {
        ")", "]", "}", ".", "+", "-", "*", "/", "//", "\\\\", "^", "=", "/=",
        "~", "/~", "<", ">", "<=", ">=", ":=", "?=", ",", "->", "..", "¦",
    }
)
_LEADING_KEYWORDS: FrozenSet[str] = frozenset({"and", "or", "xor", "implies", "then", "else", "as"})


class BlockScanner:
    """Tracks ``... end`` nesting and bracket depth token by token.

    Frames are ``"if"``, ``"from"``, ... for compound instructions and
    ``"routine-head"`` / ``"routine"`` for inline routines: ``require`` or
    ``local`` open a routine head, a following ``do``/``once`` moves it to
    the body phase without opening a second frame.
    """

    __slots__ = ("stack", "brackets")

    def __init__(self) -> None:
        self.stack: List[str] = []
        self.brackets = 0

    @property
    def depth(self) -> int:
        return len(self.stack)

    @property
    def nesting(self) -> int:
        return len(self.stack) + self.brackets

    @property
    def top(self) -> Optional[str]:
        return self.stack[-1] if self.stack else None

    def feed(self, tokens: Sequence[Token], index: int) -> None:
        tok = tokens[index]
        if tok.kind is TokenKind.OPERATOR:
            if tok.text in _OPENING_BRACKETS:
                self.brackets += 1
            elif tok.text in _CLOSING_BRACKETS and self.brackets:
                self.brackets -= 1
            return
        if tok.kind is not TokenKind.KEYWORD:
            return
        word = tok.lowered
        if word == "end":
            if self.stack:
                self.stack.pop()
        elif word in BLOCK_KEYWORDS:
            self.stack.append(word)
        elif word in ROUTINE_KEYWORDS:
            if word == "once" and is_manifest_once(tokens, index):
                return
            opens_body = word in ("do", "once")
            if self.top == "routine-head":
                if opens_body:
                    self.stack[-1] = "routine"
                return
            self.stack.append("routine" if opens_body else "routine-head")


def is_manifest_once(tokens: Sequence[Token], index: int) -> bool:
    """``once "text"`` is a manifest string, not a once routine."""
    nxt = index + 1
    return nxt < len(tokens) and tokens[nxt].kind is TokenKind.STRING


def find_span_end(
    tokens: Sequence[Token], start: int, stops: FrozenSet[str], hard_stops: FrozenSet[str] = frozenset()
) -> int:
    """Index of the first token at or after *start* that ends the span.

    A keyword in *stops* ends the span only at block depth zero; a keyword
    in *hard_stops* (clause keywords) ends it at any depth, as does EOF.
    """
    scanner = BlockScanner()
    index = start
    while index < len(tokens):
        tok = tokens[index]
        if tok.kind is TokenKind.EOF:
            return index
        if tok.kind is TokenKind.KEYWORD:
            word = tok.lowered
            if word in hard_stops:
                return index
            if scanner.depth == 0 and word in stops:
                if not (word == "once" and is_manifest_once(tokens, index)):
                    return index
        scanner.feed(tokens, index)
        index += 1
    return index


def _continues(prev: Token, tok: Token) -> bool:
    if prev.kind is TokenKind.OPERATOR and prev.text in _TRAILING_OPERATORS:
        return True
    if prev.kind is TokenKind.KEYWORD and prev.lowered in _TRAILING_KEYWORDS:
        return True
    if tok.kind is TokenKind.OPERATOR and tok.text in _LEADING_OPERATORS:
        return True
    if tok.kind is TokenKind.KEYWORD and tok.lowered in _LEADING_KEYWORDS:
        return True
    return False


def statement_starts(tokens: Sequence[Token]) -> List[int]:
    """Indices where top-level statements (or assertion entries) begin.

    A new statement begins at nesting zero after a ``;``, or on a new line
    unless the line break sits inside an obviously unfinished expression.
    """
    starts: List[int] = []
    scanner = BlockScanner()
    prev: Optional[Token] = None
    for index, tok in enumerate(tokens):
        if tok.kind is TokenKind.EOF:
            break
        if tok.is_op(";"):
            scanner.feed(tokens, index)
            prev = tok
            continue
        if prev is None:
            starts.append(index)
        elif scanner.nesting == 0:
            if prev.is_op(";") or (tok.line > prev.line and not _continues(prev, tok)):
                starts.append(index)
        scanner.feed(tokens, index)
        prev = tok
    return starts


def split_statements(tokens: Sequence[Token]) -> List[Tuple[Token, ...]]:
    """Split *tokens* into top-level statements, dropping ``;`` separators."""
    starts = statement_starts(tokens)
    pieces: List[Tuple[Token, ...]] = []
    for position, start in enumerate(starts):
        end = starts[position + 1] if position + 1 < len(starts) else len(tokens)
        piece = tuple(
            tok for tok in tokens[start:end] if not tok.is_op(";") and tok.kind is not TokenKind.EOF
        )
        while piece and piece[-1].is_op(";"):
            piece = piece[:-1]
        if piece:
            pieces.append(piece)
    return pieces


def count_statements(tokens: Sequence[Token]) -> int:
    return len(split_statements(tokens))


def assigned_names(tokens: Sequence[Token]) -> List[Token]:
    """Identifiers that top-level statements assign to (``x := ...``).

    Assignments nested in compound instructions count too: every token
    sequence ``identifier :=`` / ``identifier ?=`` that starts a statement
    or follows a block keyword is reported.
    """
    found: List[Token] = []
    for index, tok in enumerate(tokens[:-1]):
        if not tok.is_identifier():
            continue
        if not tokens[index + 1].is_op(":=", "?="):
            continue
        if index > 0:
            prev = tokens[index - 1]
            if prev.is_op("."):
                continue
            # ``a b := c`` on one line is not an assignment to b.
            if prev.is_identifier() and prev.line == tok.line:
                continue
        found.append(tok)
    return found


def render_tokens(tokens: Sequence[Token]) -> str:
    """Compact single-line rendering, e.g. ``LIST [STRING]``."""
    out: List[str] = []
    prev: Optional[Token] = None
    for tok in tokens:
        if prev is not None:
            glue = " "
            if prev.text in ("(", "[", "{", ".") or tok.text in (")", "]", "}", ",", ";", ".", ":"):
                glue = ""
            out.append(glue)
        out.append(tok.text)
        prev = tok
    return "".join(out)
