"""eiflint/parser.py – token sequence → syntax tree.

Design principles
-----------------
* **Recursive descent, one-token lookahead** over significant tokens.
  Comments and indentation markers are trivia for the grammar but stay
  reachable, because clause categories and header comments live in them.
* **One routine per production** – class header, creation clause, feature
  clause, feature declaration, assertion block, once keys, agent
  expression, quantifier.  A production either returns a node and leaves
  the cursor after it, or returns ``None`` after recording a pending
  failure with :meth:`Parser._fail`.
* **Recovery as data** – callers save the cursor before an attempt.  On
  failure they emit one ``syntax-error`` at the token where the failure
  was detected, restore the cursor and call :meth:`Parser._synchronize`,
  which skips (balancing ``do ... end`` blocks) to the next clause
  keyword, the ``end`` of the malformed routine, a sibling declaration, or
  EOF.  No exceptions are used for control flow.
* **Opaque bodies** – routine bodies are stored as token tuples whose
  extent is found by keyword balancing (:mod:`eiflint.spans`); only
  agents, symbolic quantifiers, loop invariants and ``check`` instructions
  are picked out of them.

Public API
----------
``parse(lex_result) -> ParseResult``
    Parse a lexed file.

``parse_text(text, path) -> ParseResult``
    Lex and parse in one go (tests, REPL).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Optional, Sequence, Tuple

from eiflint import ast as A
from eiflint.errors import Diagnostic, RuleId, Severity
from eiflint.lexer import (
    FOR_ALL,
    QUANTIFIER_BAR,
    THERE_EXISTS,
    LexResult,
    Token,
    TokenKind,
    tokenize,
)
from eiflint.source import SourceLocation
from eiflint.spans import (
    BlockScanner,
    find_span_end,
    is_manifest_once,
    render_tokens,
    split_statements,
)

logger = logging.getLogger(__name__)

# ═══════════════════════════════════════════════════════════════════════
#  Keyword sets
# ═══════════════════════════════════════════════════════════════════════

#: Keywords that start a class-level clause; the synchronisation points.
CLAUSE_KEYWORDS: FrozenSet[str] = frozenset(
    {"feature", "create", "convert", "inherit", "invariant"}
)

_HARD_SYNC: FrozenSet[str] = frozenset({"feature", "inherit", "convert"})
_CLASS_MARKS: FrozenSet[str] = frozenset({"deferred", "expanded", "frozen", "once", "separate"})
_ROUTINE_START: FrozenSet[str] = frozenset(
    {"require", "local", "do", "once", "deferred", "external", "attribute", "obsolete", "note"}
)
_PARENT_ADAPTATION: FrozenSet[str] = frozenset({"rename", "export", "undefine", "redefine", "select"})

_REQUIRE_STOPS = frozenset({"local", "do", "once", "deferred", "external", "attribute", "ensure", "end"})
_ENSURE_STOPS = frozenset({"rescue", "end"})
_INVARIANT_STOPS = frozenset({"end", "note"})
_LOOP_INVARIANT_STOPS = frozenset({"until", "variant", "loop"})
_CHECK_STOPS = frozenset({"end", "then"})


@dataclass(frozen=True)
class ParseResult:
    tree: A.SyntaxTree
    diagnostics: Tuple[Diagnostic, ...]
    recoveries: int = 0


# ═══════════════════════════════════════════════════════════════════════
#  Parser
# ═══════════════════════════════════════════════════════════════════════


class Parser:
    """Recursive-descent parser for one class text."""

    def __init__(self, lexed: LexResult) -> None:
        self.lexed = lexed
        self.path = lexed.buffer.path
        self.raw: Tuple[Token, ...] = lexed.tokens
        significant = [
            (i, tok) for i, tok in enumerate(lexed.tokens) if not tok.is_trivia and tok.kind is not TokenKind.INVALID
        ]
        self.tokens: Tuple[Token, ...] = tuple(tok for _, tok in significant)
        # raw index of each significant token, keyed by offset, for trivia lookups
        self._raw_index: Dict[int, int] = {tok.offset: i for i, tok in significant}
        self.pos = 0
        self.diagnostics: List[Diagnostic] = []
        self.recoveries = 0
        self._failure: Optional[Tuple[str, Token]] = None

    # ── public entry point ──────────────────────────────────────────

    def parse(self) -> ParseResult:
        self._report_token_issues()
        decl = self._class_text()
        tree = A.SyntaxTree(path=self.path, classes=(decl,))
        logger.debug(
            "%s: parsed class %r, %d features, %d recoveries",
            self.path,
            decl.name.text,
            len(decl.features),
            self.recoveries,
        )
        return ParseResult(tree=tree, diagnostics=tuple(self.diagnostics), recoveries=self.recoveries)

    # ── cursor primitives ───────────────────────────────────────────

    def _peek(self, ahead: int = 0) -> Token:
        index = min(self.pos + ahead, len(self.tokens) - 1)
        return self.tokens[index]

    def _advance(self) -> Token:
        tok = self.tokens[self.pos]
        if tok.kind is not TokenKind.EOF:
            self.pos += 1
        return tok

    def _at_eof(self) -> bool:
        return self._peek().kind is TokenKind.EOF

    def _at_keyword(self, *words: str) -> bool:
        return self._peek().is_keyword(*words)

    def _at_op(self, *ops: str) -> bool:
        return self._peek().is_op(*ops)

    def _accept_keyword(self, *words: str) -> Optional[Token]:
        if self._at_keyword(*words):
            return self._advance()
        return None

    def _accept_op(self, *ops: str) -> Optional[Token]:
        if self._at_op(*ops):
            return self._advance()
        return None

    def _expect_keyword(self, word: str) -> Optional[Token]:
        if self._at_keyword(word):
            return self._advance()
        return self._fail(f"expected '{word}', found {self._describe(self._peek())}")

    def _expect_op(self, op: str) -> Optional[Token]:
        if self._at_op(op):
            return self._advance()
        return self._fail(f"expected '{op}', found {self._describe(self._peek())}")

    def _expect_identifier(self, what: str = "identifier") -> Optional[Token]:
        if self._peek().is_identifier():
            return self._advance()
        return self._fail(f"expected {what}, found {self._describe(self._peek())}")

    @staticmethod
    def _describe(tok: Token) -> str:
        if tok.kind is TokenKind.EOF:
            return "end of file"
        return f"'{tok.text}'"

    def _at_clause_keyword(self) -> bool:
        return self._peek().is_keyword(*CLAUSE_KEYWORDS)

    def _trailing_comments(self, after: Token) -> List[Token]:
        """Comment tokens between *after* and the next significant token."""
        comments: List[Token] = []
        raw = self._raw_index.get(after.offset, len(self.raw)) + 1
        while raw < len(self.raw) and self.raw[raw].is_trivia:
            if self.raw[raw].kind is TokenKind.COMMENT:
                comments.append(self.raw[raw])
            raw += 1
        return comments

    # ── failure and recovery ────────────────────────────────────────

    def _fail(self, message: str, tok: Optional[Token] = None) -> None:
        """Record the first failure of the current attempt; returns None."""
        if self._failure is None:
            self._failure = (message, tok if tok is not None else self._peek())
        return None

    def _error(self, message: str, location: SourceLocation) -> None:
        self.diagnostics.append(
            Diagnostic(
                rule_id=RuleId.SYNTAX_ERROR,
                severity=Severity.ERROR,
                message=message,
                location=location,
                path=self.path,
            )
        )

    def _flush_failure(self, default: str) -> None:
        if self._failure is not None:
            message, tok = self._failure
        else:
            message, tok = default, self._peek()
        self._failure = None
        self._error(message, tok.location)

    def _recover(self, mark: int, sibling_column: int = 0) -> None:
        """Emit the pending failure, restore the cursor and synchronise."""
        self._flush_failure(f"unexpected {self._describe(self._peek())}")
        self.recoveries += 1
        self.pos = mark
        self._synchronize(sibling_column)
        if self.pos == mark and not self._at_eof() and not self._at_sync_point():
            self._advance()
            self._synchronize(sibling_column)
        logger.debug("%s: resynchronised at %s", self.path, self._peek())

    def _at_sync_point(self) -> bool:
        return self._at_clause_keyword() or self._at_keyword("end", "note")

    def _synchronize(self, sibling_column: int = 0) -> None:
        """Skip to the next synchronisation token.

        Stops before ``feature``/``inherit``/``convert`` at any depth, before
        any other clause keyword or the class ``end`` at block depth zero,
        after the ``end`` that closes a routine opened while skipping, or
        before a declaration that starts a line at *sibling_column*.
        """
        scanner = BlockScanner()
        start = self.pos
        while not self._at_eof():
            tok = self._peek()
            if tok.is_keyword(*_HARD_SYNC):
                return
            if scanner.depth == 0:
                if tok.is_keyword(*CLAUSE_KEYWORDS) or tok.is_keyword("end", "note"):
                    return
                if (
                    sibling_column
                    and self.pos > start
                    and tok.column == sibling_column
                    and (tok.is_identifier() or tok.is_keyword("frozen"))
                    and self._starts_line(self.pos)
                ):
                    return
            was_open = scanner.depth
            if scanner.depth == 0 and tok.is_keyword("deferred", "external", "attribute"):
                scanner.stack.append("routine")
            else:
                scanner.feed(self.tokens, self.pos)
            self._advance()
            if tok.is_keyword("end") and was_open == 1 and scanner.depth == 0:
                return

    def _starts_line(self, sig_index: int) -> bool:
        if sig_index == 0:
            return True
        return self.tokens[sig_index - 1].line < self.tokens[sig_index].line

    def _report_token_issues(self) -> None:
        for tok in self.raw:
            if tok.issue:
                self._error(tok.issue, tok.location)

    # ── class text ──────────────────────────────────────────────────

    def _class_text(self) -> A.ClassDecl:
        if self._at_keyword("note"):
            self._skip_note()

        mark = self.pos
        header = self._class_header()
        if header is None:
            self._recover(mark)
            header = (A.Name("", self._peek().location), A.ClassKind.ORDINARY, False)
        name, kind, frozen = header

        generics: Tuple[A.Name, ...] = ()
        if self._at_op("["):
            generics = self._formal_generics()
        if self._accept_keyword("obsolete"):
            if self._peek().kind is TokenKind.STRING:
                self._advance()

        parents: List[A.Name] = []
        creators: List[A.Name] = []
        clauses: List[A.FeatureClause] = []
        invariant: Optional[A.InvariantClause] = None

        while True:
            tok = self._peek()
            mark = self.pos
            if tok.kind is TokenKind.EOF:
                self._error("missing 'end' of class", tok.location)
                break
            if tok.is_keyword("end"):
                self._advance()
                break
            if tok.is_keyword("inherit"):
                found = self._inherit_clause()
                if found is None:
                    self._recover(mark + 1)
                else:
                    parents.extend(found)
            elif tok.is_keyword("create"):
                found = self._creation_clause()
                if found is None:
                    self._recover(mark + 1)
                else:
                    creators.extend(found)
            elif tok.is_keyword("convert"):
                self._advance()
                self._skip_to_clause()
            elif tok.is_keyword("feature"):
                clauses.append(self._feature_clause())
            elif tok.is_keyword("invariant"):
                clause = self._invariant_clause()
                if invariant is None:
                    invariant = clause
                else:
                    merged = invariant.block.assertions + clause.block.assertions
                    invariant = A.InvariantClause(
                        location=invariant.location,
                        block=A.AssertionBlock(A.AssertionKind.INVARIANT, invariant.location, merged),
                        agents=invariant.agents + clause.agents,
                        quantifiers=invariant.quantifiers + clause.quantifiers,
                    )
            elif tok.is_keyword("note"):
                self._skip_note()
            elif tok.is_identifier() or tok.is_keyword("frozen"):
                features = self._feature_list()
                clauses.append(
                    A.FeatureClause(
                        kind=A.ClauseKind.IMPLICIT,
                        location=tok.location,
                        features=tuple(features),
                    )
                )
            else:
                self._fail(f"unexpected {self._describe(tok)} at class level")
                self._recover(mark)

        if not self._at_eof():
            self._error(
                f"unexpected {self._describe(self._peek())} after end of class",
                self._peek().location,
            )

        return A.ClassDecl(
            name=name,
            location=name.location,
            kind=kind,
            frozen=frozen,
            generics=generics,
            parents=tuple(parents),
            creators=tuple(creators),
            clauses=tuple(clauses),
            invariant=invariant,
        )

    def _class_header(self) -> Optional[Tuple[A.Name, A.ClassKind, bool]]:
        kind = A.ClassKind.ORDINARY
        frozen = False
        while self._at_keyword(*_CLASS_MARKS):
            mark = self._advance().lowered
            if mark == "once":
                kind = A.ClassKind.ONCE
            elif mark == "deferred":
                kind = A.ClassKind.DEFERRED
            elif mark == "expanded":
                kind = A.ClassKind.EXPANDED
            elif mark == "frozen":
                frozen = True
        if self._expect_keyword("class") is None:
            return None
        tok = self._expect_identifier("class name")
        if tok is None:
            return None
        return A.Name(tok.text, tok.location), kind, frozen

    def _skip_note(self) -> None:
        """Skip a ``note`` clause up to the next line-leading keyword."""
        self._advance()
        while not self._at_eof():
            if self._starts_line(self.pos) and (
                self._at_keyword(*_CLASS_MARKS, "class", "end") or self._at_clause_keyword()
            ):
                return
            self._advance()

    def _skip_to_clause(self) -> None:
        while not self._at_eof() and not self._at_clause_keyword() and not self._at_keyword("end", "note"):
            self._advance()

    def _formal_generics(self) -> Tuple[A.Name, ...]:
        names: List[A.Name] = []
        depth = 0
        expect_name = True
        while not self._at_eof():
            tok = self._advance()
            if tok.is_op("["):
                depth += 1
                expect_name = depth == 1
                continue
            if tok.is_op("]"):
                depth -= 1
                if depth == 0:
                    break
                continue
            if depth == 1 and tok.is_op(","):
                expect_name = True
                continue
            if depth == 1 and expect_name and tok.is_identifier():
                names.append(A.Name(tok.text, tok.location))
            if depth == 1 and not tok.is_keyword("frozen", "detachable", "attached", "separate", "expanded"):
                expect_name = False
        return tuple(names)

    def _inherit_clause(self) -> Optional[List[A.Name]]:
        self._advance()
        if self._at_op("{"):
            self._skip_braces()
        parents: List[A.Name] = []
        while True:
            tok = self._peek()
            if tok.is_identifier() or tok.is_keyword("tuple"):
                self._advance()
                parents.append(A.Name(tok.text, tok.location))
                if self._at_op("["):
                    self._skip_brackets()
                if self._at_keyword(*_PARENT_ADAPTATION):
                    while not self._at_eof() and not self._at_keyword("end"):
                        if self._at_clause_keyword() and self._starts_line(self.pos):
                            return self._fail("unterminated parent adaptation (missing 'end')")
                        self._advance()
                    if self._expect_keyword("end") is None:
                        return None
            elif tok.is_op(";"):
                self._advance()
            elif tok.kind is TokenKind.EOF or tok.is_keyword("end", "note") or tok.is_keyword(*CLAUSE_KEYWORDS):
                return parents
            else:
                return self._fail(f"unexpected {self._describe(tok)} in inherit clause")

    def _creation_clause(self) -> Optional[List[A.Name]]:
        self._advance()
        if self._at_op("{"):
            self._skip_braces()
        names: List[A.Name] = []
        while self._peek().is_identifier():
            tok = self._advance()
            names.append(A.Name(tok.text, tok.location))
            if not self._accept_op(","):
                break
        else:
            if names:
                return self._fail("expected creation procedure name after ','")
        return names

    def _skip_braces(self) -> Tuple[str, ...]:
        names: List[str] = []
        self._advance()
        while not self._at_eof() and not self._at_op("}"):
            tok = self._advance()
            if tok.is_identifier():
                names.append(tok.text)
        self._accept_op("}")
        return tuple(names)

    def _skip_brackets(self) -> List[Token]:
        taken: List[Token] = []
        depth = 0
        while not self._at_eof():
            tok = self._advance()
            taken.append(tok)
            if tok.is_op("["):
                depth += 1
            elif tok.is_op("]"):
                depth -= 1
                if depth == 0:
                    break
        return taken

    # ── feature clauses ─────────────────────────────────────────────

    def _feature_clause(self) -> A.FeatureClause:
        keyword = self._advance()
        clients: Tuple[str, ...] = ()
        last = keyword
        if self._at_op("{"):
            clients = self._skip_braces()
            last = self.tokens[self.pos - 1]
        comments = self._trailing_comments(last)
        category = comments[0].value if comments and comments[0].line == last.line else None
        features = self._feature_list()
        return A.FeatureClause(
            kind=A.ClauseKind.EXPLICIT,
            location=keyword.location,
            category=category,
            clients=clients,
            features=tuple(features),
        )

    def _feature_list(self) -> List[A.FeatureDecl]:
        features: List[A.FeatureDecl] = []
        while True:
            tok = self._peek()
            if tok.kind is TokenKind.EOF or tok.is_keyword("end", "note") or self._at_clause_keyword():
                return features
            mark = self.pos
            if tok.is_identifier() or tok.is_keyword("frozen"):
                decls = self._feature_declaration()
                if decls is None:
                    self._recover(mark, sibling_column=tok.column)
                else:
                    features.extend(decls)
            else:
                self._fail(f"expected feature declaration, found {self._describe(tok)}")
                self._recover(mark, sibling_column=tok.column)

    def _feature_declaration(self) -> Optional[List[A.FeatureDecl]]:
        names: List[Tuple[A.Name, bool]] = []
        while True:
            frozen = self._accept_keyword("frozen") is not None
            tok = self._expect_identifier("feature name")
            if tok is None:
                return None
            names.append((A.Name(tok.text, tok.location), frozen))
            if self._accept_keyword("alias"):
                if self._peek().kind is not TokenKind.STRING:
                    return self._fail("expected operator string after 'alias'")
                self._advance()
                self._accept_keyword("convert")
            if not self._accept_op(","):
                break

        parameters: Tuple[A.Parameter, ...] = ()
        if self._at_op("("):
            parsed = self._formal_arguments()
            if parsed is None:
                return None
            parameters = parsed

        return_type: Optional[A.TypeRef] = None
        if self._accept_op(":"):
            return_type = self._type()
            if return_type is None:
                return None
        if self._accept_keyword("assign"):
            if self._expect_identifier("assigner name") is None:
                return None

        last = self.tokens[self.pos - 1]
        if self._accept_op("="):
            if return_type is None:
                return self._fail("constant without a declared type")
            self._accept_op("-", "+")
            value = self._peek()
            if value.kind not in (
                TokenKind.NUMBER, TokenKind.STRING, TokenKind.CHARACTER, TokenKind.NUMERIC_ESCAPE
            ) and not value.is_keyword("true", "false"):
                return self._fail(f"expected constant value, found {self._describe(value)}")
            last = self._advance()
            header = self._header_comment(last)
            return [
                A.FeatureDecl(
                    name=name,
                    location=name.location,
                    frozen=frozen,
                    return_type=return_type,
                    header_comment=header,
                    end_location=last.location,
                )
                for name, frozen in names
            ]
        is_keyword = self._accept_keyword("is")
        if is_keyword is not None:
            last = is_keyword

        header = self._header_comment(last)
        if self._accept_keyword("obsolete"):
            if self._peek().kind is TokenKind.STRING:
                self._advance()
        if self._at_keyword("note"):
            self._advance()
            while not self._at_eof() and not self._at_keyword(*(_ROUTINE_START - {"note", "obsolete"})):
                if self._at_clause_keyword() or self._at_keyword("end"):
                    return self._fail("feature note clause without routine body")
                self._advance()

        if not self._at_keyword(*_ROUTINE_START) or (
            self._at_keyword("once") and is_manifest_once(self.tokens, self.pos)
        ):
            if return_type is None:
                return self._fail(
                    f"expected ':' or a routine body after '{names[0][0].text}', "
                    f"found {self._describe(self._peek())}"
                )
            return [
                A.FeatureDecl(
                    name=name,
                    location=name.location,
                    parameters=parameters,
                    frozen=frozen,
                    return_type=return_type,
                    header_comment=header,
                    end_location=last.location,
                )
                for name, frozen in names
            ]

        routine = self._routine()
        if routine is None:
            return None
        return [
            A.FeatureDecl(
                name=name,
                location=name.location,
                parameters=parameters,
                return_type=return_type,
                frozen=frozen,
                header_comment=header,
                **routine,
            )
            for name, frozen in names
        ]

    def _header_comment(self, after: Token) -> Optional[str]:
        comments = self._trailing_comments(after)
        if not comments:
            return None
        return " ".join(c.value for c in comments if c.value) or None

    def _formal_arguments(self) -> Optional[Tuple[A.Parameter, ...]]:
        self._advance()
        params: List[A.Parameter] = []
        while not self._at_op(")"):
            group: List[Token] = []
            while True:
                tok = self._expect_identifier("argument name")
                if tok is None:
                    return None
                group.append(tok)
                if not self._accept_op(","):
                    break
            if self._expect_op(":") is None:
                return None
            type_ref = self._type()
            if type_ref is None:
                return None
            params.extend(A.Parameter(A.Name(t.text, t.location), type_ref) for t in group)
            self._accept_op(";")
        self._advance()
        return tuple(params)

    def _type(self) -> Optional[A.TypeRef]:
        start = self._peek()
        mark = A.TypeMark.DEFAULT
        if self._accept_keyword("attached") or self._accept_op("!"):
            mark = A.TypeMark.ATTACHED
        elif self._accept_keyword("detachable") or self._accept_op("?"):
            mark = A.TypeMark.DETACHABLE
        self._accept_keyword("separate")
        self._accept_keyword("frozen")
        pieces: List[Token] = []
        if self._at_keyword("like"):
            pieces.append(self._advance())
            anchor = self._peek()
            if not (anchor.is_identifier() or anchor.is_keyword("current")):
                return self._fail(f"expected anchor after 'like', found {self._describe(anchor)}")
            pieces.append(self._advance())
            while self._at_op(".") and self._peek(1).is_identifier():
                pieces.append(self._advance())
                pieces.append(self._advance())
        elif self._peek().is_identifier() or self._at_keyword("tuple"):
            pieces.append(self._advance())
            if self._at_op("["):
                pieces.extend(self._skip_brackets())
        else:
            return self._fail(f"expected type, found {self._describe(self._peek())}")
        return A.TypeRef(render_tokens(pieces), mark, start.location)

    # ── routines ────────────────────────────────────────────────────

    def _routine(self) -> Optional[dict]:
        require = None
        if self._at_keyword("require"):
            require = self._assertion_block(A.AssertionKind.PRECONDITION, _REQUIRE_STOPS, "else")

        locals_: Tuple[A.LocalDecl, ...] = ()
        if self._at_keyword("local"):
            parsed = self._locals()
            if parsed is None:
                return None
            locals_ = parsed

        body_kind = A.BodyKind.NONE
        once_keys: Tuple[str, ...] = ()
        body: Tuple[Token, ...] = ()
        keyword = self._peek()
        if self._accept_keyword("do"):
            body_kind = A.BodyKind.DO
            body = self._body_span()
        elif self._accept_keyword("once"):
            body_kind = A.BodyKind.ONCE
            once_keys = self._once_keys()
            body = self._body_span()
        elif self._accept_keyword("attribute"):
            body_kind = A.BodyKind.ATTRIBUTE
            body = self._body_span()
        elif self._accept_keyword("deferred"):
            body_kind = A.BodyKind.DEFERRED
        elif self._accept_keyword("external"):
            body_kind = A.BodyKind.EXTERNAL
            if self._peek().kind is not TokenKind.STRING:
                return self._fail("expected language string after 'external'")
            self._advance()
            if self._accept_keyword("alias"):
                if self._peek().kind is not TokenKind.STRING:
                    return self._fail("expected string after 'alias'")
                self._advance()
        else:
            return self._fail(
                "expected routine body (do, once, deferred, external or attribute), "
                f"found {self._describe(keyword)}"
            )

        ensure = None
        if self._at_keyword("ensure"):
            ensure = self._assertion_block(A.AssertionKind.POSTCONDITION, _ENSURE_STOPS, "then")

        if self._accept_keyword("rescue"):
            self._body_span()

        end = self._expect_keyword("end")
        if end is None:
            return None

        agents: List[A.AgentExpr] = []
        quantifiers: List[A.QuantifierExpr] = []
        for statement in split_statements(body):
            found_agents, found_quantifiers = self._constructs(statement)
            agents.extend(found_agents)
            quantifiers.extend(found_quantifiers)
        for block in (require, ensure):
            if block is None:
                continue
            for assertion in block:
                found_agents, found_quantifiers = self._constructs(assertion.expression)
                agents.extend(found_agents)
                quantifiers.extend(found_quantifiers)

        return dict(
            require=require,
            ensure=ensure,
            locals=locals_,
            body_kind=body_kind,
            once_keys=once_keys,
            body=body,
            agents=tuple(agents),
            quantifiers=tuple(quantifiers),
            inner_assertions=self._inner_assertions(body),
            end_location=end.location,
        )

    def _once_keys(self) -> Tuple[str, ...]:
        if not self._at_op("("):
            return ()
        keys: List[str] = []
        self._advance()
        while not self._at_eof() and not self._at_op(")"):
            tok = self._advance()
            if tok.kind is TokenKind.STRING:
                keys.append(tok.value)
        self._accept_op(")")
        return tuple(keys)

    def _locals(self) -> Optional[Tuple[A.LocalDecl, ...]]:
        self._advance()
        decls: List[A.LocalDecl] = []
        while self._peek().is_identifier():
            group: List[Token] = []
            while True:
                tok = self._expect_identifier("local name")
                if tok is None:
                    return None
                group.append(tok)
                if not self._accept_op(","):
                    break
            if self._expect_op(":") is None:
                return None
            type_ref = self._type()
            if type_ref is None:
                return None
            decls.extend(A.LocalDecl(A.Name(t.text, t.location), type_ref) for t in group)
            self._accept_op(";")
        return tuple(decls)

    def _body_span(self) -> Tuple[Token, ...]:
        end = find_span_end(
            self.tokens,
            self.pos,
            stops=frozenset({"ensure", "rescue", "end"}),
            hard_stops=frozenset({"feature"}),
        )
        span = self.tokens[self.pos:end]
        self.pos = end
        return span

    # ── assertions ──────────────────────────────────────────────────

    def _assertion_block(
        self, kind: A.AssertionKind, stops: FrozenSet[str], extension: str
    ) -> A.AssertionBlock:
        keyword = self._advance()
        extended = self._accept_keyword(extension) is not None
        end = find_span_end(self.tokens, self.pos, stops=stops, hard_stops=frozenset({"feature"}))
        span = self.tokens[self.pos:end]
        self.pos = end
        return A.AssertionBlock(
            kind=kind,
            location=keyword.location,
            assertions=self._assertions(span, kind),
            extended=extended,
        )

    @staticmethod
    def _assertions(span: Sequence[Token], kind: A.AssertionKind) -> Tuple[A.Assertion, ...]:
        found: List[A.Assertion] = []
        for entry in split_statements(span):
            if len(entry) >= 2 and entry[0].is_identifier() and entry[1].is_op(":"):
                found.append(A.Assertion(entry[0].text, tuple(entry[2:]), kind, entry[0].location))
            else:
                found.append(A.Assertion("", tuple(entry), kind, entry[0].location))
        return tuple(found)

    def _invariant_clause(self) -> A.InvariantClause:
        block = self._assertion_block(A.AssertionKind.INVARIANT, _INVARIANT_STOPS, "")
        agents: List[A.AgentExpr] = []
        quantifiers: List[A.QuantifierExpr] = []
        for assertion in block:
            found_agents, found_quantifiers = self._constructs(assertion.expression)
            agents.extend(found_agents)
            quantifiers.extend(found_quantifiers)
        return A.InvariantClause(
            location=block.location,
            block=block,
            agents=tuple(agents),
            quantifiers=tuple(quantifiers),
        )

    def _inner_assertions(self, body: Sequence[Token]) -> Tuple[A.AssertionBlock, ...]:
        """Loop invariants and ``check`` instructions inside a routine body."""
        blocks: List[A.AssertionBlock] = []
        scanner = BlockScanner()
        for index, tok in enumerate(body):
            if tok.is_keyword("invariant") and scanner.top in ("from", "across"):
                end = find_span_end(body, index + 1, _LOOP_INVARIANT_STOPS)
                kind = A.AssertionKind.LOOP_INVARIANT
                blocks.append(A.AssertionBlock(kind, tok.location, self._assertions(body[index + 1:end], kind)))
            elif tok.is_keyword("check"):
                end = find_span_end(body, index + 1, _CHECK_STOPS)
                kind = A.AssertionKind.CHECK
                blocks.append(A.AssertionBlock(kind, tok.location, self._assertions(body[index + 1:end], kind)))
            scanner.feed(body, index)
        return tuple(blocks)

    # ── agents and quantifiers ──────────────────────────────────────

    def _constructs(
        self, span: Sequence[Token]
    ) -> Tuple[List[A.AgentExpr], List[A.QuantifierExpr]]:
        agents: List[A.AgentExpr] = []
        quantifiers: List[A.QuantifierExpr] = []
        index = 0
        while index < len(span):
            tok = span[index]
            if tok.is_keyword("agent"):
                agent, index = self._agent(span, index)
                if agent is not None:
                    agents.append(agent)
                continue
            if tok.is_op(FOR_ALL, THERE_EXISTS):
                quantifiers.append(self._quantifier(span, index))
            index += 1
        return agents, quantifiers

    def _agent(self, span: Sequence[Token], index: int) -> Tuple[Optional[A.AgentExpr], int]:
        """Parse ``agent ...`` starting at ``span[index]``.

        Returns the node (or ``None`` after reporting a syntax error) and
        the index to continue scanning from.
        """
        keyword = span[index]
        cursor = index + 1
        if cursor >= len(span):
            self._error("incomplete agent expression", keyword.location)
            return None, cursor
        tok = span[cursor]

        if tok.is_keyword(*_ROUTINE_START_INLINE):
            return A.AgentExpr(keyword.location, A.AgentTarget(A.TargetKind.IMPLICIT_CURRENT), None, inline=True), cursor

        target = A.AgentTarget(A.TargetKind.IMPLICIT_CURRENT)
        if tok.is_op("("):
            close = _matching(span, cursor, "(", ")")
            after = span[close + 1] if close + 1 < len(span) else None
            if close < 0:
                self._error("unbalanced parentheses in agent expression", tok.location)
                return None, cursor + 1
            if after is not None and (after.is_op(":") or after.is_keyword(*_ROUTINE_START_INLINE)):
                return (
                    A.AgentExpr(keyword.location, A.AgentTarget(A.TargetKind.IMPLICIT_CURRENT), None, inline=True),
                    close + 1,
                )
            if after is None or not after.is_op("."):
                self._error("expected '.' after parenthesised agent target", (after or tok).location)
                return None, close + 1
            target = A.AgentTarget(A.TargetKind.CLOSED, render_tokens(span[cursor:close + 1]))
            cursor = close + 2
        elif tok.is_op("{"):
            close = _matching(span, cursor, "{", "}")
            if close < 0 or close + 1 >= len(span) or not span[close + 1].is_op("."):
                self._error("expected '{TYPE}.feature' for open agent target", tok.location)
                return None, cursor + 1
            target = A.AgentTarget(A.TargetKind.OPEN, render_tokens(span[cursor + 1:close]))
            cursor = close + 2

        chain: List[Token] = []
        while cursor < len(span):
            part = span[cursor]
            if not (part.is_identifier() or part.is_keyword("current", "result", "precursor")):
                break
            chain.append(part)
            if cursor + 2 < len(span) and span[cursor + 1].is_op(".") and (
                span[cursor + 2].is_identifier() or span[cursor + 2].is_keyword("current", "result")
            ):
                cursor += 2
                continue
            cursor += 1
            break
        if not chain or not chain[-1].is_identifier():
            where = span[cursor] if cursor < len(span) else keyword
            self._error(f"expected feature name in agent expression, found {self._describe(where)}", where.location)
            return None, cursor
        if len(chain) > 1:
            if target.kind is not A.TargetKind.IMPLICIT_CURRENT:
                prefix = target.text + "."
            else:
                prefix = ""
            target = A.AgentTarget(
                A.TargetKind.OPEN if target.kind is A.TargetKind.OPEN else A.TargetKind.CLOSED,
                prefix + ".".join(t.text for t in chain[:-1]),
            )
        feature = chain[-1].text

        arguments: Optional[Tuple[A.AgentArgument, ...]] = None
        if cursor < len(span) and span[cursor].is_op("("):
            close = _matching(span, cursor, "(", ")")
            if close < 0:
                self._error("unbalanced parentheses in agent arguments", span[cursor].location)
                return None, len(span)
            arguments = _split_arguments(span[cursor], span[cursor + 1:close])
            cursor = close + 1
        return A.AgentExpr(keyword.location, target, feature, arguments), cursor

    def _quantifier(self, span: Sequence[Token], index: int) -> A.QuantifierExpr:
        symbol = span[index]
        cursor = index + 1
        name: Optional[A.Name] = None
        if cursor < len(span) and span[cursor].is_identifier():
            name = A.Name(span[cursor].text, span[cursor].location)
            cursor += 1
        has_colon = cursor < len(span) and span[cursor].is_op(":")
        has_bar = False
        depth = 0
        for tok in span[cursor:]:
            if tok.is_op(FOR_ALL, THERE_EXISTS):
                break
            if tok.is_op("(", "["):
                depth += 1
            elif tok.is_op(")", "]"):
                depth -= 1
                if depth < 0:
                    break
            elif depth == 0 and tok.is_op(QUANTIFIER_BAR):
                has_bar = True
                break
        return A.QuantifierExpr(symbol.location, symbol.text, name, has_colon, has_bar)


_ROUTINE_START_INLINE: FrozenSet[str] = frozenset({"do", "once", "require", "local", "external"})


def _matching(span: Sequence[Token], start: int, opener: str, closer: str) -> int:
    depth = 0
    for index in range(start, len(span)):
        tok = span[index]
        if tok.is_op(opener):
            depth += 1
        elif tok.is_op(closer):
            depth -= 1
            if depth == 0:
                return index
    return -1


def _split_arguments(paren: Token, inner: Sequence[Token]) -> Tuple[A.AgentArgument, ...]:
    """Split agent arguments at top-level commas; ``?`` alone is open."""
    groups: List[List[Token]] = [[]]
    depth = 0
    for tok in inner:
        if tok.is_op("(", "[", "{"):
            depth += 1
        elif tok.is_op(")", "]", "}"):
            depth -= 1
        if depth == 0 and tok.is_op(","):
            groups.append([])
            continue
        groups[-1].append(tok)
    if len(groups) == 1 and not groups[0]:
        return ()
    arguments: List[A.AgentArgument] = []
    for group in groups:
        location = group[0].location if group else paren.location
        is_open = len(group) == 1 and group[0].is_op("?")
        arguments.append(A.AgentArgument(is_open, tuple(group), location))
    return tuple(arguments)


# ═══════════════════════════════════════════════════════════════════════
#  Convenience wrappers
# ═══════════════════════════════════════════════════════════════════════


def parse(lexed: LexResult) -> ParseResult:
    return Parser(lexed).parse()


def parse_text(text: str, path: str = "<string>") -> ParseResult:
    return Parser(tokenize(text, path)).parse()
