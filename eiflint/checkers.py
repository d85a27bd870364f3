"""
eiflint/checkers.py
═══════════════════

Rule checkers, their registry and the engine that runs them.

Architecture
────────────

  ┌──────────────────────────────────────────────────────────┐
  │                       RuleEngine                         │
  │  ┌──────────────┐  ┌──────────────┐  ┌──────────────┐    │
  │  │   Naming     │  │  Contract    │  │  Once-class  │ …  │
  │  │   Checker    │  │  Presence    │  │   Checker    │    │
  │  └──────┬───────┘  └──────┬───────┘  └──────┬───────┘    │
  │         │                 │                 │            │
  │  ┌──────▼─────────────────▼─────────────────▼─────────┐  │
  │  │                   AnalysisUnit                     │  │
  │  │   SyntaxTree │ token tuple │ lexer diagnostics     │  │
  │  └────────────────────────────────────────────────────┘  │
  └──────────────────────────────────────────────────────────┘

Every checker is stateless: ``check(unit)`` reads the unit and returns a
fresh list of diagnostics.  Checkers never see each other's output, so
the module-level :data:`REGISTRY` can be shared by all worker threads.
Lexer findings (``invalid-escape``, ``tab-expected``) reach the report
only through the escape and layout checkers, which re-classify or pass
them through.
"""

from __future__ import annotations

import bisect
import logging
import os
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import ClassVar, Dict, FrozenSet, List, Optional, Sequence, Tuple

from eiflint import ast as A
from eiflint import rulebook
from eiflint.errors import Diagnostic, RuleId, Severity
from eiflint.lexer import LineInfo, Token, TokenKind
from eiflint.source import SourceBuffer, SourceLocation, UNKNOWN_LOCATION
from eiflint.spans import assigned_names, count_statements
from eiflint.visitor import (
    DepthFirstVisitor,
    iter_agents,
    iter_assertion_blocks,
    iter_features,
    iter_quantifiers,
    iter_routines,
)

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════════
#  PART 1 — ANALYSIS UNIT
# ═════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class AnalysisUnit:
    """Everything the checkers may look at for one file.

    Attributes
    ----------
    path              : file path as given on the command line
    buffer            : the normalised source text
    tree              : parser output
    tokens            : full token tuple, trivia included
    lexer_diagnostics : ``invalid-escape`` / ``tab-expected`` findings
    lines             : per-line layout facts from the lexer
    """

    path: str
    buffer: SourceBuffer
    tree: A.SyntaxTree
    tokens: Tuple[Token, ...]
    lexer_diagnostics: Tuple[Diagnostic, ...] = ()
    lines: Tuple[LineInfo, ...] = ()

    def token_at(self, offset: int) -> Optional[Token]:
        """The token whose text covers *offset*, if any."""
        starts = [tok.offset for tok in self.tokens]
        index = bisect.bisect_right(starts, offset) - 1
        if index < 0:
            return None
        tok = self.tokens[index]
        if tok.offset <= offset < max(tok.end_offset, tok.offset + 1):
            return tok
        return None


# ═════════════════════════════════════════════════════════════════════════
#  PART 2 — CHECKER BASE CLASS
# ═════════════════════════════════════════════════════════════════════════

class Checker(ABC):
    """
    Abstract base class for all rule checkers.

    Subclass Contract
    ─────────────────
      - Set ``family`` and ``rule_ids`` (ids must exist in the rulebook)
      - Implement ``check()``; build and return a new list every call
    """

    family: ClassVar[str] = "base"
    rule_ids: ClassVar[Tuple[str, ...]] = ()

    @abstractmethod
    def check(self, unit: AnalysisUnit) -> List[Diagnostic]:
        ...

    @staticmethod
    def _diag(
        unit: AnalysisUnit,
        rule_id: str,
        message: str,
        location: SourceLocation,
        severity: Optional[Severity] = None,
        fix: Optional[str] = None,
    ) -> Diagnostic:
        return Diagnostic(
            rule_id=rule_id,
            severity=severity or rulebook.severity_of(rule_id),
            message=message,
            location=location,
            fix=fix,
            path=unit.path,
        )

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} '{self.family}'>"


# ═════════════════════════════════════════════════════════════════════════
#  PART 3 — PRODUCTION CHECKERS
# ═════════════════════════════════════════════════════════════════════════

# ─────────────────────────────────────────────────────────────────────────
#  3.1  Naming
# ─────────────────────────────────────────────────────────────────────────

class NamingChecker(Checker):
    """Class and generic names upper case; everything else lower snake case."""

    family = "naming"
    rule_ids = (RuleId.NAMING,)

    _CLASS_RE = re.compile(rulebook.param(RuleId.NAMING, "class_pattern") + r"\Z")
    _FEATURE_RE = re.compile(rulebook.param(RuleId.NAMING, "feature_pattern") + r"\Z")

    def check(self, unit: AnalysisUnit) -> List[Diagnostic]:
        walker = _DeclaredNames()
        walker.visit(unit.tree)
        out: List[Diagnostic] = []
        for what, name, upper in walker.found:
            if upper and not self._CLASS_RE.match(name.text):
                out.append(
                    self._diag(
                        unit,
                        RuleId.NAMING,
                        f"{what} name '{name.text}' should be upper case",
                        name.location,
                        fix=f"rename to '{name.text.upper()}'",
                    )
                )
            elif not upper and not self._FEATURE_RE.match(name.text):
                out.append(
                    self._diag(
                        unit,
                        RuleId.NAMING,
                        f"{what} name '{name.text}' should be lower snake case",
                        name.location,
                        fix=f"rename to '{_snake_case(name.text)}'",
                    )
                )
        return out


class _DeclaredNames(DepthFirstVisitor):
    """Collects ``(what, name, upper)`` for every declared name, in tree order."""

    def __init__(self) -> None:
        self.found: List[Tuple[str, A.Name, bool]] = []

    def visit_class_decl(self, node: A.ClassDecl) -> None:
        if node.name.text:
            self.found.append(("class", node.name, True))
        for generic in node.generics:
            self.found.append(("formal generic", generic, True))
        for clause in node.clauses:
            self.visit(clause)
        if node.invariant is not None:
            self.visit(node.invariant)

    def visit_feature_decl(self, node: A.FeatureDecl) -> None:
        self.found.append(("feature", node.name, False))
        self.generic_visit(node)

    def visit_parameter(self, node: A.Parameter) -> None:
        self.found.append(("argument", node.name, False))

    def visit_local_decl(self, node: A.LocalDecl) -> None:
        self.found.append(("local", node.name, False))

    def visit_quantifier_expr(self, node: A.QuantifierExpr) -> None:
        if node.cursor is not None:
            self.found.append(("quantifier cursor", node.cursor, False))


def _snake_case(text: str) -> str:
    spaced = re.sub(r"(?<=[a-z0-9])(?=[A-Z])", "_", text)
    return re.sub(r"_+", "_", spaced).lower()


# ─────────────────────────────────────────────────────────────────────────
#  3.2  Contract presence
# ─────────────────────────────────────────────────────────────────────────

class ContractPresenceChecker(Checker):
    """Routines with more than one statement need a require or ensure."""

    family = "contract-presence"
    rule_ids = (RuleId.CONTRACT_PRESENCE,)

    def check(self, unit: AnalysisUnit) -> List[Diagnostic]:
        threshold = rulebook.param(RuleId.CONTRACT_PRESENCE, "statement_threshold", 1)
        out: List[Diagnostic] = []
        for _, feature in iter_features(unit.tree):
            if not (feature.is_routine and feature.body_kind.has_instructions):
                continue
            if feature.has_contract:
                continue
            statements = count_statements(feature.body)
            if statements <= threshold:
                continue
            out.append(
                self._diag(
                    unit,
                    RuleId.CONTRACT_PRESENCE,
                    f"{feature.name.text} has {statements} statements but no require or ensure clause",
                    feature.name.location,
                    fix="state the routine's contract with labeled require/ensure assertions",
                )
            )
        return out


# ─────────────────────────────────────────────────────────────────────────
#  3.3  Assertion labeling
# ─────────────────────────────────────────────────────────────────────────

class AssertionLabelingChecker(Checker):
    family = "assertion-labeling"
    rule_ids = (RuleId.ASSERTION_LABELING,)

    _SNIPPET = 40

    def check(self, unit: AnalysisUnit) -> List[Diagnostic]:
        out: List[Diagnostic] = []
        for block in iter_assertion_blocks(unit.tree):
            for assertion in block:
                if assertion.is_labeled:
                    continue
                snippet = assertion.expression_text
                if len(snippet) > self._SNIPPET:
                    snippet = snippet[: self._SNIPPET - 3] + "..."
                out.append(
                    self._diag(
                        unit,
                        RuleId.ASSERTION_LABELING,
                        f"unlabeled {assertion.kind.value} '{snippet}'",
                        assertion.location,
                        fix="prefix the assertion with 'label: '",
                    )
                )
        return out


# ─────────────────────────────────────────────────────────────────────────
#  3.4  Attachment
# ─────────────────────────────────────────────────────────────────────────

class AttachmentChecker(Checker):
    """Void tests on attached arguments in their own precondition.

    Recognised forms: ``a /= Void``, ``a = Void``, ``Void /= a``,
    ``Void = a`` and a bare ``attached a`` (no object test ``as``).
    """

    family = "attachment"
    rule_ids = (RuleId.ATTACHMENT,)

    def check(self, unit: AnalysisUnit) -> List[Diagnostic]:
        out: List[Diagnostic] = []
        for _, feature in iter_features(unit.tree):
            if feature.require is None or not feature.parameters:
                continue
            attached = {
                p.name.text.lower(): p.name.text
                for p in feature.parameters
                if not p.type.is_detachable
            }
            if not attached:
                continue
            for assertion in feature.require:
                for name, tok in _void_tests(assertion.expression):
                    if name.lower() not in attached:
                        continue
                    out.append(
                        self._diag(
                            unit,
                            RuleId.ATTACHMENT,
                            f"argument '{attached[name.lower()]}' of {feature.name.text} is attached; "
                            "testing it against Void is redundant",
                            tok.location,
                            fix="remove the test, or declare the argument 'detachable'",
                        )
                    )
        return out


def _void_tests(expr: Sequence[Token]) -> List[Tuple[str, Token]]:
    found: List[Tuple[str, Token]] = []
    for index, tok in enumerate(expr):
        prev = expr[index - 1] if index > 0 else None
        nxt = expr[index + 1] if index + 1 < len(expr) else None
        after = expr[index + 2] if index + 2 < len(expr) else None
        if tok.is_identifier() and (prev is None or not prev.is_op(".")):
            if nxt is not None and nxt.is_op("=", "/=") and after is not None and after.is_keyword("void"):
                if prev is not None and prev.is_keyword("attached"):
                    continue
                found.append((tok.text, tok))
            elif prev is not None and prev.is_keyword("attached") and (
                nxt is None or not (nxt.is_keyword("as") or nxt.is_op(".", "("))
            ):
                found.append((tok.text, prev))
        elif tok.is_keyword("void") and nxt is not None and nxt.is_op("=", "/="):
            if after is not None and after.is_identifier():
                beyond = expr[index + 3] if index + 3 < len(expr) else None
                if beyond is None or not beyond.is_op(".", "("):
                    found.append((after.text, tok))
    return found


# ─────────────────────────────────────────────────────────────────────────
#  3.5  Command / query separation
# ─────────────────────────────────────────────────────────────────────────

class CommandQueryChecker(Checker):
    """Queries that assign an attribute their postcondition refers to.

    A structural approximation: the body's assignments and the ensure
    clause's identifiers are compared by name, without type information.
    """

    family = "command-query"
    rule_ids = (RuleId.COMMAND_QUERY,)

    def check(self, unit: AnalysisUnit) -> List[Diagnostic]:
        out: List[Diagnostic] = []
        for decl in unit.tree.classes:
            attributes = {name.lower() for name in decl.attribute_names()}
            if not attributes:
                continue
            for feature in decl.features:
                if not feature.is_query or feature.ensure is None or not feature.body:
                    continue
                assigned: Dict[str, str] = {}
                for tok in assigned_names(feature.body):
                    if tok.lowered in attributes:
                        assigned.setdefault(tok.lowered, tok.text)
                if not assigned:
                    continue
                reported = set()
                for assertion in feature.ensure:
                    for tok in _free_identifiers(assertion.expression):
                        key = tok.lowered
                        if key in assigned and key not in reported:
                            reported.add(key)
                            out.append(
                                self._diag(
                                    unit,
                                    RuleId.COMMAND_QUERY,
                                    f"query {feature.name.text} assigns attribute '{assigned[key]}' "
                                    "that its postcondition refers to",
                                    feature.name.location,
                                    fix="split the state change into a command",
                                )
                            )
        return out


def _free_identifiers(expr: Sequence[Token]) -> List[Token]:
    return [
        tok
        for index, tok in enumerate(expr)
        if tok.is_identifier() and (index == 0 or not expr[index - 1].is_op("."))
    ]


# ─────────────────────────────────────────────────────────────────────────
#  3.6  Once classes
# ─────────────────────────────────────────────────────────────────────────

class OnceClassChecker(Checker):
    family = "once-class"
    rule_ids = (RuleId.ONCE_CLASS,)

    def check(self, unit: AnalysisUnit) -> List[Diagnostic]:
        out: List[Diagnostic] = []
        for decl in unit.tree.classes:
            if not decl.is_once:
                continue
            for creator in decl.creators:
                feature = decl.find_feature(creator.text)
                if feature is None:
                    message = (
                        f"{creator.text} is listed as a creation procedure of once class "
                        f"{decl.name.text} but is not declared in it"
                    )
                elif not (feature.is_once and feature.is_command):
                    message = (
                        f"{creator.text} is a creation procedure of once class "
                        f"{decl.name.text} but is not a once procedure"
                    )
                else:
                    continue
                out.append(
                    self._diag(
                        unit,
                        RuleId.ONCE_CLASS,
                        message,
                        creator.location,
                        fix=f"declare {creator.text} with a 'once' body",
                    )
                )
        return out


# ─────────────────────────────────────────────────────────────────────────
#  3.7  Escapes (lexer findings, re-classified)
# ─────────────────────────────────────────────────────────────────────────

class EscapeChecker(Checker):
    """Malformed escapes: errors in literals, warnings in comments."""

    family = "escape"
    rule_ids = (RuleId.INVALID_ESCAPE,)

    def check(self, unit: AnalysisUnit) -> List[Diagnostic]:
        comment_severity = rulebook.param(RuleId.INVALID_ESCAPE, "comment_severity", Severity.WARNING)
        out: List[Diagnostic] = []
        for diag in unit.lexer_diagnostics:
            if diag.rule_id != RuleId.INVALID_ESCAPE:
                continue
            tok = unit.token_at(diag.location.offset)
            if tok is not None and tok.kind is TokenKind.COMMENT:
                out.append(diag.with_severity(comment_severity))
            else:
                out.append(diag.with_severity(rulebook.severity_of(RuleId.INVALID_ESCAPE)))
        return out


# ─────────────────────────────────────────────────────────────────────────
#  3.8  Feature clauses
# ─────────────────────────────────────────────────────────────────────────

class FeatureClauseChecker(Checker):
    family = "feature-clause"
    rule_ids = (RuleId.FEATURE_CLAUSE,)

    def check(self, unit: AnalysisUnit) -> List[Diagnostic]:
        categories = {c.lower() for c in rulebook.param(RuleId.FEATURE_CLAUSE, "categories", ())}
        out: List[Diagnostic] = []
        for decl in unit.tree.classes:
            for clause in decl.clauses:
                if clause.kind is A.ClauseKind.IMPLICIT:
                    for feature in clause.features:
                        out.append(
                            self._diag(
                                unit,
                                RuleId.FEATURE_CLAUSE,
                                f"feature {feature.name.text} is not inside a feature clause",
                                feature.name.location,
                                fix="add a 'feature -- Category' header before it",
                            )
                        )
                elif clause.category is None:
                    out.append(
                        self._diag(
                            unit,
                            RuleId.FEATURE_CLAUSE,
                            "feature clause has no category comment",
                            clause.location,
                            fix="add a category comment such as '-- Access'",
                        )
                    )
                elif clause.category.strip().rstrip(".").lower() not in categories:
                    out.append(
                        self._diag(
                            unit,
                            RuleId.FEATURE_CLAUSE,
                            f"unrecognised feature clause category '{clause.category}'",
                            clause.location,
                        )
                    )
        return out


# ─────────────────────────────────────────────────────────────────────────
#  3.9  Layout
# ─────────────────────────────────────────────────────────────────────────

class LayoutChecker(Checker):
    """Tab indentation (lexer side channel) and trailing whitespace."""

    family = "layout"
    rule_ids = (RuleId.TAB_EXPECTED, RuleId.TRAILING_WHITESPACE)

    def check(self, unit: AnalysisUnit) -> List[Diagnostic]:
        out = [d for d in unit.lexer_diagnostics if d.rule_id == RuleId.TAB_EXPECTED]
        verbatim = {info.line for info in unit.lines if info.verbatim}
        blank = {info.line for info in unit.lines if info.blank}
        for number, text in enumerate(unit.buffer.lines(), start=1):
            if number in verbatim:
                continue
            stripped = text.rstrip(" \t")
            if stripped == text:
                continue
            offset = unit.buffer.line_start(number) + len(stripped)
            message = "whitespace-only line" if number in blank else "trailing whitespace"
            out.append(
                self._diag(
                    unit,
                    RuleId.TRAILING_WHITESPACE,
                    message,
                    unit.buffer.location(offset),
                    fix="remove trailing whitespace",
                )
            )
        return out


# ─────────────────────────────────────────────────────────────────────────
#  3.10  Header comments
# ─────────────────────────────────────────────────────────────────────────

class HeaderCommentChecker(Checker):
    family = "header-comment"
    rule_ids = (RuleId.HEADER_COMMENT,)

    def check(self, unit: AnalysisUnit) -> List[Diagnostic]:
        return [
            self._diag(
                unit,
                RuleId.HEADER_COMMENT,
                f"routine {feature.name.text} has no header comment",
                feature.name.location,
                fix="describe the routine in a comment below its signature",
            )
            for feature in iter_routines(unit.tree)
            if not feature.header_comment
        ]


# ─────────────────────────────────────────────────────────────────────────
#  3.11  Class / file name
# ─────────────────────────────────────────────────────────────────────────

class ClassFileNameChecker(Checker):
    family = "class-file-name"
    rule_ids = (RuleId.CLASS_FILE_NAME,)

    def check(self, unit: AnalysisUnit) -> List[Diagnostic]:
        if unit.path.startswith("<"):
            return []
        extension = rulebook.param(RuleId.CLASS_FILE_NAME, "extension", ".e")
        base = os.path.basename(unit.path)
        stem = os.path.splitext(base)[0]
        out: List[Diagnostic] = []
        for decl in unit.tree.classes:
            if not decl.name.text or decl.name.text.lower() == stem.lower():
                continue
            out.append(
                self._diag(
                    unit,
                    RuleId.CLASS_FILE_NAME,
                    f"class {decl.name.text} is declared in '{base}'",
                    decl.name.location,
                    fix=f"rename the file to '{decl.name.text.lower()}{extension}'",
                )
            )
        return out


# ─────────────────────────────────────────────────────────────────────────
#  3.12  Agents
# ─────────────────────────────────────────────────────────────────────────

class AgentFormChecker(Checker):
    family = "agent"
    rule_ids = (RuleId.AGENT_FORM,)

    def check(self, unit: AnalysisUnit) -> List[Diagnostic]:
        all_open = rulebook.param(RuleId.AGENT_FORM, "all_open_severity", Severity.WARNING)
        out: List[Diagnostic] = []
        for agent in iter_agents(unit.tree):
            if agent.inline or not agent.arguments:
                continue
            for argument in agent.arguments:
                if argument.has_stray_open_marker:
                    out.append(
                        self._diag(
                            unit,
                            RuleId.AGENT_FORM,
                            f"open-argument marker '?' must stand alone in agent {agent.feature}",
                            argument.location,
                        )
                    )
            if agent.open_count == len(agent.arguments):
                out.append(
                    self._diag(
                        unit,
                        RuleId.AGENT_FORM,
                        f"every argument of agent {agent.feature} is open",
                        agent.location,
                        severity=all_open,
                        fix=f"drop the argument list: 'agent {agent.feature}'",
                    )
                )
        return out


# ─────────────────────────────────────────────────────────────────────────
#  3.13  Symbolic quantifiers
# ─────────────────────────────────────────────────────────────────────────

class QuantifierFormChecker(Checker):
    family = "quantifier"
    rule_ids = (RuleId.QUANTIFIER_FORM,)

    def check(self, unit: AnalysisUnit) -> List[Diagnostic]:
        out: List[Diagnostic] = []
        for quantifier in iter_quantifiers(unit.tree):
            if quantifier.is_well_formed:
                continue
            missing = []
            if quantifier.cursor is None:
                missing.append("cursor name")
            if not quantifier.has_domain_separator:
                missing.append("':'")
            if not quantifier.has_body_separator:
                missing.append("'¦'")
            out.append(
                self._diag(
                    unit,
                    RuleId.QUANTIFIER_FORM,
                    f"quantifier '{quantifier.symbol}' is missing " + " and ".join(missing),
                    quantifier.location,
                    fix=f"write '{quantifier.symbol} c: domain ¦ expression'",
                )
            )
        return out


# ═════════════════════════════════════════════════════════════════════════
#  PART 4 — REGISTRY AND ENGINE
# ═════════════════════════════════════════════════════════════════════════

#: Built once at import; never mutated.  Order fixes the report order of
#: findings that share a location.
REGISTRY: Tuple[Checker, ...] = (
    NamingChecker(),
    ContractPresenceChecker(),
    AssertionLabelingChecker(),
    AttachmentChecker(),
    CommandQueryChecker(),
    OnceClassChecker(),
    EscapeChecker(),
    FeatureClauseChecker(),
    LayoutChecker(),
    HeaderCommentChecker(),
    ClassFileNameChecker(),
    AgentFormChecker(),
    QuantifierFormChecker(),
)


@dataclass
class EngineResult:
    """
    Output of one engine run.

    Attributes
    ----------
    diagnostics   : findings of every checker that ran, in registry order
    by_checker    : findings grouped by checker family
    stats         : ``<family>_elapsed_ms`` timings
    """

    diagnostics: List[Diagnostic] = field(default_factory=list)
    by_checker: Dict[str, List[Diagnostic]] = field(default_factory=dict)
    stats: Dict[str, float] = field(default_factory=dict)

    def summary(self) -> str:
        lines = [f"rule engine: {len(self.diagnostics)} findings"]
        for family, diags in self.by_checker.items():
            elapsed = self.stats.get(f"{family}_elapsed_ms", 0.0)
            lines.append(f"  {family}: {len(diags)} findings ({elapsed:.1f}ms)")
        return "\n".join(lines)


class RuleEngine:
    """
    Runs the selected checkers over one :class:`AnalysisUnit`.

    Parameters
    ----------
    selected : rule ids to report (``None`` = every rule); see
               :func:`eiflint.rulebook.resolve_selection`
    registry : checker tuple; defaults to :data:`REGISTRY`
    """

    def __init__(
        self,
        selected: Optional[FrozenSet[str]] = None,
        registry: Sequence[Checker] = REGISTRY,
    ) -> None:
        self.selected = selected if selected is not None else rulebook.resolve_selection(None)
        self.checkers: Tuple[Checker, ...] = tuple(
            checker for checker in registry if self.selected.intersection(checker.rule_ids)
        )

    def run(self, unit: AnalysisUnit) -> EngineResult:
        result = EngineResult()
        for checker in self.checkers:
            t0 = time.monotonic()
            try:
                found = [d for d in checker.check(unit) if d.rule_id in self.selected]
            except Exception as exc:
                logger.exception("%s: checker %r failed", unit.path, checker.family)
                found = [
                    Diagnostic(
                        rule_id=RuleId.INTERNAL_ERROR,
                        severity=Severity.ERROR,
                        message=f"checker '{checker.family}' failed: {exc}",
                        location=UNKNOWN_LOCATION,
                        path=unit.path,
                    )
                ]
            elapsed_ms = (time.monotonic() - t0) * 1000.0
            result.diagnostics.extend(found)
            result.by_checker[checker.family] = found
            result.stats[f"{checker.family}_elapsed_ms"] = elapsed_ms
        logger.debug("%s: %s", unit.path, result.summary())
        return result
