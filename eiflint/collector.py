"""
eiflint/collector.py
════════════════════

Merges the diagnostics of one file and decides the verdict.

  parser diagnostics ─┐
                      ├─► suppress ─► dedupe ─► sort ─► verdict
  engine diagnostics ─┘

Lexer findings arrive through the engine (the escape and layout checkers
re-classify or pass them through), so the collector never sees a raw
lexer diagnostic twice.
"""

from __future__ import annotations

import enum
import re
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from eiflint.errors import Diagnostic, RuleId, Severity
from eiflint.lexer import Token, TokenKind

#: Ids that inline comments cannot silence.
UNSUPPRESSIBLE = frozenset({RuleId.SYNTAX_ERROR, RuleId.IO_ERROR})

_DIRECTIVE = re.compile(r"eiflint:\s*(ignore-file|ignore)\b\s*(.*)$")


class Verdict(enum.Enum):
    PASS = "pass"
    FAIL = "fail"

    @property
    def passed(self) -> bool:
        return self is Verdict.PASS


# ═════════════════════════════════════════════════════════════════════════
#  SUPPRESSIONS
# ═════════════════════════════════════════════════════════════════════════

class SuppressionManager:
    """
    Inline suppression comments of one file.

    Sources:
      1. ``-- eiflint: ignore rule-a, rule-b`` — on the comment's own line,
         or on the next line when the comment stands alone
      2. ``-- eiflint: ignore-file rule-a`` — for the whole file

    ``*`` matches every id.  ``syntax-error`` and ``io-error`` are never
    suppressed.

    Usage
    -----
    >>> sm = SuppressionManager()
    >>> sm.load_inline_suppressions(tokens)
    >>> kept = sm.filter_diagnostics(diagnostics)
    """

    def __init__(self) -> None:
        # line → ids suppressed on that line
        self._inline: Dict[int, Set[str]] = defaultdict(set)
        self._file_level: Set[str] = set()

    def load_inline_suppressions(self, tokens: Sequence[Token]) -> None:
        """Scan comment tokens for ``eiflint:`` directives."""
        last_code_line = 0
        for tok in tokens:
            if tok.kind is TokenKind.COMMENT:
                match = _DIRECTIVE.search(tok.value)
                if match is None:
                    continue
                ids = {part.strip().lower() for part in match.group(2).split(",") if part.strip()}
                if match.group(1) == "ignore-file":
                    self._file_level.update(ids)
                elif last_code_line == tok.line:
                    self._inline[tok.line].update(ids)
                else:
                    self._inline[tok.line + 1].update(ids)
            elif not tok.is_trivia and tok.kind is not TokenKind.EOF:
                # multi-line tokens (verbatim strings) count from their last line
                last_code_line = tok.line + tok.text.count("\n")

    def is_suppressed(self, diag: Diagnostic) -> bool:
        rule_id = diag.rule_id
        if rule_id in UNSUPPRESSIBLE:
            return False
        for ids in (self._file_level, self._inline.get(diag.line, ())):
            if rule_id in ids or "*" in ids:
                return True
        return False

    def filter_diagnostics(self, diagnostics: Iterable[Diagnostic]) -> List[Diagnostic]:
        return [d for d in diagnostics if not self.is_suppressed(d)]


# ═════════════════════════════════════════════════════════════════════════
#  COLLECTOR
# ═════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class CollectedDiagnostics:
    diagnostics: Tuple[Diagnostic, ...]
    verdict: Verdict
    suppressed: int = 0

    @property
    def error_count(self) -> int:
        return sum(1 for d in self.diagnostics if d.severity is Severity.ERROR)

    @property
    def warning_count(self) -> int:
        return sum(1 for d in self.diagnostics if d.severity is Severity.WARNING)


class DiagnosticCollector:
    """Accumulates the diagnostics of one file; :meth:`finish` closes it."""

    def __init__(
        self,
        threshold: Severity = Severity.ERROR,
        suppressions: Optional[SuppressionManager] = None,
    ) -> None:
        self.threshold = threshold
        self.suppressions = suppressions or SuppressionManager()
        self._pending: List[Diagnostic] = []

    def add(self, diagnostic: Diagnostic) -> None:
        self._pending.append(diagnostic)

    def extend(self, diagnostics: Iterable[Diagnostic]) -> None:
        self._pending.extend(diagnostics)

    def finish(self) -> CollectedDiagnostics:
        kept = self.suppressions.filter_diagnostics(self._pending)
        suppressed = len(self._pending) - len(kept)
        unique = dedupe(kept)
        ordered = tuple(sorted(unique, key=lambda d: d.sort_key))
        return CollectedDiagnostics(
            diagnostics=ordered,
            verdict=verdict_for(ordered, self.threshold),
            suppressed=suppressed,
        )


def dedupe(diagnostics: Iterable[Diagnostic]) -> List[Diagnostic]:
    """Drop exact ``(rule_id, location, message)`` repeats, keeping the first."""
    seen: Set[Tuple[object, ...]] = set()
    out: List[Diagnostic] = []
    for diag in diagnostics:
        key = (diag.path,) + diag.identity
        if key in seen:
            continue
        seen.add(key)
        out.append(diag)
    return out


def verdict_for(diagnostics: Iterable[Diagnostic], threshold: Severity = Severity.ERROR) -> Verdict:
    if any(d.severity.at_least(threshold) for d in diagnostics):
        return Verdict.FAIL
    return Verdict.PASS
