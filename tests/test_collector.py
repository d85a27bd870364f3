# tests/test_collector.py
"""
Tests for suppression, dedup, ordering and the verdict.
"""

import pytest

from eiflint.collector import (
    DiagnosticCollector,
    SuppressionManager,
    Verdict,
    dedupe,
    verdict_for,
)
from eiflint.errors import Diagnostic, RuleId, Severity
from eiflint.lexer import tokenize
from eiflint.source import SourceLocation


def diag(rule_id=RuleId.NAMING, line=1, column=1, severity=Severity.WARNING, message="m", path="<string>"):
    return Diagnostic(
        rule_id=rule_id,
        severity=severity,
        message=message,
        location=SourceLocation(line, column, 0),
        path=path,
    )


def manager_for(text):
    sm = SuppressionManager()
    sm.load_inline_suppressions(tokenize(text).tokens)
    return sm


class TestSuppressionManager:

    def test_same_line(self):
        sm = manager_for("a := 1 -- eiflint: ignore naming\n")
        assert sm.is_suppressed(diag(line=1))
        assert not sm.is_suppressed(diag(line=2))

    def test_comment_alone_covers_next_line(self):
        sm = manager_for("-- eiflint: ignore naming\na := 1\n")
        assert not sm.is_suppressed(diag(line=1))
        assert sm.is_suppressed(diag(line=2))

    def test_several_ids(self):
        sm = manager_for("x -- eiflint: ignore naming, layout-stuff, tab-expected\n")
        assert sm.is_suppressed(diag(RuleId.NAMING))
        assert sm.is_suppressed(diag(RuleId.TAB_EXPECTED))
        assert not sm.is_suppressed(diag(RuleId.HEADER_COMMENT))

    def test_other_rule_not_suppressed(self):
        sm = manager_for("x -- eiflint: ignore naming\n")
        assert not sm.is_suppressed(diag(RuleId.CONTRACT_PRESENCE))

    def test_wildcard(self):
        sm = manager_for("x -- eiflint: ignore *\n")
        assert sm.is_suppressed(diag(RuleId.ATTACHMENT))

    def test_file_level(self):
        sm = manager_for("class\n\tX\n-- eiflint: ignore-file naming\nend\n")
        assert sm.is_suppressed(diag(line=40))

    @pytest.mark.parametrize("rule_id", [RuleId.SYNTAX_ERROR, RuleId.IO_ERROR])
    def test_unsuppressible(self, rule_id):
        sm = manager_for("x -- eiflint: ignore *\n")
        assert not sm.is_suppressed(diag(rule_id, severity=Severity.ERROR))

    def test_nothing_loaded(self):
        assert not SuppressionManager().is_suppressed(diag(RuleId.TAB_EXPECTED, line=3))

    def test_plain_comment_is_not_a_directive(self):
        sm = manager_for("x -- ignore naming please\n")
        assert not sm.is_suppressed(diag())

    def test_filter(self):
        sm = manager_for("x -- eiflint: ignore naming\n")
        kept = sm.filter_diagnostics([diag(line=1), diag(line=2)])
        assert [d.line for d in kept] == [2]


class TestDedupe:

    def test_exact_repeats_dropped(self):
        assert len(dedupe([diag(), diag(), diag(message="other")])) == 2

    def test_same_finding_in_other_file_kept(self):
        assert len(dedupe([diag(path="a.e"), diag(path="b.e")])) == 2


class TestVerdict:

    def test_warnings_pass_by_default(self):
        assert verdict_for([diag(severity=Severity.WARNING)]) is Verdict.PASS

    def test_error_fails(self):
        assert verdict_for([diag(severity=Severity.ERROR)]) is Verdict.FAIL

    def test_warning_threshold(self):
        assert verdict_for([diag(severity=Severity.WARNING)], Severity.WARNING) is Verdict.FAIL

    def test_empty_passes(self):
        assert verdict_for([]).passed


class TestDiagnosticCollector:

    def test_sorted_by_location_then_rule(self):
        collector = DiagnosticCollector()
        collector.extend([
            diag(RuleId.NAMING, line=5),
            diag(RuleId.ATTACHMENT, line=2, column=4),
            diag(RuleId.FEATURE_CLAUSE, line=2, column=4),
            diag(RuleId.TAB_EXPECTED, line=2, column=1),
        ])
        result = collector.finish()
        assert [(d.line, d.column, d.rule_id) for d in result.diagnostics] == [
            (2, 1, RuleId.TAB_EXPECTED),
            (2, 4, RuleId.ATTACHMENT),
            (2, 4, RuleId.FEATURE_CLAUSE),
            (5, 1, RuleId.NAMING),
        ]

    def test_message_breaks_ties(self):
        collector = DiagnosticCollector()
        collector.extend([diag(message="local name 'B'"), diag(message="argument name 'A'")])
        assert [d.message for d in collector.finish().diagnostics] == [
            "argument name 'A'",
            "local name 'B'",
        ]

    def test_counts_and_verdict(self):
        collector = DiagnosticCollector()
        collector.add(diag(severity=Severity.ERROR, message="e"))
        collector.add(diag(severity=Severity.WARNING, message="w"))
        collector.add(diag(severity=Severity.WARNING, message="w"))
        result = collector.finish()
        assert result.error_count == 1
        assert result.warning_count == 1
        assert result.verdict is Verdict.FAIL

    def test_suppressed_count(self):
        collector = DiagnosticCollector(suppressions=manager_for("x -- eiflint: ignore naming\n"))
        collector.extend([diag(line=1), diag(line=2)])
        result = collector.finish()
        assert result.suppressed == 1
        assert len(result.diagnostics) == 1

    def test_threshold(self):
        collector = DiagnosticCollector(threshold=Severity.WARNING)
        collector.add(diag(severity=Severity.WARNING))
        assert collector.finish().verdict is Verdict.FAIL
