# tests/test_checkers.py
"""
Tests for the rule checkers and the rule engine.
"""

import pytest

from eiflint.checkers import (
    REGISTRY,
    AgentFormChecker,
    AnalysisUnit,
    AssertionLabelingChecker,
    AttachmentChecker,
    Checker,
    ClassFileNameChecker,
    CommandQueryChecker,
    ContractPresenceChecker,
    EscapeChecker,
    FeatureClauseChecker,
    HeaderCommentChecker,
    LayoutChecker,
    NamingChecker,
    OnceClassChecker,
    QuantifierFormChecker,
    RuleEngine,
)
from eiflint.errors import RuleId, Severity
from eiflint.lexer import TokenKind, tokenize
from eiflint.parser import parse
from eiflint.spans import assigned_names
from eiflint import rulebook
from tests.conftest import (
    AGENTS_SOURCE,
    ATTACHMENT_SOURCE,
    COMMAND_QUERY_SOURCE,
    CONSISTENT_ONCE_CLASS_SOURCE,
    ESCAPES_SOURCE,
    LOOP_SOURCE,
    ONCE_CLASS_SOURCE,
    ONCE_CREATORS_LINE,
    PERSON_MAKE_LINE,
    PERSON_SOURCE,
    SPACE_INDENTED_SOURCE,
    STEPPING_COUNTER_SOURCE,
    UNLABELED_LINE,
    UNLABELED_SOURCE,
    VALID_PERSON_SOURCE,
)


def unit_for(text, path="<string>"):
    lexed = tokenize(text, path)
    parsed = parse(lexed)
    return AnalysisUnit(
        path=path,
        buffer=lexed.buffer,
        tree=parsed.tree,
        tokens=lexed.tokens,
        lexer_diagnostics=lexed.diagnostics,
        lines=lexed.lines,
    )


def routine(body, signature="f", require="", header="\t\t\t-- F.\n"):
    """A one-routine class around *body* lines (already tab-indented)."""
    pre = f"\t\trequire\n{require}" if require else ""
    return f"class\n\tX\nfeature -- Access\n\t{signature}\n{header}{pre}\t\tdo\n{body}\t\tend\nend\n"


class TestRegistry:

    def test_every_rule_has_a_checker(self):
        covered = {rule_id for checker in REGISTRY for rule_id in checker.rule_ids}
        assert covered == {spec.rule_id for spec in rulebook.RULES}

    def test_families_match_rulebook(self):
        for checker in REGISTRY:
            for rule_id in checker.rule_ids:
                assert rulebook.get(rule_id).family == checker.family

    def test_checkers_are_stateless(self):
        unit = unit_for(PERSON_SOURCE)
        checker = ContractPresenceChecker()
        assert checker.check(unit) == checker.check(unit)
        assert checker.check(unit) is not checker.check(unit)


class TestNaming:

    def test_clean(self):
        assert NamingChecker().check(unit_for(PERSON_SOURCE)) == []

    def test_class_name(self):
        diags = NamingChecker().check(unit_for("class\n\tPerson\nend\n"))
        assert [d.message for d in diags] == ["class name 'Person' should be upper case"]
        assert diags[0].fix == "rename to 'PERSON'"
        assert diags[0].severity is Severity.WARNING

    def test_feature_name(self):
        diags = NamingChecker().check(unit_for("class\n\tX\nfeature -- Access\n\tgetName: STRING\nend\n"))
        assert [d.message for d in diags] == ["feature name 'getName' should be lower snake case"]
        assert diags[0].fix == "rename to 'get_name'"

    def test_argument_and_local(self):
        source = routine("", signature="f (Value: INTEGER)").replace(
            "\t\tdo\n", "\t\tlocal\n\t\t\tTmp: INTEGER\n\t\tdo\n"
        )
        diags = NamingChecker().check(unit_for(source))
        assert [d.message for d in diags] == [
            "argument name 'Value' should be lower snake case",
            "local name 'Tmp' should be lower snake case",
        ]

    def test_quantifier_cursor(self):
        source = routine("", signature="f (s: STRING)", require="\t\t\tok: ∀ X: s ¦ X > 0\n")
        diags = NamingChecker().check(unit_for(source))
        assert [d.message for d in diags] == ["quantifier cursor name 'X' should be lower snake case"]

    def test_generic(self):
        diags = NamingChecker().check(unit_for("class\n\tBOX [g]\nend\n"))
        assert [d.message for d in diags] == ["formal generic name 'g' should be upper case"]


class TestContractPresence:

    def test_reported_at_feature_name(self):
        diags = ContractPresenceChecker().check(unit_for(PERSON_SOURCE))
        assert len(diags) == 1
        assert diags[0].message == "make has 2 statements but no require or ensure clause"
        assert (diags[0].line, diags[0].column) == (PERSON_MAKE_LINE, 2)
        assert diags[0].severity is Severity.ERROR

    def test_contract_satisfies(self):
        assert ContractPresenceChecker().check(unit_for(VALID_PERSON_SOURCE)) == []

    def test_single_statement(self):
        assert ContractPresenceChecker().check(unit_for(routine("\t\t\tx := 1\n"))) == []

    def test_statements_on_one_line(self):
        diags = ContractPresenceChecker().check(unit_for(routine("\t\t\tx := 1; y := 2\n")))
        assert len(diags) == 1

    def test_compound_counts_once(self):
        body = "\t\t\tif a then\n\t\t\t\tx := 1\n\t\t\t\ty := 2\n\t\t\tend\n"
        assert ContractPresenceChecker().check(unit_for(routine(body))) == []

    def test_deferred_is_exempt(self):
        source = "deferred class\n\tX\nfeature -- Access\n\tf\n\t\t\t-- F.\n\t\tdeferred\n\t\tend\nend\n"
        assert ContractPresenceChecker().check(unit_for(source)) == []


class TestAssertionLabeling:

    def test_unlabeled_precondition(self):
        diags = AssertionLabelingChecker().check(unit_for(UNLABELED_SOURCE))
        assert [d.message for d in diags] == ["unlabeled precondition 'v >= 0'"]
        assert diags[0].line == UNLABELED_LINE

    def test_unlabeled_check(self):
        diags = AssertionLabelingChecker().check(unit_for(LOOP_SOURCE))
        assert [d.message for d in diags] == ["unlabeled check 'i > n'"]

    def test_unlabeled_invariant(self):
        diags = AssertionLabelingChecker().check(unit_for("class\n\tX\ninvariant\n\tTrue\nend\n"))
        assert [d.message for d in diags] == ["unlabeled invariant 'True'"]

    def test_long_snippet_is_shortened(self):
        expr = " and ".join(["a_long_name > 0"] * 5)
        source = routine("", require=f"\t\t\t{expr}\n")
        message = AssertionLabelingChecker().check(unit_for(source))[0].message
        assert message.endswith("...'")


class TestAttachment:

    def test_attached_argument(self):
        diags = AttachmentChecker().check(unit_for(ATTACHMENT_SOURCE))
        assert [d.message for d in diags] == [
            "argument 'note_text' of deposit is attached; testing it against Void is redundant"
        ]
        assert diags[0].line == 9
        assert diags[0].severity is Severity.WARNING

    @pytest.mark.parametrize("expression,reported", [
        ("s /= Void", True),
        ("s = Void", True),
        ("Void /= s", True),
        ("attached s", True),
        ("attached s as t", False),
        ("s.item /= Void", False),
        ("other /= Void", False),
    ])
    def test_forms(self, expression, reported):
        source = routine("", signature="f (s: STRING)", require=f"\t\t\tok: {expression}\n")
        assert bool(AttachmentChecker().check(unit_for(source))) is reported

    def test_detachable_argument(self):
        source = routine("", signature="f (s: detachable STRING)", require="\t\t\tok: s /= Void\n")
        assert AttachmentChecker().check(unit_for(source)) == []


class TestCommandQuery:

    def test_query_changing_observed_attribute(self):
        diags = CommandQueryChecker().check(unit_for(COMMAND_QUERY_SOURCE))
        assert [d.message for d in diags] == [
            "query next assigns attribute 'count' that its postcondition refers to"
        ]
        assert diags[0].severity is Severity.WARNING

    def test_command_is_fine(self):
        assert CommandQueryChecker().check(unit_for(UNLABELED_SOURCE)) == []

    def test_assignment_after_earlier_statement(self):
        diags = CommandQueryChecker().check(unit_for(STEPPING_COUNTER_SOURCE))
        assert [d.message for d in diags] == [
            "query next_value assigns attribute 'last' that its postcondition refers to"
        ]

    def test_assigned_names_across_lines(self):
        body = unit_for(STEPPING_COUNTER_SOURCE).tree.root.features[3].body
        assert [tok.text for tok in assigned_names(body)] == ["count", "last"]

    def test_qualified_target_is_not_an_assignment(self):
        body = routine("\t\t\tx.y := 1\n")
        feature = unit_for(body).tree.root.features[0]
        assert assigned_names(feature.body) == []


class TestOnceClass:

    def test_non_once_creator(self):
        diags = OnceClassChecker().check(unit_for(ONCE_CLASS_SOURCE))
        assert [d.message for d in diags] == [
            "green is a creation procedure of once class COLOR but is not a once procedure"
        ]
        assert (diags[0].line, diags[0].column) == (ONCE_CREATORS_LINE, 7)

    def test_consistent(self):
        assert OnceClassChecker().check(unit_for(CONSISTENT_ONCE_CLASS_SOURCE)) == []

    def test_undeclared_creator(self):
        source = "once class\n\tX\ncreate\n\tmissing\nend\n"
        diags = OnceClassChecker().check(unit_for(source))
        assert diags[0].message.endswith("but is not declared in it")

    def test_ordinary_class_is_ignored(self):
        source = ONCE_CLASS_SOURCE.replace("once class", "class", 1)
        assert OnceClassChecker().check(unit_for(source)) == []


class TestEscape:

    def test_severity_depends_on_token(self):
        diags = EscapeChecker().check(unit_for(ESCAPES_SOURCE))
        by_message = {d.message: d.severity for d in diags}
        assert by_message == {
            "unknown escape '%Z'": Severity.ERROR,
            "unknown escape '%Y' in comment": Severity.WARNING,
        }

    def test_token_at(self):
        unit = unit_for(ESCAPES_SOURCE)
        diag = [d for d in unit.lexer_diagnostics if "comment" in d.message][0]
        assert unit.token_at(diag.location.offset).kind is TokenKind.COMMENT


class TestFeatureClause:

    def test_recognised(self):
        assert FeatureClauseChecker().check(unit_for(PERSON_SOURCE)) == []

    def test_missing_category(self):
        diags = FeatureClauseChecker().check(unit_for("class\n\tX\nfeature\n\ta: INTEGER\nend\n"))
        assert [d.message for d in diags] == ["feature clause has no category comment"]
        assert diags[0].line == 3

    def test_unknown_category(self):
        diags = FeatureClauseChecker().check(unit_for("class\n\tX\nfeature -- Stuff\n\ta: INTEGER\nend\n"))
        assert [d.message for d in diags] == ["unrecognised feature clause category 'Stuff'"]

    @pytest.mark.parametrize("category", ["access", "Access.", "Status report"])
    def test_category_spelling(self, category):
        source = f"class\n\tX\nfeature -- {category}\n\ta: INTEGER\nend\n"
        assert FeatureClauseChecker().check(unit_for(source)) == []

    def test_implicit_clause(self):
        diags = FeatureClauseChecker().check(unit_for("class\n\tX\n\ta: INTEGER\nend\n"))
        assert [d.message for d in diags] == ["feature a is not inside a feature clause"]


class TestLayout:

    def test_space_indentation(self):
        diags = LayoutChecker().check(unit_for(SPACE_INDENTED_SOURCE))
        assert [(d.rule_id, d.line, d.column) for d in diags] == [(RuleId.TAB_EXPECTED, 5, 1)]

    def test_trailing_whitespace(self):
        diags = LayoutChecker().check(unit_for("class\n\tX \nend\n"))
        assert [(d.rule_id, d.line, d.column) for d in diags] == [(RuleId.TRAILING_WHITESPACE, 2, 3)]

    def test_whitespace_only_line(self):
        diags = LayoutChecker().check(unit_for("class\n\tX\n\t \nend\n"))
        assert [(d.message, d.line, d.column) for d in diags if d.rule_id == RuleId.TRAILING_WHITESPACE] == [
            ("whitespace-only line", 3, 1)
        ]

    def test_verbatim_lines_are_exempt(self):
        source = routine('\t\t\ts := "[\n  keep   \n]"\n')
        assert [d for d in LayoutChecker().check(unit_for(source)) if d.rule_id == RuleId.TRAILING_WHITESPACE] == []


class TestHeaderComment:

    def test_missing(self):
        diags = HeaderCommentChecker().check(unit_for(routine("", header="")))
        assert [d.message for d in diags] == ["routine f has no header comment"]

    def test_attributes_are_exempt(self):
        assert HeaderCommentChecker().check(unit_for("class\n\tX\nfeature -- Access\n\ta: INTEGER\nend\n")) == []


class TestClassFileName:

    def test_match_is_case_insensitive(self):
        assert ClassFileNameChecker().check(unit_for(PERSON_SOURCE, "src/person.e")) == []

    def test_mismatch(self):
        diags = ClassFileNameChecker().check(unit_for(PERSON_SOURCE, "src/other.e"))
        assert [d.message for d in diags] == ["class PERSON is declared in 'other.e'"]
        assert diags[0].fix == "rename the file to 'person.e'"

    def test_text_without_file(self):
        assert ClassFileNameChecker().check(unit_for(PERSON_SOURCE)) == []


class TestAgentsAndQuantifiers:

    def test_agent_forms(self):
        diags = AgentFormChecker().check(unit_for(AGENTS_SOURCE))
        assert [(d.message, d.severity) for d in diags] == [
            ("every argument of agent show is open", Severity.WARNING),
            ("open-argument marker '?' must stand alone in agent report", Severity.ERROR),
        ]

    def test_quantifier_forms(self):
        diags = QuantifierFormChecker().check(unit_for(AGENTS_SOURCE))
        assert [d.message for d in diags] == ["quantifier '∃' is missing ':'"]
        assert diags[0].severity is Severity.ERROR


class _ExplodingChecker(Checker):
    family = "exploding"
    rule_ids = (RuleId.NAMING,)

    def check(self, unit):
        raise RuntimeError("boom")


class TestRuleEngine:

    def test_selection_limits_checkers(self):
        engine = RuleEngine(frozenset({RuleId.NAMING}))
        assert [c.family for c in engine.checkers] == ["naming"]

    def test_selection_limits_rule_ids(self):
        engine = RuleEngine(frozenset({RuleId.TRAILING_WHITESPACE}))
        result = engine.run(unit_for(SPACE_INDENTED_SOURCE))
        assert result.diagnostics == []

    def test_all_rules(self):
        result = RuleEngine().run(unit_for(PERSON_SOURCE, "person.e"))
        assert [d.rule_id for d in result.diagnostics] == [RuleId.CONTRACT_PRESENCE]
        assert set(result.by_checker) == {c.family for c in REGISTRY}
        assert "contract-presence_elapsed_ms" in result.stats
        assert result.summary().startswith("rule engine: 1 findings")

    def test_failing_checker_becomes_internal_error(self):
        engine = RuleEngine(registry=(_ExplodingChecker(), ContractPresenceChecker()))
        result = engine.run(unit_for(PERSON_SOURCE))
        assert [d.rule_id for d in result.diagnostics] == [RuleId.INTERNAL_ERROR, RuleId.CONTRACT_PRESENCE]
        assert result.diagnostics[0].message == "checker 'exploding' failed: boom"
