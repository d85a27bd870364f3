# tests/test_visitor.py
"""
Tests for tree traversal.
"""

from eiflint import ast as A
from eiflint.parser import parse_text
from eiflint.visitor import (
    DepthFirstVisitor,
    TreeVisitor,
    iter_agents,
    iter_assertion_blocks,
    iter_assertions,
    iter_features,
    iter_quantifiers,
    iter_routines,
)
from tests.conftest import AGENTS_SOURCE, LOOP_SOURCE, PERSON_SOURCE


def tree_of(text):
    return parse_text(text).tree


class _NameCollector(DepthFirstVisitor):

    def __init__(self):
        self.names = []

    def visit_name(self, node):
        self.names.append(node.text)


class _FeatureCounter(TreeVisitor):

    def visit_syntax_tree(self, node):
        return sum(self.visit(decl) for decl in node.classes)

    def visit_class_decl(self, node):
        return len(node.features)


class TestVisitors:

    def test_dispatch(self):
        assert _FeatureCounter().visit(tree_of(PERSON_SOURCE)) == 3

    def test_missing_hook(self):
        assert _FeatureCounter().visit(A.Name("x")) is None

    def test_depth_first_order(self):
        collector = _NameCollector()
        collector.visit(tree_of(PERSON_SOURCE))
        assert collector.names == ["PERSON", "make", "a_name", "name", "age"]


class TestIterators:

    def test_features(self):
        pairs = list(iter_features(tree_of(PERSON_SOURCE)))
        assert [f.name.text for _, f in pairs] == ["make", "name", "age"]
        assert all(decl.name.text == "PERSON" for decl, _ in pairs)

    def test_routines(self):
        assert [f.name.text for f in iter_routines(tree_of(PERSON_SOURCE))] == ["make"]

    def test_assertion_blocks(self):
        kinds = [b.kind for b in iter_assertion_blocks(tree_of(LOOP_SOURCE))]
        assert kinds == [
            A.AssertionKind.PRECONDITION,
            A.AssertionKind.POSTCONDITION,
            A.AssertionKind.LOOP_INVARIANT,
            A.AssertionKind.CHECK,
        ]

    def test_assertions(self):
        labels = [a.label for a in iter_assertions(tree_of(LOOP_SOURCE))]
        assert labels == ["non_negative", "done", "bounded", ""]

    def test_agents_and_quantifiers(self):
        tree = tree_of(AGENTS_SOURCE)
        assert len(list(iter_agents(tree))) == 3
        assert [q.symbol for q in iter_quantifiers(tree)] == ["∀", "∃"]
