# tests/test_dump.py
"""
Tests for the S-expression tree dump.
"""

import sexpdata
from sexpdata import Symbol

from eiflint.dump import dump_tree, to_sexp
from eiflint.parser import parse_text
from tests.conftest import AGENTS_SOURCE, ONCE_CLASS_SOURCE, PERSON_SOURCE


def dumped(text, path="<string>"):
    return dump_tree(parse_text(text, path).tree)


class TestDumpTree:

    def test_class_form(self):
        out = dumped(PERSON_SOURCE, "person.e")
        assert out.startswith('(tree "person.e" (class PERSON (kind ordinary) (at 5 2)')
        assert "(creators make)" in out
        assert '(clause explicit "Initialization"' in out

    def test_feature_form(self):
        out = dumped(PERSON_SOURCE)
        assert "(feature make (kind command) (body do) (at 12 2)" in out
        assert "(statements 2)" in out
        assert '(returns "INTEGER")' in out

    def test_invariant(self):
        assert '(invariant (assertion "name_attached"' in dumped(PERSON_SOURCE)

    def test_once_class(self):
        assert "(kind once)" in dumped(ONCE_CLASS_SOURCE)

    def test_agents_and_quantifiers(self):
        out = dumped(AGENTS_SOURCE)
        assert "(args open)" in out
        assert "shorthand" in out
        assert "(args closed closed)" in out
        assert "well-formed" in out and "malformed" in out

    def test_output_reads_back(self):
        form = sexpdata.loads(dumped(PERSON_SOURCE, "person.e"))
        assert form[0] == Symbol("tree")
        assert form[1] == "person.e"
        assert form[2][0] == Symbol("class")

    def test_nameless_class(self):
        form = to_sexp(parse_text("feature -- Access\n\ta: INTEGER\nend\n").tree)
        assert form[2][1] == ""

    def test_deterministic(self):
        assert dumped(AGENTS_SOURCE) == dumped(AGENTS_SOURCE)
