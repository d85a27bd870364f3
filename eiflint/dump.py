"""eiflint/dump.py – S-expression rendering of a syntax tree.

``eiflint --dump-tree`` prints what the parser recovered, one form per
class::

    (tree "person.e"
     (class PERSON (kind ordinary) (at 3 7) (creators make)
      (clause explicit "Initialization"
       (feature make (kind command) (body do) (statements 2) ...))))

Only structure is dumped; token spans appear as statement counts.
"""

from __future__ import annotations

from typing import Any, List

import sexpdata
from sexpdata import Symbol

from eiflint import ast as A
from eiflint.source import SourceLocation
from eiflint.spans import count_statements


def _at(location: SourceLocation) -> List[Any]:
    return [Symbol("at"), location.line, location.column]


def _name(text: str) -> Any:
    return Symbol(text) if text else ""


def _assertions(block: A.AssertionBlock) -> List[Any]:
    form: List[Any] = [Symbol(block.kind.value)]
    if block.extended:
        form.append(Symbol("extended"))
    for assertion in block:
        form.append([Symbol("assertion"), assertion.label, _at(assertion.location)])
    return form


def _agent(agent: A.AgentExpr) -> List[Any]:
    form: List[Any] = [Symbol("agent"), _at(agent.location)]
    if agent.inline:
        form.append(Symbol("inline"))
        return form
    form.append([Symbol("target"), Symbol(agent.target.kind.name.lower()), agent.target.text])
    form.append(_name(agent.feature or ""))
    if agent.uses_shorthand:
        form.append(Symbol("shorthand"))
    else:
        form.append([Symbol("args")] + [Symbol("open" if a.open else "closed") for a in agent.arguments])
    return form


def _quantifier(quantifier: A.QuantifierExpr) -> List[Any]:
    cursor = quantifier.cursor.text if quantifier.cursor else ""
    return [
        Symbol("quantifier"),
        quantifier.symbol,
        _name(cursor),
        Symbol("well-formed" if quantifier.is_well_formed else "malformed"),
        _at(quantifier.location),
    ]


def _feature(feature: A.FeatureDecl) -> List[Any]:
    form: List[Any] = [
        Symbol("feature"),
        _name(feature.name.text),
        [Symbol("kind"), Symbol("query" if feature.is_query else "command")],
        [Symbol("body"), Symbol(feature.body_kind.name.lower())],
        _at(feature.location),
    ]
    if feature.parameters:
        form.append(
            [Symbol("args")]
            + [[_name(p.name.text), str(p.type)] for p in feature.parameters]
        )
    if feature.return_type is not None:
        form.append([Symbol("returns"), str(feature.return_type)])
    if feature.once_keys:
        form.append([Symbol("once-keys")] + list(feature.once_keys))
    if feature.body:
        form.append([Symbol("statements"), count_statements(feature.body)])
    for block in feature.assertion_blocks():
        form.append(_assertions(block))
    form.extend(_agent(agent) for agent in feature.agents)
    form.extend(_quantifier(q) for q in feature.quantifiers)
    return form


def _class(decl: A.ClassDecl) -> List[Any]:
    form: List[Any] = [
        Symbol("class"),
        _name(decl.name.text),
        [Symbol("kind"), Symbol(decl.kind.name.lower())],
        _at(decl.location),
    ]
    if decl.generics:
        form.append([Symbol("generics")] + [_name(g.text) for g in decl.generics])
    if decl.parents:
        form.append([Symbol("inherit")] + [_name(p.text) for p in decl.parents])
    if decl.creators:
        form.append([Symbol("creators")] + [_name(c.text) for c in decl.creators])
    for clause in decl.clauses:
        head: List[Any] = [Symbol("clause"), Symbol(clause.kind.name.lower())]
        if clause.category is not None:
            head.append(clause.category)
        form.append(head + [_feature(f) for f in clause.features])
    if decl.invariant is not None:
        form.append(_assertions(decl.invariant.block))
    return form


def to_sexp(tree: A.SyntaxTree) -> List[Any]:
    return [Symbol("tree"), tree.path] + [_class(decl) for decl in tree.classes]


def dump_tree(tree: A.SyntaxTree) -> str:
    return sexpdata.dumps(to_sexp(tree))
