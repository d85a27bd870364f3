"""
eiflint/visitor.py
==================

Read-only traversal of the syntax tree.

Provides:
- ``TreeVisitor`` — dispatch base with one ``visit_X`` hook per node type
- ``DepthFirstVisitor`` — generic traversal that visits all children
- ``iter_*`` helpers — flat generators used by most rule checkers
"""

from __future__ import annotations

import re
from typing import Any, Callable, Dict, Iterator, Tuple, Type

from eiflint import ast as A

__all__ = [
    "TreeVisitor",
    "DepthFirstVisitor",
    "iter_features",
    "iter_routines",
    "iter_assertion_blocks",
    "iter_assertions",
    "iter_agents",
    "iter_quantifiers",
]


def _hook_name(cls: type) -> str:
    return "visit_" + re.sub(r"(?<!^)(?=[A-Z])", "_", cls.__name__).lower()


class TreeVisitor:
    """Base class for syntax tree visitors.

    ``visit`` dispatches on the node's class to ``visit_<snake_name>``
    (``FeatureDecl`` → ``visit_feature_decl``).  Missing hooks fall back to
    ``generic_visit``, which does nothing.
    """

    _hooks: Dict[Type[Any], str] = {}

    def visit(self, node: Any) -> Any:
        cls = type(node)
        name = self._hooks.get(cls)
        if name is None:
            name = _hook_name(cls)
            self._hooks[cls] = name
        method: Callable[[Any], Any] = getattr(self, name, self.generic_visit)
        return method(node)

    def generic_visit(self, node: Any) -> Any:
        return None


class DepthFirstVisitor(TreeVisitor):
    """Visits every node, parents before children.

    Subclasses override ``visit_X`` and call ``self.generic_visit(node)``
    to keep descending.
    """

    def generic_visit(self, node: Any) -> Any:
        for child in _children(node):
            self.visit(child)
        return None


def _children(node: Any) -> Tuple[Any, ...]:
    if isinstance(node, A.SyntaxTree):
        return node.classes
    if isinstance(node, A.ClassDecl):
        extra: Tuple[Any, ...] = (node.invariant,) if node.invariant is not None else ()
        return (node.name,) + node.generics + node.clauses + extra
    if isinstance(node, A.FeatureClause):
        return node.features
    if isinstance(node, A.FeatureDecl):
        return (
            (node.name,)
            + node.parameters
            + node.locals
            + tuple(node.assertion_blocks())
            + node.agents
            + node.quantifiers
        )
    if isinstance(node, A.InvariantClause):
        return (node.block,) + node.agents + node.quantifiers
    if isinstance(node, A.AssertionBlock):
        return node.assertions
    if isinstance(node, (A.Parameter, A.LocalDecl)):
        return (node.name,)
    return ()


# ═══════════════════════════════════════════════════════════════════════
#  Flat iteration helpers
# ═══════════════════════════════════════════════════════════════════════


def iter_features(tree: A.SyntaxTree) -> Iterator[Tuple[A.ClassDecl, A.FeatureDecl]]:
    for decl in tree.classes:
        for feature in decl.features:
            yield decl, feature


def iter_routines(tree: A.SyntaxTree) -> Iterator[A.FeatureDecl]:
    for _, feature in iter_features(tree):
        if feature.is_routine:
            yield feature


def iter_assertion_blocks(tree: A.SyntaxTree) -> Iterator[A.AssertionBlock]:
    """Every require/ensure/loop-invariant/check block and class invariant."""
    for decl in tree.classes:
        for feature in decl.features:
            yield from feature.assertion_blocks()
        if decl.invariant is not None:
            yield decl.invariant.block


def iter_assertions(tree: A.SyntaxTree) -> Iterator[A.Assertion]:
    for block in iter_assertion_blocks(tree):
        yield from block


def iter_agents(tree: A.SyntaxTree) -> Iterator[A.AgentExpr]:
    for decl in tree.classes:
        for feature in decl.features:
            yield from feature.agents
        if decl.invariant is not None:
            yield from decl.invariant.agents


def iter_quantifiers(tree: A.SyntaxTree) -> Iterator[A.QuantifierExpr]:
    for decl in tree.classes:
        for feature in decl.features:
            yield from feature.quantifiers
        if decl.invariant is not None:
            yield from decl.invariant.quantifiers
