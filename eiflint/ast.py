"""eiflint/ast.py – syntax tree of one class text.

The parser produces, and the rule checkers consume, a tree of frozen
dataclasses.  Design invariants:

* Every node is immutable after construction; children are tuples.
* Every node records its :class:`~eiflint.source.SourceLocation`.
* Variant-heavy categories (class vs. once-class, command vs. query,
  routine body kinds, agent targets) are closed ``Enum`` tags on a single
  node type rather than subclass hierarchies, so checkers can match on
  them exhaustively.
* Routine bodies and assertion expressions are kept as opaque token
  tuples; the checker is structural, not semantic.

Layout
------
§1  Variant tags
§2  Leaves (names, types, parameters, locals)
§3  Assertions
§4  Agents and quantifiers
§5  Features, clauses, classes
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import Iterator, Optional, Tuple

from eiflint.lexer import Token
from eiflint.source import SourceLocation, UNKNOWN_LOCATION

# ════════════════════════════════════════════════════════════════════════
# §1  Variant tags
# ════════════════════════════════════════════════════════════════════════


class ClassKind(Enum):
    ORDINARY = auto()
    ONCE = auto()
    DEFERRED = auto()
    EXPANDED = auto()


class ClauseKind(Enum):
    """How a group of features was introduced.

    ``EXPLICIT`` groups follow a ``feature`` keyword; ``IMPLICIT`` groups
    collect declarations found where a clause header was expected.
    """

    EXPLICIT = auto()
    IMPLICIT = auto()


class BodyKind(Enum):
    NONE = auto()        # plain attribute or constant
    DO = auto()
    ONCE = auto()
    DEFERRED = auto()
    EXTERNAL = auto()
    ATTRIBUTE = auto()   # attribute with an explicit ``attribute`` body

    @property
    def is_routine(self) -> bool:
        return self in (BodyKind.DO, BodyKind.ONCE, BodyKind.DEFERRED, BodyKind.EXTERNAL)

    @property
    def has_instructions(self) -> bool:
        return self in (BodyKind.DO, BodyKind.ONCE, BodyKind.ATTRIBUTE)


class TypeMark(Enum):
    DEFAULT = auto()
    ATTACHED = auto()
    DETACHABLE = auto()


class AssertionKind(Enum):
    PRECONDITION = "precondition"
    POSTCONDITION = "postcondition"
    INVARIANT = "invariant"
    LOOP_INVARIANT = "loop-invariant"
    CHECK = "check"


class TargetKind(Enum):
    IMPLICIT_CURRENT = auto()   # ``agent f``
    CLOSED = auto()             # ``agent x.f``, ``agent Current.f``
    OPEN = auto()               # ``agent {T}.f``


# ════════════════════════════════════════════════════════════════════════
# §2  Leaves
# ════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class Name:
    """An identifier as written, with its location."""

    text: str
    location: SourceLocation = UNKNOWN_LOCATION

    def __str__(self) -> str:
        return self.text


@dataclass(frozen=True, slots=True)
class TypeRef:
    text: str
    mark: TypeMark = TypeMark.DEFAULT
    location: SourceLocation = UNKNOWN_LOCATION

    @property
    def is_detachable(self) -> bool:
        return self.mark is TypeMark.DETACHABLE

    def __str__(self) -> str:
        if self.mark is TypeMark.DEFAULT:
            return self.text
        return f"{self.mark.name.lower()} {self.text}"


@dataclass(frozen=True, slots=True)
class Parameter:
    name: Name
    type: TypeRef


@dataclass(frozen=True, slots=True)
class LocalDecl:
    name: Name
    type: TypeRef


# ════════════════════════════════════════════════════════════════════════
# §3  Assertions
# ════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class Assertion:
    """One ``label: expression`` entry; ``label`` is empty when missing."""

    label: str
    expression: Tuple[Token, ...]
    kind: AssertionKind
    location: SourceLocation

    @property
    def is_labeled(self) -> bool:
        return bool(self.label)

    @property
    def expression_text(self) -> str:
        return " ".join(tok.text for tok in self.expression)


@dataclass(frozen=True, slots=True)
class AssertionBlock:
    kind: AssertionKind
    location: SourceLocation
    assertions: Tuple[Assertion, ...] = ()
    extended: bool = False   # ``require else`` / ``ensure then``

    def __iter__(self) -> Iterator[Assertion]:
        return iter(self.assertions)

    def __len__(self) -> int:
        return len(self.assertions)


# ════════════════════════════════════════════════════════════════════════
# §4  Agents and quantifiers
# ════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class AgentArgument:
    """A positional agent argument; open iff it is exactly the ``?`` marker."""

    open: bool
    tokens: Tuple[Token, ...]
    location: SourceLocation

    @property
    def has_stray_open_marker(self) -> bool:
        return not self.open and any(tok.is_op("?") for tok in self.tokens)


@dataclass(frozen=True, slots=True)
class AgentTarget:
    kind: TargetKind
    text: str = ""


@dataclass(frozen=True, slots=True)
class AgentExpr:
    """``agent [target.]feature [(args)]`` or an inline ``agent ... do ... end``.

    ``arguments is None`` means the "all open" shorthand (no argument list
    written).  Inline agents have ``feature is None``.
    """

    location: SourceLocation
    target: AgentTarget
    feature: Optional[str]
    arguments: Optional[Tuple[AgentArgument, ...]] = None
    inline: bool = False

    @property
    def uses_shorthand(self) -> bool:
        return self.arguments is None and not self.inline

    @property
    def open_count(self) -> int:
        if self.arguments is None:
            return 0
        return sum(1 for arg in self.arguments if arg.open)


@dataclass(frozen=True, slots=True)
class QuantifierExpr:
    """``∀ c: domain ¦ body`` / ``∃ c: domain ¦ body``."""

    location: SourceLocation
    symbol: str
    cursor: Optional[Name]
    has_domain_separator: bool
    has_body_separator: bool

    @property
    def is_well_formed(self) -> bool:
        return self.cursor is not None and self.has_domain_separator and self.has_body_separator


# ════════════════════════════════════════════════════════════════════════
# §5  Features, clauses, classes
# ════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class FeatureDecl:
    name: Name
    location: SourceLocation
    parameters: Tuple[Parameter, ...] = ()
    return_type: Optional[TypeRef] = None
    frozen: bool = False
    header_comment: Optional[str] = None
    require: Optional[AssertionBlock] = None
    ensure: Optional[AssertionBlock] = None
    locals: Tuple[LocalDecl, ...] = ()
    body_kind: BodyKind = BodyKind.NONE
    once_keys: Tuple[str, ...] = ()
    body: Tuple[Token, ...] = ()
    agents: Tuple[AgentExpr, ...] = ()
    quantifiers: Tuple[QuantifierExpr, ...] = ()
    inner_assertions: Tuple[AssertionBlock, ...] = ()   # loop invariants, checks
    end_location: SourceLocation = UNKNOWN_LOCATION

    @property
    def is_query(self) -> bool:
        return self.return_type is not None

    @property
    def is_command(self) -> bool:
        return self.return_type is None

    @property
    def is_routine(self) -> bool:
        return self.body_kind.is_routine

    @property
    def is_attribute(self) -> bool:
        return self.is_query and not self.is_routine

    @property
    def is_once(self) -> bool:
        return self.body_kind is BodyKind.ONCE

    @property
    def has_contract(self) -> bool:
        return bool(self.require and len(self.require)) or bool(self.ensure and len(self.ensure))

    @property
    def loop_invariants(self) -> Tuple[AssertionBlock, ...]:
        return tuple(b for b in self.inner_assertions if b.kind is AssertionKind.LOOP_INVARIANT)

    @property
    def checks(self) -> Tuple[AssertionBlock, ...]:
        return tuple(b for b in self.inner_assertions if b.kind is AssertionKind.CHECK)

    def assertion_blocks(self) -> Iterator[AssertionBlock]:
        if self.require is not None:
            yield self.require
        if self.ensure is not None:
            yield self.ensure
        yield from self.inner_assertions


@dataclass(frozen=True, slots=True)
class FeatureClause:
    kind: ClauseKind
    location: SourceLocation
    category: Optional[str] = None
    clients: Tuple[str, ...] = ()
    features: Tuple[FeatureDecl, ...] = ()


@dataclass(frozen=True, slots=True)
class InvariantClause:
    location: SourceLocation
    block: AssertionBlock
    agents: Tuple[AgentExpr, ...] = ()
    quantifiers: Tuple[QuantifierExpr, ...] = ()


@dataclass(frozen=True, slots=True)
class ClassDecl:
    name: Name
    location: SourceLocation
    kind: ClassKind = ClassKind.ORDINARY
    frozen: bool = False
    generics: Tuple[Name, ...] = ()
    parents: Tuple[Name, ...] = ()
    creators: Tuple[Name, ...] = ()
    clauses: Tuple[FeatureClause, ...] = ()
    invariant: Optional[InvariantClause] = None

    @property
    def is_once(self) -> bool:
        return self.kind is ClassKind.ONCE

    @property
    def features(self) -> Tuple[FeatureDecl, ...]:
        return tuple(f for clause in self.clauses for f in clause.features)

    def find_feature(self, name: str) -> Optional[FeatureDecl]:
        wanted = name.lower()
        for feature in self.features:
            if feature.name.text.lower() == wanted:
                return feature
        return None

    def attribute_names(self) -> Tuple[str, ...]:
        return tuple(f.name.text for f in self.features if f.is_attribute)


@dataclass(frozen=True, slots=True)
class SyntaxTree:
    path: str
    classes: Tuple[ClassDecl, ...] = ()

    @property
    def root(self) -> Optional[ClassDecl]:
        return self.classes[0] if self.classes else None
