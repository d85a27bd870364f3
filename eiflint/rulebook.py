"""
eiflint/rulebook.py
═══════════════════

The fixed, versioned rule table.

Every selectable rule belongs to exactly one *family*; ``--rules`` accepts
family names and rule ids interchangeably.  Three ids are always on and
cannot be deselected: ``syntax-error``, ``io-error`` and
``internal-error``.

Rule parameters (recognised clause categories, statement threshold, name
patterns) live here as read-only data; checkers look them up through
:func:`param`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional, Tuple

from eiflint.errors import ConfigError, RuleId, Severity

RULEBOOK_VERSION = "2024.1"


@dataclass(frozen=True)
class RuleSpec:
    """One entry of the rulebook."""

    rule_id: str
    family: str
    severity: Severity
    description: str
    params: Mapping[str, Any] = field(default_factory=dict)

    def describe(self) -> str:
        return f"{self.rule_id:<22} {self.family:<20} {self.severity.label:<8} {self.description}"


CLAUSE_CATEGORIES: FrozenSet[str] = frozenset(
    {
        "Initialization",
        "Access",
        "Measurement",
        "Status report",
        "Status setting",
        "Element change",
        "Removal",
        "Resizing",
        "Transformation",
        "Conversion",
        "Duplication",
        "Basic operations",
        "Comparison",
        "Output",
        "Miscellaneous",
        "Implementation",
        "Inapplicable",
        "Obsolete",
        "Query",
        "Queries",
        "Command",
        "Commands",
        "Constants",
        "Cursor movement",
        "Iteration",
    }
)

RULES: Tuple[RuleSpec, ...] = (
    RuleSpec(
        RuleId.NAMING, "naming", Severity.WARNING,
        "class names upper case; feature, argument and local names lower snake case",
        {
            "class_pattern": r"[A-Z][A-Z0-9_]*",
            "feature_pattern": r"[a-z][a-z0-9_]*",
        },
    ),
    RuleSpec(
        RuleId.CONTRACT_PRESENCE, "contract-presence", Severity.ERROR,
        "non-trivial routines carry a precondition or a postcondition",
        {"statement_threshold": 1},
    ),
    RuleSpec(
        RuleId.ASSERTION_LABELING, "assertion-labeling", Severity.ERROR,
        "every assertion entry is labeled",
    ),
    RuleSpec(
        RuleId.ATTACHMENT, "attachment", Severity.WARNING,
        "attached arguments are not tested against Void in their own precondition",
    ),
    RuleSpec(
        RuleId.COMMAND_QUERY, "command-query", Severity.WARNING,
        "queries do not change the attributes their postcondition observes",
    ),
    RuleSpec(
        RuleId.ONCE_CLASS, "once-class", Severity.ERROR,
        "creation procedures of a once class are once procedures of the class",
    ),
    RuleSpec(
        RuleId.INVALID_ESCAPE, "escape", Severity.ERROR,
        "escape sequences are well formed (warning inside comments)",
        {"comment_severity": Severity.WARNING},
    ),
    RuleSpec(
        RuleId.FEATURE_CLAUSE, "feature-clause", Severity.WARNING,
        "features sit in a feature clause with a recognised category comment",
        {"categories": CLAUSE_CATEGORIES},
    ),
    RuleSpec(
        RuleId.TAB_EXPECTED, "layout", Severity.WARNING,
        "indentation uses tab characters only",
    ),
    RuleSpec(
        RuleId.TRAILING_WHITESPACE, "layout", Severity.WARNING,
        "lines carry no trailing whitespace",
    ),
    RuleSpec(
        RuleId.HEADER_COMMENT, "header-comment", Severity.WARNING,
        "routines carry a header comment",
    ),
    RuleSpec(
        RuleId.CLASS_FILE_NAME, "class-file-name", Severity.WARNING,
        "the class name matches the file name",
        {"extension": ".e"},
    ),
    RuleSpec(
        RuleId.AGENT_FORM, "agent", Severity.ERROR,
        "open-argument markers stand alone; all-open agents use the shorthand (warning)",
        {"all_open_severity": Severity.WARNING},
    ),
    RuleSpec(
        RuleId.QUANTIFIER_FORM, "quantifier", Severity.ERROR,
        "symbolic quantifiers have a cursor, a ':' and a '¦'",
    ),
)

ALWAYS_ON: Tuple[RuleSpec, ...] = (
    RuleSpec(RuleId.SYNTAX_ERROR, "core", Severity.ERROR, "the class text parses"),
    RuleSpec(RuleId.IO_ERROR, "core", Severity.ERROR, "the source file can be read"),
    RuleSpec(RuleId.INTERNAL_ERROR, "core", Severity.ERROR, "a rule checker failed"),
)

_BY_ID: Dict[str, RuleSpec] = {spec.rule_id: spec for spec in RULES + ALWAYS_ON}

FAMILIES: Tuple[str, ...] = tuple(dict.fromkeys(spec.family for spec in RULES))


def get(rule_id: str) -> RuleSpec:
    return _BY_ID[rule_id]


def param(rule_id: str, name: str, default: Any = None) -> Any:
    return _BY_ID[rule_id].params.get(name, default)


def severity_of(rule_id: str) -> Severity:
    return _BY_ID[rule_id].severity


def is_always_on(rule_id: str) -> bool:
    return any(spec.rule_id == rule_id for spec in ALWAYS_ON)


def resolve_selection(names: Optional[Iterable[str]]) -> FrozenSet[str]:
    """Turn ``--rules`` entries (families or rule ids) into rule ids.

    ``None`` or an empty selection means every rule.  Always-on ids
    (``syntax-error`` ...) are accepted and add nothing, since they are
    reported regardless.  Unknown names raise :class:`ConfigError`.
    """
    if names is None:
        return frozenset(spec.rule_id for spec in RULES)
    wanted = [name.strip() for name in names if name.strip()]
    if not wanted:
        return frozenset(spec.rule_id for spec in RULES)
    selected = set()
    unknown = []
    for name in wanted:
        lowered = name.lower()
        if is_always_on(lowered):
            continue
        matches = [spec.rule_id for spec in RULES if lowered in (spec.rule_id, spec.family)]
        if not matches:
            unknown.append(name)
        selected.update(matches)
    if unknown:
        raise ConfigError(
            "unknown rule or family: " + ", ".join(unknown)
            + " (see --list-rules)"
        )
    return frozenset(selected)


def listing() -> str:
    """The ``--list-rules`` table."""
    lines = [f"eiflint rulebook {RULEBOOK_VERSION}", ""]
    lines.extend(spec.describe() for spec in RULES)
    lines.append("")
    lines.extend(spec.describe() for spec in ALWAYS_ON)
    return "\n".join(lines)
