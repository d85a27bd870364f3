# eiflint/errors.py
"""
Diagnostic model and exception hierarchy.

Architecture Overview:
─────────────────────
┌─────────────────────────────────────────────────────────────────────────┐
│  Diagnostics (data, never raised)                                       │
│  ├── produced by the Lexer     : invalid-escape, tab-expected           │
│  ├── produced by the Parser    : syntax-error                           │
│  ├── produced by the Pipeline  : io-error                               │
│  └── produced by the Checkers  : every other rule id                    │
├─────────────────────────────────────────────────────────────────────────┤
│  Exceptions (raised, only at the edges)                                 │
│  EiflintError                                                           │
│  ├── ConfigError       - bad rule selection / command-line values       │
│  └── SourceReadError   - a source file could not be read or decoded     │
└─────────────────────────────────────────────────────────────────────────┘

Nothing inside the lex → parse → check pipeline raises on malformed input;
every anomaly degrades to a :class:`Diagnostic`.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, replace
from typing import Any, Dict, Optional, Tuple

from eiflint.source import SourceLocation, UNKNOWN_LOCATION


# ═══════════════════════════════════════════════════════════════════════════
# RULE IDENTIFIERS
# ═══════════════════════════════════════════════════════════════════════════

class RuleId:
    """String constants for every rule id the checker can emit."""

    NAMING = "naming"
    CONTRACT_PRESENCE = "contract-presence"
    ASSERTION_LABELING = "assertion-labeling"
    ATTACHMENT = "attachment"
    COMMAND_QUERY = "command-query"
    ONCE_CLASS = "once-class"
    INVALID_ESCAPE = "invalid-escape"
    FEATURE_CLAUSE = "feature-clause"
    TAB_EXPECTED = "tab-expected"
    TRAILING_WHITESPACE = "trailing-whitespace"
    HEADER_COMMENT = "header-comment"
    CLASS_FILE_NAME = "class-file-name"
    AGENT_FORM = "agent-form"
    QUANTIFIER_FORM = "quantifier-form"

    # Always on; not part of any selectable family.
    SYNTAX_ERROR = "syntax-error"
    IO_ERROR = "io-error"
    INTERNAL_ERROR = "internal-error"


# ═══════════════════════════════════════════════════════════════════════════
# SEVERITY
# ═══════════════════════════════════════════════════════════════════════════

class Severity(enum.Enum):
    """
    Diagnostic severity levels.

    Each carries:
      • label — the string used in reports
      • color — termcolor colour name
      • rank  — ordering used by the severity threshold
    """

    ERROR = ("error", "red", 2)
    WARNING = ("warning", "yellow", 1)

    def __init__(self, label: str, color: str, rank: int) -> None:
        self.label = label
        self.color = color
        self.rank = rank

    @classmethod
    def from_string(cls, text: str) -> "Severity":
        """Parse a severity from its label (case-insensitive)."""
        wanted = text.strip().lower()
        for member in cls:
            if member.label == wanted:
                return member
        raise ConfigError(f"unknown severity {text!r} (expected error or warning)")

    def at_least(self, other: "Severity") -> bool:
        return self.rank >= other.rank

    def __str__(self) -> str:
        return self.label


# ═══════════════════════════════════════════════════════════════════════════
# DIAGNOSTIC
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Diagnostic:
    """
    A single finding.

    Attributes
    ----------
    rule_id  : rule identifier, e.g. ``"contract-presence"``
    severity : :class:`Severity`
    message  : human-readable description
    location : primary :class:`SourceLocation`
    fix      : advisory fix text; never applied automatically
    path     : file the finding belongs to
    """

    rule_id: str
    severity: Severity
    message: str
    location: SourceLocation = UNKNOWN_LOCATION
    fix: Optional[str] = None
    path: str = "<string>"

    @property
    def line(self) -> int:
        return self.location.line

    @property
    def column(self) -> int:
        return self.location.column

    @property
    def is_error(self) -> bool:
        return self.severity is Severity.ERROR

    @property
    def identity(self) -> Tuple[str, SourceLocation, str]:
        """The ``(rule_id, location, message)`` triple used for dedup."""
        return (self.rule_id, self.location, self.message)

    @property
    def sort_key(self) -> Tuple[int, int, str, str]:
        """Report order: line, column, rule id, then message.

        The message breaks ties between distinct findings of one rule at
        one position, so the order never depends on checker scheduling.
        """
        return (self.location.line, self.location.column, self.rule_id, self.message)

    def with_severity(self, severity: Severity) -> "Diagnostic":
        return replace(self, severity=severity)

    def to_dict(self) -> Dict[str, Any]:
        """Serialise to the JSON report object."""
        result: Dict[str, Any] = {
            "file": self.path,
            "line": self.location.line,
            "column": self.location.column,
            "severity": self.severity.label,
            "rule": self.rule_id,
            "message": self.message,
        }
        if self.fix:
            result["fix"] = self.fix
        return result

    def to_text(self) -> str:
        """``path:line:column: severity [rule-id] message``."""
        return (
            f"{self.path}:{self.location.line}:{self.location.column}: "
            f"{self.severity.label} [{self.rule_id}] {self.message}"
        )

    def __str__(self) -> str:
        return self.to_text()


# ═══════════════════════════════════════════════════════════════════════════
# EXCEPTIONS
# ═══════════════════════════════════════════════════════════════════════════

class EiflintError(Exception):
    """Base class for every exception raised by eiflint."""


class ConfigError(EiflintError):
    """An invalid run configuration (unknown rule family, bad flag value)."""


class SourceReadError(EiflintError):
    """A source file could not be read or decoded."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason

    def to_diagnostic(self) -> Diagnostic:
        return Diagnostic(
            rule_id=RuleId.IO_ERROR,
            severity=Severity.ERROR,
            message=f"cannot read source file: {self.reason}",
            location=UNKNOWN_LOCATION,
            path=self.path,
        )
