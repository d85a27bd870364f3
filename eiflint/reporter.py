"""
eiflint/reporter.py
═══════════════════

Renders collected diagnostics.

Output formats
──────────────
  • text : one line per diagnostic,
           ``path:line:column: severity [rule-id] message``,
           coloured with termcolor when writing to a terminal
  • json : one array of objects (``file``, ``line``, ``column``,
           ``severity``, ``rule``, ``message`` and, when present, ``fix``);
           keys sorted, indent 2

The summary line (``2 errors; 1 warning (3 total)``) is written by the
caller to stderr so that stdout stays machine-readable.  Rendering is a
pure function of the diagnostics: unchanged input gives byte-identical
output.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, TextIO, Union

from termcolor import colored

from eiflint.errors import Diagnostic, Severity

FORMATS = ("text", "json")


# ═════════════════════════════════════════════════════════════════════════
#  STATISTICS
# ═════════════════════════════════════════════════════════════════════════

@dataclass
class ReporterStats:
    """Aggregate counts per severity."""

    error: int = 0
    warning: int = 0
    files: int = 0

    def record(self, severity: Severity) -> None:
        setattr(self, severity.label, getattr(self, severity.label) + 1)

    def record_all(self, diagnostics: Iterable[Diagnostic]) -> None:
        for diag in diagnostics:
            self.record(diag.severity)

    @property
    def total(self) -> int:
        return self.error + self.warning

    def summary_line(self) -> str:
        parts: List[str] = []
        if self.error:
            parts.append(f"{self.error} error{'s' if self.error != 1 else ''}")
        if self.warning:
            parts.append(f"{self.warning} warning{'s' if self.warning != 1 else ''}")
        checked = f" in {self.files} file{'s' if self.files != 1 else ''}" if self.files else ""
        if not parts:
            return f"no diagnostics{checked}"
        return "; ".join(parts) + f" ({self.total} total){checked}"


# ═════════════════════════════════════════════════════════════════════════
#  COLOUR POLICY
# ═════════════════════════════════════════════════════════════════════════

def use_color(stream: TextIO, requested: bool = True) -> bool:
    """Colour only when asked, on a TTY, and without ``NO_COLOR`` set."""
    if not requested or os.environ.get("NO_COLOR"):
        return False
    isatty = getattr(stream, "isatty", None)
    return bool(isatty and isatty())


# ═════════════════════════════════════════════════════════════════════════
#  RENDERERS
# ═════════════════════════════════════════════════════════════════════════

class TextReporter:
    """``path:line:column: severity [rule-id] message`` lines."""

    def __init__(self, color: bool = False) -> None:
        self.color = color

    def format(self, diag: Diagnostic) -> str:
        if not self.color:
            return diag.to_text()
        where = colored(
            f"{diag.path}:{diag.location.line}:{diag.location.column}:",
            attrs=["bold"],
            force_color=True,
        )
        severity = colored(diag.severity.label, diag.severity.color, attrs=["bold"], force_color=True)
        rule = colored(f"[{diag.rule_id}]", attrs=["dark"], force_color=True)
        return f"{where} {severity} {rule} {diag.message}"

    def render(self, diagnostics: Sequence[Diagnostic]) -> str:
        if not diagnostics:
            return ""
        return "\n".join(self.format(d) for d in diagnostics) + "\n"


class JsonReporter:
    def render(self, diagnostics: Sequence[Diagnostic]) -> str:
        return json.dumps([d.to_dict() for d in diagnostics], indent=2, sort_keys=True) + "\n"


def make_reporter(fmt: str, color: bool = False) -> Union[TextReporter, JsonReporter]:
    if fmt == "json":
        return JsonReporter()
    if fmt == "text":
        return TextReporter(color=color)
    raise ValueError(f"unknown report format {fmt!r}")


def write_report(
    diagnostics: Sequence[Diagnostic],
    stream: TextIO,
    fmt: str = "text",
    color: Optional[bool] = None,
) -> ReporterStats:
    """Render *diagnostics* to *stream*; returns the counts."""
    if color is None:
        color = use_color(stream)
    stream.write(make_reporter(fmt, color=color).render(diagnostics))
    stream.flush()
    stats = ReporterStats()
    stats.record_all(diagnostics)
    return stats
