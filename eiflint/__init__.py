"""eiflint — conformance checker for contract-driven, tab-indented sources.

This package lexes, parses and rule-checks ``.e`` class texts and reports
every violation of a fixed, versioned rulebook.

Submodules
----------
source
    ``SourceBuffer`` and ``SourceLocation``: raw text plus line index.
escapes
    The ``%``-escape grammar (named table and four numeric bases).
lexer
    ``Lexer`` / ``tokenize``: text → tokens, escape resolution and the
    indentation side channel (``tab-expected``).
ast
    Frozen syntax-tree dataclasses and the closed variant enums.
parser
    Recursive-descent ``Parser`` with cursor-based error recovery.
checkers
    The built-in rule checkers, their registry and the ``RuleEngine``.
collector
    ``DiagnosticCollector``: suppression, deduplication, ordering, verdict.
reporter
    Text / JSON rendering and summary statistics.
pipeline
    Per-file and batch analysis drivers.
main
    Command-line entry point (``eiflint`` / ``python -m eiflint``).

Usage
-----
Command-line::

    eiflint src/ --format json
    python -m eiflint person.e --rules naming,contract-presence

Programmatic::

    from eiflint.pipeline import analyze_source

    report = analyze_source(text, path="person.e")
    for diag in report.diagnostics:
        print(diag.to_text())
"""

from __future__ import annotations

import logging
from typing import List

__version__: str = "1.0.0"
__all__: List[str] = [
    "__version__",
    "source",
    "escapes",
    "lexer",
    "ast",
    "parser",
    "checkers",
    "collector",
    "reporter",
    "pipeline",
    "main",
]

logging.getLogger(__name__).addHandler(logging.NullHandler())
