"""eiflint/pipeline.py – per-file analysis and the batch driver.

One file::

    text ─► tokenize ─► parse ─► RuleEngine ─► DiagnosticCollector ─► FileReport

A batch expands directories to their ``*.e`` files (recursively, sorted),
analyses every file independently, on a thread pool when ``jobs > 1``,
and reassembles the reports in input order so output never depends on
scheduling.
"""

from __future__ import annotations

import logging
import os
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple

from eiflint.ast import SyntaxTree
from eiflint.checkers import AnalysisUnit, RuleEngine
from eiflint.collector import DiagnosticCollector, SuppressionManager, Verdict, verdict_for
from eiflint.errors import Diagnostic, RuleId, Severity, SourceReadError
from eiflint.lexer import tokenize
from eiflint.parser import parse
from eiflint.source import UNKNOWN_LOCATION

logger = logging.getLogger(__name__)

SOURCE_EXTENSION = ".e"


@dataclass(frozen=True)
class FileReport:
    path: str
    diagnostics: Tuple[Diagnostic, ...]
    verdict: Verdict
    tree: Optional[SyntaxTree] = None
    io_failed: bool = False
    suppressed: int = 0


@dataclass(frozen=True)
class BatchReport:
    files: Tuple[FileReport, ...]
    threshold: Severity = Severity.ERROR

    @property
    def diagnostics(self) -> Tuple[Diagnostic, ...]:
        return tuple(d for report in self.files for d in report.diagnostics)

    @property
    def verdict(self) -> Verdict:
        return verdict_for(self.diagnostics, self.threshold)

    @property
    def io_failed(self) -> bool:
        return any(report.io_failed for report in self.files)


# ═══════════════════════════════════════════════════════════════════════
#  Single file
# ═══════════════════════════════════════════════════════════════════════


def analyze_source(
    text: str,
    path: str = "<string>",
    rules: Optional[FrozenSet[str]] = None,
    threshold: Severity = Severity.ERROR,
) -> FileReport:
    """Run the whole pipeline over *text*; never raises on bad input."""
    lexed = tokenize(text, path)
    parsed = parse(lexed)
    unit = AnalysisUnit(
        path=path,
        buffer=lexed.buffer,
        tree=parsed.tree,
        tokens=lexed.tokens,
        lexer_diagnostics=lexed.diagnostics,
        lines=lexed.lines,
    )
    engine = RuleEngine(rules)
    engine_result = engine.run(unit)

    suppressions = SuppressionManager()
    suppressions.load_inline_suppressions(lexed.tokens)
    collector = DiagnosticCollector(threshold=threshold, suppressions=suppressions)
    collector.extend(parsed.diagnostics)
    collector.extend(engine_result.diagnostics)
    collected = collector.finish()
    logger.debug(
        "%s: %d diagnostics (%d suppressed), %d parser recoveries",
        path,
        len(collected.diagnostics),
        collected.suppressed,
        parsed.recoveries,
    )
    return FileReport(
        path=path,
        diagnostics=collected.diagnostics,
        verdict=collected.verdict,
        tree=parsed.tree,
        suppressed=collected.suppressed,
    )


def read_source(path: str) -> str:
    """Read a source file as UTF-8; raises :class:`SourceReadError`."""
    try:
        with open(path, "r", encoding="utf-8-sig") as fh:
            return fh.read()
    except UnicodeDecodeError as exc:
        raise SourceReadError(path, f"not valid UTF-8 ({exc.reason} at byte {exc.start})") from exc
    except OSError as exc:
        raise SourceReadError(path, exc.strerror or str(exc)) from exc


def analyze_file(
    path: str,
    rules: Optional[FrozenSet[str]] = None,
    threshold: Severity = Severity.ERROR,
) -> FileReport:
    try:
        text = read_source(path)
    except SourceReadError as exc:
        logger.warning("%s", exc)
        diag = exc.to_diagnostic()
        return FileReport(path=path, diagnostics=(diag,), verdict=Verdict.FAIL, io_failed=True)
    logger.info("analysing %s", path)
    return analyze_source(text, path=path, rules=rules, threshold=threshold)


# ═══════════════════════════════════════════════════════════════════════
#  Batches
# ═══════════════════════════════════════════════════════════════════════


def discover_files(paths: Iterable[str]) -> List[str]:
    """Expand directories to their ``*.e`` files; keep other paths as given.

    Missing paths are kept so that reading them produces an ``io-error``.
    Duplicates are dropped; first occurrence wins.
    """
    found: List[str] = []
    seen = set()
    for raw in paths:
        if os.path.isdir(raw):
            candidates = sorted(
                str(p) for p in Path(raw).rglob("*" + SOURCE_EXTENSION) if p.is_file()
            )
        else:
            candidates = [raw]
        for candidate in candidates:
            if candidate not in seen:
                seen.add(candidate)
                found.append(candidate)
    return found


def _crashed(path: str, exc: BaseException) -> FileReport:
    diag = Diagnostic(
        rule_id=RuleId.INTERNAL_ERROR,
        severity=Severity.ERROR,
        message=f"analysis failed: {exc}",
        location=UNKNOWN_LOCATION,
        path=path,
    )
    return FileReport(path=path, diagnostics=(diag,), verdict=Verdict.FAIL)


def analyze_paths(
    paths: Iterable[str],
    rules: Optional[FrozenSet[str]] = None,
    threshold: Severity = Severity.ERROR,
    jobs: int = 1,
) -> BatchReport:
    files = discover_files(paths)
    if jobs <= 1 or len(files) <= 1:
        reports: List[FileReport] = []
        for path in files:
            try:
                reports.append(analyze_file(path, rules, threshold))
            except Exception as exc:
                logger.exception("%s: analysis crashed", path)
                reports.append(_crashed(path, exc))
        return BatchReport(files=tuple(reports), threshold=threshold)

    results: Dict[int, FileReport] = {}
    with ThreadPoolExecutor(max_workers=jobs) as ex:
        futs = {ex.submit(analyze_file, path, rules, threshold): index for index, path in enumerate(files)}
        for fut in as_completed(futs):
            index = futs[fut]
            try:
                results[index] = fut.result()
            except Exception as exc:
                logger.exception("%s: analysis crashed", files[index])
                results[index] = _crashed(files[index], exc)
    logger.info("analysed %d files with %d workers", len(files), jobs)
    return BatchReport(files=tuple(results[i] for i in range(len(files))), threshold=threshold)
