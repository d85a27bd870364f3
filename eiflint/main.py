#!/usr/bin/env python3
"""eiflint/main.py — command-line entry point.

Usage examples
--------------
    # Check one file, or every *.e file below a directory
    eiflint person.e
    eiflint src/ --jobs 4

    # Only some rule families, JSON report into a file
    eiflint src/ --rules naming,contract-presence --format json --output report.json

    # Let warnings fail the run too
    eiflint src/ --severity-threshold warning

    # Show what the parser recovered (debugging aid)
    eiflint person.e --dump-tree

    # List the rulebook and exit
    eiflint --list-rules

Exit codes
----------
    0   No diagnostic at or above the severity threshold.
    1   At least one diagnostic at or above the severity threshold.
    2   A source file could not be read, or the command line is invalid.

The module doubles as ``python -m eiflint`` via the companion
``eiflint/__main__.py`` which simply calls :func:`main`.
"""

from __future__ import annotations

import argparse
import logging
import sys
import textwrap
from pathlib import Path
from typing import Optional, Sequence, TextIO

from eiflint import __version__, rulebook
from eiflint.config import RunConfig, build_config
from eiflint.dump import dump_tree
from eiflint.errors import ConfigError
from eiflint.pipeline import BatchReport, analyze_paths
from eiflint.reporter import FORMATS, use_color, write_report

_log = logging.getLogger("eiflint")

# Exit codes ----------------------------------------------------------------

EXIT_OK: int = 0
EXIT_ERROR: int = 1
EXIT_INFRA: int = 2


# ===========================================================================
# Utility helpers
# ===========================================================================

def _configure_logging(verbosity: int) -> None:
    """Set up the ``eiflint`` logger.

    Parameters
    ----------
    verbosity:
        0 → WARNING, 1 → INFO, 2+ → DEBUG.
    """
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    root = logging.getLogger("eiflint")
    for handler in list(root.handlers):
        if getattr(handler, "_eiflint_cli", False):
            root.removeHandler(handler)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s [%(levelname)-5.5s] %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        )
    )
    handler._eiflint_cli = True  # type: ignore[attr-defined]
    root.setLevel(level)
    root.addHandler(handler)


def _open_output(dest: Optional[str]) -> TextIO:
    """Return a writable text stream.

    *dest* ``None`` or ``"-"`` → ``sys.stdout``; otherwise open the path
    for writing (creating parent directories as needed).
    """
    if dest is None or dest == "-":
        return sys.stdout
    p = Path(dest).expanduser().resolve()
    p.parent.mkdir(parents=True, exist_ok=True)
    return open(p, "w", encoding="utf-8")


def exit_code_for(batch: BatchReport) -> int:
    if batch.io_failed:
        return EXIT_INFRA
    return EXIT_OK if batch.verdict.passed else EXIT_ERROR


# ===========================================================================
# Commands
# ===========================================================================

def run(config: RunConfig) -> int:
    """Analyse ``config.paths`` and write the report; returns the exit code."""
    batch = analyze_paths(config.paths, config.rules, config.threshold, config.jobs)
    try:
        out = _open_output(config.output)
    except OSError as exc:
        _log.error("cannot open output %s: %s", config.output, exc)
        return EXIT_INFRA
    try:
        if config.dump_tree:
            for report in batch.files:
                if report.tree is not None:
                    out.write(dump_tree(report.tree) + "\n")
            out.flush()
            stats = None
        else:
            color = config.color and use_color(out)
            stats = write_report(batch.diagnostics, out, fmt=config.format, color=color)
    finally:
        if out is not sys.stdout:
            out.close()

    if stats is not None:
        stats.files = len(batch.files)
        sys.stderr.write(stats.summary_line() + "\n")
    return exit_code_for(batch)


# ===========================================================================
# Argument parser
# ===========================================================================

def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="eiflint",
        description=(
            "eiflint — conformance checker for contract-driven class texts.\n\n"
            "Reports naming, layout, contract, attachment and construct-form\n"
            f"violations against rulebook {rulebook.RULEBOOK_VERSION}."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""\
            examples:
              eiflint person.e
              eiflint src/ --rules naming,layout --format json
              eiflint src/ --severity-threshold warning --jobs 4
        """),
    )
    parser.add_argument(
        "paths",
        nargs="*",
        metavar="PATH",
        help="Source files or directories (searched recursively for *.e).",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__} (rulebook {rulebook.RULEBOOK_VERSION})",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (-v info, -vv debug).",
    )
    parser.add_argument(
        "--rules",
        default=None,
        metavar="LIST",
        help="Comma-separated rule families or rule ids (default: all).",
    )
    parser.add_argument(
        "-f", "--format",
        choices=list(FORMATS),
        default="text",
        help="Report format (default: text).",
    )
    parser.add_argument(
        "--severity-threshold",
        choices=["error", "warning"],
        default="error",
        help="Lowest severity that fails the run (default: error).",
    )
    parser.add_argument(
        "-o", "--output",
        default=None,
        metavar="FILE",
        help='Report file ("-" or omit for stdout).',
    )
    parser.add_argument(
        "-j", "--jobs",
        type=int,
        default=None,
        metavar="N",
        help="Worker threads for batch analysis (default: $EIFLINT_JOBS or 1).",
    )
    parser.add_argument(
        "--no-color",
        action="store_true",
        help="Never colour the text report (also: NO_COLOR=1).",
    )
    parser.add_argument(
        "--list-rules",
        action="store_true",
        help="Print the rulebook and exit.",
    )
    parser.add_argument(
        "--dump-tree",
        action="store_true",
        help="Print each file's syntax tree as an S-expression instead of the report.",
    )
    return parser


# ===========================================================================
# Entry point
# ===========================================================================

def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the eiflint CLI.

    Parameters
    ----------
    argv:
        Command-line arguments.  ``None`` → ``sys.argv[1:]``.

    Returns
    -------
    int
        Exit code (see module docstring for semantics).
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    _configure_logging(args.verbose)

    if args.list_rules:
        sys.stdout.write(rulebook.listing() + "\n")
        return EXIT_OK
    if not args.paths:
        parser.print_usage(sys.stderr)
        _log.error("no input paths given")
        return EXIT_INFRA

    try:
        config = build_config(
            args.paths,
            rules=args.rules,
            fmt=args.format,
            threshold=args.severity_threshold,
            jobs=args.jobs,
            no_color=args.no_color,
            output=args.output,
            dump_tree=args.dump_tree,
        )
    except ConfigError as exc:
        _log.error("%s", exc)
        return EXIT_INFRA

    try:
        return run(config)
    except KeyboardInterrupt:
        _log.info("Interrupted by user.")
        return 130
    except Exception as exc:
        _log.error("Unhandled exception: %s", exc, exc_info=True)
        return EXIT_INFRA


if __name__ == "__main__":
    sys.exit(main())
