"""eiflint/config.py – run configuration.

A :class:`RunConfig` is built once from the command line (and two
environment variables) and passed, read-only, to the pipeline and the
reporter:

``NO_COLOR``
    any non-empty value disables colour, as if ``--no-color`` were given.
``EIFLINT_JOBS``
    default worker count for ``--jobs``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import FrozenSet, Mapping, Optional, Sequence, Tuple

from eiflint import rulebook
from eiflint.errors import ConfigError, Severity
from eiflint.reporter import FORMATS

JOBS_ENV = "EIFLINT_JOBS"
NO_COLOR_ENV = "NO_COLOR"


@dataclass(frozen=True)
class RunConfig:
    paths: Tuple[str, ...] = ()
    rules: FrozenSet[str] = field(default_factory=lambda: rulebook.resolve_selection(None))
    format: str = "text"
    threshold: Severity = Severity.ERROR
    jobs: int = 1
    color: bool = True
    output: Optional[str] = None
    dump_tree: bool = False

    def __post_init__(self) -> None:
        if self.format not in FORMATS:
            raise ConfigError(f"unknown format {self.format!r} (expected one of {', '.join(FORMATS)})")
        if self.jobs < 1:
            raise ConfigError(f"--jobs must be at least 1, got {self.jobs}")


def parse_rule_list(text: Optional[str]) -> FrozenSet[str]:
    """``"naming,layout"`` → rule ids; ``None`` selects every rule."""
    if text is None:
        return rulebook.resolve_selection(None)
    return rulebook.resolve_selection(text.split(","))


def default_jobs(environ: Mapping[str, str] = os.environ) -> int:
    raw = environ.get(JOBS_ENV, "").strip()
    if not raw:
        return 1
    try:
        jobs = int(raw)
    except ValueError:
        raise ConfigError(f"{JOBS_ENV} must be an integer, got {raw!r}") from None
    if jobs < 1:
        raise ConfigError(f"{JOBS_ENV} must be at least 1, got {jobs}")
    return jobs


def color_allowed(no_color_flag: bool, environ: Mapping[str, str] = os.environ) -> bool:
    return not no_color_flag and not environ.get(NO_COLOR_ENV)


def build_config(
    paths: Sequence[str],
    rules: Optional[str] = None,
    fmt: str = "text",
    threshold: str = "error",
    jobs: Optional[int] = None,
    no_color: bool = False,
    output: Optional[str] = None,
    dump_tree: bool = False,
    environ: Mapping[str, str] = os.environ,
) -> RunConfig:
    """Validate command-line values; raises :class:`ConfigError`."""
    return RunConfig(
        paths=tuple(paths),
        rules=parse_rule_list(rules),
        format=fmt,
        threshold=Severity.from_string(threshold),
        jobs=jobs if jobs is not None else default_jobs(environ),
        color=color_allowed(no_color, environ),
        output=output,
        dump_tree=dump_tree,
    )
