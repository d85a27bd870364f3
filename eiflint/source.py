"""eiflint/source.py – raw text plus a line/column index.

Every token, node and diagnostic refers back to the buffer through a
:class:`SourceLocation`.  Offsets are 0-based character offsets into the
normalised text; lines and columns are 1-based.
"""

from __future__ import annotations

import bisect
from dataclasses import dataclass
from typing import List, Tuple


@dataclass(frozen=True, order=True)
class SourceLocation:
    """A point in a source file: ``(line, column, offset)``."""

    line: int = 0
    column: int = 0
    offset: int = 0

    @property
    def is_known(self) -> bool:
        return self.line > 0

    def __str__(self) -> str:
        return f"{self.line}:{self.column}"


#: Location used for file-level findings (unreadable input and the like).
UNKNOWN_LOCATION = SourceLocation()


class SourceBuffer:
    """Owns the text of one file and answers position queries about it.

    ``\\r\\n`` and lone ``\\r`` line endings are normalised to ``\\n`` on
    construction so that columns are stable regardless of platform.
    """

    __slots__ = ("path", "text", "_line_starts")

    def __init__(self, text: str, path: str = "<string>") -> None:
        self.path = path
        self.text = text.replace("\r\n", "\n").replace("\r", "\n")
        starts: List[int] = [0]
        for index, char in enumerate(self.text):
            if char == "\n":
                starts.append(index + 1)
        self._line_starts: Tuple[int, ...] = tuple(starts)

    def __len__(self) -> int:
        return len(self.text)

    @property
    def line_count(self) -> int:
        if self.text.endswith("\n"):
            return len(self._line_starts) - 1
        return len(self._line_starts)

    def location(self, offset: int) -> SourceLocation:
        """Map a character *offset* to a :class:`SourceLocation`."""
        offset = max(0, min(offset, len(self.text)))
        line_index = bisect.bisect_right(self._line_starts, offset) - 1
        column = offset - self._line_starts[line_index] + 1
        return SourceLocation(line=line_index + 1, column=column, offset=offset)

    def line_start(self, line: int) -> int:
        return self._line_starts[line - 1]

    def line_text(self, line: int) -> str:
        """Return the text of 1-based *line* without its newline."""
        if line < 1 or line > len(self._line_starts):
            return ""
        start = self._line_starts[line - 1]
        end = self.text.find("\n", start)
        if end < 0:
            end = len(self.text)
        return self.text[start:end]

    def lines(self) -> List[str]:
        return [self.line_text(n) for n in range(1, self.line_count + 1)]
