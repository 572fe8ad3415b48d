"""
Source positions for declarations and expression trees.

The front-end that parses configuration text attaches these to AST nodes so
that diagnostics can point back at the offending text. The core never reads
source files itself.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class SourceLocation:
    """Represents a position in source code."""
    line: int           # 1-indexed line number
    column: int         # 1-indexed column number
    offset: int = 0     # 0-indexed character offset from start
    filename: Optional[str] = None

    def __str__(self) -> str:
        if self.filename:
            return f"{self.filename}:{self.line}:{self.column}"
        return f"{self.line}:{self.column}"


@dataclass(frozen=True)
class SourceSpan:
    """Represents a range in source code."""
    start: SourceLocation
    end: SourceLocation

    def __str__(self) -> str:
        if self.start.filename:
            return f"{self.start.filename}:{self.start.line}:{self.start.column}-{self.end.line}:{self.end.column}"
        return f"{self.start.line}:{self.start.column}-{self.end.line}:{self.end.column}"


def span_at(line: int, column: int, length: int = 1,
            filename: Optional[str] = None) -> SourceSpan:
    """Build a single-line span, mostly useful for front-ends and tests."""
    start = SourceLocation(line, column, 0, filename)
    end = SourceLocation(line, column + length, length, filename)
    return SourceSpan(start, end)
