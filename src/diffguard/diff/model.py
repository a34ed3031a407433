"""In-memory representation of a unified diff.

A :class:`DiffDocument` owns an ordered list of :class:`FileDiff` sections, each
section owns its :class:`Hunk` entries and each hunk owns its :class:`Line`
records.  Nothing holds a back reference to its parent.

Hunk line counts are derived from the lines themselves; the counts a generator
wrote into the ``@@`` header are kept only for diagnostics.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Tuple


class LineKind(str, Enum):
    """Role of a single hunk line, keyed by its diff prefix."""

    ADD = "+"
    REMOVE = "-"
    CONTEXT = " "


@dataclass(frozen=True, slots=True)
class Line:
    """One ``+``/``-``/context line inside a hunk."""

    kind: LineKind
    content: str

    def render(self) -> str:
        return f"{self.kind.value}{self.content}"


@dataclass(slots=True)
class Hunk:
    """Contiguous region of change with its old/new start positions."""

    old_start: int
    new_start: int
    lines: List[Line] = field(default_factory=list)
    header_suffix: str = ""
    declared_old_count: int | None = field(default=None, compare=False)
    declared_new_count: int | None = field(default=None, compare=False)

    @property
    def old_count(self) -> int:
        return sum(1 for line in self.lines if line.kind is not LineKind.ADD)

    @property
    def new_count(self) -> int:
        return sum(1 for line in self.lines if line.kind is not LineKind.REMOVE)

    @property
    def counts_adjusted(self) -> bool:
        """Return ``True`` when the declared header counts disagreed with the body."""

        if self.declared_old_count is None or self.declared_new_count is None:
            return False
        return (self.declared_old_count, self.declared_new_count) != (self.old_count, self.new_count)

    def header(self) -> str:
        return (
            f"@@ -{self.old_start},{self.old_count} "
            f"+{self.new_start},{self.new_count} @@{self.header_suffix}"
        )


@dataclass(slots=True)
class FileDiff:
    """Changes to a single file, introduced by a file-pair marker."""

    from_path: str
    to_path: str
    header_lines: List[str] = field(default_factory=list)
    hunks: List[Hunk] = field(default_factory=list)

    def has_path_markers(self) -> Tuple[bool, bool]:
        """Return whether the ``---`` and ``+++`` header lines are present."""

        old_marker = any(line.startswith("--- ") for line in self.header_lines)
        new_marker = any(line.startswith("+++ ") for line in self.header_lines)
        return old_marker, new_marker


@dataclass(slots=True)
class DiffDocument:
    """Complete change set made of ordered file sections."""

    files: List[FileDiff] = field(default_factory=list)

    def target_paths(self) -> List[str]:
        """Return the ``b/``-side path of every file section in order."""

        return [section.to_path for section in self.files]

    def hunk_count(self) -> int:
        return sum(len(section.hunks) for section in self.files)

    def is_empty(self) -> bool:
        return not self.files


__all__ = ["DiffDocument", "FileDiff", "Hunk", "Line", "LineKind"]
