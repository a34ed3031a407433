"""Tokenizer, lenient parser and formatter for unified diffs.

Parsing and formatting are separate steps: :func:`parse_unified_diff` turns
text into a :class:`~diffguard.diff.model.DiffDocument` and drops anything that
is not diff structure, while :func:`format_diff` renders a document back into
text with hunk headers derived from the hunk bodies.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Sequence

from .model import DiffDocument, FileDiff, Hunk, Line, LineKind

GIT_HEADER_PREFIX = "diff --git "

_GIT_HEADER = re.compile(r"^diff --git a/(?P<old>.+?) b/(?P<new>.+)$")
_GIT_HEADER_BARE = re.compile(r"^diff --git (?P<old>\S+) (?P<new>\S+)$")
_HUNK_HEADER = re.compile(
    r"^@@ -(?P<old_start>\d+)(?:,(?P<old_count>\d+))? "
    r"\+(?P<new_start>\d+)(?:,(?P<new_count>\d+))? @@(?P<suffix>.*)$"
)
_METADATA_PREFIXES: tuple[str, ...] = (
    "index ",
    "new file mode ",
    "deleted file mode ",
    "old mode ",
    "new mode ",
    "similarity index ",
    "dissimilarity index ",
    "rename from ",
    "rename to ",
    "copy from ",
    "copy to ",
)
_DEV_NULL = "/dev/null"


class Token(str, Enum):
    """Context-free classification of a single diff line."""

    FILE_PAIR = "file-pair"
    HUNK_RANGE = "hunk-range"
    OLD_PATH = "old-path"
    NEW_PATH = "new-path"
    METADATA = "metadata"
    ADD = "add"
    REMOVE = "remove"
    CONTEXT = "context"
    EMPTY = "empty"
    NOISE = "noise"


_HUNK_BODY_TOKENS = frozenset(
    {Token.ADD, Token.REMOVE, Token.CONTEXT, Token.EMPTY, Token.OLD_PATH, Token.NEW_PATH}
)


def normalise_line_endings(text: str) -> str:
    """Convert CRLF/CR sequences to LF."""
    return text.replace("\r\n", "\n").replace("\r", "\n")


def classify_line(line: str) -> Token:
    """Return the structural token for ``line`` without any parser state."""
    if line.startswith(GIT_HEADER_PREFIX):
        return Token.FILE_PAIR
    if line.startswith("@@"):
        return Token.HUNK_RANGE
    if line.startswith("--- "):
        return Token.OLD_PATH
    if line.startswith("+++ "):
        return Token.NEW_PATH
    if line.startswith(_METADATA_PREFIXES):
        return Token.METADATA
    if not line:
        return Token.EMPTY
    prefix = line[:1]
    if prefix == "+":
        return Token.ADD
    if prefix == "-":
        return Token.REMOVE
    if prefix == " ":
        return Token.CONTEXT
    return Token.NOISE


def marker_path(line: str) -> str:
    """Extract the operand of a ``---``/``+++`` line, minus any timestamp."""
    operand = line[4:].split("\t", 1)[0].strip()
    if operand.startswith(("a/", "b/")):
        return operand[2:]
    return operand


def _parse_git_header(line: str) -> tuple[str, str] | None:
    match = _GIT_HEADER.match(line)
    if match:
        return match.group("old"), match.group("new")
    match = _GIT_HEADER_BARE.match(line)
    if match:
        old, new = match.group("old"), match.group("new")
        if old.startswith(("a/", "b/")):
            old = old[2:]
        if new.startswith(("a/", "b/")):
            new = new[2:]
        return old, new
    return None


def _starts_bare_section(line: str, lookahead: Sequence[str]) -> bool:
    """Return ``True`` for a ``--- a/``, ``+++ b/``, ``@@`` run opening a new file."""
    return (
        line.startswith("--- a/")
        and len(lookahead) == 2
        and lookahead[0].startswith("+++ b/")
        and lookahead[1].startswith("@@ ")
    )


def _hunk_line(token: Token, line: str) -> Line:
    if token is Token.EMPTY:
        return Line(LineKind.CONTEXT, "")
    if token in (Token.ADD, Token.NEW_PATH):
        return Line(LineKind.ADD, line[1:])
    if token in (Token.REMOVE, Token.OLD_PATH):
        return Line(LineKind.REMOVE, line[1:])
    return Line(LineKind.CONTEXT, line[1:])


@dataclass(slots=True)
class ParseReport:
    """Parsed document plus a tally of what the lenient parser discarded."""

    document: DiffDocument
    dropped_lines: int = 0
    dropped_hunks: int = 0
    bare_sections: List[str] = field(default_factory=list)


class _UnifiedDiffParser:
    """Single-pass state machine over tokenised diff lines."""

    def __init__(self, lines: Sequence[str]) -> None:
        self._lines = lines
        self._report = ParseReport(document=DiffDocument())
        self._section: FileDiff | None = None
        self._hunk: Hunk | None = None
        self._skipping = False
        self._trailing_empty = 0

    def parse(self) -> ParseReport:
        for index, line in enumerate(self._lines):
            self._consume(line, classify_line(line), self._lines[index + 1 : index + 3])
        self._close_hunk(closes_section=True)
        return self._report

    def _consume(self, line: str, token: Token, lookahead: Sequence[str]) -> None:
        following = lookahead[0] if lookahead else None
        if token is Token.FILE_PAIR:
            self._close_hunk(closes_section=True)
            self._skipping = False
            self._open_git_section(line)
            return

        if token is Token.HUNK_RANGE:
            self._close_hunk(closes_section=False)
            self._open_hunk(line)
            return

        if self._skipping:
            self._drop()
            return

        if self._hunk is not None:
            if _starts_bare_section(line, lookahead):
                self._close_hunk(closes_section=True)
                self._open_bare_section(line, lookahead[0])
                return
            if token not in _HUNK_BODY_TOKENS:
                self._drop()
                return
            if line in {"+", "-"} and following is not None and following.startswith(GIT_HEADER_PREFIX):
                # Stray delta line left between file sections.
                self._drop()
                return
            self._hunk.lines.append(_hunk_line(token, line))
            self._trailing_empty = self._trailing_empty + 1 if token is Token.EMPTY else 0
            return

        if self._section is not None:
            if token in (Token.OLD_PATH, Token.NEW_PATH, Token.METADATA):
                self._section.header_lines.append(line)
            else:
                self._drop()
            return

        if token is Token.OLD_PATH and following is not None and following.startswith("+++ "):
            self._open_bare_section(line, following)
            return
        self._drop()

    def _drop(self) -> None:
        self._report.dropped_lines += 1

    def _open_git_section(self, line: str) -> None:
        paths = _parse_git_header(line)
        if paths is None:
            self._section = None
            self._drop()
            return
        self._section = FileDiff(from_path=paths[0], to_path=paths[1])
        self._report.document.files.append(self._section)

    def _open_bare_section(self, old_line: str, new_line: str) -> None:
        old_path = marker_path(old_line)
        new_path = marker_path(new_line)
        if new_path == _DEV_NULL:
            new_path = old_path
        if old_path == _DEV_NULL:
            old_path = new_path
        self._section = FileDiff(from_path=old_path, to_path=new_path, header_lines=[old_line])
        self._report.document.files.append(self._section)
        self._report.bare_sections.append(new_path)

    def _open_hunk(self, line: str) -> None:
        match = _HUNK_HEADER.match(line)
        if self._section is None or match is None:
            self._drop()
            self._skipping = True
            return
        self._skipping = False
        old_count = match.group("old_count")
        new_count = match.group("new_count")
        self._hunk = Hunk(
            old_start=int(match.group("old_start")),
            new_start=int(match.group("new_start")),
            header_suffix=match.group("suffix") or "",
            declared_old_count=int(old_count) if old_count is not None else 1,
            declared_new_count=int(new_count) if new_count is not None else 1,
        )

    def _close_hunk(self, *, closes_section: bool) -> None:
        hunk, trailing_empty = self._hunk, self._trailing_empty
        self._hunk = None
        self._trailing_empty = 0
        if hunk is None or self._section is None:
            return
        if closes_section and trailing_empty:
            # Raw blank lines before the next section are separators, not context.
            del hunk.lines[-trailing_empty:]
            self._report.dropped_lines += trailing_empty
        if not hunk.lines:
            self._report.dropped_hunks += 1
            return
        self._section.hunks.append(hunk)


def parse_unified_diff(text: str) -> ParseReport:
    """Parse ``text`` leniently, keeping only recognised diff structure."""
    if not text:
        return ParseReport(document=DiffDocument())
    lines = normalise_line_endings(text).split("\n")
    if lines[-1] == "":
        lines.pop()
    return _UnifiedDiffParser(lines).parse()


def parse_diff(text: str) -> DiffDocument:
    """Parse ``text`` into a :class:`DiffDocument`."""
    return parse_unified_diff(text).document


def _restore_marker_prefix(line: str) -> str:
    """Ensure ``---``/``+++`` operands carry git-style ``a/``/``b/`` prefixes."""
    if line.startswith("--- "):
        operand = line[4:]
        if not operand.startswith((_DEV_NULL, "a/", "b/")):
            return f"--- a/{operand}"
    elif line.startswith("+++ "):
        operand = line[4:]
        if not operand.startswith((_DEV_NULL, "a/", "b/")):
            return f"+++ b/{operand}"
    return line


def _render_section_header(section: FileDiff) -> List[str]:
    header = [_restore_marker_prefix(line) for line in section.header_lines]
    if not section.hunks:
        return header
    has_old, has_new = section.has_path_markers()
    if not has_old:
        position = next(
            (index for index, line in enumerate(header) if line.startswith("+++ ")),
            len(header),
        )
        header.insert(position, f"--- a/{section.from_path}")
    if not has_new:
        header.append(f"+++ b/{section.to_path}")
    return header


def format_diff(document: DiffDocument) -> str:
    """Render ``document`` as unified diff text ending in a newline."""
    lines: List[str] = []
    for section in document.files:
        lines.append(f"diff --git a/{section.from_path} b/{section.to_path}")
        lines.extend(_render_section_header(section))
        for hunk in section.hunks:
            lines.append(hunk.header())
            lines.extend(line.render() for line in hunk.lines)
    if not lines:
        return ""
    return "\n".join(lines) + "\n"


__all__ = [
    "GIT_HEADER_PREFIX",
    "ParseReport",
    "Token",
    "classify_line",
    "format_diff",
    "marker_path",
    "normalise_line_endings",
    "parse_diff",
    "parse_unified_diff",
]
