"""Repair raw, machine-generated diff text into a well-formed unified diff.

Generated diffs routinely arrive wrapped in code fences, prefixed with prose,
missing ``diff --git`` headers, carrying wrong ``@@`` counts, or listing hunks
out of order.  :func:`sanitize` fixes the structural envelope only; it never
tries to second-guess what a change does.  The stages run in a fixed order
because each one relies on the shape the previous stage left behind:

1. strip surrounding fences and normalise line endings,
2. drop any preamble before the first file marker,
3. synthesise ``diff --git`` headers for bare ``--- a/``/``+++ b/`` pairs,
4. parse leniently, discarding non-diff lines and stray artifacts,
5. recount hunk headers from their bodies,
6. sort hunks per file and rebase their new-file start lines,
7. render with exactly one trailing newline.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import List

from ..telemetry import emit_event
from .model import DiffDocument, FileDiff
from .unified import GIT_HEADER_PREFIX, format_diff, marker_path, normalise_line_endings, parse_unified_diff

LOGGER = logging.getLogger(__name__)

_LEADING_FENCE = re.compile(r"^```[A-Za-z0-9_+.-]*[ \t]*(?:\n|$)")
_TRAILING_FENCE = re.compile(r"(?:^|\n)```[ \t]*$")
_SECTION_START = re.compile(r"^(?:diff --git |--- a/)", re.MULTILINE)
_GIT_HEADER_LINE = re.compile(r"^diff --git ", re.MULTILINE)


@dataclass(slots=True)
class SanitizeReport:
    """Sanitised diff text and the repairs made to reach it."""

    text: str
    adjustments: List[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.adjustments)


def _trim_blank_edges(text: str) -> str:
    """Drop blank lines around ``text``; a final lone space is a blank context line."""
    lines = text.split("\n")
    while lines and not lines[0].strip():
        lines.pop(0)
    while lines and not lines[-1].strip() and lines[-1] != " ":
        lines.pop()
    if lines:
        lines[0] = lines[0].lstrip()
    return "\n".join(lines)


def _strip_fences(text: str, adjustments: List[str]) -> str:
    stripped = _trim_blank_edges(normalise_line_endings(text))
    unfenced = _LEADING_FENCE.sub("", stripped, count=1)
    unfenced = _TRAILING_FENCE.sub("", unfenced, count=1)
    if unfenced != stripped:
        adjustments.append("stripped code fences")
    return unfenced


def _strip_preamble(text: str, adjustments: List[str]) -> str:
    match = _SECTION_START.search(text)
    if match is None or match.start() == 0:
        return text
    removed = text[: match.start()].count("\n")
    adjustments.append(f"removed {removed} preamble line(s)")
    return text[match.start() :]


def _synthesise_git_headers(text: str, adjustments: List[str]) -> str:
    if _GIT_HEADER_LINE.search(text):
        return text
    lines = text.split("\n")
    result: List[str] = []
    for index, line in enumerate(lines):
        following = lines[index + 1] if index + 1 < len(lines) else ""
        if line.startswith("--- a/") and following.startswith("+++ b/"):
            path = marker_path(line)
            result.append(f"{GIT_HEADER_PREFIX}a/{path} b/{path}")
            adjustments.append(f"synthesised diff header for {path}")
        result.append(line)
    return "\n".join(result)


def _rebase_section(section: FileDiff) -> bool:
    """Sort hunks by old start and recompute new starts; return ``True`` if reordered."""
    ordered = sorted(section.hunks, key=lambda hunk: hunk.old_start)
    reordered = [id(hunk) for hunk in ordered] != [id(hunk) for hunk in section.hunks]
    offset = 0
    for hunk in ordered:
        hunk.new_start = max(1, hunk.old_start + offset)
        offset += hunk.new_count - hunk.old_count
    section.hunks = ordered
    return reordered


def _reconcile(document: DiffDocument, adjustments: List[str]) -> None:
    for section in document.files:
        for hunk in section.hunks:
            if hunk.counts_adjusted:
                adjustments.append(
                    f"{section.to_path}: adjusted hunk counts "
                    f"(-{hunk.declared_old_count}/+{hunk.declared_new_count} -> "
                    f"-{hunk.old_count}/+{hunk.new_count})"
                )
        if _rebase_section(section):
            adjustments.append(f"{section.to_path}: reordered hunks by old start line")


def sanitize_with_report(raw: str) -> SanitizeReport:
    """Sanitise ``raw`` and describe every structural repair applied."""
    adjustments: List[str] = []
    text = _strip_fences(raw or "", adjustments)
    text = _strip_preamble(text, adjustments)
    text = _synthesise_git_headers(text, adjustments)

    parsed = parse_unified_diff(text)
    if parsed.dropped_lines:
        adjustments.append(f"dropped {parsed.dropped_lines} stray line(s)")
    if parsed.dropped_hunks:
        adjustments.append(f"dropped {parsed.dropped_hunks} empty or malformed hunk(s)")
    for path in parsed.bare_sections:
        adjustments.append(f"synthesised diff header for {path}")

    document = parsed.document
    _reconcile(document, adjustments)

    if document.is_empty():
        # Nothing structural survived; pass the cleaned text through.
        result = text.strip()
    else:
        result = format_diff(document)
    if result and not result.endswith("\n"):
        result += "\n"

    LOGGER.debug("Sanitised diff with %d adjustment(s)", len(adjustments))
    emit_event(
        "diff_sanitized",
        files=document.target_paths(),
        hunks=document.hunk_count(),
        adjustments=adjustments,
    )
    return SanitizeReport(text=result, adjustments=adjustments)


def sanitize(raw: str) -> str:
    """Return ``raw`` repaired into a syntactically valid unified diff."""
    return sanitize_with_report(raw).text


__all__ = ["SanitizeReport", "sanitize", "sanitize_with_report"]
