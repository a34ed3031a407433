"""Safety policy checks for sanitised diffs.

Checks run in a fixed order and stop at the first failure, so the reason
returned always names the most basic problem with a diff.  A passing result
means the diff is well-formed and touches only permitted paths; whether it
applies against the current tree is the patch applier's concern.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Iterable, List, Optional

from ..config import DiffPolicy
from ..telemetry import emit_event
from .model import FileDiff
from .unified import GIT_HEADER_PREFIX, marker_path, parse_diff

LOGGER = logging.getLogger(__name__)

FENCE_MARKER = "```"
_DEV_NULL = "/dev/null"
_RENAME_PREFIXES = ("rename from ", "rename to ", "copy from ", "copy to ")


@dataclass(frozen=True, slots=True)
class ValidationResult:
    """Verdict on a diff: accepted, or rejected with a reason."""

    ok: bool
    reason: Optional[str] = None

    @classmethod
    def accept(cls) -> "ValidationResult":
        return cls(ok=True)

    @classmethod
    def reject(cls, reason: str) -> "ValidationResult":
        return cls(ok=False, reason=reason)


def _escapes_repository(path: str) -> bool:
    candidate = PurePosixPath(path)
    if candidate.is_absolute():
        return True
    parts = candidate.parts
    if any(part == ".." for part in parts):
        return True
    return bool(parts) and parts[0] == ".git"


def _check_target(path: str, policy: DiffPolicy) -> Optional[str]:
    """Return the rejection reason for a single target path, if any."""
    if _escapes_repository(path):
        return f'path "{path}" escapes the repository'

    prefixes = sorted(policy.allowed_path_prefixes)
    if prefixes and not any(path.startswith(prefix) for prefix in prefixes):
        return f'change to "{path}" not allowed; permitted prefixes: {", ".join(prefixes)}'

    file_name = PurePosixPath(path).name
    if file_name in policy.blocked_file_names:
        return f'change to "{file_name}" is blocked'

    if any(marker in path for marker in policy.test_path_markers):
        return f'change to test file "{path}" is blocked'
    return None


def _section_paths(section: FileDiff) -> List[str]:
    """Every path a section reads or writes, target first, without repeats."""
    paths = [section.to_path, section.from_path]
    for line in section.header_lines:
        if line.startswith(_RENAME_PREFIXES):
            paths.append(line.split(" ", 2)[2].strip())
    return list(dict.fromkeys(paths))


def _marker_mismatch(section: FileDiff) -> Optional[str]:
    """Return a ``---``/``+++`` operand that disagrees with the file-pair paths."""
    for line in section.header_lines:
        if line.startswith("--- "):
            expected = section.from_path
        elif line.startswith("+++ "):
            expected = section.to_path
        else:
            continue
        operand = marker_path(line)
        if operand != _DEV_NULL and operand != expected:
            return operand
    return None


def _first_duplicate(paths: Iterable[str]) -> Optional[str]:
    seen: set[str] = set()
    for path in paths:
        if path in seen:
            return path
        seen.add(path)
    return None


def _evaluate(diff: str, policy: DiffPolicy) -> ValidationResult:
    if not diff or not diff.strip():
        return ValidationResult.reject("empty diff output")

    document = parse_diff(diff)
    has_git_header = any(line.startswith(GIT_HEADER_PREFIX) for line in diff.splitlines())
    if not has_git_header or document.is_empty():
        return ValidationResult.reject('not a valid unified diff: missing "diff --git" header')

    if FENCE_MARKER in diff:
        return ValidationResult.reject("contains formatting fences")

    line_count = len(diff.splitlines())
    if line_count > policy.max_lines:
        return ValidationResult.reject(
            f"diff has {line_count} lines, exceeds limit of {policy.max_lines}"
        )

    for section in document.files:
        mismatch = _marker_mismatch(section)
        if mismatch is not None:
            return ValidationResult.reject(
                f'file section "{section.to_path}" names a different file "{mismatch}" in its markers'
            )
        for path in _section_paths(section):
            reason = _check_target(path, policy)
            if reason is not None:
                return ValidationResult.reject(reason)

    if policy.reject_duplicate_targets:
        duplicate = _first_duplicate(document.target_paths())
        if duplicate is not None:
            return ValidationResult.reject(f'multiple file sections target "{duplicate}"')

    return ValidationResult.accept()


def validate(diff: str, policy: DiffPolicy | None = None) -> ValidationResult:
    """Check ``diff`` against ``policy`` (the default policy when omitted)."""
    active_policy = policy or DiffPolicy()
    result = _evaluate(diff, active_policy)
    if not result.ok:
        LOGGER.debug("Diff rejected: %s", result.reason)
        emit_event("diff_validation_failed", reason=result.reason)
    return result


__all__ = ["FENCE_MARKER", "ValidationResult", "validate"]
