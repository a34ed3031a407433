"""Unified diff model, sanitiser and validator."""

from .model import DiffDocument, FileDiff, Hunk, Line, LineKind
from .sanitizer import SanitizeReport, sanitize, sanitize_with_report
from .unified import format_diff, parse_diff, parse_unified_diff
from .validator import ValidationResult, validate

__all__ = [
    "DiffDocument",
    "FileDiff",
    "Hunk",
    "Line",
    "LineKind",
    "SanitizeReport",
    "ValidationResult",
    "format_diff",
    "parse_diff",
    "parse_unified_diff",
    "sanitize",
    "sanitize_with_report",
    "validate",
]
