"""End-to-end sanitize → validate → apply run for a single request.

Each call builds its own :class:`PipelineOutcome`; nothing is cached between
calls, so separate working trees can be processed side by side.  Callers must
still serialise runs against the same working tree.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Tuple

from .config import DiffGuardConfig
from .diff.sanitizer import sanitize_with_report
from .diff.validator import ValidationResult, validate
from .tools.patch import PatchApplier, PatchResult

LOGGER = logging.getLogger(__name__)


class PipelineStage(str, Enum):
    """Where a pipeline run stopped."""

    REJECTED = "rejected"
    FAILED = "failed"
    APPLIED = "applied"


@dataclass(frozen=True, slots=True)
class PipelineOutcome:
    """Immutable record of one pipeline run."""

    stage: PipelineStage
    sanitized: str
    validation: ValidationResult
    patch: PatchResult
    adjustments: Tuple[str, ...] = field(default=())

    @property
    def ok(self) -> bool:
        return self.stage is PipelineStage.APPLIED

    def describe(self) -> str:
        if self.stage is PipelineStage.APPLIED:
            return f"applied ({self.patch.strategy})"
        if self.stage is PipelineStage.REJECTED:
            return f"rejected: {self.patch.validate_error}"
        if self.stage is PipelineStage.FAILED:
            return f"failed: {self.patch.apply_error}"
        raise ValueError(f"Unhandled pipeline stage: {self.stage!r}")


def run_pipeline(
    raw: str,
    *,
    repo_root: Path | str,
    config: DiffGuardConfig | None = None,
) -> PipelineOutcome:
    """Sanitise ``raw``, validate it, and apply it to ``repo_root`` if allowed."""

    active = config or DiffGuardConfig()
    report = sanitize_with_report(raw)
    validation = validate(report.text, active.policy)
    adjustments = tuple(report.adjustments)

    if not validation.ok:
        LOGGER.info("Diff rejected before apply: %s", validation.reason)
        return PipelineOutcome(
            stage=PipelineStage.REJECTED,
            sanitized=report.text,
            validation=validation,
            patch=PatchResult.rejected(report.text, validation.reason or "rejected"),
            adjustments=adjustments,
        )

    patch = PatchApplier(repo_root, active.apply).apply(report.text)
    stage = PipelineStage.APPLIED if patch.ok else PipelineStage.FAILED
    return PipelineOutcome(
        stage=stage,
        sanitized=report.text,
        validation=validation,
        patch=patch,
        adjustments=adjustments,
    )


__all__ = ["PipelineOutcome", "PipelineStage", "run_pipeline"]
