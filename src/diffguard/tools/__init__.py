"""Working-tree integrations: git primitives and the patch applier."""

from .patch import ApplyStrategy, PatchApplier, PatchResult, apply_patch, revert_changes
from .vcs import GitError, GitRepository

__all__ = [
    "ApplyStrategy",
    "GitError",
    "GitRepository",
    "PatchApplier",
    "PatchResult",
    "apply_patch",
    "revert_changes",
]
