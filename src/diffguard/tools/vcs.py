"""Minimal git helpers for the apply and revert stages.

Only what the applier and its callers need: run git in a working tree, report
which paths differ from ``HEAD``, and roll everything back to ``HEAD``.
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Sequence

import subprocess

from ..telemetry import emit_event

_IDENTITY = (("user.email", "diffguard@example.com"), ("user.name", "diffguard"))


class GitError(RuntimeError):
    """Raised when a git command fails or the repository cannot be used."""


def _decode(data: bytes | None) -> str:
    return data.decode("utf-8", errors="replace") if data else ""


def _run(args: Sequence[str], *, cwd: Path, check: bool = True) -> subprocess.CompletedProcess[str]:
    """Run ``git args`` in ``cwd``; output is decoded leniently."""
    try:
        raw = subprocess.run(["git", *args], cwd=cwd, capture_output=True, check=False)
    except OSError as error:
        raise GitError(f"git {' '.join(args)} could not be started: {error}") from error
    result = subprocess.CompletedProcess(raw.args, raw.returncode, _decode(raw.stdout), _decode(raw.stderr))
    if check and result.returncode != 0:
        detail = result.stderr.strip() or result.stdout.strip() or "unknown git error"
        raise GitError(f"git {' '.join(args)} failed: {detail}")
    return result


class GitRepository:
    """A working tree with a ``.git`` directory at ``root``."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root).resolve()
        if not (self.root / ".git").exists():
            raise GitError(f"Not a git repository: {self.root}")

    @classmethod
    def initialise(cls, root: Path | str) -> "GitRepository":
        """Create a repository at ``root`` and commit whatever it already holds."""

        path = Path(root).resolve()
        path.mkdir(parents=True, exist_ok=True)
        _run(["init", "--quiet"], cwd=path)
        for key, value in _IDENTITY:
            if not _run(["config", "--get", key], cwd=path, check=False).stdout.strip():
                _run(["config", key, value], cwd=path)
        _run(["add", "--all"], cwd=path)
        _run(["commit", "--quiet", "--allow-empty", "-m", "Initial snapshot"], cwd=path)
        return cls(path)

    def git(self, *args: str, check: bool = True) -> subprocess.CompletedProcess[str]:
        """Execute ``git`` with ``args`` relative to the repository root."""

        return _run(list(args), cwd=self.root, check=check)

    def head(self) -> str | None:
        """Return the commit SHA of ``HEAD`` or ``None`` before the first commit."""

        result = self.git("rev-parse", "--verify", "--quiet", "HEAD", check=False)
        return (result.stdout.strip() or None) if result.returncode == 0 else None

    def working_tree_changes(self) -> List[Path]:
        """Paths that differ from ``HEAD``, untracked files included, sorted."""

        porcelain = self.git("status", "--porcelain", "--untracked-files=all").stdout
        changed = set()
        for entry in porcelain.splitlines():
            if len(entry) < 4:
                continue
            target = entry[3:]
            if " -> " in target:
                target = target.split(" -> ", 1)[1]
            changed.add(Path(target.strip().strip('"')))
        return sorted(changed, key=Path.as_posix)

    def is_clean(self) -> bool:
        return not self.working_tree_changes()

    def revert(self) -> None:
        """Restore tracked files to ``HEAD`` and delete untracked files and directories.

        Ignored files are left alone.  Any git failure raises :class:`GitError`;
        the tree state is unknown at that point, so callers must not retry
        blindly.
        """

        head = self.head()
        if head is None:
            raise GitError(f"Cannot revert {self.root}: repository has no commits.")
        self.git("reset", "--hard", "--quiet", head)
        self.git("clean", "-fd", "--quiet")
        emit_event("repo_reverted", repo_root=self.root, head=head)


__all__ = ["GitError", "GitRepository"]
