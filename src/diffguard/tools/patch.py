"""Apply validated unified diffs to a working tree with a lenient fallback."""

from __future__ import annotations

import logging
import re
import subprocess
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator, List, Mapping, Sequence, Tuple

from ..config import ApplySettings
from ..diff.unified import normalise_line_endings
from ..telemetry import emit_event
from .vcs import GitRepository

LOGGER = logging.getLogger(__name__)

_TEMP_PREFIX = "diffguard-"
_TEMP_SUFFIX = ".patch"
_FAILURE_PATTERNS = (
    ("hunk_failed", re.compile(r"error: (?P<path>.+?): hunk #(?P<hunk>\d+) failed at (?P<line>\d+)")),
    ("patch_failed", re.compile(r"error: patch failed: (?P<path>.+?)(?::(?P<line>\d+))?$")),
    ("does_not_apply", re.compile(r"error: (?P<path>.+?): patch does not apply")),
)


@dataclass(frozen=True, slots=True)
class PatchResult:
    """Outcome of one apply attempt; ``diff`` is kept whatever happened."""

    ok: bool
    diff: str
    apply_error: str | None = None
    validate_error: str | None = None
    strategy: str | None = None

    @classmethod
    def applied(cls, diff: str, strategy: str) -> "PatchResult":
        return cls(ok=True, diff=diff, strategy=strategy)

    @classmethod
    def failed(cls, diff: str, error: str) -> "PatchResult":
        return cls(ok=False, diff=diff, apply_error=error)

    @classmethod
    def rejected(cls, diff: str, reason: str) -> "PatchResult":
        return cls(ok=False, diff=diff, validate_error=reason)


@dataclass(frozen=True, slots=True)
class ApplyStrategy:
    """External command that applies a patch file inside the repository.

    When ``dry_run_flag`` is set the command is first run with that flag and
    the real run only happens if the dry run succeeds, so the strategy either
    applies every file section or touches nothing.
    """

    name: str
    command: Tuple[str, ...]
    dry_run_flag: str | None = None

    def argv(self, patch_path: Path, *, dry_run: bool = False) -> List[str]:
        args = list(self.command)
        if dry_run and self.dry_run_flag:
            args.insert(1, self.dry_run_flag)
        args.append(str(patch_path))
        return args


@dataclass(frozen=True, slots=True)
class StrategyOutcome:
    """Result of running a single :class:`ApplyStrategy`."""

    strategy: str
    ok: bool
    returncode: int | None = None
    diagnostic: str = ""
    stderr: str = ""


GIT_APPLY_STRATEGY = ApplyStrategy(
    name="git-apply",
    command=("git", "apply", "--whitespace=nowarn", "--ignore-whitespace", "-C0", "--unidiff-zero"),
)


def patch_command_strategy(fuzz: int) -> ApplyStrategy:
    """Return the ``patch -p1`` fallback tolerating ``fuzz`` lines of context drift."""
    return ApplyStrategy(
        name="patch",
        command=(
            "patch",
            "-p1",
            "--batch",
            "--silent",
            "--no-backup-if-mismatch",
            f"--fuzz={fuzz}",
            "-i",
        ),
        dry_run_flag="--dry-run",
    )


def default_strategies(settings: ApplySettings) -> Tuple[ApplyStrategy, ...]:
    """Primary strict strategy followed by the fuzzy fallback."""
    return (GIT_APPLY_STRATEGY, patch_command_strategy(settings.fuzz))


def _failing_hunks(stderr: str) -> Tuple[Mapping[str, Any], ...]:
    """Extract ``path``/``hunk``/``line`` details from ``git apply`` errors."""
    found: List[Mapping[str, Any]] = []
    for line in (stderr or "").splitlines():
        for reason, pattern in _FAILURE_PATTERNS:
            match = pattern.match(line.strip())
            if match is None:
                continue
            details: dict[str, Any] = {"reason": reason, "path": match.group("path")}
            for key in ("hunk", "line"):
                value = match.groupdict().get(key)
                if value is not None:
                    details[key] = int(value)
            found.append(details)
            break
    return tuple(found)


def prepare_patch_text(diff: str) -> str:
    """Normalise line endings and drop ``index`` lines, which are often stale."""
    lines = [
        line
        for line in normalise_line_endings(diff or "").split("\n")
        if not line.startswith("index ")
    ]
    text = "\n".join(lines)
    if text and not text.endswith("\n"):
        text += "\n"
    return text


@contextmanager
def _temporary_patch_file(text: str, directory: Path | None = None) -> Iterator[Path]:
    """Write ``text`` to a uniquely named patch file and remove it afterwards."""
    handle = tempfile.NamedTemporaryFile(
        "w",
        encoding="utf-8",
        newline="\n",
        prefix=_TEMP_PREFIX,
        suffix=_TEMP_SUFFIX,
        dir=str(directory) if directory is not None else None,
        delete=False,
    )
    temp_path = Path(handle.name)
    try:
        with handle:
            handle.write(text)
        yield temp_path
    finally:
        try:
            temp_path.unlink(missing_ok=True)
        except OSError as error:
            LOGGER.warning("Failed to remove temporary patch file %s: %s", temp_path, error)


def _run_command(argv: Sequence[str], *, cwd: Path) -> subprocess.CompletedProcess[str]:
    return subprocess.run(  # noqa: S603 - argv comes from a fixed strategy table
        list(argv),
        cwd=cwd,
        capture_output=True,
        text=True,
        check=False,
    )


def _describe_failure(strategy: ApplyStrategy, process: subprocess.CompletedProcess[str]) -> str:
    output = "\n".join(part.strip() for part in (process.stderr, process.stdout) if part and part.strip())
    return f"{strategy.name} failed (exit {process.returncode}): {output or 'no diagnostic output'}"


def run_strategy(strategy: ApplyStrategy, patch_path: Path, *, cwd: Path) -> StrategyOutcome:
    """Run ``strategy`` against ``patch_path``; spawn errors become failed outcomes."""
    passes = (True, False) if strategy.dry_run_flag else (False,)
    process: subprocess.CompletedProcess[str] | None = None
    for dry_run in passes:
        try:
            process = _run_command(strategy.argv(patch_path, dry_run=dry_run), cwd=cwd)
        except OSError as error:
            return StrategyOutcome(
                strategy=strategy.name,
                ok=False,
                diagnostic=f"{strategy.name} could not be started: {error}",
            )
        if process.returncode != 0:
            return StrategyOutcome(
                strategy=strategy.name,
                ok=False,
                returncode=process.returncode,
                diagnostic=_describe_failure(strategy, process),
                stderr=process.stderr or "",
            )
    return StrategyOutcome(strategy=strategy.name, ok=True, returncode=process.returncode if process else 0)


class PatchApplier:
    """Commit a validated diff to ``repo_root`` using ordered apply strategies.

    The first strategy is strict (``git apply`` with zero-context matching);
    later strategies are tried only if every earlier one failed.  The patch
    file is always removed afterwards and nothing is retried beyond the
    configured strategies.
    """

    def __init__(
        self,
        repo_root: Path | str,
        settings: ApplySettings | None = None,
        *,
        strategies: Sequence[ApplyStrategy] | None = None,
    ) -> None:
        self.repo_root = Path(repo_root).resolve()
        self.settings = settings or ApplySettings()
        self.strategies: Tuple[ApplyStrategy, ...] = (
            tuple(strategies) if strategies is not None else default_strategies(self.settings)
        )

    def apply(self, diff: str) -> PatchResult:
        if not self.repo_root.is_dir():
            message = f"Repository root does not exist: {self.repo_root}"
            emit_event("patch_apply_failed", repo_root=self.repo_root, error=message)
            return PatchResult.failed(diff, message)
        if not self.strategies:
            return PatchResult.failed(diff, "No apply strategies configured.")

        outcomes: List[StrategyOutcome] = []
        try:
            with _temporary_patch_file(prepare_patch_text(diff), self.settings.temp_dir) as patch_path:
                for strategy in self.strategies:
                    outcome = run_strategy(strategy, patch_path, cwd=self.repo_root)
                    if outcome.ok:
                        emit_event(
                            "patch_apply_succeeded",
                            repo_root=self.repo_root,
                            strategy=strategy.name,
                            fallback_used=bool(outcomes),
                        )
                        return PatchResult.applied(diff, strategy.name)
                    outcomes.append(outcome)
                    LOGGER.debug("Strategy %s failed: %s", strategy.name, outcome.diagnostic)
                    emit_event(
                        "patch_strategy_failed",
                        strategy=strategy.name,
                        returncode=outcome.returncode,
                        diagnostic=outcome.diagnostic,
                        failing_hunks=_failing_hunks(outcome.stderr),
                    )
        except OSError as error:
            message = f"Unable to write temporary patch file: {error}"
            emit_event("patch_apply_failed", repo_root=self.repo_root, error=message)
            return PatchResult.failed(diff, message)

        message = outcomes[-1].diagnostic
        emit_event(
            "patch_apply_failed",
            repo_root=self.repo_root,
            error=message,
            strategies=[outcome.strategy for outcome in outcomes],
        )
        return PatchResult.failed(diff, message)


def apply_patch(
    repo_root: Path | str,
    diff: str,
    settings: ApplySettings | None = None,
) -> PatchResult:
    """Apply ``diff`` to ``repo_root``; see :class:`PatchApplier`."""

    return PatchApplier(repo_root, settings).apply(diff)


def revert_changes(repo_root: Path | str) -> None:
    """Restore ``repo_root`` to its last commit, removing untracked files.

    Raises :class:`~diffguard.tools.vcs.GitError` on any failure.
    """

    GitRepository(repo_root).revert()


__all__ = [
    "ApplyStrategy",
    "GIT_APPLY_STRATEGY",
    "PatchApplier",
    "PatchResult",
    "StrategyOutcome",
    "apply_patch",
    "default_strategies",
    "patch_command_strategy",
    "prepare_patch_text",
    "revert_changes",
    "run_strategy",
]
