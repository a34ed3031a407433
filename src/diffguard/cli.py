"""Command line entry point for sanitising, validating and applying diffs."""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional

import typer

from .config import ConfigError, DiffGuardConfig, load_config
from .diff.sanitizer import sanitize_with_report
from .diff.validator import validate
from .pipeline import run_pipeline
from .tools.vcs import GitError, GitRepository

APP_HELP = "Repair, validate and apply machine-generated unified diffs."

app = typer.Typer(help=APP_HELP)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log debug output and telemetry to stderr."),
) -> None:
    """Configure logging before any command runs."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _read_diff(source: str) -> str:
    """Read diff text from ``source`` or from stdin when it is ``-``."""
    if source == "-":
        return sys.stdin.read()
    path = Path(source)
    if not path.is_file():
        raise typer.BadParameter(f"Diff file not found: {path}")
    return path.read_text(encoding="utf-8", errors="replace")


def _load(repo_root: Path, config: Optional[str]) -> DiffGuardConfig:
    try:
        return load_config(repo_root, config)
    except ConfigError as error:
        typer.echo(str(error), err=True)
        raise typer.Exit(code=1) from error


@app.command()
def sanitize(
    source: str = typer.Argument("-", help="Diff file to read, or '-' for stdin."),
    report: bool = typer.Option(False, "--report", help="List repairs on stderr."),
) -> None:
    """Print the sanitised form of a raw diff."""
    result = sanitize_with_report(_read_diff(source))
    if report:
        for adjustment in result.adjustments:
            typer.echo(f"- {adjustment}", err=True)
    typer.echo(result.text, nl=False)


@app.command("validate")
def validate_command(
    source: str = typer.Argument("-", help="Diff file to read, or '-' for stdin."),
    repo: Path = typer.Option(Path("."), "--repo", "-r", help="Repository root used to locate config."),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to a diffguard YAML config."),
) -> None:
    """Check a diff against the safety policy without applying it."""
    settings = _load(repo, config)
    result = validate(_read_diff(source), settings.policy)
    if not result.ok:
        typer.echo(f"rejected: {result.reason}")
        raise typer.Exit(code=1)
    typer.echo("ok")


@app.command()
def apply(
    source: str = typer.Argument("-", help="Diff file to read, or '-' for stdin."),
    repo: Path = typer.Option(Path("."), "--repo", "-r", help="Repository root to patch."),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to a diffguard YAML config."),
) -> None:
    """Sanitise, validate and apply a raw diff to the working tree."""
    settings = _load(repo, config)
    outcome = run_pipeline(_read_diff(source), repo_root=repo, config=settings)
    typer.echo(outcome.describe())
    if not outcome.ok:
        raise typer.Exit(code=1)


@app.command()
def revert(
    repo: Path = typer.Option(Path("."), "--repo", "-r", help="Repository root to restore."),
) -> None:
    """Restore the working tree to its last commit and drop untracked files."""
    try:
        GitRepository(repo).revert()
    except GitError as error:
        typer.echo(f"Revert failed: {error}", err=True)
        raise typer.Exit(code=1) from error
    typer.echo("reverted")


if __name__ == "__main__":
    app()
