from __future__ import annotations

import shutil
import sys
from dataclasses import dataclass
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from diffguard.tools.vcs import GitRepository  # noqa: E402


@dataclass(slots=True)
class WorkingTree:
    """Fixture payload describing a throwaway repository under test."""

    repo: GitRepository
    scratch: Path

    @property
    def root(self) -> Path:
        return self.repo.root

    def read(self, relative: str) -> str:
        return (self.root / relative).read_text(encoding="utf-8")


@pytest.fixture()
def working_tree(tmp_path: Path) -> WorkingTree:
    """Create a git repository with a couple of committed source files."""

    if shutil.which("git") is None:
        pytest.skip("git executable not available")

    repo_root = tmp_path / "repo"
    (repo_root / "src").mkdir(parents=True)
    (repo_root / "src" / "x.js").write_text("foo\n", encoding="utf-8")
    (repo_root / "src" / "lines.txt").write_text("one\ntwo\nthree\nfour\nfive\n", encoding="utf-8")
    (repo_root / "package.json").write_text('{"name": "demo"}\n', encoding="utf-8")

    repo = GitRepository.initialise(repo_root)

    scratch = tmp_path / "scratch"
    scratch.mkdir()
    return WorkingTree(repo=repo, scratch=scratch)
