"""Pytest fixtures for git-compare tests"""
import os
import shutil
import subprocess
import tempfile
from pathlib import Path

import pytest

from git_compare.core import GitOperations, RepoInfo, StatusFlags


requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git executable not available")


@pytest.fixture
def temp_dir():
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir).resolve()


def make_repo_dir(path: Path) -> Path:
    """Create a directory that looks like a repository root (has a .git dir)."""
    (path / ".git").mkdir(parents=True)
    return path


@pytest.fixture
def repo_tree(temp_dir):
    """Create a directory tree with repositories at different depths.

    root/
        alpha/.git
        group/beta/.git
        group/deep/er/gamma/.git
        alpha/nested/.git      (inside alpha, must not be found)
        plain/file.txt
    """
    make_repo_dir(temp_dir / "alpha")
    make_repo_dir(temp_dir / "group" / "beta")
    make_repo_dir(temp_dir / "group" / "deep" / "er" / "gamma")
    make_repo_dir(temp_dir / "alpha" / "nested")
    (temp_dir / "plain").mkdir()
    (temp_dir / "plain" / "file.txt").write_text("not a repo\n")
    return temp_dir


class FakeGit:
    """Scripted stand-in for `GitOperations.run`.

    Outputs are looked up by the git arguments, e.g. ("status",) or
    ("log", "..origin/main"). Unknown commands return "". Every call is
    recorded as (repo_path, args).
    """

    def __init__(self, outputs=None, per_repo=None):
        self.outputs = dict(outputs or {})
        self.per_repo = {Path(k): dict(v) for k, v in (per_repo or {}).items()}
        self.calls = []

    def __call__(self, ops, *args):
        self.calls.append((ops.repo_path, args))
        repo_outputs = self.per_repo.get(Path(ops.repo_path), {})
        if args in repo_outputs:
            return repo_outputs[args]
        return self.outputs.get(args, "")

    def commands(self, repo_path=None):
        return [args for path, args in self.calls if repo_path is None or path == repo_path]


CLEAN_STATUS = "On branch main\nYour branch is up to date with 'origin/main'.\n\nnothing to commit, working tree clean\n"
DIRTY_STATUS = "On branch main\nChanges not staged for commit:\n\tmodified:   README.md\n"


@pytest.fixture
def fake_git(monkeypatch):
    """Install a FakeGit in place of GitOperations.run and return it."""
    fake = FakeGit(
        outputs={
            ("status",): CLEAN_STATUS,
            ("branch",): "* main\n",
        }
    )
    monkeypatch.setattr(GitOperations, "run", lambda ops, *args: fake(ops, *args))
    return fake


@pytest.fixture
def sample_repos():
    """RepoInfo values covering several statuses and branches."""
    return [
        RepoInfo(Path("/src/b"), "b", "main", StatusFlags.CLEAN_AND_UP_TO_DATE),
        RepoInfo(Path("/src/a"), "a", "main", StatusFlags.UNCOMMITTED_CHANGES),
        RepoInfo(Path("/src/c"), "c", "main", StatusFlags.CLEAN_AND_UP_TO_DATE),
        RepoInfo(Path("/src/d"), "d", "develop", StatusFlags.INCOMING_CHANGES),
        RepoInfo(
            Path("/src/e"),
            "e",
            "main",
            StatusFlags.INCOMING_CHANGES | StatusFlags.OUTGOING_CHANGES,
        ),
    ]


GIT_TEST_ENV = {
    "GIT_AUTHOR_NAME": "Test User",
    "GIT_AUTHOR_EMAIL": "test@example.com",
    "GIT_COMMITTER_NAME": "Test User",
    "GIT_COMMITTER_EMAIL": "test@example.com",
    "LC_ALL": "C",
}


def git(cwd: Path, *args: str) -> str:
    """Run a real git command for test setup."""
    result = subprocess.run(
        ["git", *args],
        cwd=cwd,
        capture_output=True,
        text=True,
        check=True,
        env={**os.environ, **GIT_TEST_ENV},
    )
    return result.stdout


def commit_file(repo: Path, name: str, content: str, message: str) -> None:
    (repo / name).write_text(content)
    git(repo, "add", name)
    git(repo, "-c", "commit.gpgsign=false", "commit", "-m", message)
