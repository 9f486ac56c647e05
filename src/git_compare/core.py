"""
git-compare: See which of your Git repositories need attention.

Finds every Git working copy under a directory, fetches and compares each one
against its remote in parallel, and prints the repositories grouped by what
needs doing: uncommitted work, incoming commits, outgoing commits, or nothing.
"""

from __future__ import annotations

import logging
import os
import subprocess
import threading
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from enum import IntFlag
from pathlib import Path

import typer
from rich.console import Console

from ._version import __version__
from .formatters import OutputFormatter
from .logging_config import setup_logging

logger = logging.getLogger(__name__)

GIT_DIR_NAME = ".git"
DEFAULT_REMOTE = "origin"
DEFAULT_TIMEOUT = 60.0

# Output contracts of `git status` and `git branch`. Both rely on git's
# English wording, so every command runs with LC_ALL=C.
CLEAN_STATUS_MARKER = "nothing to commit"
CURRENT_BRANCH_MARKER = "*"
DETACHED_BRANCH_PREFIX = "("

ProgressCallback = Callable[[int, int], None]


# =============================================================================
# Errors
# =============================================================================


class GitCompareError(Exception):
    """Base exception for all git-compare errors."""


class NoBranchFoundError(GitCompareError):
    """Raised when `git branch` does not mark any line as checked out."""

    def __init__(self, repo_path: Path):
        self.repo_path = repo_path
        super().__init__(f"No current branch found in '{repo_path}'")


# =============================================================================
# Domain Models
# =============================================================================


class StatusFlags(IntFlag):
    """Synchronization state of a working copy relative to its remote.

    CLEAN_AND_UP_TO_DATE is the zero value: it means no other flag is set and
    is never stored next to one. The integer value is also the severity used
    to order report groups, so a combination ranks by its most severe flag
    first (uncommitted, then incoming, then outgoing).
    """

    CLEAN_AND_UP_TO_DATE = 0
    OUTGOING_CHANGES = 1
    INCOMING_CHANGES = 2
    UNCOMMITTED_CHANGES = 4

    @classmethod
    def from_conditions(cls, uncommitted: bool, incoming: bool, outgoing: bool) -> StatusFlags:
        """Compose flags from the three independent conditions."""
        status = cls.CLEAN_AND_UP_TO_DATE
        if uncommitted:
            status |= cls.UNCOMMITTED_CHANGES
        if incoming:
            status |= cls.INCOMING_CHANGES
        if outgoing:
            status |= cls.OUTGOING_CHANGES
        return status

    @property
    def label(self) -> str:
        """Human-readable category name, most severe condition first."""
        if not self:
            return "Clean and up to date"
        parts = []
        if self & StatusFlags.UNCOMMITTED_CHANGES:
            parts.append("uncommitted changes")
        if self & StatusFlags.INCOMING_CHANGES:
            parts.append("incoming changes")
        if self & StatusFlags.OUTGOING_CHANGES:
            parts.append("outgoing changes")
        return ", ".join(parts).capitalize()


@dataclass(frozen=True)
class RepoInfo:
    """Classification result for one repository."""

    path: Path
    name: str
    branch: str
    status: StatusFlags

    def to_dict(self) -> dict:
        return {
            "path": str(self.path),
            "name": self.name,
            "branch": self.branch,
        }


@dataclass(frozen=True)
class RepoError:
    """A repository whose classification failed."""

    path: Path
    name: str
    error: str

    def to_dict(self) -> dict:
        return {
            "path": str(self.path),
            "name": self.name,
            "error": self.error,
        }


@dataclass
class ComparisonResult:
    """Everything one comparison run produced."""

    repos: list[RepoInfo] = field(default_factory=list)
    errors: list[RepoError] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.repos) + len(self.errors)


@dataclass(frozen=True)
class ReportGroup:
    """Repositories sharing one status, in display order."""

    status: StatusFlags
    repos: tuple[RepoInfo, ...]

    @property
    def label(self) -> str:
        return self.status.label

    def to_dict(self) -> dict:
        return {
            "status": int(self.status),
            "label": self.label,
            "repositories": [r.to_dict() for r in self.repos],
        }


# =============================================================================
# Git Operations (Low-level)
# =============================================================================


def _git_env() -> dict[str, str]:
    """Environment for git child processes."""
    env = dict(os.environ)
    env["LC_ALL"] = "C"
    env["GIT_TERMINAL_PROMPT"] = "0"
    return env


def _decode(output: str | bytes | None) -> str:
    if output is None:
        return ""
    if isinstance(output, bytes):
        return output.decode("utf-8", errors="replace")
    return output


class GitOperations:
    """Low-level Git commands and output parsing for a single repository."""

    def __init__(self, repo_path: Path, timeout: float | None = DEFAULT_TIMEOUT):
        self.repo_path = repo_path
        self.timeout = timeout

    def _run(self, *args: str) -> subprocess.CompletedProcess:
        """Run a git command in the repository."""
        return subprocess.run(
            ["git", *args],
            cwd=self.repo_path,
            capture_output=True,
            encoding="utf-8",
            errors="replace",
            env=_git_env(),
            timeout=self.timeout,
            check=False,
        )

    def run(self, *args: str) -> str:
        """Run a git command and return its standard output.

        Never raises for process failures. A missing executable gives "",
        a timeout gives whatever arrived before the process was killed, and a
        non-zero exit gives the output as captured. Callers read empty output
        as "no changes".
        """
        command = " ".join(["git", *args])
        try:
            result = self._run(*args)
        except subprocess.TimeoutExpired as e:
            logger.warning("'%s' timed out after %ss in %s", command, self.timeout, self.repo_path)
            return _decode(e.stdout)
        except OSError as e:
            logger.warning("Could not run '%s' in %s: %s", command, self.repo_path, e)
            return ""

        if result.returncode != 0:
            logger.debug(
                "'%s' exited with %d in %s: %s",
                command,
                result.returncode,
                self.repo_path,
                (result.stderr or "").strip(),
            )
        return result.stdout or ""

    def status(self) -> str:
        """Working tree status text."""
        return self.run("status")

    def fetch(self) -> None:
        """Update remote-tracking branches; the output is not used."""
        self.run("fetch")

    def branch_list(self) -> str:
        """Local branch listing with the checked-out branch marked."""
        return self.run("branch")

    def incoming_log(self, branch: str) -> str:
        """Commits on the remote branch that are not in HEAD."""
        return self.run("log", f"..{DEFAULT_REMOTE}/{branch}")

    def outgoing_log(self, branch: str) -> str:
        """Commits in HEAD that are not on the remote branch."""
        return self.run("log", f"{DEFAULT_REMOTE}/{branch}..")

    @staticmethod
    def has_uncommitted_changes(status_output: str) -> bool:
        # Untracked-only trees print "nothing added to commit", which counts
        # as uncommitted.
        return CLEAN_STATUS_MARKER not in status_output

    @staticmethod
    def parse_current_branch(branch_output: str) -> str | None:
        """Return the branch marked as checked out, or None if no line is marked."""
        for line in branch_output.splitlines():
            if line.startswith(CURRENT_BRANCH_MARKER):
                branch = line[len(CURRENT_BRANCH_MARKER) :].strip()
                if branch:
                    return branch
        return None

    @staticmethod
    def is_detached(branch: str) -> bool:
        """True for git's "(HEAD detached at ...)" pseudo-branch."""
        return branch.startswith(DETACHED_BRANCH_PREFIX)

    @staticmethod
    def has_log_entries(log_output: str) -> bool:
        return bool(log_output.strip())


# =============================================================================
# Repository
# =============================================================================


def display_name(path: Path, root: Path | None = None) -> str:
    """Name a repository by its path relative to the scan root."""
    if root is not None:
        try:
            relative = path.relative_to(root)
        except ValueError:
            relative = None
        if relative is not None and relative.parts:
            return relative.as_posix()
    return path.name or str(path)


class GitRepository:
    """High-level interface for a single Git repository."""

    def __init__(self, path: Path, root: Path | None = None, timeout: float | None = DEFAULT_TIMEOUT):
        self.path = path
        self.name = display_name(path, root)
        self.ops = GitOperations(path, timeout=timeout)

    def get_current_branch(self) -> str:
        """Get the checked-out branch name."""
        branch = self.ops.parse_current_branch(self.ops.branch_list())
        if branch is None:
            raise NoBranchFoundError(self.path)
        return branch

    def classify(self, fetch_first: bool = True) -> RepoInfo:
        """Determine the current branch and sync status.

        Runs, in order: status, fetch (unless disabled), branch, and the two
        log comparisons against origin/<branch>. A detached HEAD has no
        tracking branch, so the log comparisons are skipped for it.

        Raises:
            NoBranchFoundError: if the branch listing marks no branch.
        """
        uncommitted = self.ops.has_uncommitted_changes(self.ops.status())

        if fetch_first:
            self.ops.fetch()

        branch = self.get_current_branch()

        incoming = outgoing = False
        if self.ops.is_detached(branch):
            logger.info("%s has a detached HEAD, skipping remote comparison", self.name)
        else:
            incoming = self.ops.has_log_entries(self.ops.incoming_log(branch))
            outgoing = self.ops.has_log_entries(self.ops.outgoing_log(branch))

        status = StatusFlags.from_conditions(uncommitted, incoming, outgoing)
        logger.debug("%s on %s: %s", self.name, branch, status.label)
        return RepoInfo(path=self.path, name=self.name, branch=branch, status=status)


# =============================================================================
# Discovery
# =============================================================================


def is_repository(path: Path) -> bool:
    """Check whether a directory is the root of a Git working copy."""
    return os.path.isdir(path / GIT_DIR_NAME)


def _list_subdirectories(folder: Path) -> list[Path]:
    """List immediate subdirectories, skipping anything that can't be read."""
    subdirectories = []
    try:
        with os.scandir(folder) as entries:
            for entry in entries:
                try:
                    if entry.is_dir():
                        subdirectories.append(Path(entry.path))
                except OSError as e:
                    logger.debug("Skipping %s: %s", entry.path, e)
    except OSError as e:
        logger.debug("Cannot list %s: %s", folder, e)
    return subdirectories


def find_repositories(root: Path) -> set[Path]:
    """Find all repository roots at or below a directory.

    A repository is never searched for nested repositories. Directories that
    can't be read are treated as empty. Symlinked directories are followed,
    but each real directory is visited once, so link cycles terminate.
    """
    root = Path(root).absolute()
    repositories: set[Path] = set()
    visited: set[tuple[int, int]] = set()
    stack = [root]

    while stack:
        folder = stack.pop()
        try:
            info = folder.stat()
        except OSError as e:
            logger.debug("Cannot stat %s: %s", folder, e)
            continue

        key = (info.st_dev, info.st_ino)
        if key in visited:
            continue
        visited.add(key)

        if is_repository(folder):
            repositories.add(folder)
            continue

        stack.extend(_list_subdirectories(folder))

    return repositories


# =============================================================================
# Comparison
# =============================================================================


def default_worker_count() -> int:
    """Worker pool size when none is configured: the available parallelism."""
    return os.cpu_count() or 1


class ResultCollector:
    """Thread-safe sink for classification results of one run.

    Appending a result, counting it, and reporting progress happen together
    under one lock. The lock is never held while git runs.
    """

    def __init__(self, total: int, on_progress: ProgressCallback | None = None):
        self.total = total
        self._on_progress = on_progress
        self._lock = threading.Lock()
        self._repos: list[RepoInfo] = []
        self._errors: list[RepoError] = []
        self._completed = 0

    @property
    def completed(self) -> int:
        with self._lock:
            return self._completed

    def add(self, repo: RepoInfo) -> None:
        with self._lock:
            self._repos.append(repo)
            self._advance()

    def add_error(self, error: RepoError) -> None:
        with self._lock:
            self._errors.append(error)
            self._advance()

    def _advance(self) -> None:
        self._completed += 1
        if self._on_progress is not None:
            self._on_progress(self._completed, self.total)

    def result(self) -> ComparisonResult:
        with self._lock:
            return ComparisonResult(repos=list(self._repos), errors=list(self._errors))


class CompareManager:
    """Discover and compare all repositories under a root directory."""

    def __init__(
        self,
        root_path: Path,
        max_workers: int | None = None,
        *,
        timeout: float | None = DEFAULT_TIMEOUT,
        fetch: bool = True,
    ):
        self.root_path = Path(root_path).resolve()
        self.max_workers = max_workers or default_worker_count()
        self.timeout = timeout
        self.fetch = fetch

    def discover_repositories(self) -> list[Path]:
        """Discover all repositories under the root, sorted by path."""
        repos = sorted(find_repositories(self.root_path))
        logger.info("Found %d repositories in %s", len(repos), self.root_path)
        return repos

    def _compare_one(self, path: Path, collector: ResultCollector) -> None:
        repo = GitRepository(path, self.root_path, timeout=self.timeout)
        try:
            info = repo.classify(fetch_first=self.fetch)
        except Exception as e:
            logger.warning("Could not compare %s: %s", repo.name, e)
            logger.debug("Comparison failure for %s", path, exc_info=True)
            collector.add_error(RepoError(path=path, name=repo.name, error=str(e)))
        else:
            collector.add(info)

    def compare_all(
        self,
        repo_paths: Iterable[Path] | None = None,
        on_progress: ProgressCallback | None = None,
        sequential: bool = False,
    ) -> ComparisonResult:
        """Classify every repository and wait for all of them to finish.

        A repository that fails to classify is recorded as an error and the
        rest carry on. on_progress receives (completed, total) after each
        repository, successful or not.
        """
        if repo_paths is None:
            repo_paths = self.discover_repositories()
        paths = list(repo_paths)
        collector = ResultCollector(len(paths), on_progress)

        if sequential or len(paths) <= 1:
            for path in paths:
                self._compare_one(path, collector)
        else:
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                futures = [executor.submit(self._compare_one, path, collector) for path in paths]
                for future in as_completed(futures):
                    future.result()

        return collector.result()


# =============================================================================
# Report
# =============================================================================


def aggregate_report(repos: Iterable[RepoInfo]) -> list[ReportGroup]:
    """Group results by status, most severe status first.

    Within a group repositories are ordered by branch, then name.
    """
    ordered = sorted(repos, key=lambda r: (r.branch, r.name))

    grouped: dict[StatusFlags, list[RepoInfo]] = {}
    for repo in ordered:
        grouped.setdefault(repo.status, []).append(repo)

    return [
        ReportGroup(status=status, repos=tuple(grouped[status]))
        for status in sorted(grouped, reverse=True)
    ]


# =============================================================================
# CLI Application
# =============================================================================


app = typer.Typer(
    name="git-compare",
    help="Compare every Git repository under a directory with its remote.",
    add_completion=False,
)


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        print(f"git-compare {__version__}")
        raise typer.Exit()


def get_console_and_formatter(json_output: bool) -> tuple[Console, OutputFormatter]:
    """Create console and formatter."""
    console = Console()
    formatter = OutputFormatter(console, use_json=json_output)
    return console, formatter


def run_comparison(
    manager: CompareManager,
    formatter: OutputFormatter,
    sequential: bool = False,
) -> ComparisonResult:
    """Find, compare, group and print once."""
    formatter.print_message(f"Finding repos in {manager.root_path}...")
    repo_paths = manager.discover_repositories()

    with formatter.progress(len(repo_paths)) as on_progress:
        result = manager.compare_all(repo_paths, on_progress=on_progress, sequential=sequential)

    formatter.print_message("Sorting...")
    groups = aggregate_report(result.repos)
    formatter.print_report(groups, result.errors, manager.root_path)
    return result


@app.command()
def main(
    directory: Path = typer.Argument(
        None,
        help="Directory to search for repositories (default: current directory)",
    ),
    workers: int = typer.Option(
        None,
        "--workers",
        "-w",
        min=1,
        envvar="GIT_COMPARE_WORKERS",
        help="Number of repositories compared in parallel (default: CPU count)",
    ),
    timeout: float = typer.Option(
        DEFAULT_TIMEOUT,
        "--timeout",
        "-t",
        min=0,
        envvar="GIT_COMPARE_TIMEOUT",
        help="Seconds before a single git command is abandoned (0 disables)",
    ),
    no_fetch: bool = typer.Option(
        False,
        "--no-fetch",
        envvar="GIT_COMPARE_NO_FETCH",
        help="Skip fetching before comparing (faster but may show stale data)",
    ),
    sequential: bool = typer.Option(
        False,
        "--sequential",
        "-s",
        help="Run sequentially instead of parallel",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output as JSON",
    ),
    loop: bool = typer.Option(
        False,
        "--loop",
        "-l",
        help="Offer to run again after each report",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show verbose output"),
    debug: bool = typer.Option(False, "--debug", help="Show debug information"),
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
):
    """Find Git repositories and show which ones need committing, pulling or pushing."""
    setup_logging(verbose=verbose, debug=debug)
    console, formatter = get_console_and_formatter(json_output)

    target_path = directory if directory else Path.cwd()
    if not target_path.is_dir():
        console.print(f"[red]Error: Specified directory '{target_path}' does not exist.[/]")
        raise typer.Exit(1)

    manager = CompareManager(
        target_path,
        workers,
        timeout=timeout or None,
        fetch=not no_fetch,
    )

    try:
        while True:
            run_comparison(manager, formatter, sequential=sequential)
            if not loop or not typer.confirm("Run again?", default=True):
                break
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/]")
        raise typer.Exit(1)
