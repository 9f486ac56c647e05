"""git-compare: See which of your Git repositories need attention."""

# Guard against deleted CWD (e.g. directory removed by another process).
# rich crashes on import if os.getcwd() fails, so recover before any imports.
import os

try:
    os.getcwd()
except (OSError, PermissionError):
    os.chdir(os.path.expanduser("~"))

from ._version import __version__
from .core import (
    CompareManager,
    ComparisonResult,
    GitCompareError,
    GitOperations,
    GitRepository,
    NoBranchFoundError,
    RepoError,
    RepoInfo,
    ReportGroup,
    ResultCollector,
    StatusFlags,
    aggregate_report,
    app,
    find_repositories,
)
from .formatters import OutputFormatter

__all__ = [
    # Version
    "__version__",
    # CLI
    "app",
    # Models
    "ComparisonResult",
    "RepoError",
    "RepoInfo",
    "ReportGroup",
    "StatusFlags",
    # Errors
    "GitCompareError",
    "NoBranchFoundError",
    # Operations
    "CompareManager",
    "GitOperations",
    "GitRepository",
    "ResultCollector",
    # Functions
    "aggregate_report",
    "find_repositories",
    # Formatters
    "OutputFormatter",
]
