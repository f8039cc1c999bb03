"""gits: run one git command across every repository in a workspace."""

# Guard against deleted CWD (e.g. directory removed by another process).
# rich crashes on import if os.getcwd() fails, so recover before any imports.
import os

try:
    os.getcwd()
except (OSError, PermissionError):
    os.chdir(os.path.expanduser("~"))

from ._version import __version__
from .core import (
    AggregateResult,
    ColorMode,
    CommandDispatcher,
    ExecutionOutcome,
    HeadingStyle,
    Repository,
    RepositorySet,
    ScanConfig,
    app,
    discover,
    is_repository,
    scan_tree,
    walk_ancestors,
)
from .formatters import OutputFormatter

__all__ = [
    # Version
    "__version__",
    # CLI
    "app",
    # Models
    "AggregateResult",
    "ColorMode",
    "ExecutionOutcome",
    "HeadingStyle",
    "Repository",
    "RepositorySet",
    "ScanConfig",
    # Discovery
    "discover",
    "is_repository",
    "scan_tree",
    "walk_ancestors",
    # Dispatch
    "CommandDispatcher",
    # Formatters
    "OutputFormatter",
]
