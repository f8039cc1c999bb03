"""
gits: run one git command across every repository in a workspace.

Discovers the git repositories beneath a search root (and optionally among
the ancestors of the current directory), then runs the same git command in
each of them, one after another, with a heading before each repository's
output.
"""

from __future__ import annotations

import logging
import os
import signal
import stat
import subprocess
import sys
from collections import deque
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass, field
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler

from ._version import __version__
from .formatters import ColorMode, HeadingStyle, OutputFormatter

logger = logging.getLogger(__name__)

REPOSITORY_MARKER = ".git"
DEFAULT_EXECUTABLE = "git"
DEFAULT_ARGS = ("status",)

# Exit codes
SUCCESS = 0
LAUNCH_FAILURE = 127
INTERRUPTED = 130

# Environment
EXECUTABLE_ENV = "GITS_GIT"
LOG_LEVEL_ENV = "GITS_LOG_LEVEL"

# =============================================================================
# Domain Models
# =============================================================================


@dataclass(frozen=True)
class Repository:
    """A repository identified by its canonical path."""

    path: Path
    ancestor: bool = field(default=False, compare=False)

    def display_path(self, root: Path, absolute: bool = False) -> str:
        """Render the path relative to ``root``, or absolute if requested."""
        if absolute:
            return f"{self.path}/"
        rel = os.path.relpath(self.path, root)
        if rel == os.curdir:
            return "./"
        return f"{rel}/"


@dataclass(frozen=True)
class ScanConfig:
    """Immutable settings for one discovery pass."""

    root: Path
    cwd: Path
    max_depth: int | None = None
    include_ancestors: bool = False
    absolute_paths: bool = False

    @classmethod
    def from_options(
        cls,
        root: Path | None = None,
        max_depth: int | None = None,
        include_ancestors: bool = False,
        absolute_paths: bool = False,
        cwd: Path | None = None,
    ) -> ScanConfig:
        """Build a config with canonical paths; root defaults to the cwd."""
        start = (cwd or Path.cwd()).resolve()
        return cls(
            root=(root or start).resolve(),
            cwd=start,
            max_depth=max_depth,
            include_ancestors=include_ancestors,
            absolute_paths=absolute_paths,
        )


@dataclass(frozen=True)
class RepositorySet:
    """Ordered, duplicate-free sequence of repositories."""

    repositories: tuple[Repository, ...] = ()

    @classmethod
    def merge(
        cls,
        scanned: Iterable[Repository],
        ancestors: Iterable[Repository] = (),
    ) -> RepositorySet:
        """Merge scan and ancestor results.

        The first occurrence of a canonical path wins; the result is ordered
        by path components so that runs against an unchanged tree are
        identical.
        """
        unique: dict[Path, Repository] = {}
        for repo in (*scanned, *ancestors):
            unique.setdefault(repo.path, repo)
        ordered = sorted(unique.values(), key=lambda r: r.path.parts)
        return cls(tuple(ordered))

    def __iter__(self) -> Iterator[Repository]:
        return iter(self.repositories)

    def __len__(self) -> int:
        return len(self.repositories)

    @property
    def paths(self) -> list[Path]:
        return [r.path for r in self.repositories]


@dataclass(frozen=True)
class ExecutionOutcome:
    """Result of handling one repository."""

    repository: Repository
    attempted: bool = True
    returncode: int | None = None
    error: str = ""
    interrupted: bool = False

    @property
    def failed(self) -> bool:
        if not self.attempted:
            return False
        return bool(self.error) or self.returncode != 0

    @property
    def succeeded(self) -> bool:
        return self.attempted and not self.failed

    @property
    def signal(self) -> int | None:
        """Signal number that killed the command, if any."""
        if self.returncode is not None and self.returncode < 0:
            return -self.returncode
        return None

    @property
    def exit_code(self) -> int:
        """Shell-style exit code for this outcome."""
        if not self.failed:
            return SUCCESS
        if self.error or self.returncode is None:
            return LAUNCH_FAILURE
        if self.signal is not None:
            return 128 + self.signal
        return min(max(self.returncode, 1), 255)


@dataclass(frozen=True)
class AggregateResult:
    """Process-level verdict over every outcome."""

    total: int = 0
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    interrupted: bool = False
    exit_code: int = SUCCESS

    @classmethod
    def from_outcomes(cls, outcomes: Sequence[ExecutionOutcome]) -> AggregateResult:
        """Fold outcomes into a verdict; the last failure sets the exit code."""
        exit_code = SUCCESS
        for outcome in outcomes:
            if outcome.failed:
                exit_code = outcome.exit_code
        interrupted = any(o.interrupted for o in outcomes)
        return cls(
            total=len(outcomes),
            attempted=sum(1 for o in outcomes if o.attempted),
            succeeded=sum(1 for o in outcomes if o.succeeded),
            failed=sum(1 for o in outcomes if o.failed),
            interrupted=interrupted,
            exit_code=INTERRUPTED if interrupted else exit_code,
        )

    @property
    def success(self) -> bool:
        return self.exit_code == SUCCESS


# =============================================================================
# Discovery
# =============================================================================


def is_repository(path: Path) -> bool:
    """Check whether ``path`` directly contains a ``.git`` directory or file.

    A ``.git`` file is a linked worktree pointer and is not followed.
    Unreadable candidates are treated as non-repositories.
    """
    try:
        mode = (path / REPOSITORY_MARKER).lstat().st_mode
    except OSError as e:
        if not isinstance(e, FileNotFoundError):
            logger.debug("Cannot inspect %s: %s", path, e)
        return False
    return stat.S_ISDIR(mode) or stat.S_ISREG(mode)


def _child_directories(path: Path) -> list[Path]:
    """List subdirectories (following symlinks), skipping unreadable ones."""
    children = []
    try:
        with os.scandir(path) as entries:
            for entry in entries:
                try:
                    if entry.is_dir():
                        children.append(Path(entry.path))
                except OSError as e:
                    logger.debug("Skipping %s: %s", entry.path, e)
    except OSError as e:
        logger.debug("Skipping unreadable directory %s: %s", path, e)
    return children


def scan_tree(root: Path, max_depth: int | None = None) -> list[Repository]:
    """Find repositories under ``root`` without descending into any match.

    ``root`` is depth 0; directories at ``max_depth`` are examined but not
    expanded. The walk is breadth-first, so each canonical directory is first
    reached at its smallest depth; it is visited at most once, so symlink
    cycles terminate.
    """
    repos: list[Repository] = []
    visited: set[Path] = set()
    queue: deque[tuple[Path, int]] = deque([(root, 0)])

    while queue:
        path, depth = queue.popleft()
        try:
            canonical = path.resolve()
        except OSError as e:
            logger.debug("Cannot resolve %s: %s", path, e)
            continue
        if canonical in visited:
            continue
        visited.add(canonical)

        if is_repository(canonical):
            repos.append(Repository(canonical))
            continue
        if max_depth is not None and depth >= max_depth:
            continue

        children = sorted(_child_directories(path))
        queue.extend((child, depth + 1) for child in children)

    logger.debug("Scanned %s: %d repositories", root, len(repos))
    return repos


def walk_ancestors(start: Path) -> list[Repository]:
    """Find repositories at ``start`` and every directory above it."""
    start = start.resolve()
    return [
        Repository(directory, ancestor=True)
        for directory in (start, *start.parents)
        if is_repository(directory)
    ]


def discover(config: ScanConfig) -> RepositorySet:
    """Build the repository set for a scan configuration."""
    scanned = scan_tree(config.root, config.max_depth)
    ancestors = walk_ancestors(config.cwd) if config.include_ancestors else []
    return RepositorySet.merge(scanned, ancestors)


# =============================================================================
# Dispatch
# =============================================================================


def should_show_headings(
    count: int,
    config: ScanConfig,
    *,
    no_heading: bool = False,
    root_given: bool = False,
) -> bool:
    """Headings appear for multi-repo runs or when the location was asked for."""
    if no_heading:
        return False
    return count > 1 or config.include_ancestors or config.absolute_paths or root_given


class CommandDispatcher:
    """Run one command in each repository, strictly one at a time."""

    def __init__(
        self,
        formatter: OutputFormatter,
        executable: str = DEFAULT_EXECUTABLE,
        show_headings: bool = True,
    ):
        self.formatter = formatter
        self.executable = executable
        self.show_headings = show_headings

    def _invoke(self, repo: Repository, args: Sequence[str]) -> ExecutionOutcome:
        """Run the command with inherited stdio and wait for it to finish."""
        argv = [self.executable, *args]
        logger.debug("Running %s in %s", argv, repo.path)
        try:
            process = subprocess.Popen(argv, cwd=repo.path)
        except OSError as e:
            logger.debug("Failed to launch %s in %s: %s", argv, repo.path, e)
            self.formatter.print_launch_error(repo, self.executable, e)
            return ExecutionOutcome(repo, error=e.strerror or str(e))

        try:
            returncode = process.wait()
        except KeyboardInterrupt:
            # The terminal usually delivers SIGINT to the child already;
            # forward it in case the child is not in our process group.
            process.send_signal(signal.SIGINT)
            returncode = self._wait_until_exit(process)
            logger.info("Interrupted in %s (exit %s)", repo.path, returncode)
            return ExecutionOutcome(repo, returncode=returncode, interrupted=True)
        return ExecutionOutcome(repo, returncode=returncode)

    @staticmethod
    def _wait_until_exit(process: subprocess.Popen) -> int:
        """Wait for the child, absorbing further interrupts until it exits."""
        while True:
            try:
                return process.wait()
            except KeyboardInterrupt:
                logger.debug("Still waiting for pid %s to exit", process.pid)

    def run(
        self,
        repositories: Iterable[Repository],
        args: Sequence[str],
        list_only: bool = False,
    ) -> list[ExecutionOutcome]:
        """Handle every repository in order and return one outcome for each.

        Failures never stop the traversal; an interrupt stops it once the
        running command has terminated.
        """
        outcomes: list[ExecutionOutcome] = []
        for repo in repositories:
            if list_only:
                self.formatter.print_listing(repo)
                outcomes.append(ExecutionOutcome(repo, attempted=False))
                continue

            if self.show_headings:
                sys.stdout.flush()
                self.formatter.print_heading(repo)
            outcome = self._invoke(repo, args)
            outcomes.append(outcome)
            if outcome.interrupted:
                break
        return outcomes


# =============================================================================
# CLI Application
# =============================================================================


def configure_logging(level: str | None = None):
    """Send log records to stderr through rich; level from GITS_LOG_LEVEL."""
    level = (level or os.environ.get(LOG_LEVEL_ENV) or "WARNING").upper()
    logging.basicConfig(
        level=level if level in logging.getLevelNamesMapping() else "WARNING",
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def resolve_executable() -> str:
    """Executable to dispatch to; overridable via GITS_GIT."""
    return os.environ.get(EXECUTABLE_ENV) or DEFAULT_EXECUTABLE


app = typer.Typer(
    name="gits",
    help="Bulk git wrapper for multi-repo workspaces.",
    add_completion=False,
)


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        print(f"gits {__version__}")
        raise typer.Exit()


@app.command(
    context_settings={
        "ignore_unknown_options": True,
        "allow_interspersed_args": False,
    },
)
def main(
    git_args: list[str] = typer.Argument(
        None,
        metavar="GIT_ARGS...",
        help="Git command and arguments, passed verbatim (default: status)",
    ),
    root: Path = typer.Option(
        None,
        "--root",
        exists=True,
        file_okay=False,
        dir_okay=True,
        help="Search root (defaults to current directory)",
    ),
    absolute_path: bool = typer.Option(
        False,
        "--absolute-path",
        help="Print absolute headings instead of relative paths",
    ),
    parent: bool = typer.Option(
        False,
        "--parent",
        help="Include ancestor repositories from cwd up to filesystem root",
    ),
    max_depth: int = typer.Option(
        None,
        "--max-depth",
        min=0,
        help="Limit child search depth (0 = only root). Omit for unlimited.",
    ),
    list_only: bool = typer.Option(
        False,
        "--list",
        help="List discovered repositories without executing git",
    ),
    heading_style: HeadingStyle = typer.Option(
        HeadingStyle.RULE,
        "--heading-style",
        case_sensitive=False,
        help="Heading style for repository separators",
    ),
    color: ColorMode = typer.Option(
        ColorMode.AUTO,
        "--color",
        case_sensitive=False,
        help="Color mode for headings",
    ),
    no_heading: bool = typer.Option(
        False,
        "--no-heading",
        help="Suppress headings entirely (even for multiple repos)",
    ),
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
):
    """Run a git command in every repository under the search root."""
    configure_logging()

    config = ScanConfig.from_options(
        root=root,
        max_depth=max_depth,
        include_ancestors=parent,
        absolute_paths=absolute_path,
    )
    formatter = OutputFormatter(
        config.root,
        style=heading_style,
        color=color,
        absolute=absolute_path,
    )

    repos = discover(config)
    logger.debug("Discovered %d repositories under %s", len(repos), config.root)
    if not repos:
        if not list_only:
            formatter.print_notice(f"No repositories found under {config.root}")
        raise typer.Exit(SUCCESS)

    dispatcher = CommandDispatcher(
        formatter,
        executable=resolve_executable(),
        show_headings=should_show_headings(
            len(repos), config, no_heading=no_heading, root_given=root is not None
        ),
    )
    outcomes = dispatcher.run(repos, git_args or list(DEFAULT_ARGS), list_only=list_only)

    result = AggregateResult.from_outcomes(outcomes)
    if result.interrupted:
        formatter.print_error(f"Interrupted after {result.attempted} of {len(repos)} repositories")
    raise typer.Exit(result.exit_code)
