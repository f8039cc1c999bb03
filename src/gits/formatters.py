"""Output formatters for repository headings and listings."""

from __future__ import annotations

import os
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING

from rich.console import Console
from rich.markup import escape
from rich.text import Text

if TYPE_CHECKING:
    from .core import Repository

HEADING_COLOR = "bold cyan"
RULE_CHAR = "-"
RULE_MIN_WIDTH = 20
RULE_MAX_WIDTH = 200


class HeadingStyle(StrEnum):
    """How the heading before each repository is drawn."""

    PLAIN = "plain"  # path alone
    RULE = "rule"  # path followed by a separator line


class ColorMode(StrEnum):
    """When headings get styling codes."""

    AUTO = "auto"
    ALWAYS = "always"
    NEVER = "never"


def resolve_color(mode: ColorMode, console: Console) -> bool:
    """Decide once whether headings are colored.

    ``auto`` colors only when the console writes to a terminal and
    ``NO_COLOR`` is not set.
    """
    if mode == ColorMode.ALWAYS:
        return True
    if mode == ColorMode.NEVER:
        return False
    return console.is_terminal and os.environ.get("NO_COLOR") is None


def make_console(mode: ColorMode, *, stderr: bool = False) -> Console:
    """Create a console whose terminal handling follows the color mode."""
    if mode == ColorMode.ALWAYS:
        return Console(stderr=stderr, force_terminal=True, highlight=False)
    if mode == ColorMode.NEVER:
        return Console(stderr=stderr, color_system=None, highlight=False)
    return Console(stderr=stderr, highlight=False)


class OutputFormatter:
    """Render headings, listing lines and launch errors."""

    def __init__(
        self,
        root: Path,
        style: HeadingStyle = HeadingStyle.RULE,
        color: ColorMode = ColorMode.AUTO,
        absolute: bool = False,
        console: Console | None = None,
        err_console: Console | None = None,
    ):
        self.root = root
        self.style = style
        self.absolute = absolute
        self.console = console or make_console(color)
        self.err_console = err_console or make_console(color, stderr=True)
        # Terminal attachment does not change between repositories.
        self.use_color = resolve_color(color, self.console)

    def _rule_width(self) -> int:
        return max(RULE_MIN_WIDTH, min(self.console.width, RULE_MAX_WIDTH))

    def heading(self, repo: Repository) -> Text:
        """Build the heading text shown before a repository's output."""
        style = HEADING_COLOR if self.use_color else ""
        text = Text(repo.display_path(self.root, self.absolute), style=style)
        if self.style == HeadingStyle.RULE:
            text.append("\n")
            text.append(RULE_CHAR * self._rule_width(), style=style)
        return text

    def print_heading(self, repo: Repository):
        self.console.print(self.heading(repo), soft_wrap=True)
        self.console.file.flush()

    def print_listing(self, repo: Repository):
        """Print one unstyled line per repository (stable for scripts)."""
        self.console.print(
            Text(repo.display_path(self.root, self.absolute)),
            soft_wrap=True,
        )

    def print_launch_error(self, repo: Repository, executable: str, error: OSError):
        label = escape(repo.display_path(self.root, self.absolute))
        reason = escape(error.strerror or str(error))
        self.err_console.print(
            f"[red]error:[/] {label}: failed to run '{escape(executable)}': {reason}",
            soft_wrap=True,
        )

    def print_notice(self, message: str):
        self.err_console.print(f"[yellow]{escape(message)}[/]", soft_wrap=True)

    def print_error(self, message: str):
        self.err_console.print(f"[red]Error: {escape(message)}[/]", soft_wrap=True)
