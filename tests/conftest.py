"""Shared fixtures for building repository trees on disk."""

from __future__ import annotations

import io
from pathlib import Path

import pytest
from rich.console import Console

from gits.formatters import ColorMode, HeadingStyle, OutputFormatter


def make_repo(path: Path, *, worktree: bool = False) -> Path:
    """Create a directory that looks like a repository root."""
    path.mkdir(parents=True, exist_ok=True)
    if worktree:
        (path / ".git").write_text("gitdir: /somewhere/else/.git/worktrees/x\n")
    else:
        (path / ".git").mkdir(exist_ok=True)
    return path


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """root/{a, a/sub, b} repositories plus a plain directory."""
    root = (tmp_path / "ws").resolve()
    make_repo(root / "a")
    make_repo(root / "a" / "sub")
    make_repo(root / "b")
    (root / "docs" / "notes").mkdir(parents=True)
    return root


@pytest.fixture
def make_formatter():
    """Build a formatter writing to in-memory consoles."""

    def _make(
        root: Path,
        style: HeadingStyle = HeadingStyle.RULE,
        color: ColorMode = ColorMode.NEVER,
        absolute: bool = False,
        terminal: bool = False,
    ) -> OutputFormatter:
        console = Console(
            file=io.StringIO(),
            width=80,
            force_terminal=terminal,
            color_system="standard" if terminal else "auto",
        )
        err_console = Console(file=io.StringIO(), width=80)
        return OutputFormatter(
            root,
            style=style,
            color=color,
            absolute=absolute,
            console=console,
            err_console=err_console,
        )

    return _make


def output_of(console: Console) -> str:
    return console.file.getvalue()
