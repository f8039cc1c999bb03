"""End-to-end tests for the gits command line."""

from __future__ import annotations

import sys

import pytest
from typer.testing import CliRunner

from gits import __version__, core
from gits.core import app

from .conftest import make_repo

runner = CliRunner()


@pytest.fixture
def python_git(monkeypatch):
    """Dispatch to the Python interpreter instead of git."""
    monkeypatch.setenv(core.EXECUTABLE_ENV, sys.executable)


@pytest.fixture
def argv_script(tmp_path):
    """Child script recording its arguments into the repository it runs in."""
    script = tmp_path / "record_argv.py"
    script.write_text(
        "import json, sys\n"
        "open('argv.json', 'w').write(json.dumps(sys.argv[1:]))\n"
    )
    return str(script)


def test_version():
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert result.stdout.strip() == f"gits {__version__}"


def test_list_prints_one_line_per_repository(workspace):
    result = runner.invoke(app, ["--root", str(workspace), "--list"])
    assert result.exit_code == 0
    assert result.stdout.splitlines() == ["a/", "b/"]


def test_list_absolute_paths(workspace):
    result = runner.invoke(app, ["--root", str(workspace), "--list", "--absolute-path"])
    assert result.stdout.splitlines() == [f"{workspace}/a/", f"{workspace}/b/"]


def test_list_max_depth_zero_on_repository_root(workspace):
    make_repo(workspace)
    result = runner.invoke(app, ["--root", str(workspace), "--max-depth", "0", "--list"])
    assert result.stdout.splitlines() == ["./"]


def test_list_is_stable_across_runs(workspace):
    first = runner.invoke(app, ["--root", str(workspace), "--list"])
    second = runner.invoke(app, ["--root", str(workspace), "--list"])
    assert first.stdout == second.stdout


def test_list_with_parent_includes_ancestors_once(workspace, monkeypatch):
    make_repo(workspace.parent)
    monkeypatch.chdir(workspace / "a")
    result = runner.invoke(app, ["--root", str(workspace), "--parent", "--list"])
    assert result.exit_code == 0
    lines = result.stdout.splitlines()
    assert lines[-3:] == ["../", "a/", "b/"]
    assert lines.count("a/") == 1


def test_empty_tree_succeeds(tmp_path):
    result = runner.invoke(app, ["--root", str(tmp_path), "--list"])
    assert result.exit_code == 0
    assert result.stdout == ""


def test_passes_command_tokens_verbatim(workspace, python_git, argv_script):
    result = runner.invoke(
        app, ["--root", str(workspace), argv_script, "--oneline", "-n", "3"]
    )
    assert result.exit_code == 0
    for name in ("a", "b"):
        assert (workspace / name / "argv.json").read_text() == '["--oneline", "-n", "3"]'


def test_rule_headings_by_default(workspace, python_git):
    result = runner.invoke(app, ["--root", str(workspace), "--color", "never", "-c", "pass"])
    assert result.exit_code == 0
    lines = result.stdout.splitlines()
    assert lines[0] == "a/"
    assert set(lines[1]) == {"-"}
    assert lines[2] == "b/"


def test_plain_and_no_heading_prints_nothing(workspace, python_git):
    result = runner.invoke(
        app,
        ["--root", str(workspace), "--heading-style", "plain", "--no-heading", "-c", "pass"],
    )
    assert result.exit_code == 0
    assert result.stdout == ""


def test_any_failure_makes_exit_nonzero(workspace, python_git, tmp_path):
    script = tmp_path / "fail_in_a.py"
    script.write_text(
        "import os, sys\n"
        "open('ran', 'w').close()\n"
        "sys.exit(5 if os.path.basename(os.getcwd()) == 'a' else 0)\n"
    )
    result = runner.invoke(app, ["--root", str(workspace), str(script)])
    assert result.exit_code == 5
    assert (workspace / "a" / "ran").exists()
    assert (workspace / "b" / "ran").exists()


def test_missing_executable_fails(workspace, monkeypatch, tmp_path):
    monkeypatch.setenv(core.EXECUTABLE_ENV, str(tmp_path / "missing-git"))
    result = runner.invoke(app, ["--root", str(workspace), "status"])
    assert result.exit_code == core.LAUNCH_FAILURE


@pytest.mark.parametrize(
    "args",
    [
        ["--color", "sometimes"],
        ["--heading-style", "fancy"],
        ["--max-depth", "-1"],
        ["--max-depth", "deep"],
    ],
)
def test_invalid_options_rejected_before_running(workspace, monkeypatch, args):
    def no_spawn(*a, **kw):
        raise AssertionError("must not spawn")

    monkeypatch.setattr(core.subprocess, "Popen", no_spawn)
    result = runner.invoke(app, ["--root", str(workspace), *args])
    assert result.exit_code == 2


def test_missing_root_rejected(tmp_path):
    result = runner.invoke(app, ["--root", str(tmp_path / "nope"), "--list"])
    assert result.exit_code == 2
