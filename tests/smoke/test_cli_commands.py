"""
Smoke Tests for CLI Commands.

These tests verify that CLI commands run without errors and produce output.
They don't validate correctness deeply - just that commands work.

Usage:
    pytest tests/smoke/test_cli_commands.py -v
    pytest tests/smoke/test_cli_commands.py -v -m smoke
"""

import os
import subprocess
import sys
from pathlib import Path

import pytest

# Mark all tests in this module as smoke tests
pytestmark = pytest.mark.smoke

# Project root
PROJECT_ROOT = Path(__file__).parent.parent.parent


def run_cli_command(args: list[str], timeout: int = 30) -> tuple[int, str, str]:
    """
    Run a CLI command and return exit code, stdout, stderr.

    Args:
        args: Arguments after 'python -m stitch_engine.cli'
        timeout: Maximum time to wait

    Returns:
        Tuple of (exit_code, stdout, stderr)
    """
    env = {**os.environ, "COLUMNS": "120", "PYTHONIOENCODING": "utf-8"}
    result = subprocess.run(
        [sys.executable, "-m", "stitch_engine.cli", *args],
        cwd=PROJECT_ROOT,
        capture_output=True,
        text=True,
        encoding="utf-8",
        timeout=timeout,
        env=env,
    )

    return result.returncode, result.stdout, result.stderr


@pytest.fixture
def db(tmp_path):
    """--db option pointing at a throwaway SQLite file."""
    return ["--db", f"sqlite:///{tmp_path / 'stitch.db'}"]


class TestCLIHelp:
    """Test that help commands work."""

    def test_main_help(self):
        code, stdout, stderr = run_cli_command(["--help"])

        assert code == 0, f"Help failed: {stderr}"
        assert "Commands" in stdout
        for command in ("simulate", "init-path", "show", "complete", "history"):
            assert command in stdout

    def test_complete_help(self):
        code, stdout, _ = run_cli_command(["complete", "--help"])
        assert code == 0
        assert "--avg-ms" in stdout


class TestSimulate:
    def test_simulate_runs(self):
        code, stdout, stderr = run_cli_command(["simulate", "-n", "6", "-s", "4", "--seed", "3"])

        assert code == 0, f"Simulate failed: {stderr}"
        assert "Simulated completions" in stdout
        for tube in ("tube1", "tube2", "tube3"):
            assert tube in stdout


class TestLearningPathCommands:
    def test_init_show_complete_history(self, db):
        code, stdout, stderr = run_cli_command([*db, "init-path", "u1", "p1", "A", "B", "C"])
        assert code == 0, f"init-path failed: {stderr}"
        assert "Initialised p1" in stdout

        code, stdout, stderr = run_cli_command([*db, "complete", "u1", "A", "-c", "20", "-a", "1500"])
        assert code == 0, f"complete failed: {stderr}"
        assert "Repositioned" in stdout
        assert "skip 3" in stdout

        code, stdout, _ = run_cli_command([*db, "show", "u1", "p1"])
        assert code == 0
        assert stdout.index("B") < stdout.index("C") < stdout.rindex("A")

        code, stdout, _ = run_cli_command([*db, "history", "u1", "A", "--limit", "1"])
        assert code == 0
        assert "History: A" in stdout

    def test_history_without_moves(self, db):
        run_cli_command([*db, "init-path", "u1", "p1", "A", "B"])
        code, stdout, _ = run_cli_command([*db, "history", "u1", "B"])

        assert code == 0
        assert "No repositioning history for B" in stdout

    def test_unknown_user_fails(self, db):
        code, stdout, _ = run_cli_command([*db, "show", "ghost", "p1"])

        assert code == 1
        assert "USER_NOT_FOUND" in stdout

    def test_invalid_performance_fails(self, db):
        run_cli_command([*db, "init-path", "u1", "p1", "A", "B"])
        code, stdout, _ = run_cli_command([*db, "complete", "u1", "A", "-c", "30", "-t", "20"])

        assert code == 1
        assert "INVALID_PERFORMANCE_DATA" in stdout
