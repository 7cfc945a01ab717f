"""Tests for project/make.py module.

Tests make command composition and execution.
Uses a mocked subprocess.Popen for execution tests.
"""

import io
import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from ukbuild.context import CancelToken
from ukbuild.errors import OperationCancelledError
from ukbuild.project.make import (
    MakeError,
    MakeOptions,
    compose_make_command,
    resolve_jobs,
    run_make,
)


def fake_process(exit_code: int = 0, stdout: str = "", stderr: str = "") -> MagicMock:
    proc = MagicMock()
    proc.stdout = io.StringIO(stdout)
    proc.stderr = io.StringIO(stderr)
    proc.wait.return_value = exit_code
    return proc


class TestResolveJobs:
    """Tests for resolve_jobs function."""

    def test_explicit_jobs_win(self):
        assert resolve_jobs(4, fast=True) == 4

    def test_fast_uses_cpu_count(self):
        with patch("ukbuild.project.make.os.cpu_count", return_value=8):
            assert resolve_jobs(0, fast=True) == 8

    def test_default_is_serial(self):
        assert resolve_jobs(0, fast=False) is None


class TestComposeMakeCommand:
    """Tests for compose_make_command function."""

    def test_minimal_command(self, tmp_path: Path):
        """Core, application and output directories are always passed."""
        cmd = compose_make_command(tmp_path / "core", tmp_path / "app", tmp_path / "out")
        assert cmd == [
            "make",
            "-C",
            str(tmp_path / "core"),
            f"A={tmp_path / 'app'}",
            f"O={tmp_path / 'out'}",
        ]

    def test_full_command(self, tmp_path: Path):
        """Options, libraries, variables and goals are appended in order."""
        cmd = compose_make_command(
            tmp_path / "core",
            tmp_path / "app",
            tmp_path / "out",
            goals=["fetch", "prepare"],
            libraries=[tmp_path / "musl", tmp_path / "lwip"],
            variables={"C": "/app/.config"},
            options=MakeOptions(jobs=4, silent=True),
        )
        assert cmd[:3] == ["make", "-s", "-j4"]
        assert f"L={tmp_path / 'musl'}:{tmp_path / 'lwip'}" in cmd
        assert "C=/app/.config" in cmd
        assert cmd[-2:] == ["fetch", "prepare"]


class TestRunMake:
    """Tests for run_make function."""

    def test_success(self, tmp_path: Path):
        """A zero exit code returns a MakeResult."""
        with patch("ukbuild.project.make.subprocess.Popen") as mock_popen:
            mock_popen.return_value = fake_process(stdout="CC foo.o\n")
            result = run_make(["make", "prepare"], cwd=tmp_path)

        assert result.command == "make prepare"
        assert mock_popen.call_args.kwargs["cwd"] == tmp_path

    def test_failure_raises(self, tmp_path: Path):
        """A non-zero exit code raises MakeError carrying the exit code."""
        with patch("ukbuild.project.make.subprocess.Popen") as mock_popen:
            mock_popen.return_value = fake_process(exit_code=2, stderr="error\n")
            with pytest.raises(MakeError) as exc_info:
                run_make(["make"], cwd=tmp_path)

        assert exc_info.value.exit_code == 2
        assert exc_info.value.code == "make_failed"

    def test_missing_make(self, tmp_path: Path):
        with patch(
            "ukbuild.project.make.subprocess.Popen", side_effect=FileNotFoundError("make")
        ):
            with pytest.raises(MakeError) as exc_info:
                run_make(["make"], cwd=tmp_path)
        assert exc_info.value.code == "execution_error"

    def test_log_file(self, tmp_path: Path):
        """Output is written to the log file with a header and footer."""
        log_path = tmp_path / "logs" / "build.log"
        with patch("ukbuild.project.make.subprocess.Popen") as mock_popen:
            mock_popen.return_value = fake_process(stdout="LD app\n", stderr="warn\n")
            run_make(["make"], cwd=tmp_path, options=MakeOptions(log_path=log_path))

        content = log_path.read_text()
        assert "# Command: make" in content
        assert "LD app" in content
        assert "warn" in content
        assert "# Exit code: 0" in content

    def test_extra_env(self, tmp_path: Path):
        with patch("ukbuild.project.make.subprocess.Popen") as mock_popen:
            mock_popen.return_value = fake_process()
            run_make(["make"], cwd=tmp_path, options=MakeOptions(env={"V": "1"}))
        assert mock_popen.call_args.kwargs["env"]["V"] == "1"

    def test_cancelled_before_start(self, tmp_path: Path):
        """A cancelled token prevents make from starting."""
        token = CancelToken()
        token.cancel()
        with patch("ukbuild.project.make.subprocess.Popen") as mock_popen:
            with pytest.raises(OperationCancelledError):
                run_make(["make"], cwd=tmp_path, cancel=token)
        mock_popen.assert_not_called()

    def test_cancelled_while_running(self, tmp_path: Path):
        """Cancelling while make runs terminates the child process."""
        token = CancelToken()
        proc = fake_process()

        def wait(timeout=None):
            if timeout is not None:
                token.cancel()
                raise subprocess.TimeoutExpired("make", timeout)
            return -15

        proc.wait.side_effect = wait
        with patch("ukbuild.project.make.subprocess.Popen", return_value=proc):
            with pytest.raises(OperationCancelledError):
                run_make(["make"], cwd=tmp_path, cancel=token)
        proc.terminate.assert_called_once()
