"""Tests for bounded external command execution."""

from __future__ import annotations

import subprocess
from unittest.mock import MagicMock, patch

import pytest

from cudascope.errors import CommandExecutionError
from cudascope.hardware.commands import find_executable, run_checked, run_command, try_output


def _completed(stdout: str = "", returncode: int = 0, stderr: str = "") -> MagicMock:
    result = MagicMock()
    result.returncode = returncode
    result.stdout = stdout
    result.stderr = stderr
    return result


class TestRunCommand:
    def test_passes_timeout_and_decoding(self):
        with patch("subprocess.run", return_value=_completed("ok")) as run:
            run_command(["nvidia-smi", "-L"], timeout=3)

        args, kwargs = run.call_args
        assert args[0] == ["nvidia-smi", "-L"]
        assert kwargs["timeout"] == 3
        assert kwargs["capture_output"] is True
        assert kwargs["errors"] == "replace"

    def test_nonzero_exit_is_returned(self):
        with patch("subprocess.run", return_value=_completed(returncode=4)):
            assert run_command(["lspci"]).returncode == 4

    @pytest.mark.parametrize(
        ("error", "message"),
        [
            (FileNotFoundError(), "not found"),
            (subprocess.TimeoutExpired("nvcc", 10), "timed out"),
            (PermissionError("denied"), "failed to run"),
        ],
    )
    def test_failures_become_command_errors(self, error, message):
        with patch("subprocess.run", side_effect=error):
            with pytest.raises(CommandExecutionError, match=message):
                run_command(["nvcc", "--version"])


class TestHelpers:
    def test_run_checked_returns_stdout(self):
        with patch("subprocess.run", return_value=_completed("12.2\n")):
            assert run_checked(["nvcc"]) == "12.2\n"

    def test_run_checked_raises_on_exit_status(self):
        with patch("subprocess.run", return_value=_completed(returncode=1, stderr="boom")):
            with pytest.raises(CommandExecutionError, match="code 1: boom"):
                run_checked(["nvcc"])

    def test_try_output_swallows_failures(self):
        with patch("subprocess.run", side_effect=FileNotFoundError):
            assert try_output(["modinfo", "nvidia"]) is None

    def test_find_executable_first_match(self):
        with patch("subprocess.run", return_value=_completed("/usr/bin/gcc\n/usr/local/bin/gcc\n")):
            assert find_executable("gcc") == "/usr/bin/gcc"

    def test_find_executable_missing(self):
        with patch("subprocess.run", return_value=_completed("", returncode=1)):
            assert find_executable("gcc") is None
