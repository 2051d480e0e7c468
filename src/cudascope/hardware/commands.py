"""Bounded external command execution shared by every probe."""

from __future__ import annotations

import logging
import os
import subprocess
import sys
from typing import Optional, Sequence, Union

from cudascope.errors import CommandExecutionError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT: float = 10.0

StrPath = Union[str, os.PathLike]


def run_command(
    args: Sequence[StrPath],
    timeout: float = DEFAULT_TIMEOUT,
) -> subprocess.CompletedProcess:
    """Run a command and return the completed process.

    Output is decoded as UTF-8 with replacement so odd vendor output never
    raises. A non-zero exit status is returned, not raised.

    Raises:
        CommandExecutionError: If the executable is missing, cannot be
            started, or exceeds ``timeout``.
    """
    cmd = [str(a) for a in args]
    try:
        return subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=timeout,
            encoding="utf-8",
            errors="replace",
        )
    except FileNotFoundError as e:
        raise CommandExecutionError(f"{cmd[0]} not found") from e
    except subprocess.TimeoutExpired as e:
        raise CommandExecutionError(f"{cmd[0]} timed out after {timeout:g}s") from e
    except OSError as e:
        raise CommandExecutionError(f"failed to run {cmd[0]}: {e}") from e


def run_checked(args: Sequence[StrPath], timeout: float = DEFAULT_TIMEOUT) -> str:
    """Run a command and return stdout, raising on a non-zero exit status."""
    result = run_command(args, timeout=timeout)
    if result.returncode != 0:
        raise CommandExecutionError(
            f"{args[0]} exited with code {result.returncode}: {(result.stderr or '').strip()}"
        )
    return result.stdout or ""


def try_output(args: Sequence[StrPath], timeout: float = DEFAULT_TIMEOUT) -> Optional[str]:
    """Stdout of a successful command, or None on any failure."""
    try:
        return run_checked(args, timeout=timeout)
    except CommandExecutionError as e:
        logger.debug("%s", e)
        return None


def find_executable(command: str, timeout: float = DEFAULT_TIMEOUT) -> Optional[str]:
    """Resolve a command to its full path via ``which`` / ``where``.

    ``where`` can print several matches; only the first line is used.
    """
    lookup = "where" if sys.platform == "win32" else "which"
    output = try_output([lookup, command], timeout=timeout)
    if not output:
        return None
    first = output.strip().splitlines()[0].strip() if output.strip() else ""
    return first or None
