"""Compiler probe: find host C/C++ compilers nvcc can use.

GCC and Clang are checked on POSIX systems, MSVC on Windows. A compiler is
"compatible" when its major version falls inside a fixed inclusive range.
"""

from __future__ import annotations

import logging
from functools import cmp_to_key
from pathlib import Path
from typing import Callable, Optional, Sequence

from cudascope.engine.models import CompilerRecord, VisualStudioRecord
from cudascope.engine.versions import compare_versions, major_version
from cudascope.errors import CompilerDetectionError, DetectionError, ParseError
from cudascope.hardware.commands import DEFAULT_TIMEOUT, find_executable, run_checked, run_command

logger = logging.getLogger(__name__)

CompilerStrategy = Callable[[float], CompilerRecord]

# Inclusive major-version ranges; None means unbounded.
GCC_RANGE: tuple[int, Optional[int]] = (5, 12)
CLANG_RANGE: tuple[int, Optional[int]] = (6, 16)
MSVC_RANGE: tuple[int, Optional[int]] = (19, None)


def detect_compilers(
    strategies: Sequence[CompilerStrategy],
    timeout: float = DEFAULT_TIMEOUT,
) -> list[CompilerRecord]:
    """Return every compiler that could be detected."""
    compilers: list[CompilerRecord] = []
    for strategy in strategies:
        try:
            compilers.append(strategy(timeout))
        except DetectionError as e:
            logger.debug("Compiler probe %s failed: %s", strategy.__name__, e)
    return compilers


def select_compiler(compilers: Sequence[CompilerRecord]) -> Optional[CompilerRecord]:
    """Prefer the first compatible compiler, else the first one found."""
    for compiler in compilers:
        if compiler.is_compatible:
            return compiler
    return compilers[0] if compilers else None


def is_in_range(version: str, bounds: tuple[int, Optional[int]]) -> bool:
    major = major_version(version)
    if major is None:
        return False
    low, high = bounds
    return major >= low and (high is None or major <= high)


def is_gcc_compatible(version: str) -> bool:
    return is_in_range(version, GCC_RANGE)


def is_clang_compatible(version: str) -> bool:
    return is_in_range(version, CLANG_RANGE)


def is_msvc_compatible(version: str) -> bool:
    return is_in_range(version, MSVC_RANGE)


# ---------------------------------------------------------------------------
# Parsers
# ---------------------------------------------------------------------------


def _first_line(output: str, compiler: str) -> str:
    for line in output.splitlines():
        if line.strip():
            return line
    raise ParseError(f"empty {compiler} output")


def parse_gcc_version(output: str) -> str:
    """Version from the first line of ``gcc --version``.

    ``gcc (Ubuntu 9.4.0-1ubuntu1~20.04.1) 9.4.0`` -> ``9.4.0``: the last
    word that starts with a digit and contains a dot.
    """
    words = _first_line(output, "gcc").split()
    for word in reversed(words):
        if word[:1].isdigit() and "." in word:
            return word
    raise ParseError("could not parse gcc version")


def parse_clang_version(output: str) -> str:
    """Version following the word "version" on the first line."""
    line = _first_line(output, "clang")
    marker = line.find("version ")
    if marker < 0:
        raise ParseError("could not find clang version")
    tail = line[marker + len("version ") :].split()
    if not tail:
        raise ParseError("could not parse clang version")
    return tail[0]


def parse_msvc_version(banner: str) -> str:
    """Version from the ``cl`` banner printed on stderr.

    ``Microsoft (R) C/C++ Optimizing Compiler Version 19.38.33130 for x64``
    """
    for line in banner.splitlines():
        marker = line.find("Version ")
        if marker >= 0:
            tail = line[marker + len("Version ") :].split()
            if tail:
                return tail[0]
    return "unknown"


# ---------------------------------------------------------------------------
# Detectors
# ---------------------------------------------------------------------------


def detect_gcc(timeout: float = DEFAULT_TIMEOUT) -> CompilerRecord:
    output = run_checked(["gcc", "--version"], timeout=timeout)
    version = parse_gcc_version(output)
    return CompilerRecord(
        name="GCC",
        version=version,
        is_compatible=is_gcc_compatible(version),
        path=find_executable("gcc", timeout=timeout),
        is_in_path=True,
    )


def detect_clang(timeout: float = DEFAULT_TIMEOUT) -> CompilerRecord:
    output = run_checked(["clang", "--version"], timeout=timeout)
    version = parse_clang_version(output)
    return CompilerRecord(
        name="Clang",
        version=version,
        is_compatible=is_clang_compatible(version),
        path=find_executable("clang", timeout=timeout),
        is_in_path=True,
    )


def _run_cl(cl: str, timeout: float) -> Optional[str]:
    # cl prints its banner on stderr and exits non-zero without inputs.
    try:
        result = run_command([cl], timeout=timeout)
    except DetectionError as e:
        logger.debug("%s", e)
        return None
    banner = result.stderr or ""
    return banner if "Microsoft" in banner else None


def find_cl_in_visual_studio(vs: VisualStudioRecord) -> Optional[Path]:
    """Locate ``cl.exe`` of the newest MSVC toolset inside a VS install.

    Layout: <install>/VC/Tools/MSVC/<version>/bin/Hostx64/x64/cl.exe
    """
    msvc_root = vs.install_path / "VC" / "Tools" / "MSVC"
    try:
        versions = [p.name for p in msvc_root.iterdir() if p.is_dir()]
    except OSError:
        return None

    for name in sorted(versions, key=cmp_to_key(compare_versions), reverse=True):
        cl_path = msvc_root / name / "bin" / "Hostx64" / "x64" / "cl.exe"
        if cl_path.exists():
            return cl_path
    return None


def detect_msvc(
    timeout: float = DEFAULT_TIMEOUT,
    visual_studio: Optional[Callable[[float], Optional[VisualStudioRecord]]] = None,
) -> CompilerRecord:
    banner = _run_cl("cl", timeout)
    if banner is not None:
        version = parse_msvc_version(banner)
        return CompilerRecord(
            name="MSVC",
            version=version,
            is_compatible=is_msvc_compatible(version),
            path=find_executable("cl", timeout=timeout),
            is_in_path=True,
        )

    if visual_studio is None:
        from cudascope.hardware.visual_studio import detect_visual_studio

        visual_studio = detect_visual_studio

    vs = visual_studio(timeout)
    if vs is not None and vs.has_cpp_tools:
        cl_path = find_cl_in_visual_studio(vs)
        if cl_path is not None:
            banner = _run_cl(str(cl_path), timeout)
            if banner is not None:
                version = parse_msvc_version(banner)
                return CompilerRecord(
                    name="MSVC",
                    version=version,
                    is_compatible=is_msvc_compatible(version),
                    path=str(cl_path),
                    is_in_path=False,
                )

    raise CompilerDetectionError("MSVC not found")
