"""Installation scanner: find toolkit installations on disk and in PATH.

Pipeline:
  candidate roots -> dedupe by real path -> nvcc version -> components
  -> PATH nvcc -> active flag -> conflicts
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Mapping, Optional, Sequence

from cudascope.engine.models import (
    ComponentRecord,
    ConflictType,
    InstallationConflict,
    InstallationRecord,
    InstallationScanResult,
    PathInstallation,
)
from cudascope.errors import CommandExecutionError, InstallationScanError, ParseError
from cudascope.hardware.commands import DEFAULT_TIMEOUT, find_executable, run_checked

logger = logging.getLogger(__name__)

# Versioned install directories probed alongside the unversioned defaults.
KNOWN_TOOLKIT_VERSIONS = (
    "13.0",
    "12.9",
    "12.8",
    "12.6",
    "12.5",
    "12.4",
    "12.3",
    "12.2",
    "12.1",
    "12.0",
    "11.8",
    "11.7",
    "11.6",
    "11.5",
    "11.4",
    "11.3",
    "11.2",
    "11.1",
    "11.0",
)

# (name, candidate relative paths in preference order, required)
_LINUX_COMPONENTS: list[tuple[str, tuple[str, ...], bool]] = [
    ("NVCC Compiler", ("bin/nvcc",), True),
    (
        "CUDA Runtime",
        (
            "lib64/libcudart.so",
            "lib64/libcudart.so.13",
            "lib64/libcudart.so.12",
            "lib64/libcudart.so.11.0",
        ),
        True,
    ),
    ("CUDA Driver API", ("lib64/libcuda.so", "lib64/stubs/libcuda.so"), False),
    ("cuBLAS", ("lib64/libcublas.so",), False),
    ("cuFFT", ("lib64/libcufft.so",), False),
    ("cuRAND", ("lib64/libcurand.so",), False),
    ("cuSPARSE", ("lib64/libcusparse.so",), False),
    ("NPP", ("lib64/libnppc.so", "lib64/libnpp.so"), False),
]

_WINDOWS_COMPONENTS: list[tuple[str, tuple[str, ...], bool]] = [
    ("NVCC Compiler", ("bin/nvcc.exe",), True),
    (
        "CUDA Runtime",
        (
            "bin/cudart64_12.dll",
            "bin/x64/cudart64_13.dll",
            "bin/cudart64_110.dll",
            "bin/cudart64_11.dll",
            "bin/cudart64.dll",
            "bin/cudart.dll",
        ),
        True,
    ),
    ("CUDA Driver API", ("lib/x64/cuda.lib",), False),
    ("cuBLAS", ("lib/x64/cublas.lib",), False),
    ("cuFFT", ("lib/x64/cufft.lib",), False),
    ("cuRAND", ("lib/x64/curand.lib",), False),
    ("cuSPARSE", ("lib/x64/cusparse.lib",), False),
    ("NPP", ("lib/x64/nppial.lib", "lib/x64/nppc.lib"), False),
]


# ---------------------------------------------------------------------------
# Candidates
# ---------------------------------------------------------------------------


def candidate_roots(
    environ: Optional[Mapping[str, str]] = None,
    windows: bool = False,
) -> list[Path]:
    """Fixed install roots for the platform, then CUDA_HOME and CUDA_PATH."""
    env = os.environ if environ is None else environ
    paths: list[Path] = []

    if windows:
        base = Path(env.get("ProgramFiles", r"C:\Program Files")) / "NVIDIA GPU Computing Toolkit" / "CUDA"
        paths.append(base)
        paths.extend(base / f"v{v}" for v in KNOWN_TOOLKIT_VERSIONS)
    else:
        paths.extend(Path(p) for p in ("/usr/local/cuda", "/opt/cuda", "/usr/cuda"))
        for version in KNOWN_TOOLKIT_VERSIONS:
            paths.append(Path(f"/usr/local/cuda-{version}"))
            paths.append(Path(f"/opt/cuda-{version}"))

    for var in ("CUDA_HOME", "CUDA_PATH"):
        value = env.get(var)
        if value:
            paths.append(Path(value))
    return paths


def _real_key(path: Path) -> str:
    return os.path.normcase(os.path.realpath(path))


# ---------------------------------------------------------------------------
# nvcc
# ---------------------------------------------------------------------------


def parse_nvcc_release(output: str) -> str:
    """Version from "Cuda compilation tools, release 12.2, V12.2.140".

    Raises:
        ParseError: If no "release" token is present.
    """
    for line in output.splitlines():
        if "release " in line:
            version = line.split("release ", 1)[1].split(",", 1)[0].strip()
            if version:
                return version
    raise ParseError("could not find 'release X.Y' in nvcc output")


def read_nvcc_version(nvcc: Path | str, timeout: float = DEFAULT_TIMEOUT) -> str:
    """Run ``nvcc --version`` and parse the release.

    Raises:
        CommandExecutionError: If nvcc cannot be run.
        ParseError: If the output has no release token.
    """
    return parse_nvcc_release(run_checked([nvcc, "--version"], timeout=timeout))


def read_runtime_version(install_path: Path) -> Optional[str]:
    """Runtime version from the toolkit's version.json, if shipped."""
    try:
        data = json.loads((install_path / "version.json").read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return None
    if not isinstance(data, dict):
        return None
    runtime = data.get("cuda_cudart") or data.get("cuda") or {}
    version = runtime.get("version") if isinstance(runtime, dict) else None
    return str(version) if version else None


# ---------------------------------------------------------------------------
# Components and metadata
# ---------------------------------------------------------------------------


def detect_components(install_path: Path, windows: bool = False) -> list[ComponentRecord]:
    """Component records; each path is the first candidate that exists.

    When no candidate exists the first one is recorded so validation can
    report it as missing.
    """
    table = _WINDOWS_COMPONENTS if windows else _LINUX_COMPONENTS
    components: list[ComponentRecord] = []
    for name, candidates, required in table:
        paths = [install_path / rel for rel in candidates]
        chosen = next((p for p in paths if p.exists()), paths[0])
        components.append(
            ComponentRecord(name=name, version="unknown", path=chosen, required=required)
        )
    return components


def directory_size(path: Path) -> int:
    """Total size of regular files below ``path``; unreadable entries count as 0."""
    total = 0
    for root, _dirs, files in os.walk(path):
        for name in files:
            try:
                total += os.lstat(os.path.join(root, name)).st_size
            except OSError:
                continue
    return total


def install_date(path: Path) -> datetime:
    try:
        return datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
    except OSError:
        return datetime.now(timezone.utc)


def inspect_installation(
    root: Path,
    timeout: float = DEFAULT_TIMEOUT,
    windows: bool = False,
) -> Optional[InstallationRecord]:
    """Build a record for ``root`` if it holds a toolkit compiler.

    Raises:
        InstallationScanError: If nvcc exists but its version is unreadable.
    """
    nvcc = root / "bin" / ("nvcc.exe" if windows else "nvcc")
    if not nvcc.exists():
        return None

    try:
        version = read_nvcc_version(nvcc, timeout=timeout)
    except (CommandExecutionError, ParseError) as e:
        raise InstallationScanError(f"cannot read toolkit version at {root}: {e}") from e

    record = InstallationRecord.at(version, root)
    return record.model_copy(
        update={
            "runtime_version": read_runtime_version(root),
            "install_date": install_date(root),
            "size_bytes": directory_size(root),
            "components": detect_components(root, windows=windows),
        }
    )


# ---------------------------------------------------------------------------
# PATH installation
# ---------------------------------------------------------------------------


def detect_path_installation(timeout: float = DEFAULT_TIMEOUT) -> Optional[PathInstallation]:
    """The nvcc resolved through PATH, independent of the fixed roots."""
    try:
        version: Optional[str] = read_nvcc_version("nvcc", timeout=timeout)
    except (CommandExecutionError, ParseError) as e:
        logger.debug("No nvcc on PATH: %s", e)
        return None

    location = find_executable("nvcc", timeout=timeout)
    return PathInstallation(
        nvcc_version=version,
        nvcc_path=Path(location) if location else None,
    )


def _mark_active(
    installations: list[InstallationRecord],
    path_installation: Optional[PathInstallation],
) -> list[InstallationRecord]:
    if path_installation is None or path_installation.nvcc_path is None:
        return installations
    # /usr/bin/nvcc may be a symlink into a toolkit bin directory.
    active_bin = _real_key(Path(os.path.realpath(path_installation.nvcc_path)).parent)
    return [
        inst.model_copy(update={"is_active": _real_key(inst.toolkit_path) == active_bin})
        for inst in installations
    ]


# ---------------------------------------------------------------------------
# Conflicts
# ---------------------------------------------------------------------------


def detect_conflicts(
    installations: Sequence[InstallationRecord],
    path_installation: Optional[PathInstallation],
    cuda_home: Optional[str],
) -> list[InstallationConflict]:
    conflicts: list[InstallationConflict] = []

    if len(installations) > 1 and path_installation is not None:
        listing = "\n    - ".join(str(i.install_path) for i in installations)
        conflicts.append(
            InstallationConflict(
                conflict_type=ConflictType.MULTIPLE_VERSIONS,
                description=f"Multiple CUDA versions detected on system. Found at:\n    - {listing}",
                affected_installations=[i.version for i in installations],
                resolution_suggestion="Keep a single toolkit on PATH and point CUDA_HOME at it",
            )
        )

    if cuda_home and installations:
        home = _real_key(Path(cuda_home))
        if not any(_real_key(i.install_path) == home for i in installations):
            conflicts.append(
                InstallationConflict(
                    conflict_type=ConflictType.ENVIRONMENT_MISMATCH,
                    description="CUDA_HOME points to different installation than detected versions",
                    affected_installations=["CUDA_HOME"],
                    resolution_suggestion="Update CUDA_HOME to point to desired CUDA installation",
                )
            )

    return conflicts


# ---------------------------------------------------------------------------
# Scan
# ---------------------------------------------------------------------------


def scan_installations(
    roots: Optional[Sequence[Path]] = None,
    environ: Optional[Mapping[str, str]] = None,
    timeout: float = DEFAULT_TIMEOUT,
    windows: bool = False,
    path_installation: Optional[PathInstallation] = None,
    probe_path: bool = True,
) -> InstallationScanResult:
    """Scan candidate roots and PATH for toolkit installations.

    Args:
        roots: Candidate roots. Defaults to :func:`candidate_roots`.
        environ: Environment used for CUDA_HOME / CUDA_PATH.
        timeout: Per-command timeout in seconds.
        windows: Use the Windows file layout instead of the POSIX one.
        path_installation: Pre-resolved PATH nvcc, skipping the probe.
        probe_path: Whether to look up nvcc on PATH when not given.

    Returns:
        InstallationScanResult with installations, PATH nvcc, and conflicts.
    """
    env = os.environ if environ is None else environ
    if roots is None:
        roots = candidate_roots(env, windows=windows)

    seen: set[str] = set()
    installations: list[InstallationRecord] = []
    for root in roots:
        if not root.is_dir():
            continue
        key = _real_key(root)
        if key in seen:
            continue
        seen.add(key)

        try:
            record = inspect_installation(root, timeout=timeout, windows=windows)
        except InstallationScanError as e:
            logger.debug("Skipping %s: %s", root, e)
            continue
        if record is not None:
            logger.debug("Found toolkit %s at %s", record.version, root)
            installations.append(record)

    if path_installation is None and probe_path:
        path_installation = detect_path_installation(timeout=timeout)

    installations = _mark_active(installations, path_installation)
    return InstallationScanResult(
        installations=installations,
        conflicts=detect_conflicts(installations, path_installation, env.get("CUDA_HOME")),
        path_installation=path_installation,
    )
