"""Driver probe: find the installed NVIDIA driver version.

Sources are tried in order and the first one that yields a version wins:
nvidia-smi's status table, then ``modinfo nvidia`` on Linux or the
registry on Windows. When nothing answers, the result is None (no driver),
never an error.
"""

from __future__ import annotations

import logging
import re
from typing import Callable, Optional, Sequence

from cudascope.engine.models import DriverRecord
from cudascope.errors import DetectionError, DriverDetectionError, ParseError
from cudascope.hardware.commands import DEFAULT_TIMEOUT, run_checked
from cudascope.kb.registry import CompatibilityRegistry

logger = logging.getLogger(__name__)

DriverStrategy = Callable[[CompatibilityRegistry, float], DriverRecord]

_VIDEO_CLASS_KEY = (
    r"SYSTEM\CurrentControlSet\Control\Class\{4d36e968-e325-11ce-bfc1-08002be10318}"
)
_NVTWEAK_KEY = r"SOFTWARE\NVIDIA Corporation\Global\NVTweak"


def detect_driver(
    registry: CompatibilityRegistry,
    strategies: Optional[Sequence[DriverStrategy]] = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> Optional[DriverRecord]:
    """Return the first driver record any strategy produces, or None."""
    if strategies is None:
        strategies = [detect_via_nvidia_smi]

    for strategy in strategies:
        try:
            return strategy(registry, timeout)
        except DetectionError as e:
            logger.debug("Driver source %s failed: %s", strategy.__name__, e)
    return None


# ---------------------------------------------------------------------------
# nvidia-smi
# ---------------------------------------------------------------------------


def parse_nvidia_smi_driver(output: str) -> tuple[str, Optional[str]]:
    """Extract (driver version, CUDA version) from nvidia-smi's header table.

    Raises:
        ParseError: If no "Driver Version:" field is present.
    """
    driver = _field_after(output, "Driver Version:")
    if not driver:
        raise ParseError("could not parse driver version from nvidia-smi")
    return driver, _field_after(output, "CUDA Version:")


def _field_after(output: str, marker: str) -> Optional[str]:
    for line in output.splitlines():
        if marker in line:
            tail = line.split(marker, 1)[1].split()
            if tail:
                return tail[0].strip()
    return None


def detect_via_nvidia_smi(registry: CompatibilityRegistry, timeout: float = DEFAULT_TIMEOUT) -> DriverRecord:
    output = run_checked(["nvidia-smi"], timeout=timeout)
    driver, cuda_version = parse_nvidia_smi_driver(output)
    # The CUDA version in the header is the newest toolkit the driver runs.
    max_version = cuda_version or registry.lookup_max_toolkit_version(driver)
    return DriverRecord(
        version=driver,
        is_installed=True,
        supports_cuda=True,
        max_toolkit_version=max_version,
        source="nvidia-smi",
    )


# ---------------------------------------------------------------------------
# modinfo (Linux)
# ---------------------------------------------------------------------------


def parse_modinfo_version(output: str) -> str:
    """Extract the ``version:`` field from ``modinfo nvidia``."""
    for line in output.splitlines():
        if line.startswith("version:"):
            parts = line.split()
            if len(parts) >= 2:
                return parts[1]
    raise ParseError("could not parse driver version from modinfo")


def detect_via_modinfo(registry: CompatibilityRegistry, timeout: float = DEFAULT_TIMEOUT) -> DriverRecord:
    output = run_checked(["modinfo", "nvidia"], timeout=timeout)
    version = parse_modinfo_version(output)
    return DriverRecord(
        version=version,
        is_installed=True,
        supports_cuda=True,
        max_toolkit_version=registry.lookup_max_toolkit_version(version),
        source="modinfo",
    )


# ---------------------------------------------------------------------------
# Windows registry
# ---------------------------------------------------------------------------


def decode_windows_driver_version(raw: str) -> str:
    """Convert a packed Windows driver version into NVIDIA's public form.

    The last five digits of the dot-stripped string are MAJOR (3 digits)
    and MINOR (2 digits); a single leading zero is dropped from MAJOR.
    ``31.0.15.3623`` -> ``536.23``.

    Raises:
        ParseError: If fewer than five digits are available.
    """
    digits = re.sub(r"\D", "", raw)
    if len(digits) < 5:
        raise ParseError(f"driver version {raw!r} is too short to decode")
    last_five = digits[-5:]
    major, minor = last_five[:3], last_five[3:]
    if major.startswith("0"):
        major = major[1:]
    return f"{major}.{minor}"


def _read_registry_driver_versions() -> list[str]:
    """Raw DriverVersion values of NVIDIA display adapters, then NVTweak."""
    import winreg

    found: list[str] = []
    try:
        video_class = winreg.OpenKey(winreg.HKEY_LOCAL_MACHINE, _VIDEO_CLASS_KEY)
    except OSError as e:
        raise DriverDetectionError(f"cannot open video class key: {e}") from e

    with video_class:
        index = 0
        while True:
            try:
                sub_name = winreg.EnumKey(video_class, index)
            except OSError:
                break
            index += 1
            try:
                with winreg.OpenKey(video_class, sub_name) as sub:
                    provider, _ = winreg.QueryValueEx(sub, "ProviderName")
                    if "nvidia" not in str(provider).lower():
                        continue
                    version, _ = winreg.QueryValueEx(sub, "DriverVersion")
                    found.append(str(version))
            except OSError:
                continue

    return found


def _read_nvtweak_version() -> Optional[str]:
    import winreg

    try:
        with winreg.OpenKey(winreg.HKEY_LOCAL_MACHINE, _NVTWEAK_KEY) as key:
            value, _ = winreg.QueryValueEx(key, "DriverVersion")
            return str(value)
    except OSError:
        return None


def detect_via_windows_registry(
    registry: CompatibilityRegistry, timeout: float = DEFAULT_TIMEOUT
) -> DriverRecord:
    version: Optional[str] = None
    try:
        raw_versions = _read_registry_driver_versions()
    except DriverDetectionError as e:
        logger.debug("%s", e)
        raw_versions = []

    for raw in raw_versions:
        try:
            version = decode_windows_driver_version(raw)
            break
        except ParseError:
            continue

    if version is None:
        version = _read_nvtweak_version()
    if version is None:
        raise DriverDetectionError("NVIDIA driver not found in registry")

    return DriverRecord(
        version=version,
        is_installed=True,
        supports_cuda=True,
        max_toolkit_version=registry.lookup_max_toolkit_version(version),
        source="registry",
    )
