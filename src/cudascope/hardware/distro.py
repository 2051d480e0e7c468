"""Distribution probe: operating system, version, kernel, package manager."""

from __future__ import annotations

import logging
import platform
from pathlib import Path
from typing import Optional

from cudascope.engine.models import (
    DistroRecord,
    LinuxFlavor,
    LinuxOs,
    PackageManager,
    WindowsOs,
)
from cudascope.errors import DistroDetectionError
from cudascope.hardware.commands import DEFAULT_TIMEOUT, try_output

logger = logging.getLogger(__name__)

OS_RELEASE = Path("/etc/os-release")
LSB_RELEASE = Path("/etc/lsb-release")

# os-release ID -> (flavor, package manager)
_DISTRO_TABLE: dict[str, tuple[LinuxFlavor, PackageManager]] = {
    "ubuntu": (LinuxFlavor.UBUNTU, PackageManager.APT),
    "debian": (LinuxFlavor.DEBIAN, PackageManager.APT),
    "centos": (LinuxFlavor.CENTOS, PackageManager.YUM),
    "rhel": (LinuxFlavor.RHEL, PackageManager.DNF),
    "rocky": (LinuxFlavor.RHEL, PackageManager.DNF),
    "almalinux": (LinuxFlavor.RHEL, PackageManager.DNF),
    "fedora": (LinuxFlavor.FEDORA, PackageManager.DNF),
    "arch": (LinuxFlavor.ARCH, PackageManager.PACMAN),
    "opensuse": (LinuxFlavor.SUSE, PackageManager.ZYPPER),
    "opensuse-leap": (LinuxFlavor.SUSE, PackageManager.ZYPPER),
    "opensuse-tumbleweed": (LinuxFlavor.SUSE, PackageManager.ZYPPER),
    "suse": (LinuxFlavor.SUSE, PackageManager.ZYPPER),
    "sles": (LinuxFlavor.SUSE, PackageManager.ZYPPER),
}


def _key_values(content: str) -> dict[str, str]:
    values: dict[str, str] = {}
    for line in content.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if sep:
            values[key.strip()] = value.strip().strip('"').strip("'")
    return values


def parse_os_release(content: str) -> DistroRecord:
    """Build a record from /etc/os-release (NAME, VERSION, ID)."""
    values = _key_values(content)
    name = values.get("NAME", "")
    version = values.get("VERSION", values.get("VERSION_ID", ""))
    distro_id = values.get("ID", "").lower()

    flavor, package_manager = _DISTRO_TABLE.get(
        distro_id, (LinuxFlavor.GENERIC, PackageManager.UNKNOWN)
    )
    detail = distro_id if flavor == LinuxFlavor.GENERIC else version

    return DistroRecord(
        os_type=LinuxOs(flavor=flavor, detail=detail),
        name=name or "Linux",
        version=version,
        package_manager=package_manager,
    )


def parse_lsb_release(content: str) -> DistroRecord:
    """Build a generic record from the legacy /etc/lsb-release file."""
    values = _key_values(content)
    name = values.get("DISTRIB_DESCRIPTION", values.get("DISTRIB_ID", ""))
    version = values.get("DISTRIB_RELEASE", "")
    return DistroRecord(
        os_type=LinuxOs(flavor=LinuxFlavor.GENERIC, detail=name),
        name=name or "Linux",
        version=version,
        package_manager=PackageManager.UNKNOWN,
    )


def detect_kernel_version(timeout: float = DEFAULT_TIMEOUT) -> Optional[str]:
    output = try_output(["uname", "-r"], timeout=timeout)
    if output is None:
        return None
    return output.strip() or None


def detect_linux_distro(
    os_release: Path = OS_RELEASE,
    lsb_release: Path = LSB_RELEASE,
    timeout: float = DEFAULT_TIMEOUT,
) -> DistroRecord:
    """os-release, then lsb-release, then a generic Linux record.

    Raises:
        DistroDetectionError: If a release file yields an invalid record.
    """
    kernel = detect_kernel_version(timeout)

    for path, parser in ((os_release, parse_os_release), (lsb_release, parse_lsb_release)):
        try:
            content = path.read_text(encoding="utf-8", errors="replace")
        except OSError:
            logger.debug("%s not readable", path)
            continue
        try:
            return parser(content).model_copy(update={"kernel_version": kernel})
        except ValueError as e:
            raise DistroDetectionError(f"invalid distribution record in {path}: {e}") from e

    return DistroRecord(
        os_type=LinuxOs(flavor=LinuxFlavor.GENERIC, detail="unknown"),
        name="Linux",
        version="unknown",
        kernel_version=kernel,
        package_manager=PackageManager.UNKNOWN,
    )


def detect_windows_distro() -> DistroRecord:
    # Minimal record; a WinAPI edition/build query would refine it.
    release = platform.release() or "10"
    build = platform.version() or "unknown"
    return DistroRecord(
        os_type=WindowsOs(version=release, build=build),
        name="Windows",
        version=release,
        kernel_version=build if build != "unknown" else None,
        package_manager=PackageManager.WINGET,
    )

