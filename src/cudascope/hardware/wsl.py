"""WSL probe: is this Linux running under Windows Subsystem for Linux?"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Mapping, Optional

from cudascope.engine.models import WslRecord, WslVersion

PROC_VERSION = Path("/proc/version")
WSL_DISTRO_VAR = "WSL_DISTRO_NAME"


def classify_wsl(proc_version: Optional[str], distro_name: Optional[str]) -> WslRecord:
    """Classify from the kernel version string and WSL_DISTRO_NAME.

    A "microsoft" kernel means WSL (WSL2 if "wsl2" also appears). The
    distro variable alone implies WSL2.
    """
    is_wsl = False
    version = WslVersion.NONE

    if proc_version:
        lower = proc_version.lower()
        if "microsoft" in lower:
            is_wsl = True
            version = WslVersion.WSL2 if "wsl2" in lower else WslVersion.WSL1

    distribution = ""
    if distro_name:
        is_wsl = True
        distribution = distro_name
        if version == WslVersion.NONE:
            version = WslVersion.WSL2

    return WslRecord(is_wsl=is_wsl, version=version, distribution=distribution)


def detect_wsl(
    proc_version_path: Path = PROC_VERSION,
    environ: Optional[Mapping[str, str]] = None,
) -> WslRecord:
    env = os.environ if environ is None else environ
    try:
        content = proc_version_path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        content = None
    return classify_wsl(content, env.get(WSL_DISTRO_VAR))
