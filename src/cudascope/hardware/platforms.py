"""Per-platform probe sets.

Each platform lists the probes that make sense on it: which GPU, driver and
compiler strategies to try, how to read the OS, and which file layout to
expect. The probe modules take these as arguments and never look at
``sys.platform`` themselves. The doctor runs the returned callables
(sequentially or on a thread pool) without knowing which operating system
it is on.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Callable, Optional

from cudascope.engine.models import DistroRecord, VisualStudioRecord, WslRecord
from cudascope.errors import UnsupportedPlatformError
from cudascope.hardware.compiler import (
    CompilerStrategy,
    detect_clang,
    detect_compilers,
    detect_gcc,
    detect_msvc,
)
from cudascope.hardware.distro import detect_linux_distro, detect_windows_distro
from cudascope.hardware.driver import (
    DriverStrategy,
    detect_driver,
    detect_via_modinfo,
    detect_via_nvidia_smi,
    detect_via_windows_registry,
)
from cudascope.hardware.gpu import (
    GpuStrategy,
    detect_gpus,
    query_lspci,
    query_nvidia_smi,
    query_wmic,
)
from cudascope.hardware.installations import scan_installations
from cudascope.hardware.security import detect_security
from cudascope.hardware.storage import POSIX_INSTALL_PATH, check_storage, windows_install_path
from cudascope.hardware.visual_studio import detect_visual_studio
from cudascope.hardware.wsl import detect_wsl
from cudascope.kb.registry import CompatibilityRegistry
from cudascope.settings import Settings

Probe = Callable[[], Any]

# Names of every probe, in report order.
PROBE_NAMES = (
    "distro",
    "gpus",
    "driver",
    "compilers",
    "storage",
    "security",
    "wsl",
    "visual_studio",
    "installations",
)


class Platform:
    """Probe set shared by all platforms; subclasses fill in the specifics."""

    name = "generic"
    windows = False
    gpu_strategies: tuple[GpuStrategy, ...] = (query_nvidia_smi,)
    driver_strategies: tuple[DriverStrategy, ...] = (detect_via_nvidia_smi,)
    compiler_strategies: tuple[CompilerStrategy, ...] = ()

    def probes(self, registry: CompatibilityRegistry, settings: Settings) -> dict[str, Probe]:
        timeout = settings.command_timeout
        install_path = settings.install_path or self.default_install_path()
        return {
            "distro": lambda: self.detect_distro(timeout),
            "gpus": lambda: detect_gpus(registry, self.gpu_strategies, timeout=timeout),
            "driver": lambda: detect_driver(registry, self.driver_strategies, timeout=timeout),
            "compilers": lambda: detect_compilers(self.compiler_strategies, timeout=timeout),
            "storage": lambda: check_storage(install_path),
            "security": lambda: detect_security(windows=self.windows),
            "wsl": self.detect_wsl,
            "visual_studio": lambda: self.detect_visual_studio(timeout),
            "installations": lambda: scan_installations(timeout=timeout, windows=self.windows),
        }

    def default_install_path(self) -> Path:
        return POSIX_INSTALL_PATH

    def detect_distro(self, timeout: float) -> DistroRecord:
        raise UnsupportedPlatformError(f"no operating system probe for platform '{self.name}'")

    def detect_wsl(self) -> Optional[WslRecord]:
        return None

    def detect_visual_studio(self, timeout: float) -> Optional[VisualStudioRecord]:
        return None


class LinuxPlatform(Platform):
    name = "linux"
    gpu_strategies = (query_nvidia_smi, query_lspci)
    driver_strategies = (detect_via_nvidia_smi, detect_via_modinfo)
    compiler_strategies = (detect_gcc, detect_clang)

    def detect_distro(self, timeout: float) -> DistroRecord:
        return detect_linux_distro(timeout=timeout)

    def detect_wsl(self) -> Optional[WslRecord]:
        return detect_wsl()


class WindowsPlatform(Platform):
    name = "windows"
    windows = True
    gpu_strategies = (query_nvidia_smi, query_wmic)
    driver_strategies = (detect_via_nvidia_smi, detect_via_windows_registry)
    compiler_strategies = (detect_msvc,)

    def default_install_path(self) -> Path:
        return windows_install_path()

    def detect_distro(self, timeout: float) -> DistroRecord:
        return detect_windows_distro()

    def detect_visual_studio(self, timeout: float) -> Optional[VisualStudioRecord]:
        return detect_visual_studio(timeout=timeout)


def get_platform(system: Optional[str] = None) -> Platform:
    """Platform for ``system`` (default: ``sys.platform``).

    Raises:
        UnsupportedPlatformError: For anything but Linux or Windows.
    """
    system = sys.platform if system is None else system
    if system.startswith("linux"):
        return LinuxPlatform()
    if system == "win32":
        return WindowsPlatform()
    raise UnsupportedPlatformError(f"unsupported operating system: {system}")
