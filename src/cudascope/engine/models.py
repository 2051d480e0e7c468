"""Core data models for cudascope.

These models flow through the entire system:
- Probes output GpuRecord, DriverRecord, CompilerRecord, DistroRecord,
  StorageRecord, SecurityRecord, WslRecord and VisualStudioRecord
- The installation scanner outputs InstallationScanResult
- The analyzer turns SystemInfo + InstallationScanResult into a SystemReport
- Reports render them for humans or dump them as JSON
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone
from pathlib import Path
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from cudascope.engine.versions import compare_versions

MIN_REQUIRED_SPACE_GB: int = 6


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class GpuVendor(str, enum.Enum):
    """Known GPU vendors."""

    NVIDIA = "nvidia"
    AMD = "amd"
    INTEL = "intel"
    UNKNOWN = "unknown"


class PackageManager(str, enum.Enum):
    APT = "apt"
    YUM = "yum"
    DNF = "dnf"
    PACMAN = "pacman"
    ZYPPER = "zypper"
    CHOCOLATEY = "chocolatey"
    WINGET = "winget"
    UNKNOWN = "unknown"


class LinuxFlavor(str, enum.Enum):
    UBUNTU = "ubuntu"
    DEBIAN = "debian"
    CENTOS = "centos"
    RHEL = "rhel"
    FEDORA = "fedora"
    ARCH = "arch"
    SUSE = "suse"
    GENERIC = "generic"


class WslVersion(str, enum.Enum):
    WSL1 = "wsl1"
    WSL2 = "wsl2"
    NONE = "none"


class ConflictType(str, enum.Enum):
    """Kinds of cross-installation conflicts."""

    MULTIPLE_VERSIONS = "multiple_versions"
    ENVIRONMENT_MISMATCH = "environment_mismatch"

    @property
    def label(self) -> str:
        return {
            ConflictType.MULTIPLE_VERSIONS: "Multiple Versions in PATH",
            ConflictType.ENVIRONMENT_MISMATCH: "Environment Variable Mismatch",
        }[self]


class CompatibilityStatus(str, enum.Enum):
    """Overall verdict of a compatibility analysis."""

    COMPATIBLE = "compatible"
    COMPATIBLE_WITH_WARNINGS = "compatible_with_warnings"
    PREREQUISITES_MISSING = "prerequisites_missing"
    INCOMPATIBLE = "incompatible"
    # Reserved: detection could not run at all.
    UNKNOWN = "unknown"

    @property
    def label(self) -> str:
        return {
            CompatibilityStatus.COMPATIBLE: "Compatible",
            CompatibilityStatus.COMPATIBLE_WITH_WARNINGS: "Compatible (with warnings)",
            CompatibilityStatus.PREREQUISITES_MISSING: "Compatible (prerequisites missing)",
            CompatibilityStatus.INCOMPATIBLE: "Incompatible",
            CompatibilityStatus.UNKNOWN: "Unknown",
        }[self]


# ---------------------------------------------------------------------------
# Hardware records
# ---------------------------------------------------------------------------


class GpuRecord(BaseModel):
    """A single detected GPU. Immutable once built."""

    model_config = ConfigDict(frozen=True)

    name: str
    vendor: GpuVendor
    # Raw vendor label when vendor is UNKNOWN
    vendor_name: Optional[str] = None
    memory_mb: Optional[int] = None
    compute_capability: Optional[tuple[int, int]] = None
    driver_version: Optional[str] = None
    pci_id: Optional[str] = None

    @model_validator(mode="after")
    def capability_requires_nvidia(self) -> "GpuRecord":
        if self.compute_capability is not None and self.vendor != GpuVendor.NVIDIA:
            raise ValueError("compute_capability is only defined for NVIDIA GPUs")
        return self

    def is_cuda_compatible(self) -> bool:
        """True for an NVIDIA GPU whose compute capability is known."""
        return self.vendor == GpuVendor.NVIDIA and self.compute_capability is not None

    def supports_compute_capability(self, required: tuple[int, int]) -> bool:
        """True if the GPU's compute capability is at least ``required``."""
        if self.compute_capability is None:
            return False
        return tuple(self.compute_capability) >= tuple(required)


class DriverRecord(BaseModel):
    """The installed NVIDIA driver."""

    model_config = ConfigDict(frozen=True)

    version: str
    is_installed: bool = True
    supports_cuda: bool = True
    max_toolkit_version: Optional[str] = None
    source: Optional[str] = None

    @model_validator(mode="after")
    def no_max_version_without_cuda(self) -> "DriverRecord":
        if not self.supports_cuda and self.max_toolkit_version is not None:
            raise ValueError("max_toolkit_version requires supports_cuda")
        return self

    def supports_toolkit_version(self, toolkit_version: str) -> bool:
        """True if this driver can run the given toolkit version."""
        if not self.supports_cuda or self.max_toolkit_version is None:
            return False
        return compare_versions(toolkit_version, self.max_toolkit_version) <= 0


class CompilerRecord(BaseModel):
    """A host C/C++ compiler usable by nvcc."""

    model_config = ConfigDict(frozen=True)

    name: str
    version: str
    is_compatible: bool
    path: Optional[str] = None
    is_in_path: bool = True


class LinuxOs(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["linux"] = "linux"
    flavor: LinuxFlavor
    # Version for named flavors, distribution id/name for GENERIC
    detail: str = ""


class WindowsOs(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["windows"] = "windows"
    version: str
    build: str = "unknown"


OsType = Annotated[Union[LinuxOs, WindowsOs], Field(discriminator="kind")]


class DistroRecord(BaseModel):
    """Operating system / distribution information."""

    model_config = ConfigDict(frozen=True)

    os_type: OsType
    name: str
    version: str
    kernel_version: Optional[str] = None
    package_manager: PackageManager = PackageManager.UNKNOWN

    @property
    def display_name(self) -> str:
        """Name and version without repeating the name."""
        if not self.version:
            return self.name
        if self.version.startswith(self.name):
            return self.version
        return f"{self.name} {self.version}".strip()


class StorageRecord(BaseModel):
    """Free space at the toolkit install location."""

    model_config = ConfigDict(frozen=True)

    available_space_gb: int
    total_space_gb: int
    install_path: str
    has_sufficient_space: bool

    @classmethod
    def build(
        cls,
        available_space_gb: int,
        total_space_gb: int,
        install_path: str,
        required_space_gb: int = MIN_REQUIRED_SPACE_GB,
    ) -> "StorageRecord":
        return cls(
            available_space_gb=available_space_gb,
            total_space_gb=total_space_gb,
            install_path=install_path,
            has_sufficient_space=available_space_gb >= required_space_gb,
        )

    def check_space_requirement(self, required_gb: int) -> bool:
        return self.available_space_gb >= required_gb


class SecureBootDetails(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    setup_mode: Optional[bool] = None
    vendor_keys: Optional[bool] = None
    platform_key_present: Optional[bool] = None


class PathConfiguration(BaseModel):
    """How the toolkit appears on PATH and in CUDA_HOME."""

    model_config = ConfigDict(frozen=True)

    cuda_in_path: bool = False
    conflicting_paths: list[str] = Field(default_factory=list)
    path_entries: list[str] = Field(default_factory=list)
    cuda_home_set: bool = False
    cuda_home_value: Optional[str] = None

    def get_recommendations(self) -> list[str]:
        recommendations: list[str] = []
        if self.conflicting_paths:
            recommendations.append(
                "Remove conflicting CUDA entries from PATH: " + ", ".join(self.conflicting_paths)
            )
        if not self.cuda_in_path:
            recommendations.append("Add the CUDA bin directory to PATH after installation")
        if not self.cuda_home_set:
            recommendations.append("Set CUDA_HOME to the CUDA installation directory")
        return recommendations


class SecurityRecord(BaseModel):
    """Privilege, firmware, and PATH posture."""

    model_config = ConfigDict(frozen=True)

    secure_boot_enabled: bool = False
    has_admin_privileges: bool = False
    can_install_drivers: bool = False
    uefi_mode: bool = False
    secure_boot: SecureBootDetails = Field(default_factory=SecureBootDetails)
    path_configuration: PathConfiguration = Field(default_factory=PathConfiguration)

    def allows_driver_installation(self) -> bool:
        return self.has_admin_privileges and self.can_install_drivers

    def has_path_conflicts(self) -> bool:
        return bool(self.path_configuration.conflicting_paths)

    def get_security_issues(self) -> list[str]:
        """Human-readable issues.

        Issues containing "required" or "Cannot" block installation; the
        analyzer reports those as errors and the rest as warnings.
        """
        issues: list[str] = []
        if not self.has_admin_privileges:
            issues.append("Administrator/root privileges required to install CUDA")
        if self.secure_boot_enabled:
            issues.append(
                "Secure Boot is enabled; unsigned NVIDIA kernel modules may fail to load"
            )
        if self.secure_boot.setup_mode:
            issues.append("Secure Boot is in setup mode; platform keys are not enrolled")
        return issues


class WslRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_wsl: bool = False
    version: WslVersion = WslVersion.NONE
    distribution: str = ""


class VisualStudioRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_installed: bool
    name: str
    version: str
    install_path: Path
    has_cpp_tools: bool = False


# ---------------------------------------------------------------------------
# Installation records
# ---------------------------------------------------------------------------


class ComponentRecord(BaseModel):
    """A file belonging to a toolkit installation."""

    name: str
    version: str
    path: Path
    required: bool


class InstallationRecord(BaseModel):
    """A toolkit installation found on disk."""

    version: str
    install_path: Path
    toolkit_path: Path
    runtime_version: Optional[str] = None
    driver_version: Optional[str] = None
    install_date: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    size_bytes: int = 0
    is_active: bool = False
    components: list[ComponentRecord] = Field(default_factory=list)

    @classmethod
    def at(cls, version: str, install_path: Path) -> "InstallationRecord":
        """New installation with the standard ``bin`` toolkit subpath."""
        return cls(version=version, install_path=install_path, toolkit_path=install_path / "bin")

    def is_valid(self) -> bool:
        """Check the installation on disk. Not cached."""
        if not self.install_path.exists() or not self.toolkit_path.exists():
            return False
        return all(c.path.exists() for c in self.components if c.required)

    def missing_components(self) -> list[ComponentRecord]:
        return [c for c in self.components if c.required and not c.path.exists()]

    def nvcc_path(self, windows: bool = False) -> Path:
        return self.toolkit_path / ("nvcc.exe" if windows else "nvcc")

    def lib_path(self, windows: bool = False) -> Path:
        if windows:
            return self.install_path / "lib" / "x64"
        return self.install_path / "lib64"


class PathInstallation(BaseModel):
    """The toolkit compiler reachable through PATH."""

    nvcc_version: Optional[str] = None
    nvcc_path: Optional[Path] = None


class InstallationConflict(BaseModel):
    conflict_type: ConflictType
    description: str
    affected_installations: list[str] = Field(default_factory=list)
    resolution_suggestion: str


class InstallationScanResult(BaseModel):
    installations: list[InstallationRecord] = Field(default_factory=list)
    conflicts: list[InstallationConflict] = Field(default_factory=list)
    path_installation: Optional[PathInstallation] = None


# ---------------------------------------------------------------------------
# Aggregate report
# ---------------------------------------------------------------------------


class SystemInfo(BaseModel):
    """Everything the probes found on one machine."""

    distro: DistroRecord
    gpu: Optional[GpuRecord] = None
    gpus: list[GpuRecord] = Field(default_factory=list)
    driver: Optional[DriverRecord] = None
    compiler: Optional[CompilerRecord] = None
    storage: StorageRecord
    security: SecurityRecord
    wsl: Optional[WslRecord] = None
    visual_studio: Optional[VisualStudioRecord] = None


class SystemReport(BaseModel):
    """Result of one doctor run. Read-only after construction."""

    model_config = ConfigDict(frozen=True)

    system_info: SystemInfo
    installation_scan: InstallationScanResult
    status: CompatibilityStatus
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    generated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)
