"""Compatibility analyzer: turn probe records into a verdict.

A pure function of its inputs. Checks run in a fixed order so the
error/warning/recommendation lists read the same way on every run:

  WSL -> Visual Studio (Windows) -> GPU -> driver -> compiler -> storage
  -> security and PATH -> existing installations -> conflicts
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from cudascope.engine.models import (
    CompatibilityStatus,
    GpuVendor,
    InstallationScanResult,
    SystemInfo,
)
from cudascope.engine.versions import compare_versions, format_capability
from cudascope.kb.registry import CompatibilityRegistry

# Oldest compute capability current toolkits still target.
MIN_COMPUTE_CAPABILITY: tuple[int, int] = (5, 0)

# Error texts that mean "software prerequisite missing", not "hardware incapable".
SETUP_ONLY_MARKERS = ("required", "compiler", "Cannot install")
BLOCKING_ISSUE_MARKERS = ("required", "Cannot")


class AnalysisResult(BaseModel):
    """Verdict plus the ordered messages that explain it."""

    model_config = ConfigDict(frozen=True)

    status: CompatibilityStatus
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)


def analyze_compatibility(
    system_info: SystemInfo,
    scan: InstallationScanResult,
    registry: Optional[CompatibilityRegistry] = None,
) -> AnalysisResult:
    """Evaluate every check and classify the system.

    Args:
        system_info: Records from all probes.
        scan: Installation scan result.
        registry: Enables the per-GPU minimum driver check when given.

    Returns:
        AnalysisResult with status and ordered message lists.
    """
    errors: list[str] = []
    warnings: list[str] = []
    recommendations: list[str] = []

    # --- Virtualization ---
    wsl = system_info.wsl
    if wsl is not None and wsl.is_wsl:
        recommendations.append(f"WSL Environment detected ({wsl.version.value.upper()})")
        recommendations.append(
            "Ensure NVIDIA Drivers are installed on the Windows HOST, not inside WSL"
        )

    # --- Build tools (Windows) ---
    if system_info.distro.os_type.kind == "windows":
        vs = system_info.visual_studio
        if vs is not None and vs.is_installed:
            recommendations.append(f"Visual Studio detected: {vs.name} ({vs.version})")
        else:
            warnings.append(
                "Visual Studio C++ Build Tools not found (Required for compiling CUDA kernels)"
            )
            recommendations.append(
                "Install Visual Studio with 'Desktop development with C++' workload"
            )

    # --- GPU ---
    gpu = system_info.gpu
    if gpu is None:
        errors.append("No GPU detected")
    elif gpu.vendor != GpuVendor.NVIDIA:
        errors.append("No CUDA-compatible GPU detected")
    elif gpu.compute_capability is None:
        warnings.append(f"Compute capability of GPU {gpu.name} is unknown")
        recommendations.append(f"GPU {gpu.name} detected")
    else:
        capability = format_capability(gpu.compute_capability)
        recommendations.append(f"GPU {gpu.name} detected with compute capability {capability}")
        if not gpu.supports_compute_capability(MIN_COMPUTE_CAPABILITY):
            warnings.append(
                f"GPU {gpu.name} compute capability {capability} is below "
                f"{format_capability(MIN_COMPUTE_CAPABILITY)}; current CUDA releases no longer support it"
            )

    # --- Driver ---
    driver = system_info.driver
    if driver is None:
        errors.append("No NVIDIA driver detected")
        recommendations.append("Install NVIDIA drivers before installing CUDA")
    elif not driver.version:
        warnings.append("NVIDIA driver version could not be determined")
    else:
        recommendations.append(f"NVIDIA driver {driver.version} detected")
        if driver.max_toolkit_version:
            recommendations.append(
                f"Driver {driver.version} supports CUDA up to {driver.max_toolkit_version}"
            )
        if registry is not None and gpu is not None:
            arch = registry.lookup_architecture(gpu.name)
            if (
                arch is not None
                and arch.min_driver_version
                and compare_versions(driver.version, arch.min_driver_version) < 0
            ):
                warnings.append(
                    f"GPU {gpu.name} ({arch.architecture}) requires driver "
                    f"{arch.min_driver_version} or newer; found {driver.version}"
                )
                recommendations.append(
                    f"Update the NVIDIA driver to {arch.min_driver_version} or newer"
                )

    # --- Compiler ---
    compiler = system_info.compiler
    if compiler is None:
        errors.append("No compatible compiler detected")
        recommendations.append("Install a compatible compiler (GCC on Linux, MSVC on Windows)")
    elif compiler.is_compatible:
        recommendations.append(f"Compatible compiler {compiler.name} {compiler.version} detected")
    else:
        warnings.append(f"Compiler {compiler.name} {compiler.version} may not be compatible with CUDA")

    # --- Storage ---
    storage = system_info.storage
    if storage.total_space_gb == 0 and storage.available_space_gb == 0:
        warnings.append(f"Free disk space at {storage.install_path} could not be determined")
    elif not storage.has_sufficient_space:
        errors.append(f"Insufficient disk space. Available: {storage.available_space_gb} GB")
    else:
        recommendations.append(
            f"Sufficient disk space available: {storage.available_space_gb} GB"
        )

    # --- Security and PATH ---
    security = system_info.security
    for issue in security.get_security_issues():
        if any(marker in issue for marker in BLOCKING_ISSUE_MARKERS):
            errors.append(issue)
        else:
            warnings.append(issue)

    if not security.has_admin_privileges:
        recommendations.append("Run as administrator/root for CUDA installation")
    if security.secure_boot_enabled:
        recommendations.append("Consider disabling Secure Boot if driver installation fails")

    recommendations.extend(security.path_configuration.get_recommendations())
    if security.has_path_conflicts():
        warnings.append("Conflicting CUDA paths detected in PATH environment variable")

    # --- Existing installations ---
    if scan.installations:
        recommendations.append(
            f"{len(scan.installations)} existing CUDA installation(s) detected"
        )
        for installation in scan.installations:
            if not installation.is_valid():
                warnings.append(
                    f"CUDA {installation.version} installation at "
                    f"{installation.install_path} appears to be incomplete"
                )

    # --- Conflicts ---
    for conflict in scan.conflicts:
        warnings.append(f"Conflict detected: {conflict.description}")
        recommendations.append(conflict.resolution_suggestion)

    status = classify(
        errors,
        warnings,
        hardware_present=gpu is not None and driver is not None,
    )
    return AnalysisResult(
        status=status,
        errors=errors,
        warnings=warnings,
        recommendations=recommendations,
    )


def classify(errors: list[str], warnings: list[str], hardware_present: bool) -> CompatibilityStatus:
    """Five-way verdict from the collected messages.

    Errors only downgrade to PREREQUISITES_MISSING when a GPU and a driver
    were both found and every error names a missing setup prerequisite.
    """
    if errors:
        if hardware_present and all(
            any(marker in error for marker in SETUP_ONLY_MARKERS) for error in errors
        ):
            return CompatibilityStatus.PREREQUISITES_MISSING
        return CompatibilityStatus.INCOMPATIBLE
    if warnings:
        return CompatibilityStatus.COMPATIBLE_WITH_WARNINGS
    return CompatibilityStatus.COMPATIBLE
