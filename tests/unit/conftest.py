"""Shared fixtures: built-in registry and ready-made probe records."""

from __future__ import annotations

from pathlib import Path

import pytest

from cudascope.engine.models import (
    CompilerRecord,
    DistroRecord,
    DriverRecord,
    GpuRecord,
    GpuVendor,
    InstallationScanResult,
    LinuxFlavor,
    LinuxOs,
    PackageManager,
    PathConfiguration,
    SecurityRecord,
    StorageRecord,
    SystemInfo,
)
from cudascope.kb.registry import BuiltinSource, CompatibilityRegistry


@pytest.fixture(scope="session")
def registry() -> CompatibilityRegistry:
    """The bundled registry, loaded once per session."""
    return BuiltinSource().load()


@pytest.fixture()
def ubuntu() -> DistroRecord:
    return DistroRecord(
        os_type=LinuxOs(flavor=LinuxFlavor.UBUNTU, detail="22.04.3 LTS (Jammy Jellyfish)"),
        name="Ubuntu",
        version="22.04.3 LTS (Jammy Jellyfish)",
        kernel_version="6.5.0-14-generic",
        package_manager=PackageManager.APT,
    )


@pytest.fixture()
def rtx_4090() -> GpuRecord:
    return GpuRecord(
        name="NVIDIA GeForce RTX 4090",
        vendor=GpuVendor.NVIDIA,
        memory_mb=24564,
        compute_capability=(8, 9),
        driver_version="550.54.14",
        pci_id="00000000:01:00.0",
    )


@pytest.fixture()
def driver_550() -> DriverRecord:
    return DriverRecord(
        version="550.54.14",
        max_toolkit_version="12.4",
        source="nvidia-smi",
    )


@pytest.fixture()
def gcc_11() -> CompilerRecord:
    return CompilerRecord(name="GCC", version="11.4.0", is_compatible=True, path="/usr/bin/gcc")


@pytest.fixture()
def roomy_storage() -> StorageRecord:
    return StorageRecord.build(
        available_space_gb=120, total_space_gb=500, install_path="/usr/local/cuda"
    )


@pytest.fixture()
def root_security() -> SecurityRecord:
    """Root user, no Secure Boot, toolkit on PATH and CUDA_HOME set."""
    return SecurityRecord(
        has_admin_privileges=True,
        can_install_drivers=True,
        uefi_mode=True,
        path_configuration=PathConfiguration(
            cuda_in_path=True,
            path_entries=["/usr/local/cuda/bin", "/usr/bin"],
            cuda_home_set=True,
            cuda_home_value="/usr/local/cuda",
        ),
    )


@pytest.fixture()
def healthy_system(ubuntu, rtx_4090, driver_550, gcc_11, roomy_storage, root_security) -> SystemInfo:
    return SystemInfo(
        distro=ubuntu,
        gpu=rtx_4090,
        gpus=[rtx_4090],
        driver=driver_550,
        compiler=gcc_11,
        storage=roomy_storage,
        security=root_security,
    )


@pytest.fixture()
def empty_scan() -> InstallationScanResult:
    return InstallationScanResult()


def _make_toolkit(root: Path, windows: bool = False, runtime: bool = True) -> Path:
    """Create a minimal toolkit layout (nvcc + runtime library) under ``root``."""
    bin_dir = root / "bin"
    bin_dir.mkdir(parents=True, exist_ok=True)
    (bin_dir / ("nvcc.exe" if windows else "nvcc")).write_text("#!/bin/sh\n")
    if runtime:
        if windows:
            (bin_dir / "cudart64_12.dll").write_bytes(b"\0" * 16)
        else:
            lib_dir = root / "lib64"
            lib_dir.mkdir(exist_ok=True)
            (lib_dir / "libcudart.so").write_bytes(b"\0" * 16)
    return root


@pytest.fixture()
def make_toolkit():
    return _make_toolkit
