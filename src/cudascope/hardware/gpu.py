"""GPU probe: list display adapters and resolve their compute capability.

nvidia-smi's CSV query is tried first. When it is missing or returns no
rows, the platform enumeration tool is parsed instead (``lspci`` on Linux,
``wmic`` on Windows). Filtering for CUDA-capable GPUs is left to callers.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional, Sequence

from cudascope.engine.models import GpuRecord, GpuVendor
from cudascope.errors import DetectionError, GpuDetectionError, ParseError
from cudascope.hardware.commands import DEFAULT_TIMEOUT, run_checked
from cudascope.hardware.driver import decode_windows_driver_version
from cudascope.kb.registry import CompatibilityRegistry

logger = logging.getLogger(__name__)

GpuStrategy = Callable[[CompatibilityRegistry, float], list[GpuRecord]]

NVIDIA_SMI_QUERY = [
    "nvidia-smi",
    "--query-gpu=name,memory.total,driver_version,pci.bus_id",
    "--format=csv,noheader,nounits",
]

_LSPCI_CLASSES = ("vga compatible controller", "3d controller", "display controller")


def detect_gpus(
    registry: CompatibilityRegistry,
    strategies: Optional[Sequence[GpuStrategy]] = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> list[GpuRecord]:
    """Return GPUs from the first strategy that finds any, else an empty list.

    Without ``strategies`` only nvidia-smi is queried; each platform passes
    its own enumeration fallback.
    """
    if strategies is None:
        strategies = [query_nvidia_smi]

    for strategy in strategies:
        try:
            gpus = strategy(registry, timeout)
        except DetectionError as e:
            logger.debug("GPU source %s failed: %s", strategy.__name__, e)
            continue
        if gpus:
            return gpus
    return []


def select_primary_gpu(gpus: Sequence[GpuRecord]) -> Optional[GpuRecord]:
    """First CUDA-compatible GPU, else first NVIDIA GPU, else the first one."""
    for gpu in gpus:
        if gpu.is_cuda_compatible():
            return gpu
    for gpu in gpus:
        if gpu.vendor == GpuVendor.NVIDIA:
            return gpu
    return gpus[0] if gpus else None


def classify_vendor(text: str) -> tuple[GpuVendor, Optional[str]]:
    """Classify a free-form adapter description by vendor substring.

    Returns the vendor and, for unknown vendors, the raw label.
    """
    lower = text.lower()
    if "nvidia" in lower:
        return GpuVendor.NVIDIA, None
    if "amd" in lower or "radeon" in lower or "advanced micro devices" in lower:
        return GpuVendor.AMD, None
    if "intel" in lower:
        return GpuVendor.INTEL, None
    label = text.strip().split(" ")[0] if text.strip() else "unknown"
    return GpuVendor.UNKNOWN, label


def _build_record(
    name: str,
    vendor: GpuVendor,
    registry: CompatibilityRegistry,
    vendor_name: Optional[str] = None,
    memory_mb: Optional[int] = None,
    driver_version: Optional[str] = None,
    pci_id: Optional[str] = None,
) -> GpuRecord:
    capability = registry.lookup_compute_capability(name) if vendor == GpuVendor.NVIDIA else None
    return GpuRecord(
        name=name,
        vendor=vendor,
        vendor_name=vendor_name,
        memory_mb=memory_mb,
        compute_capability=capability,
        driver_version=driver_version,
        pci_id=pci_id,
    )


def _optional_field(value: str) -> Optional[str]:
    value = value.strip()
    if not value or value.startswith("[") or value.lower() in ("n/a", "[n/a]"):
        return None
    return value


# ---------------------------------------------------------------------------
# nvidia-smi
# ---------------------------------------------------------------------------


def parse_nvidia_smi_csv(csv_output: str, registry: CompatibilityRegistry) -> list[GpuRecord]:
    """Parse ``name, memory.total, driver_version, pci.bus_id`` rows."""
    gpus: list[GpuRecord] = []
    for line in csv_output.strip().splitlines():
        line = line.strip()
        if not line:
            continue
        parts = [p.strip() for p in line.split(",")]
        if len(parts) < 3 or not parts[0]:
            continue

        memory = _optional_field(parts[1])
        try:
            memory_mb = int(float(memory)) if memory else None
        except ValueError:
            memory_mb = None

        gpus.append(
            _build_record(
                name=parts[0],
                vendor=GpuVendor.NVIDIA,
                registry=registry,
                memory_mb=memory_mb,
                driver_version=_optional_field(parts[2]),
                pci_id=_optional_field(parts[3]) if len(parts) > 3 else None,
            )
        )
    return gpus


def query_nvidia_smi(registry: CompatibilityRegistry, timeout: float = DEFAULT_TIMEOUT) -> list[GpuRecord]:
    output = run_checked(NVIDIA_SMI_QUERY, timeout=timeout)
    return parse_nvidia_smi_csv(output, registry)


# ---------------------------------------------------------------------------
# lspci (Linux)
# ---------------------------------------------------------------------------


def parse_lspci(output: str, registry: CompatibilityRegistry) -> list[GpuRecord]:
    """Parse display controllers out of plain ``lspci`` output.

    Line shape: ``01:00.0 VGA compatible controller: NVIDIA Corporation
    GA102 [GeForce RTX 3080] (rev a1)``. The bracketed marketing name is
    preferred when present.
    """
    gpus: list[GpuRecord] = []
    for line in output.splitlines():
        lower = line.lower()
        if not any(cls in lower for cls in _LSPCI_CLASSES):
            continue

        bus_id, _, rest = line.partition(" ")
        _, sep, description = rest.partition(": ")
        if not sep:
            continue
        description = description.split(" (rev ")[0].strip()

        name = description
        if "[" in description and "]" in description:
            bracketed = description[description.rfind("[") + 1 : description.rfind("]")]
            if bracketed:
                name = bracketed

        vendor, vendor_name = classify_vendor(description)
        if vendor == GpuVendor.NVIDIA and not name.lower().startswith("nvidia"):
            name = f"NVIDIA {name}"

        gpus.append(
            _build_record(
                name=name,
                vendor=vendor,
                registry=registry,
                vendor_name=vendor_name,
                pci_id=bus_id or None,
            )
        )
    return gpus


def query_lspci(registry: CompatibilityRegistry, timeout: float = DEFAULT_TIMEOUT) -> list[GpuRecord]:
    output = run_checked(["lspci"], timeout=timeout)
    return parse_lspci(output, registry)


# ---------------------------------------------------------------------------
# wmic (Windows)
# ---------------------------------------------------------------------------


def parse_wmic_list(output: str, registry: CompatibilityRegistry) -> list[GpuRecord]:
    """Parse ``wmic ... get ... /format:list`` blocks of Key=Value lines."""
    blocks: list[dict[str, str]] = []
    current: dict[str, str] = {}
    for raw in output.splitlines():
        line = raw.strip()
        if not line:
            if current:
                blocks.append(current)
                current = {}
            continue
        key, sep, value = line.partition("=")
        if sep:
            current[key.strip().lower()] = value.strip()
    if current:
        blocks.append(current)

    gpus: list[GpuRecord] = []
    for block in blocks:
        name = block.get("name", "")
        if not name:
            continue
        vendor, vendor_name = classify_vendor(name + " " + block.get("adaptercompatibility", ""))

        memory_mb = None
        ram = block.get("adapterram", "")
        if ram.isdigit():
            memory_mb = int(ram) // (1024 * 1024)

        driver_version = block.get("driverversion") or None
        if driver_version and vendor == GpuVendor.NVIDIA:
            try:
                driver_version = decode_windows_driver_version(driver_version)
            except ParseError:
                pass

        gpus.append(
            _build_record(
                name=name,
                vendor=vendor,
                registry=registry,
                vendor_name=vendor_name,
                memory_mb=memory_mb,
                driver_version=driver_version,
                pci_id=block.get("pnpdeviceid") or None,
            )
        )
    return gpus


def query_wmic(registry: CompatibilityRegistry, timeout: float = DEFAULT_TIMEOUT) -> list[GpuRecord]:
    output = run_checked(
        [
            "wmic",
            "path",
            "win32_VideoController",
            "get",
            "Name,AdapterCompatibility,AdapterRAM,DriverVersion,PNPDeviceID",
            "/format:list",
        ],
        timeout=timeout,
    )
    if not output.strip():
        raise GpuDetectionError("wmic returned no video controllers")
    return parse_wmic_list(output, registry)
