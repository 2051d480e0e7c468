"""Doctor: orchestrator that wires registry + probes + scanner + analyzer.

This is the single entry point consumers call. It loads the registry,
runs every probe for the current platform, scans for installations,
analyzes the result and returns a SystemReport.

Supports dependency injection for testing: pass a pre-built registry,
platform, system info or scan result to avoid touching the machine.
"""

from __future__ import annotations

import concurrent.futures
import logging
import time
from typing import Any, Callable, Optional

from cudascope.engine.analyzer import analyze_compatibility
from cudascope.engine.models import (
    InstallationScanResult,
    SecurityRecord,
    StorageRecord,
    SystemInfo,
    SystemReport,
)
from cudascope.errors import CudascopeError, DistroDetectionError
from cudascope.hardware.compiler import select_compiler
from cudascope.hardware.gpu import select_primary_gpu
from cudascope.hardware.platforms import Platform, Probe, get_platform
from cudascope.kb.registry import CompatibilityRegistry, load_registry
from cudascope.settings import Settings

logger = logging.getLogger(__name__)

# Probes whose failure aborts the run instead of degrading to "not detected".
_REQUIRED_PROBES = frozenset({"distro"})


def generate_report(
    platform: Optional[Platform] = None,
    registry: Optional[CompatibilityRegistry] = None,
    settings: Optional[Settings] = None,
    system_info: Optional[SystemInfo] = None,
    scan: Optional[InstallationScanResult] = None,
) -> SystemReport:
    """Run a full compatibility check of this machine.

    Args:
        platform: Probe set to use, or None for the running platform.
        registry: Compatibility registry, or None to load the cascade.
        settings: Run settings, or None to read CUDASCOPE_* variables.
        system_info: Pre-built probe results; skips the probes.
        scan: Pre-built installation scan; skips the scanner.

    Returns:
        SystemReport with the verdict and ordered messages.

    Raises:
        RegistryError: If no registry source can be loaded.
        UnsupportedPlatformError: On an operating system without a probe set.
        DistroDetectionError: If the operating system cannot be identified.
    """
    total_start = time.monotonic()
    if settings is None:
        settings = Settings.from_env()

    # --- Phase 1: Registry ---
    if registry is None:
        registry = load_registry(
            cache_path=settings.registry_cache_path,
            max_age_seconds=settings.registry_max_age_days * 24 * 60 * 60,
        )

    # --- Phase 2: Probes + scanner ---
    if system_info is None or scan is None:
        if platform is None:
            platform = get_platform()
        probes = platform.probes(registry, settings)
        if system_info is not None:
            probes = {"installations": probes["installations"]}
        if scan is not None:
            probes.pop("installations", None)

        results = run_probes(
            probes,
            fallbacks=_fallbacks(settings, platform),
            parallel=settings.parallel,
            probe_timeout=settings.probe_timeout,
        )
        if system_info is None:
            system_info = build_system_info(results)
        if scan is None:
            scan = results["installations"]

    # --- Phase 3: Analysis ---
    analysis = analyze_compatibility(system_info, scan, registry)
    logger.debug(
        "Report generated in %.2fs: %s", time.monotonic() - total_start, analysis.status.value
    )

    return SystemReport(
        system_info=system_info,
        installation_scan=scan,
        status=analysis.status,
        errors=analysis.errors,
        warnings=analysis.warnings,
        recommendations=analysis.recommendations,
    )


def build_system_info(results: dict[str, Any]) -> SystemInfo:
    """Assemble SystemInfo, choosing the primary GPU and compiler."""
    gpus = results.get("gpus") or []
    return SystemInfo(
        distro=results["distro"],
        gpu=select_primary_gpu(gpus),
        gpus=gpus,
        driver=results.get("driver"),
        compiler=select_compiler(results.get("compilers") or []),
        storage=results["storage"],
        security=results["security"],
        wsl=results.get("wsl"),
        visual_studio=results.get("visual_studio"),
    )


# ---------------------------------------------------------------------------
# Probe execution
# ---------------------------------------------------------------------------


def _fallbacks(settings: Settings, platform: Platform) -> dict[str, Callable[[], Any]]:
    """Values used when a probe fails or times out."""
    install_path = str(settings.install_path or platform.default_install_path())
    return {
        "gpus": list,
        "driver": lambda: None,
        "compilers": list,
        "storage": lambda: StorageRecord.build(0, 0, install_path),
        "security": SecurityRecord,
        "wsl": lambda: None,
        "visual_studio": lambda: None,
        "installations": InstallationScanResult,
    }


def _settle(name: str, error: BaseException, fallbacks: dict[str, Callable[[], Any]]) -> Any:
    if name in _REQUIRED_PROBES:
        if isinstance(error, CudascopeError):
            raise error
        raise DistroDetectionError(f"{name} probe failed: {error}") from error
    logger.debug("Probe '%s' failed, treating as not detected: %s", name, error)
    return fallbacks[name]()


def run_probes(
    probes: dict[str, Probe],
    fallbacks: dict[str, Callable[[], Any]],
    parallel: bool = False,
    probe_timeout: float = 60.0,
) -> dict[str, Any]:
    """Run every probe and return results keyed by probe name.

    Sequential mode runs probes in dict order. Parallel mode submits all of
    them to a thread pool and waits for every one to finish or time out; a
    probe still running after ``probe_timeout`` is discarded as not
    detected. Either way, nothing is returned until all probes settle.
    """
    results: dict[str, Any] = {}

    if not parallel:
        for name, probe in probes.items():
            try:
                results[name] = probe()
            except (CudascopeError, OSError) as e:
                results[name] = _settle(name, e, fallbacks)
        return results

    executor = concurrent.futures.ThreadPoolExecutor(
        max_workers=max(1, len(probes)), thread_name_prefix="cudascope-probe"
    )
    try:
        future_to_name = {executor.submit(probe): name for name, probe in probes.items()}
        _done, not_done = concurrent.futures.wait(future_to_name, timeout=probe_timeout)

        for future, name in future_to_name.items():
            if future in not_done:
                future.cancel()
                results[name] = _settle(
                    name, TimeoutError(f"exceeded {probe_timeout:g}s"), fallbacks
                )
                continue
            try:
                results[name] = future.result()
            except (CudascopeError, OSError) as e:
                results[name] = _settle(name, e, fallbacks)
    finally:
        # Timed-out probes keep their thread until their own command timeout.
        executor.shutdown(wait=False, cancel_futures=True)

    # Preserve probe order for deterministic report assembly.
    return {name: results[name] for name in probes}
