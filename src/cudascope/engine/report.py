"""Report formatting for SystemReport.

Two output modes:
- JSON: structured, machine-readable (round-trips through SystemReport)
- Console: human-readable Rich panels with a prefix on every list item
"""

from __future__ import annotations

from io import StringIO

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from cudascope.engine.models import (
    CompatibilityStatus,
    GpuRecord,
    LinuxOs,
    SystemReport,
)
from cudascope.engine.versions import format_capability

# Status -> Rich colour mapping
_STATUS_STYLES: dict[CompatibilityStatus, str] = {
    CompatibilityStatus.COMPATIBLE: "bold green",
    CompatibilityStatus.COMPATIBLE_WITH_WARNINGS: "bold yellow",
    CompatibilityStatus.PREREQUISITES_MISSING: "bold yellow",
    CompatibilityStatus.INCOMPATIBLE: "bold red",
    CompatibilityStatus.UNKNOWN: "bold blue",
}

ERROR_PREFIX = "✗"
WARNING_PREFIX = "⚠"
RECOMMENDATION_PREFIX = "→"

_GB = 1024**3


def format_report_json(report: SystemReport) -> str:
    """Serialize a SystemReport to a pretty-printed JSON string.

    The output round-trips cleanly via
    ``SystemReport.model_validate_json()``.
    """
    return report.model_dump_json(indent=2)


def format_report_console(report: SystemReport) -> str:
    """Render a SystemReport as a human-readable Rich-formatted string.

    Sections: Status -> System -> Installations -> PATH toolkit
    -> Conflicts -> Errors -> Warnings -> Recommendations.
    """
    buf = StringIO()
    console = Console(file=buf, width=100, force_terminal=False, no_color=True)

    _render_status(console, report)
    _render_system(console, report)
    _render_installations(console, report)
    _render_path_toolkit(console, report)
    _render_conflicts(console, report)
    _render_messages(console, "Errors", report.errors, ERROR_PREFIX, "red")
    _render_messages(console, "Warnings", report.warnings, WARNING_PREFIX, "yellow")
    _render_messages(
        console, "Recommendations", report.recommendations, RECOMMENDATION_PREFIX, "blue"
    )

    return buf.getvalue()


def _render_status(console: Console, report: SystemReport) -> None:
    style = _STATUS_STYLES.get(report.status, "")
    text = Text()
    text.append("Overall status: ")
    text.append(report.status.label, style=style)
    text.append(f"\nGenerated: {report.generated_at.strftime('%Y-%m-%d %H:%M:%S %Z').strip()}")
    border = style.split()[-1] if style else "white"
    console.print(Panel(text, title="CUDA Compatibility Report", border_style=border))


def _gpu_line(gpu: GpuRecord) -> str:
    parts: list[str] = []
    if gpu.memory_mb:
        parts.append(f"{gpu.memory_mb} MB")
    if gpu.compute_capability is not None:
        parts.append(f"compute {format_capability(gpu.compute_capability)}")
    extras = f" ({', '.join(parts)})" if parts else ""
    return f"{gpu.name}{extras}"


def _render_system(console: Console, report: SystemReport) -> None:
    """Render the system information table."""
    info = report.system_info

    table = Table(show_header=False, box=None, padding=(0, 1))
    table.add_column("key", style="dim", width=16)
    table.add_column("value")

    table.add_row("OS", info.distro.display_name)
    if isinstance(info.distro.os_type, LinuxOs):
        table.add_row("Flavor", info.distro.os_type.flavor.value)
    if info.distro.kernel_version:
        table.add_row("Kernel", info.distro.kernel_version)
    table.add_row("Package manager", info.distro.package_manager.value)

    if info.gpus:
        for index, gpu in enumerate(info.gpus):
            label = "GPU" if index == 0 else ""
            marker = " *" if info.gpu is not None and gpu == info.gpu and len(info.gpus) > 1 else ""
            table.add_row(label, _gpu_line(gpu) + marker)
    elif info.gpu is not None:
        table.add_row("GPU", _gpu_line(info.gpu))
    else:
        table.add_row("GPU", "Not detected")

    if info.driver is not None:
        driver = info.driver.version
        if info.driver.max_toolkit_version:
            driver += f" (CUDA up to {info.driver.max_toolkit_version})"
        table.add_row("Driver", driver)
    else:
        table.add_row("Driver", "Not detected")

    if info.compiler is not None:
        status = "compatible" if info.compiler.is_compatible else "may be incompatible"
        table.add_row("Compiler", f"{info.compiler.name} {info.compiler.version} ({status})")
    else:
        table.add_row("Compiler", "Not detected")

    table.add_row(
        "Storage",
        f"{info.storage.available_space_gb} GB free of {info.storage.total_space_gb} GB "
        f"at {info.storage.install_path}",
    )
    security = info.security
    table.add_row(
        "Security",
        f"admin={_yes_no(security.has_admin_privileges)}, "
        f"uefi={_yes_no(security.uefi_mode)}, "
        f"secure boot={_yes_no(security.secure_boot_enabled)}",
    )
    if info.wsl is not None and info.wsl.is_wsl:
        wsl = info.wsl.version.value.upper()
        if info.wsl.distribution:
            wsl += f" ({info.wsl.distribution})"
        table.add_row("WSL", wsl)
    if info.visual_studio is not None:
        table.add_row("Visual Studio", f"{info.visual_studio.name} {info.visual_studio.version}")

    console.print(Panel(table, title="System Information", border_style="cyan"))


def _yes_no(value: bool) -> str:
    return "yes" if value else "no"


def _render_installations(console: Console, report: SystemReport) -> None:
    installations = report.installation_scan.installations
    if not installations:
        console.print(
            Panel("No existing CUDA installations found", title="Installations", border_style="dim")
        )
        return

    table = Table(box=None, padding=(0, 1))
    table.add_column("Version")
    table.add_column("Path")
    table.add_column("Active")
    table.add_column("Valid")
    table.add_column("Size", justify="right")
    for inst in installations:
        table.add_row(
            inst.version,
            str(inst.install_path),
            _yes_no(inst.is_active),
            _yes_no(inst.is_valid()),
            f"{inst.size_bytes // _GB} GB",
        )
    console.print(Panel(table, title="Installations", border_style="cyan"))


def _render_path_toolkit(console: Console, report: SystemReport) -> None:
    path_install = report.installation_scan.path_installation
    if path_install is None:
        return
    version = path_install.nvcc_version or "unknown"
    location = str(path_install.nvcc_path) if path_install.nvcc_path else "unknown location"
    console.print(
        Panel(f"nvcc {version} at {location}", title="Toolkit on PATH", border_style="cyan")
    )


def _render_conflicts(console: Console, report: SystemReport) -> None:
    for conflict in report.installation_scan.conflicts:
        table = Table(show_header=False, box=None, padding=(0, 1))
        table.add_column("key", style="dim", width=12)
        table.add_column("value")
        table.add_row("Description", conflict.description)
        if conflict.affected_installations:
            table.add_row("Affected", ", ".join(conflict.affected_installations))
        table.add_row("Fix:", conflict.resolution_suggestion)
        console.print(
            Panel(table, title=f"Conflict: {conflict.conflict_type.label}", border_style="yellow")
        )


def _render_messages(
    console: Console, title: str, messages: list[str], prefix: str, border: str
) -> None:
    if not messages:
        return
    body = "\n".join(f"{prefix} {message}" for message in messages)
    console.print(Panel(body, title=title, border_style=border))
