"""Security probe: privileges, firmware mode, Secure Boot, and PATH layout.

Every sub-check degrades instead of failing: an unreadable firmware
variable means "disabled / unknown", never an exception.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Mapping, Optional

from cudascope.engine.models import PathConfiguration, SecureBootDetails, SecurityRecord
from cudascope.errors import SecurityCheckError

logger = logging.getLogger(__name__)

EFI_DIR = Path("/sys/firmware/efi")
EFIVARS_DIR = EFI_DIR / "efivars"
_GLOBAL_VARIABLE_GUID = "8be4df61-93ca-11d2-aa0d-00e098032b8c"

CUDA_HOME_VAR = "CUDA_HOME"

# Path components that sit below a toolkit root.
_TOOLKIT_SUBDIRS = {"bin", "lib", "lib64", "libnvvp", "nvvm", "extras", "include"}


# ---------------------------------------------------------------------------
# Privileges
# ---------------------------------------------------------------------------


def has_admin_privileges(windows: bool = False) -> bool:
    """Effective uid 0 on POSIX, an elevated token on Windows.

    Raises:
        SecurityCheckError: If the privilege level cannot be queried.
    """
    if windows:
        try:
            import ctypes

            return bool(ctypes.windll.shell32.IsUserAnAdmin())
        except (AttributeError, OSError) as e:
            raise SecurityCheckError(f"IsUserAnAdmin failed: {e}") from e
    geteuid = getattr(os, "geteuid", None)
    if geteuid is None:
        raise SecurityCheckError("effective uid is not available")
    return geteuid() == 0


# ---------------------------------------------------------------------------
# Firmware (POSIX)
# ---------------------------------------------------------------------------


def read_efi_variable(name: str, efivars_dir: Path = EFIVARS_DIR) -> Optional[bytes]:
    """Payload of a global EFI variable, without the 4-byte attribute header."""
    path = efivars_dir / f"{name}-{_GLOBAL_VARIABLE_GUID}"
    try:
        data = path.read_bytes()
    except OSError:
        return None
    return data[4:] if len(data) > 4 else b""


def _flag(payload: Optional[bytes]) -> Optional[bool]:
    if payload is None or not payload:
        return None
    return payload[0] == 1


def read_secure_boot_posix(efivars_dir: Path = EFIVARS_DIR) -> SecureBootDetails:
    enabled = _flag(read_efi_variable("SecureBoot", efivars_dir))
    pk = read_efi_variable("PK", efivars_dir)
    return SecureBootDetails(
        enabled=bool(enabled),
        setup_mode=_flag(read_efi_variable("SetupMode", efivars_dir)),
        vendor_keys=_flag(read_efi_variable("VendorKeys", efivars_dir)),
        platform_key_present=None if pk is None else bool(pk),
    )


# ---------------------------------------------------------------------------
# Firmware (Windows)
# ---------------------------------------------------------------------------


def _read_hklm_dword(key_path: str, value_name: str) -> Optional[int]:
    import winreg

    try:
        with winreg.OpenKey(winreg.HKEY_LOCAL_MACHINE, key_path) as key:
            value, _ = winreg.QueryValueEx(key, value_name)
            return int(value)
    except (OSError, ValueError, TypeError):
        return None


def is_uefi_windows() -> bool:
    if os.environ.get("firmware_type", "").upper() == "UEFI":
        return True
    return _read_hklm_dword(r"SYSTEM\CurrentControlSet\Control", "PEFirmwareType") == 2


def read_secure_boot_windows() -> SecureBootDetails:
    enabled = _read_hklm_dword(
        r"SYSTEM\CurrentControlSet\Control\SecureBoot\State", "UEFISecureBootEnabled"
    )
    return SecureBootDetails(enabled=enabled == 1)


# ---------------------------------------------------------------------------
# PATH analysis
# ---------------------------------------------------------------------------


def _looks_like_toolkit(entry: str, nvcc_name: str) -> bool:
    lower = entry.lower()
    if "cuda" in lower or "nvidia gpu computing toolkit" in lower:
        return True
    try:
        return (Path(entry) / nvcc_name).is_file()
    except OSError:
        return False


def toolkit_root(entry: str) -> Path:
    """Strip known toolkit subdirectories: /usr/local/cuda/nvvm/bin -> /usr/local/cuda."""
    path = Path(entry)
    parts = path.parts
    for index, part in enumerate(parts):
        if index > 0 and part.lower() in _TOOLKIT_SUBDIRS:
            return Path(*parts[:index])
    return path


def _normalize(path: Path) -> Path:
    return Path(os.path.normcase(os.path.normpath(str(path))))


def _is_within(entry: Path, root: Path) -> bool:
    entry, root = _normalize(entry), _normalize(root)
    return entry == root or root in entry.parents


def analyze_path(
    path_value: str,
    cuda_home: Optional[str],
    nvcc_name: str = "nvcc",
    separator: str = os.pathsep,
) -> PathConfiguration:
    """Classify toolkit-related PATH entries as consistent or conflicting.

    With CUDA_HOME set, toolkit entries outside it conflict. Without it,
    the first toolkit entry on PATH defines the active root and entries
    under a different root conflict.
    """
    entries = [e for e in path_value.split(separator) if e.strip()] if path_value else []
    toolkit_entries = [e for e in entries if _looks_like_toolkit(e, nvcc_name)]

    conflicting: list[str] = []
    if cuda_home:
        home = Path(cuda_home)
        conflicting = [e for e in toolkit_entries if not _is_within(Path(e), home)]
    elif toolkit_entries:
        reference = _normalize(toolkit_root(toolkit_entries[0]))
        conflicting = [
            e for e in toolkit_entries[1:] if _normalize(toolkit_root(e)) != reference
        ]

    return PathConfiguration(
        cuda_in_path=bool(toolkit_entries),
        conflicting_paths=conflicting,
        path_entries=entries,
        cuda_home_set=bool(cuda_home),
        cuda_home_value=cuda_home or None,
    )


# ---------------------------------------------------------------------------
# Probe
# ---------------------------------------------------------------------------


def detect_security(
    windows: bool = False,
    environ: Optional[Mapping[str, str]] = None,
    efi_dir: Path = EFI_DIR,
) -> SecurityRecord:
    """Collect the security record, reading firmware the Windows or POSIX way."""
    env = os.environ if environ is None else environ

    try:
        admin = has_admin_privileges(windows)
    except SecurityCheckError as e:
        logger.debug("%s; assuming no administrator rights", e)
        admin = False
    if windows:
        uefi = is_uefi_windows()
        secure_boot = read_secure_boot_windows() if uefi else SecureBootDetails()
    else:
        uefi = efi_dir.is_dir()
        secure_boot = read_secure_boot_posix(efi_dir / "efivars") if uefi else SecureBootDetails()

    path_config = analyze_path(
        env.get("PATH", ""),
        env.get(CUDA_HOME_VAR),
        nvcc_name="nvcc.exe" if windows else "nvcc",
    )

    return SecurityRecord(
        secure_boot_enabled=secure_boot.enabled,
        has_admin_privileges=admin,
        can_install_drivers=admin,
        uefi_mode=uefi,
        secure_boot=secure_boot,
        path_configuration=path_config,
    )
