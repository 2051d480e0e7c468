"""Storage probe: free space where the toolkit would be installed."""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path
from typing import Mapping, Optional

from cudascope.engine.models import MIN_REQUIRED_SPACE_GB, StorageRecord
from cudascope.errors import StorageCheckError

logger = logging.getLogger(__name__)

_GB = 1024**3

POSIX_INSTALL_PATH = Path("/usr/local/cuda")


def windows_install_path(environ: Optional[Mapping[str, str]] = None) -> Path:
    env = os.environ if environ is None else environ
    program_files = env.get("ProgramFiles", r"C:\Program Files")
    return Path(program_files) / "NVIDIA GPU Computing Toolkit" / "CUDA"


def nearest_existing_ancestor(path: Path) -> Path:
    """The path itself if it exists, else its closest existing parent."""
    current = path
    while not current.exists():
        parent = current.parent
        if parent == current:
            break
        current = parent
    return current


def check_storage(
    install_path: Path,
    required_gb: int = MIN_REQUIRED_SPACE_GB,
) -> StorageRecord:
    """Measure free/total space for ``install_path`` in whole GB.

    Raises:
        StorageCheckError: If the filesystem cannot be queried.
    """
    probe_path = nearest_existing_ancestor(install_path)
    try:
        usage = shutil.disk_usage(probe_path)
    except OSError as e:
        raise StorageCheckError(f"cannot read disk usage for {probe_path}: {e}") from e

    logger.debug("Disk usage at %s: %d free of %d bytes", probe_path, usage.free, usage.total)
    return StorageRecord.build(
        available_space_gb=usage.free // _GB,
        total_space_gb=usage.total // _GB,
        install_path=str(install_path),
        required_space_gb=required_gb,
    )
