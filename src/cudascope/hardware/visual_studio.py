"""Visual Studio probe (Windows): locate C++ build tools with vswhere."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Mapping, Optional

from cudascope.engine.models import VisualStudioRecord
from cudascope.hardware.commands import DEFAULT_TIMEOUT, try_output

logger = logging.getLogger(__name__)

CPP_TOOLS_COMPONENT = "Microsoft.VisualStudio.Component.VC.Tools.x86.x64"


def find_vswhere(environ: Optional[Mapping[str, str]] = None) -> Optional[Path]:
    """vswhere.exe under Program Files (x86), falling back to Program Files."""
    env = os.environ if environ is None else environ
    candidates = [
        Path(env.get("ProgramFiles(x86)", r"C:\Program Files (x86)")),
        Path(env.get("ProgramFiles", r"C:\Program Files")),
    ]
    for base in candidates:
        path = base / "Microsoft Visual Studio" / "Installer" / "vswhere.exe"
        if path.exists():
            return path
    return None


def parse_vswhere_json(raw_json: str) -> Optional[VisualStudioRecord]:
    """First installation from vswhere's JSON array, or None."""
    try:
        data = json.loads(raw_json)
    except json.JSONDecodeError as e:
        logger.debug("vswhere returned invalid JSON: %s", e)
        return None

    if not isinstance(data, list) or not data or not isinstance(data[0], dict):
        return None

    first = data[0]
    catalog = first.get("catalog")
    if not isinstance(catalog, dict):
        catalog = {}
    return VisualStudioRecord(
        is_installed=True,
        name=first.get("displayName") or "Visual Studio",
        version=catalog.get("productDisplayVersion") or first.get("installationVersion") or "Unknown",
        install_path=Path(first.get("installationPath") or ""),
        # The query asked for the C++ tools component.
        has_cpp_tools=True,
    )


def detect_visual_studio(
    timeout: float = DEFAULT_TIMEOUT,
    environ: Optional[Mapping[str, str]] = None,
) -> Optional[VisualStudioRecord]:
    vswhere = find_vswhere(environ)
    if vswhere is None:
        return None

    output = try_output(
        [
            vswhere,
            "-latest",
            "-products",
            "*",
            "-requires",
            CPP_TOOLS_COMPONENT,
            "-format",
            "json",
        ],
        timeout=timeout,
    )
    if output is None:
        return None
    return parse_vswhere_json(output)
