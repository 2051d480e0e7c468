"""Exception taxonomy for cudascope.

Probes raise the detection errors internally and convert them to "not
detected" at their own boundary. Only registry loading and the top-level
report entry point let an error escape to the caller.
"""

from __future__ import annotations


class CudascopeError(Exception):
    """Base class for every error raised by cudascope."""


# ---------------------------------------------------------------------------
# Detection
# ---------------------------------------------------------------------------


class DetectionError(CudascopeError):
    """A probe could not produce its record."""


class GpuDetectionError(DetectionError):
    pass


class DriverDetectionError(DetectionError):
    pass


class CompilerDetectionError(DetectionError):
    pass


class DistroDetectionError(DetectionError):
    pass


class StorageCheckError(DetectionError):
    pass


class SecurityCheckError(DetectionError):
    pass


class CommandExecutionError(DetectionError):
    """An external command was missing, failed, or timed out."""


class ParseError(DetectionError):
    """External tool output did not have the expected shape."""


class UnsupportedPlatformError(CudascopeError):
    """The current operating system has no probe implementation."""


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class RegistryError(CudascopeError):
    """The compatibility registry could not be loaded or refreshed."""


class RegistryLoadError(RegistryError):
    """A registry source is absent, stale, or unreadable."""


class RegistryParseError(RegistryError):
    """A registry document is not valid JSON/TOML."""


class RegistryNetworkError(RegistryError):
    """The remote registry could not be fetched."""


class RegistrySchemaError(RegistryError):
    """A registry document declares an unsupported schema version."""


class RegistryValidationError(RegistryError):
    """A registry document is structurally invalid or empty."""


# ---------------------------------------------------------------------------
# Installation scanning
# ---------------------------------------------------------------------------


class InstallationScanError(CudascopeError):
    """A candidate toolkit directory could not be inspected."""
