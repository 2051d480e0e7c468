"""Compatibility registry: GPU model -> compute capability, driver -> max toolkit.

The registry is an explicit object passed to the probes and the analyzer.
It is loaded through an ordered cascade of sources (fresh cache file, then
the bundled built-in table); the first source that yields a valid registry
wins. A network refresh is a separate, explicitly invoked operation.
"""

from __future__ import annotations

import json
import logging
import os
import sys
import tempfile
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Protocol

try:
    import tomllib
except ModuleNotFoundError:
    import tomli as tomllib
import requests
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from cudascope.engine.versions import leading_number
from cudascope.errors import (
    RegistryError,
    RegistryLoadError,
    RegistryNetworkError,
    RegistryParseError,
    RegistrySchemaError,
    RegistryValidationError,
)

logger = logging.getLogger(__name__)

SUPPORTED_SCHEMA_VERSION: int = 1
DEFAULT_MAX_AGE_SECONDS: float = 30 * 24 * 60 * 60
CACHE_FILE_NAME = "registry.json"

# ---------------------------------------------------------------------------
# Registry models
# ---------------------------------------------------------------------------


class GpuArchitecture(BaseModel):
    """Compatibility facts for one GPU model key."""

    name: str
    architecture: str
    compute_capability: tuple[int, int]
    min_driver_version: Optional[str] = None


class DriverToolkitEntry(BaseModel):
    """Drivers whose leading number is >= driver_prefix run max_toolkit_version."""

    driver_prefix: str
    max_toolkit_version: str

    @field_validator("driver_prefix")
    @classmethod
    def prefix_must_be_numeric(cls, v: str) -> str:
        if leading_number(v) is None:
            raise ValueError(f"driver prefix {v!r} has no numeric component")
        return v

    @property
    def threshold(self) -> int:
        return leading_number(self.driver_prefix) or 0


class CompatibilityRegistry(BaseModel):
    """The compatibility knowledge base.

    ``driver_toolkit_map`` is kept sorted newest first whatever order the
    source document used; lookups take the first entry that matches.
    """

    schema_version: int
    last_updated: datetime
    source: str
    gpu_architectures: dict[str, GpuArchitecture] = Field(default_factory=dict)
    driver_toolkit_map: list[DriverToolkitEntry] = Field(default_factory=list)

    @field_validator("schema_version")
    @classmethod
    def schema_must_be_supported(cls, v: int) -> int:
        if v != SUPPORTED_SCHEMA_VERSION:
            raise ValueError(
                f"unsupported registry schema version {v} (expected {SUPPORTED_SCHEMA_VERSION})"
            )
        return v

    @field_validator("last_updated")
    @classmethod
    def assume_utc(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @field_validator("gpu_architectures")
    @classmethod
    def keys_are_lower_case(cls, v: dict[str, GpuArchitecture]) -> dict[str, GpuArchitecture]:
        return {key.lower(): arch for key, arch in v.items()}

    @field_validator("driver_toolkit_map")
    @classmethod
    def newest_driver_first(cls, v: list[DriverToolkitEntry]) -> list[DriverToolkitEntry]:
        return sorted(v, key=lambda entry: entry.threshold, reverse=True)

    @model_validator(mode="after")
    def must_not_be_empty(self) -> "CompatibilityRegistry":
        if not self.gpu_architectures or not self.driver_toolkit_map:
            raise ValueError("registry must contain GPU and driver entries")
        return self

    # -- lookups ------------------------------------------------------------

    def lookup_architecture(self, model: str) -> Optional[GpuArchitecture]:
        """Find the architecture entry for a (possibly verbose) GPU name.

        Exact key first, then substring match. When several keys are
        contained in the name the longest key wins, ties broken
        alphabetically, so "a100" beats "a10".
        """
        model_lower = model.lower().strip()
        if not model_lower:
            return None

        exact = self.gpu_architectures.get(model_lower)
        if exact is not None:
            return exact

        matches = [key for key in self.gpu_architectures if key in model_lower]
        if not matches:
            return None
        best = min(matches, key=lambda key: (-len(key), key))
        return self.gpu_architectures[best]

    def lookup_compute_capability(self, model: str) -> Optional[tuple[int, int]]:
        arch = self.lookup_architecture(model)
        return arch.compute_capability if arch is not None else None

    def lookup_max_toolkit_version(self, driver_version: str) -> Optional[str]:
        """Newest toolkit version a driver can run, or None if too old.

        A driver newer than every known prefix gets the newest entry.
        """
        driver_major = leading_number(driver_version)
        if driver_major is None:
            return None
        for entry in self.driver_toolkit_map:
            if entry.threshold <= driver_major:
                return entry.max_toolkit_version
        return None


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def _validate(data: dict, origin: str) -> CompatibilityRegistry:
    """Turn a decoded document into a registry, mapping failures to RegistryError."""
    if not isinstance(data, dict):
        raise RegistryValidationError(f"{origin}: registry document must be an object")

    schema = data.get("schema_version")
    if schema != SUPPORTED_SCHEMA_VERSION:
        raise RegistrySchemaError(
            f"{origin}: unsupported schema version {schema!r} "
            f"(expected {SUPPORTED_SCHEMA_VERSION})"
        )

    try:
        return CompatibilityRegistry.model_validate(data)
    except ValidationError as e:
        raise RegistryValidationError(f"{origin}: invalid registry: {e}") from e


def parse_registry_json(raw_json: str, origin: str = "registry") -> CompatibilityRegistry:
    """Parse a JSON registry document (cache file or remote download)."""
    try:
        data = json.loads(raw_json)
    except json.JSONDecodeError as e:
        raise RegistryParseError(f"{origin}: malformed JSON: {e}") from e
    return _validate(data, origin)


def parse_registry_toml(toml_string: str, origin: str = "builtin") -> CompatibilityRegistry:
    """Parse the TOML table format used by the bundled built-in registry."""
    try:
        data = tomllib.loads(toml_string)
    except tomllib.TOMLDecodeError as e:
        raise RegistryParseError(f"{origin}: malformed TOML: {e}") from e

    gpu_architectures: dict[str, dict] = {}
    for group in data.get("gpu", []):
        for key in group.get("keys", []):
            gpu_architectures[key.lower()] = {
                "name": key,
                "architecture": group.get("architecture", "Unknown"),
                "compute_capability": group.get("compute_capability"),
                "min_driver_version": group.get("min_driver_version"),
            }

    driver_map = [
        {"driver_prefix": raw.get("prefix"), "max_toolkit_version": raw.get("max_toolkit_version")}
        for raw in data.get("driver", [])
    ]

    return _validate(
        {
            "schema_version": data.get("schema_version"),
            "last_updated": data.get("last_updated"),
            "source": data.get("source", origin),
            "gpu_architectures": gpu_architectures,
            "driver_toolkit_map": driver_map,
        },
        origin,
    )


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------


class RegistrySource(Protocol):
    """One step of the load cascade."""

    label: str

    def load(self) -> CompatibilityRegistry:
        """Return a registry or raise RegistryError."""
        ...


class CacheFileSource:
    """The on-disk cache, ignored once older than ``max_age_seconds``."""

    label = "cache"

    def __init__(
        self,
        path: Path,
        max_age_seconds: float = DEFAULT_MAX_AGE_SECONDS,
        now: Optional[float] = None,
    ) -> None:
        self.path = path
        self.max_age_seconds = max_age_seconds
        self._now = now

    def load(self) -> CompatibilityRegistry:
        try:
            mtime = self.path.stat().st_mtime
        except FileNotFoundError as e:
            raise RegistryLoadError(f"no registry cache at {self.path}") from e
        except OSError as e:
            raise RegistryLoadError(f"cannot stat registry cache {self.path}: {e}") from e

        now = self._now if self._now is not None else time.time()
        age = now - mtime
        if age > self.max_age_seconds:
            raise RegistryLoadError(
                f"registry cache {self.path} is stale ({age / 86400:.0f} days old)"
            )

        try:
            content = self.path.read_text(encoding="utf-8")
        except OSError as e:
            raise RegistryLoadError(f"cannot read registry cache {self.path}: {e}") from e
        except UnicodeDecodeError as e:
            raise RegistryParseError(f"registry cache {self.path} is not UTF-8: {e}") from e
        return parse_registry_json(content, origin=str(self.path))


class BuiltinSource:
    """The table bundled with the package."""

    label = "builtin"

    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = path or Path(__file__).parent / "builtin_registry.toml"

    def load(self) -> CompatibilityRegistry:
        try:
            content = self.path.read_text(encoding="utf-8")
        except OSError as e:
            raise RegistryLoadError(f"built-in registry missing: {e}") from e
        except UnicodeDecodeError as e:
            raise RegistryParseError(f"built-in registry is not UTF-8: {e}") from e
        return parse_registry_toml(content, origin="builtin")


class RemoteSource:
    """A registry JSON document served over HTTP(S)."""

    label = "remote"

    def __init__(self, url: str, timeout: float = 10.0) -> None:
        self.url = url
        self.timeout = timeout

    def load(self) -> CompatibilityRegistry:
        try:
            response = requests.get(self.url, timeout=self.timeout)
            response.raise_for_status()
        except requests.exceptions.Timeout as e:
            raise RegistryNetworkError(f"timed out fetching {self.url}") from e
        except requests.exceptions.RequestException as e:
            raise RegistryNetworkError(f"failed to fetch {self.url}: {e}") from e
        return parse_registry_json(response.text, origin=self.url)


# ---------------------------------------------------------------------------
# Cascade + refresh
# ---------------------------------------------------------------------------


def default_cache_path() -> Path:
    """Per-user application data location of the registry cache."""
    if sys.platform == "win32":
        base = os.environ.get("LOCALAPPDATA") or os.environ.get("APPDATA")
        root = Path(base) if base else Path.home() / "AppData" / "Local"
    elif sys.platform == "darwin":
        root = Path.home() / "Library" / "Caches"
    else:
        xdg = os.environ.get("XDG_CACHE_HOME")
        root = Path(xdg) if xdg else Path.home() / ".cache"
    return root / "cudascope" / CACHE_FILE_NAME


def load_registry(
    cache_path: Optional[Path] = None,
    sources: Optional[list[RegistrySource]] = None,
    max_age_seconds: float = DEFAULT_MAX_AGE_SECONDS,
) -> CompatibilityRegistry:
    """Load the registry from the first source that succeeds.

    Default order: fresh cache file, then the built-in table.

    Raises:
        RegistryError: If every source fails (the last error is re-raised).
    """
    if sources is None:
        sources = [
            CacheFileSource(cache_path or default_cache_path(), max_age_seconds),
            BuiltinSource(),
        ]
    if not sources:
        raise RegistryLoadError("no registry sources configured")

    last_error: Optional[RegistryError] = None
    for source in sources:
        try:
            registry = source.load()
        except RegistryError as e:
            logger.info("Registry source '%s' unavailable: %s", source.label, e)
            last_error = e
            continue
        logger.debug(
            "Loaded registry from %s (updated %s)", source.label, registry.last_updated.isoformat()
        )
        return registry

    assert last_error is not None
    raise last_error


def write_cache(registry: CompatibilityRegistry, path: Path) -> None:
    """Write the registry to ``path`` atomically (temp file + rename)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = registry.model_dump_json(indent=2)
    fd, tmp_name = tempfile.mkstemp(prefix=".registry-", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except OSError:
            pass
        raise


def refresh_registry(
    current: CompatibilityRegistry,
    url: str,
    cache_path: Optional[Path] = None,
    timeout: float = 10.0,
    source: Optional[RegistrySource] = None,
) -> tuple[CompatibilityRegistry, bool]:
    """Fetch a newer registry over the network.

    The remote document replaces ``current`` (and is written to the cache)
    only if its ``last_updated`` is strictly newer.

    Returns:
        (registry in effect, whether it was replaced).

    Raises:
        RegistryError: If the fetch fails or the document is invalid.
    """
    remote = (source or RemoteSource(url, timeout=timeout)).load()

    if remote.last_updated <= current.last_updated:
        logger.info(
            "Remote registry (%s) is not newer than current (%s)",
            remote.last_updated.isoformat(),
            current.last_updated.isoformat(),
        )
        return current, False

    target = cache_path or default_cache_path()
    try:
        write_cache(remote, target)
    except OSError as e:
        raise RegistryLoadError(f"failed to write registry cache {target}: {e}") from e
    logger.info("Registry refreshed from %s; cache written to %s", url, target)
    return remote, True
