"""Runtime settings resolved from CUDASCOPE_* environment variables.

There is no settings file; every value has a default and may be
overridden through the environment or by constructing Settings directly.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ValidationError, field_validator

ENV_PREFIX = "CUDASCOPE_"

DEFAULT_REGISTRY_URL: str = (
    "https://raw.githubusercontent.com/cudascope/registry/main/registry.json"
)


class Settings(BaseModel):
    """Configuration for a detection run.

    Attributes:
        command_timeout: Seconds any single external command may run.
        probe_timeout: Seconds a whole probe may run in parallel mode.
        parallel: Run probes concurrently on a thread pool.
        install_path: Target toolkit directory for the storage check.
        registry_cache_path: Location of the registry cache file.
        registry_url: Remote registry document used by an explicit refresh.
        registry_max_age_days: Cache files older than this are ignored.
    """

    command_timeout: float = 10.0
    probe_timeout: float = 60.0
    parallel: bool = False
    install_path: Optional[Path] = None
    registry_cache_path: Optional[Path] = None
    registry_url: str = DEFAULT_REGISTRY_URL
    registry_max_age_days: int = 30

    @field_validator("command_timeout", "probe_timeout")
    @classmethod
    def timeout_must_be_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("timeouts must be positive")
        return v

    @field_validator("registry_max_age_days")
    @classmethod
    def max_age_must_be_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("registry_max_age_days must be positive")
        return v

    @classmethod
    def from_env(cls, environ: Optional[dict[str, str]] = None) -> "Settings":
        """Build Settings from CUDASCOPE_* variables.

        Args:
            environ: Mapping to read instead of os.environ.

        Raises:
            ValueError: If a variable holds an invalid value.
        """
        env = os.environ if environ is None else environ
        values: dict[str, str] = {}
        for name in cls.model_fields:
            raw = env.get(ENV_PREFIX + name.upper())
            if raw is not None and raw != "":
                values[name] = raw

        try:
            return cls.model_validate(values)
        except ValidationError as e:
            raise ValueError(f"Invalid {ENV_PREFIX}* environment settings: {e}") from e
