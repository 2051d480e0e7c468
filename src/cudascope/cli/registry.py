"""CLI registry commands: explicit remote refresh and offline lookups."""

from __future__ import annotations

from typing import Optional

import typer

from cudascope.engine.versions import format_capability
from cudascope.errors import RegistryError
from cudascope.kb.registry import load_registry, refresh_registry
from cudascope.log import configure_logging
from cudascope.settings import Settings

registry_app = typer.Typer(
    help="Inspect or refresh the compatibility registry.",
    no_args_is_help=True,
)


def _settings() -> Settings:
    try:
        return Settings.from_env()
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from None


@registry_app.command("refresh")
def refresh_command(
    url: Optional[str] = typer.Option(  # noqa: B008, UP045
        None,
        "--url",
        help="Registry document URL (defaults to CUDASCOPE_REGISTRY_URL).",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log details to stderr."),  # noqa: B008
) -> None:
    """Download the registry and cache it if it is newer than the local one."""
    configure_logging(verbose)
    settings = _settings()
    target_url = url or settings.registry_url

    try:
        current = load_registry(
            cache_path=settings.registry_cache_path,
            max_age_seconds=settings.registry_max_age_days * 24 * 60 * 60,
        )
        registry, updated = refresh_registry(
            current,
            target_url,
            cache_path=settings.registry_cache_path,
            timeout=settings.command_timeout,
        )
    except RegistryError as e:
        typer.echo(f"Error: registry refresh failed: {e}", err=True)
        raise typer.Exit(code=1) from None

    stamp = registry.last_updated.date().isoformat()
    if updated:
        typer.echo(f"Registry updated to {stamp} from {target_url}")
    else:
        typer.echo(f"Registry already up to date ({stamp})")


@registry_app.command("lookup")
def lookup_command(
    gpu_name: str = typer.Argument(..., help="GPU model name, e.g. 'GeForce RTX 4090'."),  # noqa: B008
    driver: Optional[str] = typer.Option(  # noqa: B008, UP045
        None,
        "--driver",
        "-d",
        help="Driver version to map to its newest supported toolkit.",
    ),
) -> None:
    """Look up a GPU model (and optionally a driver) in the registry."""
    settings = _settings()
    try:
        registry = load_registry(
            cache_path=settings.registry_cache_path,
            max_age_seconds=settings.registry_max_age_days * 24 * 60 * 60,
        )
    except RegistryError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from None

    arch = registry.lookup_architecture(gpu_name)
    if arch is None:
        typer.echo(f"{gpu_name}: not in registry")
        found = False
    else:
        line = (
            f"{gpu_name}: {arch.architecture}, compute capability "
            f"{format_capability(arch.compute_capability)}"
        )
        if arch.min_driver_version:
            line += f", minimum driver {arch.min_driver_version}"
        typer.echo(line)
        found = True

    if driver is not None:
        max_toolkit = registry.lookup_max_toolkit_version(driver)
        if max_toolkit is None:
            typer.echo(f"Driver {driver}: too old for any known CUDA toolkit")
        else:
            typer.echo(f"Driver {driver}: CUDA up to {max_toolkit}")

    if not found:
        raise typer.Exit(code=1)
