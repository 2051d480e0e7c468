"""CLI doctor command: run the compatibility check and output the report.

Calls generate_report() and formats the result for console or JSON output.
"""

from __future__ import annotations

from pathlib import Path

import typer

from cudascope.engine.doctor import generate_report
from cudascope.engine.models import CompatibilityStatus
from cudascope.engine.report import format_report_console, format_report_json
from cudascope.errors import CudascopeError
from cudascope.log import configure_logging
from cudascope.settings import Settings


def doctor_command(
    format: str = typer.Option(  # noqa: B008
        "console",
        "--format",
        "-f",
        help="Output format: 'console' (human-readable) or 'json' (machine-readable).",
    ),
    output: Path | None = typer.Option(  # noqa: B008
        None,
        "--output",
        "-o",
        help="Write report to file instead of stdout.",
    ),
    parallel: bool = typer.Option(  # noqa: B008
        False,
        "--parallel",
        help="Run the probes concurrently.",
    ),
    verbose: bool = typer.Option(  # noqa: B008
        False,
        "--verbose",
        "-v",
        help="Log probe details to stderr.",
    ),
) -> None:
    """Check whether the CUDA toolkit can be installed and run here.

    Probes GPU, driver, compiler, OS, storage and security settings, scans
    for existing toolkit installations, and prints a verdict. Returns exit
    code 1 if the system is incompatible.
    """
    if format not in ("console", "json"):
        typer.echo(f"Error: unknown format '{format}' (use 'console' or 'json').", err=True)
        raise typer.Exit(code=2)

    configure_logging(verbose)

    try:
        settings = Settings.from_env()
        if parallel:
            settings = settings.model_copy(update={"parallel": True})
        report = generate_report(settings=settings)
    except (CudascopeError, ValueError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from None

    text = format_report_json(report) if format == "json" else format_report_console(report)

    if output is not None:
        output.write_text(text, encoding="utf-8")
    else:
        typer.echo(text)

    if report.status == CompatibilityStatus.INCOMPATIBLE:
        raise typer.Exit(code=1)
