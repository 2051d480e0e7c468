"""CLI entry point for cudascope."""

import typer

from cudascope import __version__
from cudascope.cli.doctor import doctor_command
from cudascope.cli.registry import registry_app

app = typer.Typer(
    name="cudascope",
    help="CUDA toolkit compatibility checks for this machine.",
    no_args_is_help=True,
)


def version_callback(value: bool):
    if value:
        typer.echo(f"cudascope {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
):
    """CUDA toolkit compatibility checks for this machine."""


app.command(name="doctor")(doctor_command)
app.add_typer(registry_app, name="registry")
