"""Pipecount CLI - Command-line interface for the pipe counting client."""

import typer

from pipecount import __version__
from pipecount.cli_commands import (
    analyze_command,
    consent_command,
    history_app,
    status_command,
    sync_command,
)
from pipecount.config import get_settings
from pipecount.logging import setup_logging

app = typer.Typer(
    name="pipecount",
    help="Pipecount - count stacked pipes from photos, online or offline.",
    no_args_is_help=True,
)

# Register subcommands
app.add_typer(history_app, name="history")


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"pipecount {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """Pipecount - offline-resilient pipe counting."""
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_file)


app.command(name="analyze")(analyze_command)
app.command(name="sync")(sync_command)
app.command(name="status")(status_command)
app.command(name="consent")(consent_command)


if __name__ == "__main__":
    app()
