"""Status and consent commands for the pipecount CLI."""

import typer

from pipecount.cli_commands.common import open_app, output, run


def status_command(
    output_json: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output in JSON format",
    ),
) -> None:
    """Show connectivity, queue and history status."""

    async def _status():
        async with open_app() as app:
            await app.monitor.check()
            status = app.get_status()
            status["consent"] = app.capture.has_consent()
            return status

    status = run(_status())

    if output_json:
        output(status, True, "")
        return

    typer.echo("")
    typer.echo("Pipecount Status")
    typer.echo("----------------")
    typer.echo(f"Server: {'reachable' if status['online'] else 'unreachable'}")
    typer.echo(f"Queue: {status['queue_pending']} captures waiting")
    typer.echo(f"History: {status['history_size']}/{status['history_capacity']} records")
    if not status["consent"]:
        typer.echo("Consent: not given (run: pipecount consent)")
    typer.echo("")


def consent_command(
    revoke: bool = typer.Option(False, "--revoke", help="Withdraw consent"),
) -> None:
    """Accept (or withdraw) the data policy required for AI analysis."""

    async def _consent():
        async with open_app() as app:
            if revoke:
                app.capture.revoke_consent()
            else:
                app.capture.give_consent()

    run(_consent())
    typer.echo("Consent withdrawn." if revoke else "Consent recorded.")
