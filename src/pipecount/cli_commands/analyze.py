"""Capture analysis and queue replay commands."""

from pathlib import Path

import typer

from pipecount.cli_commands.common import open_app, output, record_summary, run
from pipecount.models import Location


def analyze_command(
    image: Path = typer.Argument(
        ...,
        exists=True,
        dir_okay=False,
        readable=True,
        help="Image file to analyze",
    ),
    latitude: float = typer.Option(None, "--lat", help="Capture latitude"),
    longitude: float = typer.Option(None, "--lon", help="Capture longitude"),
    offline: bool = typer.Option(
        False,
        "--offline",
        help="Queue the capture without contacting the server",
    ),
    output_json: bool = typer.Option(False, "--json", "-j", help="Output in JSON format"),
) -> None:
    """Analyze an image now, or queue it when the server is unreachable."""

    async def _analyze():
        async with open_app() as app:
            if offline:
                app.monitor.report(False)
            else:
                await app.monitor.check()
            location = Location(latitude=latitude, longitude=longitude)
            return await app.capture.capture(image.read_bytes(), location)

    record = run(_analyze())
    message = (
        f"Offline: capture queued as {record.id}"
        if record.is_pending
        else record_summary(record)
    )
    output(record.model_dump(mode="json"), output_json, message)


def sync_command(
    output_json: bool = typer.Option(False, "--json", "-j", help="Output in JSON format"),
) -> None:
    """Replay queued captures through the analyzer."""

    async def _sync():
        async with open_app() as app:
            if not await app.monitor.check():
                return None
            return await app.sync.run()

    report = run(_sync())
    if report is None:
        output({"online": False}, output_json, "Server unreachable, queue left untouched.")
        raise typer.Exit(code=1)

    data = {
        "synced": report.synced,
        "failed": report.failed,
        "records": [r.id for r in report.records],
        "failed_ids": report.failed_ids,
    }
    if report.attempted == 0:
        message = "Queue is empty."
    else:
        message = f"Synced {report.synced}, {report.failed} will be retried."
    output(data, output_json, message)
