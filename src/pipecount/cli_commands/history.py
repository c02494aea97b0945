"""History management CLI commands."""

import json
from pathlib import Path

import typer

from pipecount.cli_commands.common import open_app, output, record_summary, run
from pipecount.engine import InventorySyncStatus

history_app = typer.Typer(
    name="history",
    help="History management - list, inspect, correct and clear analyses.",
    no_args_is_help=True,
)


@history_app.command("list")
def list_records(
    limit: int = typer.Option(50, "--limit", "-n", help="Maximum records to show"),
    output_json: bool = typer.Option(False, "--json", "-j", help="Output in JSON format"),
) -> None:
    """List analyses, most recent first."""

    async def _list():
        async with open_app() as app:
            return app.history.records[:limit]

    records = run(_list())
    if output_json:
        output([r.model_dump(mode="json", exclude={"detections"}) for r in records], True, "")
        return
    if not records:
        typer.echo("History is empty.")
        return
    for record in records:
        typer.echo(record_summary(record))


@history_app.command("show")
def show_record(
    record_id: str = typer.Argument(..., help="Record id"),
    output_json: bool = typer.Option(False, "--json", "-j", help="Output in JSON format"),
) -> None:
    """Show one analysis with its lifecycle state."""

    async def _show():
        async with open_app() as app:
            record = app.select(record_id)
            return record, app.lifecycle.state_of(record)

    record, state = run(_show())
    data = record.model_dump(mode="json")
    data["state"] = state.value
    lines = [
        record_summary(record),
        f"State: {state.value}",
        f"Source: {record.source.model_version}",
        f"Feedback submitted: {'yes' if record.feedback_submitted else 'no'}",
        f"Notes: {record.notes}",
    ]
    output(data, output_json, "\n".join(lines))


@history_app.command("notes")
def set_notes(
    record_id: str = typer.Argument(..., help="Record id"),
    notes: str = typer.Argument(..., help="New notes text"),
) -> None:
    """Replace the notes of an analysis."""

    async def _notes():
        async with open_app() as app:
            return await app.lifecycle.update_notes(record_id, notes)

    run(_notes())
    typer.echo("Notes saved.")


@history_app.command("correct")
def correct_record(
    record_id: str = typer.Argument(..., help="Record id"),
    detections_file: Path = typer.Argument(
        ...,
        exists=True,
        dir_okay=False,
        help="JSON file with the corrected list of detections",
    ),
) -> None:
    """Save corrected detections and mark the analysis verified."""
    try:
        detections = json.loads(detections_file.read_text())
    except json.JSONDecodeError as e:
        typer.echo(f"Error: invalid detections file: {e}", err=True)
        raise typer.Exit(code=1)
    if not isinstance(detections, list):
        typer.echo("Error: detections file must contain a JSON list", err=True)
        raise typer.Exit(code=1)

    async def _correct():
        async with open_app() as app:
            app.lifecycle.open_correction(record_id)
            return await app.lifecycle.save_corrections(record_id, detections)

    record = run(_correct())
    typer.echo(f"Corrections saved: {record_summary(record)}")


@history_app.command("feedback")
def submit_feedback(record_id: str = typer.Argument(..., help="Record id")) -> None:
    """Send a verified analysis back for model training."""

    async def _feedback():
        async with open_app() as app:
            await app.lifecycle.submit_feedback(record_id)
            return app.notifier.recent[-1].message

    typer.echo(run(_feedback()))


@history_app.command("inventory")
def sync_inventory(record_id: str = typer.Argument(..., help="Record id")) -> None:
    """Push a verified analysis to the inventory system."""

    async def _inventory():
        async with open_app() as app:
            status = await app.lifecycle.sync_inventory(record_id)
            return status, app.notifier.recent[-1].message

    status, message = run(_inventory())
    typer.echo(message)
    if status is InventorySyncStatus.ERROR:
        raise typer.Exit(code=1)


@history_app.command("clear")
def clear_history(
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Delete every analysis and every queued capture."""
    if not yes:
        typer.confirm(
            "Permanently delete all analysis records and queued captures?",
            abort=True,
        )

    async def _clear():
        async with open_app() as app:
            await app.capture.clear_history()

    run(_clear())
    typer.echo("History cleared successfully.")
