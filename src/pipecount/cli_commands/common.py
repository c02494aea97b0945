"""Helpers shared by the CLI commands."""

import asyncio
import json
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, TypeVar

import typer

from pipecount.config import get_settings
from pipecount.engine import PipeCounterApp
from pipecount.errors import PipeCountError
from pipecount.models import AnalysisRecord

T = TypeVar("T")


@asynccontextmanager
async def open_app() -> AsyncIterator[PipeCounterApp]:
    """Open the stores for a one-shot command and close them afterwards."""
    app = PipeCounterApp(get_settings())
    try:
        await app.open()
        yield app
    finally:
        await app.stop()


def run(coro: Awaitable[T]) -> T:
    """Run a coroutine, turning pipecount errors into a clean exit."""
    try:
        return asyncio.run(coro)
    except PipeCountError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)


def output(data: Any, as_json: bool, human_message: str) -> None:
    """Output data as JSON or human-readable format."""
    if as_json:
        typer.echo(json.dumps(data, default=str))
    else:
        typer.echo(human_message)


def record_summary(record: AnalysisRecord) -> str:
    """One-line description of a record."""
    if record.is_pending:
        return f"{record.id}  {record.timestamp:%Y-%m-%d %H:%M}  queued"
    sizes = ", ".join(
        f"{size.value}={count}" for size, count in record.counts.by_size.items() if count
    )
    return (
        f"{record.id}  {record.timestamp:%Y-%m-%d %H:%M}  "
        f"total={record.counts.total}"
        f"{'  (' + sizes + ')' if sizes else ''}"
        f"  confidence={record.confidence:.0%}"
    )
