"""CLI command modules for the pipecount client."""

from pipecount.cli_commands.analyze import analyze_command, sync_command
from pipecount.cli_commands.history import history_app
from pipecount.cli_commands.status import consent_command, status_command

__all__ = [
    "analyze_command",
    "consent_command",
    "history_app",
    "status_command",
    "sync_command",
]
