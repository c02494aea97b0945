"""Structured JSON logging for the pipecount client.

Provides audit-friendly logging with contextual fields for capture, sync
and lifecycle events. Image contents and location coordinates are never
logged.

Usage:
    from pipecount.logging import setup_logging, get_logger

    setup_logging("INFO")
    log = get_logger("pipecount.sync")
    log.info("sync_pass", extra={"synced": 2, "failed": 1})
"""

from __future__ import annotations

import logging
import sys
from datetime import datetime, timezone
from functools import lru_cache
from logging.handlers import RotatingFileHandler
from pathlib import Path

from pythonjsonlogger import jsonlogger

from pipecount import __version__


class PipeCountJsonFormatter(jsonlogger.JsonFormatter):
    """Render every record as one JSON object with client context.

    ``client_id`` identifies the installation when logs from several
    devices end up in one place.
    """

    def __init__(self, *args, client_id: str | None = None, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.client_id = client_id

    def add_fields(
        self,
        log_record: dict,
        record: logging.LogRecord,
        message_dict: dict,
    ) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record.update(
            timestamp=self.formatTime(record),
            level=record.levelname,
            logger=record.name,
            client_version=__version__,
        )
        if self.client_id:
            log_record["client_id"] = self.client_id
        log_record.setdefault("message", record.getMessage())

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        """UTC timestamp in ISO 8601."""
        return datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat()


def _build_handlers(
    log_file: Path | None,
    max_bytes: int,
    backup_count: int,
) -> list[logging.Handler]:
    # stderr, so CLI output on stdout stays machine-readable
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(RotatingFileHandler(path, maxBytes=max_bytes, backupCount=backup_count))
    return handlers


def setup_logging(
    level: str = "INFO",
    log_file: Path | None = None,
    client_id: str | None = None,
    max_bytes: int = 10_000_000,
    backup_count: int = 5,
) -> None:
    """Install JSON handlers on the root logger, replacing existing ones.

    Args:
        level: Root log level name
        log_file: Also write to this file, rotated at ``max_bytes``
        client_id: Installation identifier added to every record
        max_bytes: Rotation size of the log file
        backup_count: Rotated files to keep
    """
    root = logging.getLogger()
    root.setLevel(level.upper())
    for existing in list(root.handlers):
        root.removeHandler(existing)

    formatter = PipeCountJsonFormatter(client_id=client_id)
    for handler in _build_handlers(log_file, max_bytes, backup_count):
        handler.setFormatter(formatter)
        root.addHandler(handler)


@lru_cache(maxsize=32)
def get_logger(name: str) -> logging.Logger:
    """Get a named logger (e.g. 'pipecount.sync')."""
    return logging.getLogger(name)


def capture_logger() -> logging.Logger:
    """Get logger for capture events."""
    return get_logger("pipecount.capture")


def sync_logger() -> logging.Logger:
    """Get logger for queue replay events."""
    return get_logger("pipecount.sync")


def state_logger() -> logging.Logger:
    """Get logger for record lifecycle and connectivity changes."""
    return get_logger("pipecount.state")


# Audit events


def log_capture_queued(logger: logging.Logger, capture_id: str, image_size: int) -> None:
    """Log a capture that was queued while offline."""
    logger.info(
        "Capture queued",
        extra={
            "event": "capture_queued",
            "capture_id": capture_id,
            "image_size": image_size,
        },
    )


def log_analysis_completed(
    logger: logging.Logger,
    record_id: str,
    total: int,
    duration_ms: float,
    replay_of: str | None = None,
) -> None:
    """Log a completed remote analysis.

    Args:
        logger: Logger instance
        record_id: Id minted by the analyzer
        total: Number of detected pipes
        duration_ms: Time spent waiting for the analyzer
        replay_of: Queued capture id when the analysis was a replay
    """
    extra = {
        "event": "analysis_completed",
        "record_id": record_id,
        "total": total,
        "duration_ms": round(duration_ms, 1),
    }
    if replay_of:
        extra["replay_of"] = replay_of
    logger.info("Analysis completed", extra=extra)


def log_sync_pass(
    logger: logging.Logger,
    synced: int,
    failed: int,
    duration_ms: float,
) -> None:
    """Log the outcome of one queue drain."""
    logger.info(
        "Sync pass finished",
        extra={
            "event": "sync_pass",
            "synced": synced,
            "failed": failed,
            "duration_ms": round(duration_ms, 1),
        },
    )


def log_state_change(
    logger: logging.Logger,
    record_id: str,
    old_state: str,
    new_state: str,
    trigger: str | None = None,
) -> None:
    """Log a record lifecycle transition."""
    extra = {
        "event": "state_change",
        "record_id": record_id,
        "old_state": old_state,
        "new_state": new_state,
    }
    if trigger:
        extra["trigger"] = trigger
    logger.info("State changed", extra=extra)


def log_connectivity_change(logger: logging.Logger, online: bool) -> None:
    """Log an online/offline transition."""
    logger.info(
        "Connectivity changed",
        extra={"event": "connectivity_change", "online": online},
    )
