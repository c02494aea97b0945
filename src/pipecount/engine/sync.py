"""Replay of queued captures when connectivity returns."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Callable

from pipecount.errors import StorageUnavailable
from pipecount.history import HistoryStore
from pipecount.logging import log_analysis_completed, log_sync_pass, sync_logger
from pipecount.models import AnalysisRecord, QueuedCapture
from pipecount.notifications import Notifier
from pipecount.remote.base import Analyzer
from pipecount.sync.queue import CaptureQueue

if TYPE_CHECKING:
    from pipecount.monitor import ConnectivityMonitor

logger = logging.getLogger(__name__)


@dataclass
class SyncReport:
    """Outcome of one drain of the capture queue."""

    synced: int = 0
    failed: int = 0
    records: list[AnalysisRecord] = field(default_factory=list)
    failed_ids: list[str] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return self.synced + self.failed


def read_image(ref: str) -> bytes:
    return Path(ref).read_bytes()


class SyncOrchestrator:
    """Drains the capture queue through the analyzer and reconciles history.

    One pass:

    1. snapshot every queued capture (captures queued later wait for the
       next pass);
    2. analyze all of them concurrently, each failure isolated from the
       others;
    3. remove each successful capture from the queue, leaving failures
       queued for the next pass;
    4. in one history write, drop every snapshotted placeholder and
       prepend the new records in completion order;
    5. emit one aggregate success toast and one aggregate failure toast.

    At most one pass runs at a time; a trigger that arrives while a pass is
    running is ignored.

    Example:
        orchestrator = SyncOrchestrator(queue, history, analyzer, notifier)
        orchestrator.attach(monitor)
    """

    def __init__(
        self,
        queue: CaptureQueue,
        history: HistoryStore,
        analyzer: Analyzer,
        notifier: Notifier,
        image_reader: Callable[[str], bytes] = read_image,
    ) -> None:
        self._queue = queue
        self._history = history
        self._analyzer = analyzer
        self._notifier = notifier
        self._read_image = image_reader
        self._running = False
        self._passes = 0
        self._sync_callbacks: list[Callable[[SyncReport], None]] = []

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def passes(self) -> int:
        """Number of drains started since construction."""
        return self._passes

    def on_synced(self, callback: Callable[[SyncReport], None]) -> None:
        """Register callback for every finished pass."""
        self._sync_callbacks.append(callback)

    def attach(self, monitor: "ConnectivityMonitor") -> Callable[[], None]:
        """Run a pass on every offline to online transition.

        Returns:
            A function that detaches the orchestrator
        """
        return monitor.on_online(self.run)

    async def run(self) -> SyncReport | None:
        """Run one pass unless one is already in flight.

        Returns:
            The pass report, or None if the trigger was ignored

        Raises:
            StorageUnavailable: If the queue cannot be read or the history
                cannot be written
        """
        # no await between check and set: atomic under cooperative scheduling
        if self._running:
            logger.info("Sync already in progress, trigger ignored")
            return None
        self._running = True
        try:
            return await self._drain()
        finally:
            self._running = False

    async def _drain(self) -> SyncReport:
        items_to_sync = self._queue.list_all()
        if not items_to_sync:
            return SyncReport()

        self._passes += 1
        started = time.monotonic()
        self._notifier.info(f"Back online! Syncing {len(items_to_sync)} items...")

        completed: list[tuple[QueuedCapture, AnalysisRecord]] = []
        outcomes = await asyncio.gather(
            *(self._replay(item, completed) for item in items_to_sync),
            return_exceptions=True,
        )

        failed_ids = []
        for item, outcome in zip(items_to_sync, outcomes):
            if isinstance(outcome, BaseException):
                failed_ids.append(item.id)
                logger.warning(
                    "Replay failed, capture stays queued: capture_id=%s, error=%s",
                    item.id,
                    outcome,
                )

        records = [record for _, record in completed]
        try:
            await self._history.reconcile((item.id for item in items_to_sync), records)
        except StorageUnavailable:
            self._restore([item for item, _ in completed])
            self._notifier.error("Synced analyses could not be saved and will be retried.")
            raise

        report = SyncReport(
            synced=len(records),
            failed=len(failed_ids),
            records=records,
            failed_ids=failed_ids,
        )
        log_sync_pass(
            sync_logger(), report.synced, report.failed, (time.monotonic() - started) * 1000
        )

        if report.failed:
            self._notifier.error(f"{report.failed} items failed to sync and will be retried.")
        if report.synced:
            self._notifier.success(f"{report.synced} queued analyses synced successfully.")

        for callback in self._sync_callbacks:
            try:
                callback(report)
            except Exception:
                logger.exception("Sync callback failed")
        return report

    async def _replay(
        self,
        item: QueuedCapture,
        completed: list[tuple[QueuedCapture, AnalysisRecord]],
    ) -> None:
        """Analyze one capture; on success dequeue it and record the result.

        Appending here, rather than after the join, keeps successes in
        completion order.
        """
        started = time.monotonic()
        image = await asyncio.to_thread(self._read_image, item.image)
        record = await self._analyzer.analyze(image, item.location, image_ref=item.image)
        self._queue.remove(item.id)
        completed.append((item, record))
        log_analysis_completed(
            sync_logger(),
            record.id,
            record.counts.total,
            (time.monotonic() - started) * 1000,
            replay_of=item.id,
        )

    def _restore(self, items: list[QueuedCapture]) -> None:
        """Put dequeued captures back after a failed history write."""
        for item in items:
            try:
                self._queue.enqueue(item)
            except StorageUnavailable as e:
                logger.error("Capture lost after failed history write: capture_id=%s, error=%s", item.id, e)
