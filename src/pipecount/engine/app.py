"""Application object wiring stores, collaborators and controllers."""

import logging
import random
from typing import Any

from pipecount.config import Settings
from pipecount.engine.capture import CaptureService
from pipecount.engine.lifecycle import RecordLifecycleController
from pipecount.engine.sync import SyncOrchestrator, SyncReport
from pipecount.history import HistoryStore
from pipecount.models import AnalysisRecord
from pipecount.monitor import ConnectivityMonitor
from pipecount.notifications import Notifier
from pipecount.remote import (
    HttpAnalyzer,
    HttpFeedbackClient,
    HttpInventoryClient,
    MockAnalyzer,
    MockFeedbackClient,
    MockInventoryClient,
)
from pipecount.remote.base import Analyzer, FeedbackClient, InventoryClient
from pipecount.sync import CaptureQueue

logger = logging.getLogger(__name__)


class PipeCounterApp:
    """High-level owner of every long-lived component.

    Constructed once per process; components receive their collaborators
    by reference and never reach into each other's storage.

    Example:
        app = PipeCounterApp(settings)
        await app.start()
        record = await app.capture.capture(jpeg_bytes)
        await app.stop()
    """

    def __init__(
        self,
        config: Settings,
        analyzer: Analyzer | None = None,
        inventory: InventoryClient | None = None,
        feedback: FeedbackClient | None = None,
        monitor: ConnectivityMonitor | None = None,
    ) -> None:
        """Initialize the application.

        Args:
            config: Settings instance with all configuration
            analyzer: Analyzer override (defaults per ``use_mock_services``)
            inventory: Inventory client override
            feedback: Feedback client override
            monitor: Connectivity monitor override
        """
        self.config = config
        config.data_path.mkdir(parents=True, exist_ok=True)

        self.notifier = Notifier()
        self.queue = CaptureQueue(config.queue_db_path)
        self.history = HistoryStore(config.history_path, capacity=config.history_capacity)

        self._owned: list[Any] = []
        self.analyzer = analyzer or self._default_analyzer()
        self.inventory = inventory or self._default_inventory()
        self.feedback = feedback or self._default_feedback()

        self.monitor = monitor or ConnectivityMonitor(
            config.health_url,
            interval=config.connectivity_interval,
        )
        self.sync = SyncOrchestrator(self.queue, self.history, self.analyzer, self.notifier)
        self.capture = CaptureService(
            captures_dir=config.captures_path,
            consent_path=config.consent_path,
            queue=self.queue,
            history=self.history,
            analyzer=self.analyzer,
            monitor=self.monitor,
            notifier=self.notifier,
            jpeg_quality=config.jpeg_quality,
        )
        self.lifecycle = RecordLifecycleController(
            self.history, self.inventory, self.feedback, self.notifier
        )

        self.sync.on_synced(self._handle_synced)
        self._detach = None
        self._running = False

    def _service_kwargs(self) -> dict[str, Any]:
        return {
            "max_retries": self.config.max_retries,
            "timeout": self.config.request_timeout,
        }

    def _mock_kwargs(self) -> dict[str, Any]:
        return {
            "delay_min": self.config.mock_delay_min,
            "delay_max": self.config.mock_delay_max,
            "rng": random.Random(),
        }

    def _default_analyzer(self) -> Analyzer:
        if self.config.use_mock_services:
            return MockAnalyzer(
                model_version=self.config.model_version,
                failure_rate=self.config.mock_failure_rate,
                **self._mock_kwargs(),
            )
        analyzer = HttpAnalyzer(
            self.config.server_url, self.config.model_version, **self._service_kwargs()
        )
        self._owned.append(analyzer)
        return analyzer

    def _default_inventory(self) -> InventoryClient:
        if self.config.use_mock_services:
            return MockInventoryClient(
                failure_rate=self.config.mock_inventory_failure_rate,
                **self._mock_kwargs(),
            )
        client = HttpInventoryClient(self.config.server_url, **self._service_kwargs())
        self._owned.append(client)
        return client

    def _default_feedback(self) -> FeedbackClient:
        if self.config.use_mock_services:
            return MockFeedbackClient(**self._mock_kwargs())
        client = HttpFeedbackClient(self.config.server_url, **self._service_kwargs())
        self._owned.append(client)
        return client

    def _handle_synced(self, report: SyncReport) -> None:
        if report.records and self.history.records:
            self.capture.latest = self.history.records[0]

    async def open(self) -> None:
        """Load persisted history without starting background work."""
        records = await self.history.load()
        if records:
            self.capture.latest = records[0]

    async def start(self) -> None:
        """Load history, subscribe to connectivity and start probing.

        Captures left in the queue by a previous run are drained right
        away if the client is online. Images orphaned by a previous run,
        such as unsaved manual entries, are deleted.
        """
        if self._running:
            return
        self._running = True

        await self.open()
        self.capture.prune_images()
        self._detach = self.sync.attach(self.monitor)
        await self.monitor.start()

        self._log_start()
        if self.monitor.is_online and self.queue.count():
            await self.sync.run()

    def _log_start(self) -> None:
        logger.info(
            "Pipecount started: data_dir=%s, queued=%d, history=%d",
            self.config.data_path,
            self.queue.count(),
            len(self.history),
        )

    async def stop(self) -> None:
        """Stop background work and close resources."""
        if self._detach:
            self._detach()
            self._detach = None
        await self.monitor.stop()
        for client in self._owned:
            await client.close()
        self._owned.clear()
        self.queue.close()
        self._running = False
        logger.info("Pipecount stopped")

    async def __aenter__(self) -> "PipeCounterApp":
        await self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.stop()

    def select(self, record_id: str) -> AnalysisRecord:
        """Show a history record and reset its inventory status."""
        record = self.capture.select(record_id)
        self.lifecycle.reset_inventory_status(record_id)
        return record

    def get_status(self) -> dict[str, Any]:
        """Get current client status.

        Returns:
            Dictionary with connectivity, queue and history information
        """
        return {
            "online": self.monitor.is_online,
            "syncing": self.sync.is_running,
            "analyzing": self.capture.is_analyzing,
            "queue_pending": self.queue.count(),
            "history_size": len(self.history),
            "history_capacity": self.history.capacity,
            "pending_in_history": len(self.history.pending_ids()),
            "latest": self.capture.latest.id if self.capture.latest else None,
            "data_dir": str(self.config.data_path),
        }
