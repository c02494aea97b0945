"""Capture flow: analyze now when online, queue durably when offline."""

from __future__ import annotations

import asyncio
import io
import logging
import uuid
from pathlib import Path

from PIL import Image, UnidentifiedImageError

from pipecount.errors import (
    AnalysisFailed,
    ConsentRequired,
    InvalidImage,
    StorageUnavailable,
)
from pipecount.history import HistoryStore
from pipecount.logging import capture_logger, log_capture_queued
from pipecount.models import (
    AnalysisRecord,
    IdKind,
    Location,
    QueuedCapture,
    manual_record,
    new_record_id,
    placeholder_record,
    utcnow,
)
from pipecount.monitor import ConnectivityMonitor
from pipecount.notifications import Notifier
from pipecount.remote.base import Analyzer
from pipecount.sync.queue import CaptureQueue

logger = logging.getLogger(__name__)


class CaptureService:
    """Entry point for new captures and manual entries.

    Online captures go straight to the analyzer and their result is
    prepended to history. Offline captures are written to the durable
    queue first and only then represented in history by a pending
    placeholder, so every placeholder has a queued capture behind it.

    Stored images live as long as a history record or a queued capture
    refers to them.
    """

    def __init__(
        self,
        captures_dir: Path,
        consent_path: Path,
        queue: CaptureQueue,
        history: HistoryStore,
        analyzer: Analyzer,
        monitor: ConnectivityMonitor,
        notifier: Notifier,
        jpeg_quality: int = 85,
    ) -> None:
        self._captures_dir = captures_dir
        self._consent_path = consent_path
        self._queue = queue
        self._history = history
        self._analyzer = analyzer
        self._monitor = monitor
        self._notifier = notifier
        self._jpeg_quality = jpeg_quality
        self._latest: AnalysisRecord | None = None
        self._analyzing = 0
        history.on_evict(self._release_images)

    @property
    def latest(self) -> AnalysisRecord | None:
        """The record currently on display."""
        return self._latest

    @latest.setter
    def latest(self, record: AnalysisRecord | None) -> None:
        self._latest = record

    @property
    def is_analyzing(self) -> bool:
        return self._analyzing > 0

    # --- consent ---

    def has_consent(self) -> bool:
        return self._consent_path.exists()

    def give_consent(self) -> None:
        self._consent_path.parent.mkdir(parents=True, exist_ok=True)
        self._consent_path.write_text(utcnow().isoformat())

    def revoke_consent(self) -> None:
        self._consent_path.unlink(missing_ok=True)

    # --- captures ---

    async def capture(
        self,
        image: bytes,
        location: Location | None = None,
    ) -> AnalysisRecord:
        """Analyze an image now, or queue it if offline.

        Returns:
            The completed record (online) or the pending placeholder (offline)

        Raises:
            ConsentRequired: If the data policy has not been accepted
            InvalidImage: If the bytes are not an image
            AnalysisFailed: If the online analysis fails
            StorageUnavailable: If the capture could not be queued or saved
        """
        if not self.has_consent():
            self._notifier.error(str(ConsentRequired()))
            raise ConsentRequired()

        location = location or Location()
        if not self._monitor.is_online:
            return await self._queue_capture(image, location)

        jpeg, image_path = await self._store_image(image, f"live_{uuid.uuid4().hex}")

        self._analyzing += 1
        try:
            record = await self._analyzer.analyze(jpeg, location, image_ref=str(image_path))
            await self._history.append(record)
        except AnalysisFailed as e:
            image_path.unlink(missing_ok=True)
            self._notifier.error(f"Analysis failed: {e}")
            raise
        except StorageUnavailable:
            image_path.unlink(missing_ok=True)
            self._notifier.error("The analysis could not be saved to history.")
            raise
        finally:
            self._analyzing -= 1

        self._latest = record
        return record

    async def _queue_capture(self, image: bytes, location: Location) -> AnalysisRecord:
        capture_id = new_record_id(IdKind.QUEUED)
        jpeg, image_path = await self._store_image(image, capture_id)
        capture = QueuedCapture(id=capture_id, image=str(image_path), location=location)

        try:
            self._queue.enqueue(capture)
        except StorageUnavailable:
            image_path.unlink(missing_ok=True)
            self._notifier.error("You are offline and the capture could not be queued.")
            raise

        placeholder = placeholder_record(capture)
        try:
            await self._history.append(placeholder)
        except StorageUnavailable:
            # keep queue and history paired: no placeholder, no queued capture
            self._queue.remove(capture.id)
            image_path.unlink(missing_ok=True)
            self._notifier.error("You are offline and the capture could not be queued.")
            raise

        log_capture_queued(capture_logger(), capture.id, len(jpeg))
        self._notifier.info("You are offline. Analysis queued.")
        self._latest = placeholder
        return placeholder

    async def start_manual_entry(
        self,
        image: bytes,
        location: Location | None = None,
    ) -> AnalysisRecord:
        """Create a human-authored record.

        The record is not written to history until its corrections are
        saved through the lifecycle controller.
        """
        record_id = new_record_id(IdKind.MANUAL)
        _, image_path = await self._store_image(image, record_id)
        record = manual_record(str(image_path), location).model_copy(update={"id": record_id})
        self._latest = record
        return record

    async def clear_history(self) -> None:
        """Remove every history record, every queued capture and their images.

        The queue is cleared first and restored if the history write fails,
        so placeholders never outlive their queued captures.
        """
        queued = self._queue.list_all()
        self._queue.clear()
        try:
            await self._history.remove_all()
        except StorageUnavailable:
            for capture in queued:
                self._queue.enqueue(capture)
            self._notifier.error("History could not be cleared.")
            raise
        self._latest = None
        pruned = self.prune_images()
        logger.info("History cleared: queued_removed=%d, images_pruned=%d", len(queued), pruned)
        self._notifier.success("History cleared successfully.")

    def select(self, record_id: str) -> AnalysisRecord:
        """Show a history record."""
        self._latest = self._history.require(record_id)
        return self._latest

    # --- image storage ---

    def _referenced_images(self) -> set[str]:
        refs = {r.image for r in self._history.records}
        refs.update(c.image for c in self._queue.list_all())
        if self._latest is not None:
            refs.add(self._latest.image)
        return refs

    def _release_images(self, records: list[AnalysisRecord]) -> None:
        """Delete images of dropped records that nothing else refers to.

        A replayed record keeps its placeholder's image, so references are
        checked against what remains before unlinking.
        """
        try:
            referenced = self._referenced_images()
        except StorageUnavailable as e:
            logger.warning("Images kept, queue unreadable: %s", e)
            return
        for record in records:
            if record.image not in referenced:
                self._delete_image(Path(record.image))

    def prune_images(self) -> int:
        """Delete stored images no record or queued capture refers to.

        Skipped while a live analysis is in flight, since its image is
        not referenced yet.

        Returns:
            Number of files deleted
        """
        if self.is_analyzing or not self._captures_dir.exists():
            return 0
        referenced = {str(Path(ref)) for ref in self._referenced_images()}
        deleted = 0
        for path in self._captures_dir.rglob("*.jpg"):
            if str(path) not in referenced and self._delete_image(path):
                deleted += 1
        return deleted

    def _delete_image(self, path: Path) -> bool:
        # only files this service wrote
        if not path.resolve().is_relative_to(self._captures_dir.resolve()):
            return False
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Cannot delete capture image %s: %s", path, e)
            return False
        return True

    async def _store_image(self, image: bytes, record_id: str) -> tuple[bytes, Path]:
        """Normalize to JPEG and write under captures/YYYY/MM/DD/."""
        jpeg = await asyncio.to_thread(self._to_jpeg, image)
        now = utcnow()
        dated_dir = self._captures_dir / now.strftime("%Y/%m/%d")
        path = dated_dir / f"{now.strftime('%H%M%S')}_{record_id}.jpg"
        try:
            await asyncio.to_thread(_write_file, path, jpeg)
        except OSError as e:
            self._notifier.error("The capture could not be saved on this device.")
            raise StorageUnavailable(f"Cannot write capture image {path}: {e}") from e
        return jpeg, path

    def _to_jpeg(self, image: bytes) -> bytes:
        try:
            with Image.open(io.BytesIO(image)) as img:
                buffer = io.BytesIO()
                img.convert("RGB").save(buffer, format="JPEG", quality=self._jpeg_quality)
        except (UnidentifiedImageError, OSError) as e:
            raise InvalidImage() from e
        return buffer.getvalue()


def _write_file(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "wb") as f:
        f.write(data)
