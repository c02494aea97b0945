"""Per-record lifecycle: corrections, training feedback and inventory sync."""

from __future__ import annotations

import logging
import uuid
from enum import Enum
from typing import Any, Iterable

from pipecount.errors import (
    InvalidTransition,
    RemoteServiceError,
    ValidationViolation,
)
from pipecount.history import HistoryStore
from pipecount.logging import log_state_change, state_logger
from pipecount.models import AnalysisRecord, BoundingBox, Detection, PipeSize, clamp
from pipecount.notifications import Notifier
from pipecount.remote.base import FeedbackClient, InventoryClient

logger = logging.getLogger(__name__)


class RecordState(str, Enum):
    """Lifecycle state of an analysis record."""

    PENDING = "pending"
    DRAFT = "draft"
    EDITING_DRAFT = "editing_draft"
    VERIFIED = "verified"


class InventorySyncStatus(str, Enum):
    """Inventory push status, orthogonal to the lifecycle state."""

    IDLE = "idle"
    SYNCING = "syncing"
    SUCCESS = "success"
    ERROR = "error"


def ensure_consistent(record: AnalysisRecord) -> AnalysisRecord:
    """Return ``record`` with counts recomputed if they disagree with its detections."""
    try:
        record.check_invariants()
    except ValidationViolation as e:
        logger.debug("Repairing record counts: %s", e)
        return record.with_detections(record.detections)
    return record


def coerce_detection(value: Detection | dict[str, Any]) -> Detection:
    """Accept a detection or a raw edit dict; out-of-range or NaN values are clamped."""
    if isinstance(value, Detection):
        return value
    box = value.get("bounding_box") or value.get("boundingBox") or {}
    return Detection(
        id=value.get("id") or f"manual_{uuid.uuid4().hex[:12]}",
        size=PipeSize.parse(value.get("size")),
        bounding_box=BoundingBox.clamped(
            box.get("x", 0), box.get("y", 0), box.get("width", 0), box.get("height", 0)
        ),
        confidence=clamp(value.get("confidence", 1.0), 0.0, 1.0, default=1.0),
    )


class RecordLifecycleController:
    """Drives the per-record state machine on top of the history store.

    States: PENDING (queued capture), DRAFT (AI result), EDITING_DRAFT
    (correction view open) and VERIFIED (human-corrected or manually
    authored). Feedback submission and inventory sync require VERIFIED.
    Notes can be edited in any state except PENDING.

    Every write goes through the history store's serialized mutations so
    user edits and sync reconciliation never overwrite each other.
    """

    def __init__(
        self,
        history: HistoryStore,
        inventory: InventoryClient,
        feedback: FeedbackClient,
        notifier: Notifier,
    ) -> None:
        self._history = history
        self._inventory = inventory
        self._feedback = feedback
        self._notifier = notifier
        self._editing: set[str] = set()
        self._inventory_status: dict[str, InventorySyncStatus] = {}
        history.on_evict(self._forget)

    def _forget(self, records: list[AnalysisRecord]) -> None:
        for record in records:
            self._editing.discard(record.id)
            self._inventory_status.pop(record.id, None)

    def state_of(self, record: AnalysisRecord) -> RecordState:
        if record.is_pending:
            return RecordState.PENDING
        if record.id in self._editing:
            return RecordState.EDITING_DRAFT
        if record.verified:
            return RecordState.VERIFIED
        return RecordState.DRAFT

    def state(self, record_id: str) -> RecordState:
        return self.state_of(self._history.require(record_id))

    def _transition(self, record: AnalysisRecord, old: RecordState, new: RecordState, trigger: str) -> None:
        if old != new:
            log_state_change(state_logger(), record.id, old.value, new.value, trigger)

    # --- corrections ---

    def open_correction(self, record: AnalysisRecord | str) -> AnalysisRecord:
        """Enter EDITING_DRAFT for a draft or verified record."""
        record = self._resolve(record)
        state = self.state_of(record)
        if state is RecordState.PENDING:
            raise InvalidTransition(record.id, state.value, "correct")
        self._editing.add(record.id)
        self._transition(record, state, RecordState.EDITING_DRAFT, "open_correction")
        return record

    def cancel_correction(self, record_id: str) -> None:
        """Leave the correction view without saving."""
        self._editing.discard(record_id)

    async def save_corrections(
        self,
        record: AnalysisRecord | str,
        detections: Iterable[Detection | dict[str, Any]],
    ) -> AnalysisRecord:
        """Save edited detections and mark the record VERIFIED.

        Counts are recomputed from the edited detections and the feedback
        flag is reset. Manual records that are not yet in history are
        inserted at the front.

        Raises:
            InvalidTransition: If the correction view is not open for the
                record (manual entries are always editable)
        """
        record = self._resolve(record)
        state = self.state_of(record)
        if state is not RecordState.EDITING_DRAFT and not record.is_manual:
            raise InvalidTransition(record.id, state.value, "save corrections for")

        edited = [coerce_detection(d) for d in detections]

        def apply(current: AnalysisRecord) -> AnalysisRecord:
            updated = current.with_detections(edited)
            return ensure_consistent(
                updated.model_copy(update={"verified": True, "feedback_submitted": False})
            )

        if record.id in self._history:
            saved = await self._history.update(record.id, apply)
        else:
            saved = apply(record)
            await self._history.upsert(saved)

        self._editing.discard(record.id)
        self._transition(saved, state, RecordState.VERIFIED, "save_corrections")
        self._notifier.success("Corrections have been saved.")
        return saved

    # --- feedback ---

    async def submit_feedback(self, record_id: str) -> AnalysisRecord:
        """Send a verified record's corrections for model training.

        On failure nothing changes; call again to retry.

        Raises:
            InvalidTransition: If the record is not VERIFIED
            FeedbackFailed: If the feedback service rejects the submission
        """
        record = self._history.require(record_id)
        state = self.state_of(record)
        if state is not RecordState.VERIFIED:
            raise InvalidTransition(record_id, state.value, "submit feedback for")

        try:
            result = await self._feedback.submit(record)
        except RemoteServiceError as e:
            self._notifier.error(str(e))
            raise

        submitted = record.detections

        def mark(current: AnalysisRecord) -> AnalysisRecord:
            # corrections edited while the call was in flight still need feedback
            if current.detections != submitted:
                return current
            return current.model_copy(update={"feedback_submitted": True})

        updated = await self._history.update(record_id, mark)
        self._notifier.success(result.message)
        return updated

    # --- inventory ---

    def inventory_status(self, record_id: str) -> InventorySyncStatus:
        return self._inventory_status.get(record_id, InventorySyncStatus.IDLE)

    def reset_inventory_status(self, record_id: str) -> None:
        self._inventory_status.pop(record_id, None)

    async def sync_inventory(self, record_id: str) -> InventorySyncStatus:
        """Push a verified record to the inventory system.

        ERROR is only left through another explicit call.

        Raises:
            InvalidTransition: If the record is not VERIFIED
        """
        record = self._history.require(record_id)
        state = self.state_of(record)
        if state is not RecordState.VERIFIED:
            raise InvalidTransition(record_id, state.value, "sync inventory for")
        if self.inventory_status(record_id) is InventorySyncStatus.SYNCING:
            return InventorySyncStatus.SYNCING

        self._inventory_status[record_id] = InventorySyncStatus.SYNCING
        try:
            result = await self._inventory.sync(record)
        except RemoteServiceError as e:
            self._inventory_status[record_id] = InventorySyncStatus.ERROR
            self._notifier.error(str(e))
            return InventorySyncStatus.ERROR
        except Exception:
            self._inventory_status[record_id] = InventorySyncStatus.ERROR
            self._notifier.error("Inventory sync failed. Please retry.")
            raise

        if result.success:
            self._inventory_status[record_id] = InventorySyncStatus.SUCCESS
            self._notifier.success(result.message)
        else:
            self._inventory_status[record_id] = InventorySyncStatus.ERROR
            self._notifier.error(result.message)
        return self._inventory_status[record_id]

    # --- notes ---

    async def update_notes(self, record_id: str, notes: str) -> AnalysisRecord:
        """Replace a record's notes without changing its state.

        Raises:
            InvalidTransition: If the record is still PENDING
        """

        def apply(current: AnalysisRecord) -> AnalysisRecord:
            if current.is_pending:
                raise InvalidTransition(record_id, RecordState.PENDING.value, "edit notes of")
            return ensure_consistent(current.model_copy(update={"notes": notes}))

        return await self._history.update(record_id, apply)

    def _resolve(self, record: AnalysisRecord | str) -> AnalysisRecord:
        if isinstance(record, str):
            return self._history.require(record)
        return self._history.get(record.id) or record
