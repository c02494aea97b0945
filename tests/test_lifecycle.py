"""Tests for the per-record lifecycle controller."""

import asyncio

import pytest

from pipecount.engine import InventorySyncStatus, RecordLifecycleController, RecordState
from pipecount.errors import FeedbackFailed, InvalidTransition
from pipecount.history import HistoryStore
from pipecount.models import (
    AnalysisRecord,
    BoundingBox,
    Detection,
    PipeSize,
    QueuedCapture,
    RecordSource,
    manual_record,
    placeholder_record,
)
from pipecount.notifications import ToastKind


def draft(record_id: str = "analysis_1") -> AnalysisRecord:
    detections = (
        Detection(id="p0", size=PipeSize.SMALL, bounding_box=BoundingBox(x=1, y=1, width=5, height=5)),
        Detection(id="p1", size=PipeSize.LARGE, bounding_box=BoundingBox(x=10, y=1, width=5, height=5)),
    )
    return AnalysisRecord(
        id=record_id,
        image="/tmp/a.jpg",
        source=RecordSource.ai_model("m"),
        confidence=0.8,
    ).with_detections(detections)


EDITED = [
    {"id": "p0", "size": "medium", "boundingBox": {"x": 1, "y": 1, "width": 5, "height": 5}},
    {"size": "Small", "boundingBox": {"x": 98, "y": 50, "width": 10, "height": 5}},
]


class TestCorrections:
    """Draft to verified through the correction view."""

    @pytest.mark.asyncio
    async def test_states_follow_corrections(self, lifecycle, history):
        await history.append(draft())
        assert lifecycle.state("analysis_1") is RecordState.DRAFT

        lifecycle.open_correction("analysis_1")
        assert lifecycle.state("analysis_1") is RecordState.EDITING_DRAFT

        lifecycle.cancel_correction("analysis_1")
        assert lifecycle.state("analysis_1") is RecordState.DRAFT

        lifecycle.open_correction("analysis_1")
        await lifecycle.save_corrections("analysis_1", EDITED)
        assert lifecycle.state("analysis_1") is RecordState.VERIFIED

    @pytest.mark.asyncio
    async def test_save_recomputes_counts_and_clamps_boxes(self, lifecycle, history, notifier):
        await history.append(draft())
        lifecycle.open_correction("analysis_1")

        saved = await lifecycle.save_corrections("analysis_1", EDITED)

        assert saved.verified is True
        assert saved.counts.total == 2
        assert saved.counts.by_size[PipeSize.MEDIUM] == 1
        assert saved.counts.by_size[PipeSize.SMALL] == 1
        assert saved.counts.by_size[PipeSize.LARGE] == 0
        clamped = saved.detections[1].bounding_box
        assert clamped.x + clamped.width <= 100
        assert saved.detections[1].id.startswith("manual_")
        assert history.get("analysis_1") == saved
        assert notifier.recent[-1].message == "Corrections have been saved."

    @pytest.mark.asyncio
    async def test_save_without_open_view_rejected(self, lifecycle, history):
        await history.append(draft())

        with pytest.raises(InvalidTransition):
            await lifecycle.save_corrections("analysis_1", EDITED)

    @pytest.mark.asyncio
    async def test_pending_record_cannot_be_corrected(self, lifecycle, history):
        placeholder = placeholder_record(QueuedCapture(image="/tmp/q.jpg"))
        await history.append(placeholder)

        assert lifecycle.state(placeholder.id) is RecordState.PENDING
        with pytest.raises(InvalidTransition):
            lifecycle.open_correction(placeholder.id)

    @pytest.mark.asyncio
    async def test_nan_confidence_in_edit_defaults_to_one(self, lifecycle, history):
        await history.append(draft())
        lifecycle.open_correction("analysis_1")

        saved = await lifecycle.save_corrections(
            "analysis_1",
            [{"size": "Small", "confidence": float("nan"), "boundingBox": {"x": 1, "y": 1, "width": 5, "height": 5}}],
        )

        assert saved.detections[0].confidence == 1.0

    @pytest.mark.asyncio
    async def test_manual_entry_saved_into_history(self, lifecycle, history):
        await history.append(draft())
        manual = manual_record("/tmp/m.jpg")
        assert lifecycle.state_of(manual) is RecordState.VERIFIED

        saved = await lifecycle.save_corrections(manual, EDITED[:1])

        assert history.records[0].id == manual.id
        assert saved.counts.total == 1
        assert saved.confidence == 1.0

    @pytest.mark.asyncio
    async def test_verified_record_can_be_reopened(self, lifecycle, history):
        await history.append(draft())
        lifecycle.open_correction("analysis_1")
        await lifecycle.save_corrections("analysis_1", EDITED)

        lifecycle.open_correction("analysis_1")
        assert lifecycle.state("analysis_1") is RecordState.EDITING_DRAFT
        saved = await lifecycle.save_corrections("analysis_1", EDITED[:1])
        assert saved.counts.total == 1


class TestFeedback:
    """Training feedback for verified records."""

    async def _verified(self, lifecycle, history) -> AnalysisRecord:
        await history.append(draft())
        lifecycle.open_correction("analysis_1")
        return await lifecycle.save_corrections("analysis_1", EDITED)

    @pytest.mark.asyncio
    async def test_feedback_requires_verified(self, lifecycle, history):
        await history.append(draft())

        with pytest.raises(InvalidTransition):
            await lifecycle.submit_feedback("analysis_1")

    @pytest.mark.asyncio
    async def test_feedback_sets_flag(self, lifecycle, history, feedback):
        await self._verified(lifecycle, history)

        updated = await lifecycle.submit_feedback("analysis_1")

        assert updated.feedback_submitted is True
        assert len(feedback.submitted) == 1
        assert feedback.submitted[0].counts.total == 2

    @pytest.mark.asyncio
    async def test_new_corrections_reset_flag(self, lifecycle, history):
        await self._verified(lifecycle, history)
        await lifecycle.submit_feedback("analysis_1")

        lifecycle.open_correction("analysis_1")
        saved = await lifecycle.save_corrections("analysis_1", EDITED[:1])

        assert saved.feedback_submitted is False

    @pytest.mark.asyncio
    async def test_feedback_failure_changes_nothing(self, lifecycle, history, feedback, notifier):
        await self._verified(lifecycle, history)
        feedback.fail = True

        with pytest.raises(FeedbackFailed):
            await lifecycle.submit_feedback("analysis_1")

        assert history.get("analysis_1").feedback_submitted is False
        assert notifier.recent[-1].kind is ToastKind.ERROR

        # retry succeeds
        feedback.fail = False
        updated = await lifecycle.submit_feedback("analysis_1")
        assert updated.feedback_submitted is True


class TestInventorySync:
    """Inventory push status per record."""

    @pytest.mark.asyncio
    async def test_inventory_requires_verified(self, lifecycle, history, inventory):
        await history.append(draft())

        with pytest.raises(InvalidTransition):
            await lifecycle.sync_inventory("analysis_1")
        assert inventory.calls == []

    @pytest.mark.asyncio
    async def test_inventory_success(self, lifecycle, history, notifier):
        await history.append(draft())
        lifecycle.open_correction("analysis_1")
        await lifecycle.save_corrections("analysis_1", EDITED)

        status = await lifecycle.sync_inventory("analysis_1")

        assert status is InventorySyncStatus.SUCCESS
        assert lifecycle.inventory_status("analysis_1") is InventorySyncStatus.SUCCESS
        assert notifier.recent[-1].message == "Inventory sync successful for Analysis ID: ysis_1"

    @pytest.mark.asyncio
    async def test_inventory_error_then_retry(self, lifecycle, history, inventory):
        await history.append(draft())
        lifecycle.open_correction("analysis_1")
        await lifecycle.save_corrections("analysis_1", EDITED)
        inventory.success = False

        assert await lifecycle.sync_inventory("analysis_1") is InventorySyncStatus.ERROR
        assert lifecycle.inventory_status("analysis_1") is InventorySyncStatus.ERROR

        inventory.success = True
        assert await lifecycle.sync_inventory("analysis_1") is InventorySyncStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_concurrent_inventory_sync_single_call(self, lifecycle, history, inventory):
        await history.append(manual_record("/tmp/m.jpg"))
        record_id = history.records[0].id
        gate = asyncio.Event()
        original = inventory.sync

        async def slow_sync(record):
            await gate.wait()
            return await original(record)

        inventory.sync = slow_sync

        first = asyncio.create_task(lifecycle.sync_inventory(record_id))
        await asyncio.sleep(0)
        assert await lifecycle.sync_inventory(record_id) is InventorySyncStatus.SYNCING

        gate.set()
        assert await first is InventorySyncStatus.SUCCESS
        assert inventory.calls == [record_id]

    @pytest.mark.asyncio
    async def test_reset_inventory_status(self, lifecycle, history, inventory):
        await history.append(manual_record("/tmp/m.jpg"))
        record_id = history.records[0].id
        inventory.success = False
        await lifecycle.sync_inventory(record_id)

        lifecycle.reset_inventory_status(record_id)

        assert lifecycle.inventory_status(record_id) is InventorySyncStatus.IDLE


    @pytest.mark.asyncio
    async def test_unexpected_client_error_leaves_error_status(self, lifecycle, history, inventory, notifier):
        await history.append(manual_record("/tmp/m.jpg"))
        record_id = history.records[0].id
        original = inventory.sync

        async def crashing_sync(record):
            raise RuntimeError("connection reset")

        inventory.sync = crashing_sync
        with pytest.raises(RuntimeError):
            await lifecycle.sync_inventory(record_id)

        assert lifecycle.inventory_status(record_id) is InventorySyncStatus.ERROR
        assert notifier.recent[-1].kind is ToastKind.ERROR

        inventory.sync = original
        assert await lifecycle.sync_inventory(record_id) is InventorySyncStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_status_forgotten_when_record_evicted(self, tmp_path, inventory, feedback, notifier):
        history = HistoryStore(tmp_path / "history.json", capacity=1)
        lifecycle = RecordLifecycleController(history, inventory, feedback, notifier)
        await history.append(manual_record("/tmp/m.jpg"))
        record_id = history.records[0].id
        inventory.success = False
        await lifecycle.sync_inventory(record_id)
        assert lifecycle.inventory_status(record_id) is InventorySyncStatus.ERROR

        await history.append(draft())

        assert record_id not in history
        assert lifecycle._inventory_status == {}


class TestNotes:
    """Notes edits keep the record's state."""

    @pytest.mark.asyncio
    async def test_notes_on_draft(self, lifecycle, history):
        await history.append(draft())

        updated = await lifecycle.update_notes("analysis_1", "stack by gate 4")

        assert updated.notes == "stack by gate 4"
        assert lifecycle.state("analysis_1") is RecordState.DRAFT

    @pytest.mark.asyncio
    async def test_notes_forbidden_on_pending(self, lifecycle, history):
        placeholder = placeholder_record(QueuedCapture(image="/tmp/q.jpg"))
        await history.append(placeholder)

        with pytest.raises(InvalidTransition):
            await lifecycle.update_notes(placeholder.id, "nope")
        assert history.get(placeholder.id).notes == placeholder.notes
