"""Shared fixtures for pipecount tests."""

import asyncio
import io
from pathlib import Path

import pytest
from PIL import Image

from pipecount.engine import CaptureService, RecordLifecycleController, SyncOrchestrator
from pipecount.errors import AnalysisFailed, FeedbackFailed
from pipecount.history import HistoryStore
from pipecount.models import AnalysisRecord, Location, QueuedCapture, placeholder_record
from pipecount.monitor import ConnectivityMonitor
from pipecount.notifications import Notifier
from pipecount.remote import RemoteResult
from pipecount.remote.parser import parse_analysis
from pipecount.sync import CaptureQueue


def make_jpeg(color: str = "gray", size: tuple[int, int] = (32, 32)) -> bytes:
    """Encode a solid-color test image."""
    buffer = io.BytesIO()
    Image.new("RGB", size, color=color).save(buffer, format="JPEG")
    return buffer.getvalue()


def pipes_payload(sizes: list[str]) -> dict:
    """Analyzer response with one small box per requested size."""
    return {
        "pipes": [
            {
                "size": size,
                "boundingBox": {"x": i * 5, "y": 10, "width": 4, "height": 4},
                "confidence": 0.9,
            }
            for i, size in enumerate(sizes)
        ],
        "overallConfidence": 0.85,
        "notes": f"{len(sizes)} pipes",
    }


class FakeAnalyzer:
    """Deterministic analyzer for tests.

    Fails for image refs in ``fail_refs`` (or every call with
    ``fail_all``). Calls block on ``gate`` when one is set, and
    ``delays`` holds per-ref latencies in seconds.
    """

    def __init__(self, sizes: list[str] | None = None) -> None:
        self.sizes = sizes or ["Small", "Medium", "Large"]
        self.fail_refs: set[str] = set()
        self.fail_all = False
        self.delays: dict[str, float] = {}
        self.gate: asyncio.Event | None = None
        self.calls: list[str] = []

    async def analyze(
        self,
        image: bytes,
        location: Location,
        *,
        image_ref: str,
    ) -> AnalysisRecord:
        self.calls.append(image_ref)
        if self.gate is not None:
            await self.gate.wait()
        await asyncio.sleep(self.delays.get(image_ref, 0))
        if self.fail_all or image_ref in self.fail_refs:
            raise AnalysisFailed()
        return parse_analysis(
            pipes_payload(self.sizes),
            image_ref=image_ref,
            location=location,
            model_version="fake-model",
        )


class FakeInventory:
    def __init__(self) -> None:
        self.success = True
        self.calls: list[str] = []

    async def sync(self, record: AnalysisRecord) -> RemoteResult:
        self.calls.append(record.id)
        if not self.success:
            return RemoteResult(success=False, message="Inventory system temporarily unavailable. Please retry.")
        return RemoteResult(success=True, message=f"Inventory sync successful for Analysis ID: {record.id[-6:]}")


class FakeFeedback:
    def __init__(self) -> None:
        self.fail = False
        self.submitted: list[AnalysisRecord] = []

    async def submit(self, record: AnalysisRecord) -> RemoteResult:
        if self.fail:
            raise FeedbackFailed("Failed to submit feedback. Please retry.")
        self.submitted.append(record)
        return RemoteResult(success=True, message="AI feedback received.")


@pytest.fixture
def queue(tmp_path: Path):
    q = CaptureQueue(tmp_path / "queue.db")
    yield q
    q.close()


@pytest.fixture
def history(tmp_path: Path) -> HistoryStore:
    return HistoryStore(tmp_path / "history.json")


@pytest.fixture
def notifier() -> Notifier:
    return Notifier()


@pytest.fixture
def analyzer() -> FakeAnalyzer:
    return FakeAnalyzer()


@pytest.fixture
def inventory() -> FakeInventory:
    return FakeInventory()


@pytest.fixture
def feedback() -> FakeFeedback:
    return FakeFeedback()


@pytest.fixture
def monitor() -> ConnectivityMonitor:
    return ConnectivityMonitor()


@pytest.fixture
def orchestrator(queue, history, analyzer, notifier) -> SyncOrchestrator:
    return SyncOrchestrator(
        queue,
        history,
        analyzer,
        notifier,
        image_reader=lambda ref: b"jpeg-bytes",
    )


@pytest.fixture
def capture_service(tmp_path, queue, history, analyzer, monitor, notifier) -> CaptureService:
    service = CaptureService(
        captures_dir=tmp_path / "captures",
        consent_path=tmp_path / "consent",
        queue=queue,
        history=history,
        analyzer=analyzer,
        monitor=monitor,
        notifier=notifier,
    )
    service.give_consent()
    return service


@pytest.fixture
def lifecycle(history, inventory, feedback, notifier) -> RecordLifecycleController:
    return RecordLifecycleController(history, inventory, feedback, notifier)


@pytest.fixture
def enqueue_offline(queue, history):
    """Queue a capture the way an offline capture does: queue, then placeholder."""

    async def _enqueue(image_ref: str) -> QueuedCapture:
        capture = QueuedCapture(image=image_ref)
        queue.enqueue(capture)
        await history.append(placeholder_record(capture))
        return capture

    return _enqueue
