"""Engine module for capture, replay and record lifecycle orchestration."""

from pipecount.engine.app import PipeCounterApp
from pipecount.engine.capture import CaptureService
from pipecount.engine.lifecycle import InventorySyncStatus, RecordLifecycleController, RecordState
from pipecount.engine.sync import SyncOrchestrator, SyncReport

__all__ = [
    "CaptureService",
    "InventorySyncStatus",
    "PipeCounterApp",
    "RecordLifecycleController",
    "RecordState",
    "SyncOrchestrator",
    "SyncReport",
]
