"""Collaborator interfaces for the remote analyzer and auxiliary services."""

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from pipecount.models import AnalysisRecord, Location


@dataclass
class RemoteResult:
    """Outcome of an auxiliary service call."""

    success: bool
    message: str


@runtime_checkable
class Analyzer(Protocol):
    """Turns an image and a location into a completed analysis record.

    Implementations mint their own ``analysis_`` id for every call and
    raise ``AnalysisFailed`` with a user-facing message on any failure.
    Calls are independent: retrying with the same inputs yields a new
    record.
    """

    async def analyze(
        self,
        image: bytes,
        location: Location,
        *,
        image_ref: str,
    ) -> AnalysisRecord: ...


@runtime_checkable
class InventoryClient(Protocol):
    """Pushes verified counts to the inventory system."""

    async def sync(self, record: AnalysisRecord) -> RemoteResult: ...


@runtime_checkable
class FeedbackClient(Protocol):
    """Submits human corrections back for model training.

    Raises ``FeedbackFailed`` when the submission is rejected.
    """

    async def submit(self, record: AnalysisRecord) -> RemoteResult: ...
