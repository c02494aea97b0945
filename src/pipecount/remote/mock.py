"""Offline stand-ins for the remote services.

Latency and failures are drawn from an injectable ``random.Random`` so a
seeded instance gives reproducible runs. ``fail_next`` forces the next
calls to fail regardless of the failure rate.
"""

import asyncio
import random

from pipecount.errors import AnalysisFailed, FeedbackFailed
from pipecount.models import AnalysisRecord, Location, PipeSize
from pipecount.remote.base import RemoteResult
from pipecount.remote.http import FEEDBACK_RECEIVED, INVENTORY_UNAVAILABLE
from pipecount.remote.parser import parse_analysis


class _MockService:
    def __init__(
        self,
        delay_min: float = 1.0,
        delay_max: float = 2.0,
        failure_rate: float = 0.0,
        rng: random.Random | None = None,
    ) -> None:
        if delay_min > delay_max:
            raise ValueError("delay_min must not exceed delay_max")
        self.delay_min = delay_min
        self.delay_max = delay_max
        self.failure_rate = failure_rate
        self.rng = rng or random.Random()
        self.calls = 0
        self._forced_failures = 0

    def fail_next(self, count: int = 1) -> None:
        self._forced_failures += count

    async def _simulate(self) -> bool:
        """Sleep for the simulated latency; return True if the call fails."""
        self.calls += 1
        # decided before sleeping so forced failures follow call order
        fails = self._forced_failures > 0 or self.rng.random() < self.failure_rate
        if self._forced_failures:
            self._forced_failures -= 1
        await asyncio.sleep(self.rng.uniform(self.delay_min, self.delay_max))
        return fails


class MockAnalyzer(_MockService):
    """Analyzer that invents a plausible detection set."""

    def __init__(self, model_version: str = "mock", max_pipes: int = 12, **kwargs) -> None:
        super().__init__(**kwargs)
        self.model_version = model_version
        self.max_pipes = max_pipes

    async def analyze(
        self,
        image: bytes,
        location: Location,
        *,
        image_ref: str,
    ) -> AnalysisRecord:
        if await self._simulate():
            raise AnalysisFailed()
        return parse_analysis(
            self._payload(),
            image_ref=image_ref,
            location=location,
            model_version=self.model_version,
        )

    def _payload(self) -> dict:
        sizes = list(PipeSize)
        pipes = []
        for _ in range(self.rng.randint(1, self.max_pipes)):
            x = self.rng.uniform(0, 90)
            y = self.rng.uniform(0, 90)
            pipes.append(
                {
                    "size": self.rng.choice(sizes).value,
                    "boundingBox": {"x": x, "y": y, "width": 8, "height": 8},
                    "confidence": round(self.rng.uniform(0.6, 1.0), 2),
                }
            )
        return {
            "pipes": pipes,
            "overallConfidence": round(self.rng.uniform(0.7, 0.99), 2),
            "notes": f"Detected {len(pipes)} pipes.",
        }


class MockInventoryClient(_MockService):
    async def sync(self, record: AnalysisRecord) -> RemoteResult:
        if await self._simulate():
            return RemoteResult(success=False, message=INVENTORY_UNAVAILABLE)
        return RemoteResult(
            success=True,
            message=f"Inventory sync successful for Analysis ID: {record.id[-6:]}",
        )


class MockFeedbackClient(_MockService):
    async def submit(self, record: AnalysisRecord) -> RemoteResult:
        if await self._simulate():
            raise FeedbackFailed("Failed to submit feedback. Please retry.")
        return RemoteResult(success=True, message=FEEDBACK_RECEIVED)
