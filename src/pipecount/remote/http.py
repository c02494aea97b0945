"""Async HTTP clients for the analysis server with retry logic."""

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any

import httpx

from pipecount import __version__
from pipecount.errors import AnalysisFailed, FeedbackFailed
from pipecount.logging import get_logger, log_analysis_completed
from pipecount.models import AnalysisRecord, Location
from pipecount.remote.base import RemoteResult
from pipecount.remote.parser import parse_analysis

logger = logging.getLogger(__name__)

INVENTORY_UNAVAILABLE = "Inventory system temporarily unavailable. Please retry."
FEEDBACK_RECEIVED = "AI feedback received. The model will be improved with your corrections."


@dataclass
class CallResult:
    """Result of a request attempt sequence."""

    success: bool
    response: httpx.Response | None = None
    error: str | None = None
    attempts: int = 0


class ServiceClient:
    """Shared HTTP plumbing with exponential backoff retry.

    Uses httpx.AsyncClient for connection pooling. Retries on transient
    failures (5xx, connection errors, timeouts) but not on client errors
    (4xx).
    """

    def __init__(
        self,
        server_url: str,
        max_retries: int = 3,
        timeout: float = 30.0,
        backoff: float = 2.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            server_url: Base URL of the analysis server (e.g., http://localhost:8000)
            max_retries: Maximum number of attempts on transient failures
            timeout: Request timeout in seconds
            backoff: Base of the exponential delay between attempts
            client: Optional preconfigured httpx client (shared or mocked)
        """
        self.server_url = server_url.rstrip("/")
        self.max_retries = max_retries
        self.timeout = timeout
        self.backoff = backoff
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            headers={"User-Agent": f"pipecount/{__version__}"},
        )

    async def post(self, path: str, **kwargs: Any) -> CallResult:
        """POST to ``path`` with retry.

        Returns:
            CallResult with the successful response or the last error
        """
        attempt = 0
        last_error: str | None = None

        while attempt < self.max_retries:
            attempt += 1

            try:
                response = await self._client.post(f"{self.server_url}{path}", **kwargs)

                if 200 <= response.status_code < 300:
                    return CallResult(success=True, response=response, attempts=attempt)

                # 4xx errors - don't retry (client error)
                if 400 <= response.status_code < 500:
                    return CallResult(
                        success=False,
                        error=f"Client error: {response.status_code} - {response.text}",
                        attempts=attempt,
                    )

                # 5xx errors - retry with backoff
                last_error = f"Server error: {response.status_code}"

            except httpx.ConnectError as e:
                last_error = f"Connection error: {e}"
            except httpx.TimeoutException as e:
                last_error = f"Timeout: {e}"
            except httpx.HTTPError as e:
                last_error = f"HTTP error: {e}"

            if attempt < self.max_retries:
                await asyncio.sleep(self.backoff**attempt)

        return CallResult(
            success=False,
            error=last_error or "Max retries exceeded",
            attempts=attempt,
        )

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "ServiceClient":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        await self.close()


def _record_json(record: AnalysisRecord) -> dict[str, Any]:
    """Record fields sent to auxiliary services (no image payload)."""
    return record.model_dump(mode="json", exclude={"image"})


class HttpAnalyzer(ServiceClient):
    """Analyzer backed by the server's ``/api/analyze`` endpoint."""

    def __init__(self, server_url: str, model_version: str, **kwargs: Any) -> None:
        super().__init__(server_url, **kwargs)
        self.model_version = model_version

    async def analyze(
        self,
        image: bytes,
        location: Location,
        *,
        image_ref: str,
    ) -> AnalysisRecord:
        """Upload an image for analysis.

        Raises:
            AnalysisFailed: On any transport, server or payload error
        """
        started = time.monotonic()
        result = await self.post(
            "/api/analyze",
            files={"image": ("capture.jpg", image, "image/jpeg")},
            data={"location": location.model_dump_json()},
        )
        if not result.success or result.response is None:
            logger.warning(
                "Analysis request failed: error=%s, attempts=%d", result.error, result.attempts
            )
            raise AnalysisFailed()

        try:
            payload = result.response.json()
        except json.JSONDecodeError as e:
            logger.warning("Analysis response is not JSON: %s", e)
            raise AnalysisFailed() from e

        record = parse_analysis(
            payload,
            image_ref=image_ref,
            location=location,
            model_version=self.model_version,
        )
        log_analysis_completed(
            get_logger("pipecount.remote"),
            record.id,
            record.counts.total,
            (time.monotonic() - started) * 1000,
        )
        return record


class HttpInventoryClient(ServiceClient):
    """Inventory sync through ``/api/inventory/sync``."""

    async def sync(self, record: AnalysisRecord) -> RemoteResult:
        result = await self.post("/api/inventory/sync", json=_record_json(record))
        if not result.success:
            logger.warning("Inventory sync failed: record_id=%s, error=%s", record.id, result.error)
            return RemoteResult(success=False, message=INVENTORY_UNAVAILABLE)
        return RemoteResult(
            success=True,
            message=f"Inventory sync successful for Analysis ID: {record.id[-6:]}",
        )


class HttpFeedbackClient(ServiceClient):
    """Training feedback through ``/api/feedback``."""

    async def submit(self, record: AnalysisRecord) -> RemoteResult:
        """Submit corrected detections.

        Raises:
            FeedbackFailed: If the server rejects the submission
        """
        result = await self.post("/api/feedback", json=_record_json(record))
        if not result.success:
            logger.warning("Feedback submission failed: record_id=%s, error=%s", record.id, result.error)
            raise FeedbackFailed("Failed to submit feedback. Please retry.")
        return RemoteResult(success=True, message=FEEDBACK_RECEIVED)
