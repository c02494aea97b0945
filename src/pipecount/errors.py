"""Exception hierarchy for the pipecount client.

Storage failures are fatal to the user action that triggered them and are
always reported. Analysis failures are reported per call for live captures
and folded into aggregate counts for queued replays.
"""

from __future__ import annotations


class PipeCountError(Exception):
    """Base class for all pipecount errors."""


class StorageUnavailable(PipeCountError):
    """The queue or history persistence layer could not be opened or written.

    Raised when:
    - the SQLite queue database cannot be created or a write fails
    - the history file cannot be written (disk full, permissions)
    """


class AnalysisFailed(PipeCountError):
    """The remote analyzer rejected or could not process an image.

    The message is always user-facing; transport details go to the log only.
    """

    DEFAULT_MESSAGE = (
        "The AI model could not process the image. It might be too blurry "
        "or in an unsupported format. Please try again."
    )

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.DEFAULT_MESSAGE)


class ValidationViolation(PipeCountError):
    """A record breaks a structural invariant (counts or bounding boxes).

    Only produced by malformed detection edits and repaired locally.
    """


class RemoteServiceError(PipeCountError):
    """An auxiliary remote service (inventory, feedback) failed."""


class FeedbackFailed(RemoteServiceError):
    """Submitting corrections for model training failed."""


class InventorySyncFailed(RemoteServiceError):
    """Pushing a verified count to the inventory system failed."""


class RecordNotFound(PipeCountError):
    """No history record exists with the requested id."""

    def __init__(self, record_id: str) -> None:
        super().__init__(f"No analysis record with id {record_id!r}")
        self.record_id = record_id


class InvalidTransition(PipeCountError):
    """A lifecycle operation is not allowed in the record's current state."""

    def __init__(self, record_id: str, state: str, operation: str) -> None:
        super().__init__(f"Cannot {operation} record {record_id!r} in state {state}")
        self.record_id = record_id
        self.state = state
        self.operation = operation


class ConsentRequired(PipeCountError):
    """The user has not accepted the data policy required for AI analysis."""

    def __init__(self) -> None:
        super().__init__(
            "You must consent to the data policy to use the AI analysis feature."
        )


class InvalidImage(PipeCountError):
    """The captured bytes are not a decodable image."""

    def __init__(self) -> None:
        super().__init__("The captured image could not be read. Please try again.")
