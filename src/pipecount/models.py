"""Record types shared by the queue, the history and the remote analyzer."""

from __future__ import annotations

import math
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable

from pydantic import BaseModel, ConfigDict, Field, model_validator

from pipecount.errors import ValidationViolation

# Id prefixes encode provenance
QUEUED_PREFIX = "queued"
MANUAL_PREFIX = "manual"
ANALYSIS_PREFIX = "analysis"

MANUAL_MODEL_VERSION = "Manual Entry"
PENDING_MODEL_VERSION = "N/A"

QUEUED_NOTE = "This analysis is queued and will be processed when you are back online."
MANUAL_NOTE = "This report was created manually."


class IdKind(str, Enum):
    """Provenance encoded in a record id prefix."""

    QUEUED = QUEUED_PREFIX
    MANUAL = MANUAL_PREFIX
    ANALYSIS = ANALYSIS_PREFIX


def new_record_id(kind: IdKind) -> str:
    """Mint a globally unique id in the given namespace."""
    return f"{kind.value}_{uuid.uuid4().hex}"


def id_kind(record_id: str) -> IdKind | None:
    """Return the namespace of a record id, or None for foreign ids."""
    prefix, _, _ = record_id.partition("_")
    try:
        return IdKind(prefix)
    except ValueError:
        return None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def clamp(value: Any, low: float, high: float, default: float | None = None) -> float:
    """Coerce ``value`` to a float within [low, high].

    Non-numeric values and NaN become ``default`` (``low`` when unset).
    """
    fallback = low if default is None else default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return fallback
    if math.isnan(number):
        return fallback
    return min(max(number, low), high)


class PipeSize(str, Enum):
    """Size category of a detected pipe end."""

    SMALL = "Small"
    MEDIUM = "Medium"
    LARGE = "Large"
    UNKNOWN = "Unknown"

    @classmethod
    def parse(cls, value: object) -> "PipeSize":
        """Map analyzer output to a category, defaulting to UNKNOWN."""
        try:
            return cls(str(value).strip().capitalize())
        except ValueError:
            return cls.UNKNOWN


class BoundingBox(BaseModel):
    """Detection region as percentages of the image dimensions."""

    model_config = ConfigDict(frozen=True)

    x: float = Field(ge=0, le=100)
    y: float = Field(ge=0, le=100)
    width: float = Field(ge=0, le=100)
    height: float = Field(ge=0, le=100)

    @model_validator(mode="after")
    def _check_extent(self) -> "BoundingBox":
        # small tolerance for float noise from percentage math
        if self.x + self.width > 100.0001 or self.y + self.height > 100.0001:
            raise ValueError("bounding box extends past the image edge")
        return self

    @classmethod
    def clamped(cls, x: float, y: float, width: float, height: float) -> "BoundingBox":
        """Build a valid box from arbitrary numbers, shrinking it to fit."""
        x = clamp(x, 0.0, 100.0)
        y = clamp(y, 0.0, 100.0)
        width = clamp(width, 0.0, 100.0 - x)
        height = clamp(height, 0.0, 100.0 - y)
        return cls(x=x, y=y, width=width, height=height)


class Detection(BaseModel):
    """One detected pipe end."""

    model_config = ConfigDict(frozen=True)

    id: str
    size: PipeSize = PipeSize.UNKNOWN
    bounding_box: BoundingBox
    confidence: float = Field(default=1.0, ge=0, le=1)


class Location(BaseModel):
    """Coordinate snapshot taken at capture time."""

    model_config = ConfigDict(frozen=True)

    latitude: float | None = None
    longitude: float | None = None
    timestamp: datetime | None = None
    error: str | None = None

    @property
    def available(self) -> bool:
        return self.latitude is not None and self.longitude is not None


def _empty_by_size() -> dict[PipeSize, int]:
    return {size: 0 for size in PipeSize}


class Counts(BaseModel):
    """Total count plus per-size counts; total always equals the sum."""

    model_config = ConfigDict(frozen=True)

    total: int = 0
    by_size: dict[PipeSize, int] = Field(default_factory=_empty_by_size)

    @model_validator(mode="after")
    def _check_total(self) -> "Counts":
        for size in PipeSize:
            self.by_size.setdefault(size, 0)
        if self.total != sum(self.by_size.values()):
            raise ValueError("total does not match the per-size counts")
        return self

    @classmethod
    def from_detections(cls, detections: Iterable[Detection]) -> "Counts":
        by_size = _empty_by_size()
        for detection in detections:
            by_size[detection.size] += 1
        return cls(total=sum(by_size.values()), by_size=by_size)


class SourceKind(str, Enum):
    AI_MODEL = "ai_model"
    MANUAL_ENTRY = "manual_entry"


class RecordSource(BaseModel):
    """Who produced a record: an AI model version or a human."""

    model_config = ConfigDict(frozen=True)

    kind: SourceKind
    model_version: str

    @classmethod
    def ai_model(cls, version: str) -> "RecordSource":
        return cls(kind=SourceKind.AI_MODEL, model_version=version)

    @classmethod
    def manual(cls) -> "RecordSource":
        return cls(kind=SourceKind.MANUAL_ENTRY, model_version=MANUAL_MODEL_VERSION)


class AnalysisRecord(BaseModel):
    """The canonical unit of history.

    Records are immutable values; edits produce a new record through
    ``model_copy`` and are written back through the history store.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    timestamp: datetime = Field(default_factory=utcnow)
    image: str
    location: Location = Field(default_factory=Location)
    counts: Counts = Field(default_factory=Counts)
    detections: tuple[Detection, ...] = ()
    notes: str = ""
    is_pending: bool = False
    confidence: float = Field(default=0.0, ge=0, le=1)
    source: RecordSource
    feedback_submitted: bool = False
    verified: bool = False

    @property
    def is_manual(self) -> bool:
        return self.source.kind is SourceKind.MANUAL_ENTRY

    def check_invariants(self) -> None:
        """Raise ValidationViolation if counts disagree with detections."""
        expected = Counts.from_detections(self.detections)
        if self.counts != expected:
            raise ValidationViolation(
                f"record {self.id} counts {self.counts.total} "
                f"but carries {expected.total} detections"
            )

    def with_detections(self, detections: Iterable[Detection]) -> "AnalysisRecord":
        """Return a copy carrying new detections and recomputed counts."""
        detections = tuple(detections)
        return self.model_copy(
            update={"detections": detections, "counts": Counts.from_detections(detections)}
        )


class QueuedCapture(BaseModel):
    """A durable, not yet analyzed capture waiting for connectivity."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: new_record_id(IdKind.QUEUED))
    timestamp: datetime = Field(default_factory=utcnow)
    image: str
    location: Location = Field(default_factory=Location)


def placeholder_record(capture: QueuedCapture) -> AnalysisRecord:
    """Pending history entry that stands in for a queued capture."""
    return AnalysisRecord(
        id=capture.id,
        timestamp=capture.timestamp,
        image=capture.image,
        location=capture.location,
        notes=QUEUED_NOTE,
        is_pending=True,
        confidence=0.0,
        source=RecordSource.ai_model(PENDING_MODEL_VERSION),
    )


def manual_record(image: str, location: Location | None = None) -> AnalysisRecord:
    """Human-authored record, trusted at confidence 1.0."""
    return AnalysisRecord(
        id=new_record_id(IdKind.MANUAL),
        image=image,
        location=location or Location(),
        notes=MANUAL_NOTE,
        confidence=1.0,
        source=RecordSource.manual(),
        verified=True,
    )
