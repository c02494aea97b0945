"""Conversion of analyzer JSON payloads into analysis records.

The analyzer answers with the shape::

    {
      "pipes": [
        {"size": "Small", "boundingBox": {"x": 1, "y": 2, "width": 3, "height": 4},
         "confidence": 0.93}
      ],
      "overallConfidence": 0.88,
      "notes": "12 pipes: 5 small, 7 medium",
      "modelVersion": "gemini-2.5-flash"
    }

``modelVersion`` is optional.
"""

from __future__ import annotations

import uuid
from typing import Any

from pydantic import ValidationError

from pipecount.errors import AnalysisFailed
from pipecount.models import (
    AnalysisRecord,
    BoundingBox,
    Counts,
    Detection,
    IdKind,
    Location,
    PipeSize,
    RecordSource,
    clamp,
    new_record_id,
)


def parse_detections(pipes: list[dict[str, Any]]) -> list[Detection]:
    """Build detections, repairing out-of-range boxes and sizes."""
    batch = uuid.uuid4().hex[:8]
    detections = []
    for index, pipe in enumerate(pipes):
        box = pipe.get("boundingBox") or pipe.get("bounding_box") or {}
        detections.append(
            Detection(
                id=f"pipe_{index}_{batch}",
                size=PipeSize.parse(pipe.get("size")),
                bounding_box=BoundingBox.clamped(
                    box.get("x", 0),
                    box.get("y", 0),
                    box.get("width", 0),
                    box.get("height", 0),
                ),
                confidence=clamp(pipe.get("confidence"), 0.0, 1.0),
            )
        )
    return detections


def parse_analysis(
    payload: Any,
    *,
    image_ref: str,
    location: Location,
    model_version: str,
) -> AnalysisRecord:
    """Turn an analyzer response into a completed record with a fresh id.

    Raises:
        AnalysisFailed: If the payload does not have the expected shape or
            holds values no record can carry
    """
    if not isinstance(payload, dict) or not isinstance(payload.get("pipes"), list):
        raise AnalysisFailed()

    try:
        detections = parse_detections(payload["pipes"])
        return AnalysisRecord(
            id=new_record_id(IdKind.ANALYSIS),
            image=image_ref,
            location=location,
            counts=Counts.from_detections(detections),
            detections=tuple(detections),
            notes=str(payload.get("notes") or ""),
            is_pending=False,
            confidence=clamp(payload.get("overallConfidence"), 0.0, 1.0),
            source=RecordSource.ai_model(str(payload.get("modelVersion") or model_version)),
        )
    except (AttributeError, TypeError, ValueError, ValidationError) as e:
        raise AnalysisFailed() from e
