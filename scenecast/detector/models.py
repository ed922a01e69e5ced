"""
Detection Models

Detector-agnostic detection record and normalization of raw detector output.
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, Iterable, List, Protocol, Tuple

logger = logging.getLogger(__name__)

PERSON_LABEL = "person"


@dataclass(frozen=True)
class Detection:
    """Single object detection; bbox is [x, y, w, h] in pixels."""
    bbox: Tuple[float, float, float, float]
    label: str
    score: float

    @property
    def center(self) -> Tuple[float, float]:
        x, y, w, h = self.bbox
        return (x + w / 2, y + h / 2)

    @property
    def is_person(self) -> bool:
        return self.label == PERSON_LABEL

    def to_dict(self) -> dict:
        return {"bbox": list(self.bbox), "label": self.label, "score": self.score}


class Detector(Protocol):
    """Anything that turns a frame into detections."""

    def detect(self, frame: Any) -> List[Detection]:
        ...


def clamp_score(score: float) -> float:
    return min(1.0, max(0.0, float(score)))


def normalize_detections(raw: Iterable[dict]) -> List[Detection]:
    """Convert detector dicts into Detection objects.

    Accepts ``{"bbox", "label", "score"}`` and the COCO-SSD shape
    ``{"bbox", "class", "score"}``. Malformed entries are dropped.
    """
    detections = []
    for item in raw or []:
        try:
            label = item.get("label") or item.get("class")
            x, y, w, h = (float(v) for v in item["bbox"])
            score = float(item.get("score", 0.0))
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Dropping malformed detection {item!r}: {e}")
            continue

        if not label or not all(math.isfinite(v) for v in (x, y, w, h, score)):
            logger.warning(f"Dropping malformed detection {item!r}")
            continue
        if w < 0 or h < 0:
            logger.warning(f"Dropping detection with negative size {item!r}")
            continue

        detections.append(Detection(bbox=(x, y, w, h), label=str(label), score=clamp_score(score)))
    return detections
