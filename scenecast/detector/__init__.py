"""
Detector Module - adapters between object detectors and the analyzer.

- models.py: Detection record, Detector protocol, normalization
- yolo.py: Ultralytics YOLO wrapper

Usage:
    from scenecast.detector import YOLODetector, normalize_detections

    detector = YOLODetector(min_score=0.3)
    detections = detector.detect(frame)
"""

from .models import (
    PERSON_LABEL,
    Detection,
    Detector,
    normalize_detections,
)

from .yolo import (
    YOLODetector,
    is_yolo_available,
)

__all__ = [
    "PERSON_LABEL",
    "Detection",
    "Detector",
    "normalize_detections",
    "YOLODetector",
    "is_yolo_available",
]
