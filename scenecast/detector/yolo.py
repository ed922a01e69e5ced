"""
YOLO Detection Wrapper

Wrapper for Ultralytics YOLO model, returning pixel [x, y, w, h] boxes.
"""

import logging
from typing import Any, List, Optional

from .models import Detection, clamp_score

logger = logging.getLogger(__name__)


# =============================================================================
# YOLO AVAILABILITY
# =============================================================================

_YOLO_AVAILABLE = None


def is_yolo_available() -> bool:
    """Check if YOLO is available."""
    global _YOLO_AVAILABLE

    if _YOLO_AVAILABLE is None:
        try:
            from ultralytics import YOLO  # noqa: F401
            _YOLO_AVAILABLE = True
        except ImportError:
            _YOLO_AVAILABLE = False

    return _YOLO_AVAILABLE


# =============================================================================
# YOLO DETECTOR
# =============================================================================

class YOLODetector:
    """YOLO object detection wrapper."""

    def __init__(
        self,
        model_path: str = "yolov8n.pt",
        min_score: float = 0.3,
        max_results: int = 20,
        device: str = "cpu",
    ):
        """
        Initialize YOLO detector.

        Args:
            model_path: Path to YOLO model or model name
            min_score: Detection confidence threshold
            max_results: Maximum number of detections per frame
            device: Device to use (cpu, cuda, etc.)
        """
        self.model_path = model_path
        self.min_score = min_score
        self.max_results = max_results
        self.device = device
        self._model = None

    @property
    def model(self):
        """Lazy load YOLO model."""
        if self._model is None:
            if not is_yolo_available():
                raise RuntimeError("YOLO not available. Install with: pip install scenecast[yolo]")

            from ultralytics import YOLO
            self._model = YOLO(self.model_path)

        return self._model

    def detect(self, frame: Any, classes: Optional[List[int]] = None) -> List[Detection]:
        """
        Detect objects in a frame.

        Args:
            frame: BGR numpy array or image path
            classes: Optional list of class IDs to detect (None = all)

        Returns:
            List of Detection objects, highest score first
        """
        if not is_yolo_available():
            return []

        try:
            results = self.model(
                frame,
                conf=self.min_score,
                classes=classes,
                max_det=self.max_results,
                device=self.device,
                verbose=False,
            )
        except Exception as e:
            logger.debug(f"YOLO detection error: {e}")
            return []

        detections = []
        for result in results:
            if result.boxes is None:
                continue
            names = getattr(result, "names", None) or {}

            for box in result.boxes:
                x1, y1, x2, y2 = box.xyxy[0].tolist()
                cls_id = int(box.cls[0])
                detections.append(Detection(
                    bbox=(x1, y1, x2 - x1, y2 - y1),
                    label=names.get(cls_id, f"class_{cls_id}"),
                    score=clamp_score(box.conf[0]),
                ))

        detections.sort(key=lambda d: d.score, reverse=True)
        return detections[:self.max_results]
