"""
Geometry Heuristics for Person Detections

Classifies pose, position, activity and motion from bounding boxes alone,
and assembles the per-frame SceneDescriptor.

Features:
- Pose from box aspect ratio and relative height
- Position from horizontal thirds and apparent depth
- Motion labels and sudden-movement flags from a short position history
- Proximity conflicts from pairwise centre distances
- Optional face attributes (age, expression) matched to person boxes

Usage:
    from scenecast.heuristics import SceneAnalyzer, Viewport

    analyzer = SceneAnalyzer()
    scene, annotations = analyzer.analyze(detections, Viewport(1280, 720))
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Protocol, Sequence, Tuple

import numpy as np

from .config import Settings
from .detector.models import Detection
from .scene import (
    NEUTRAL_EXPRESSION,
    Alert,
    Annotation,
    PersonAnnotation,
    PersonInfo,
    SceneDescriptor,
)
from .tracking import BBox, PositionHistory, ProximityTracker, Tracker, TrackedPosition, bbox_center, distance

logger = logging.getLogger(__name__)


# ============================================================================
# Labels and thresholds
# ============================================================================

POSE_UPRIGHT = "upright"
POSE_LYING = "lying down"
POSE_SITTING = "sitting"
POSE_FAR = "standing far from the camera"
POSE_CLOSE = "standing close to the camera"
POSE_MEDIUM = "standing at a medium distance"

MOVEMENT_STILL = "standing still"
MOVEMENT_APPEARED = "just appeared"

ACTIVITY_AGGRESSIVE = "aggressive movement"
ACTIVITY_CLOSE = "close to another person"
ACTIVITY_RESTING = "resting"

SUDDEN_MOVEMENT_REASON = "Sudden aggressive movement detected"
PROXIMITY_REASON = "Close proximity conflict detected"

UPRIGHT_MAX_ASPECT = 0.4
LYING_MIN_ASPECT = 1.2
SITTING_MIN_ASPECT = 0.8
FAR_MAX_HEIGHT = 0.25
CLOSE_MIN_HEIGHT = 0.6
FOREGROUND_MIN_HEIGHT = 0.5


class Viewport(NamedTuple):
    width: float
    height: float


# ============================================================================
# Pure classifiers
# ============================================================================

def classify_pose(bbox: BBox, viewport: Viewport) -> str:
    """Pose label from the box aspect ratio, falling back to apparent distance."""
    _, _, w, h = bbox[:4]
    if h <= 0:
        return POSE_LYING

    aspect = w / h
    if aspect < UPRIGHT_MAX_ASPECT:
        return POSE_UPRIGHT
    if aspect > LYING_MIN_ASPECT:
        return POSE_LYING
    if aspect > SITTING_MIN_ASPECT:
        return POSE_SITTING

    relative = h / viewport.height if viewport.height else 0.0
    if relative < FAR_MAX_HEIGHT:
        return POSE_FAR
    if relative > CLOSE_MIN_HEIGHT:
        return POSE_CLOSE
    return POSE_MEDIUM


def classify_position(bbox: BBox, viewport: Viewport) -> str:
    """Horizontal third plus foreground/background, as one phrase."""
    cx, _ = bbox_center(bbox)
    third = viewport.width / 3

    if cx < third:
        horizontal = "on the left"
    elif cx > 2 * third:
        horizontal = "on the right"
    else:
        horizontal = "in the center"

    relative = bbox[3] / viewport.height if viewport.height else 0.0
    depth = "in the foreground" if relative > FOREGROUND_MIN_HEIGHT else "in the background"
    return f"{horizontal} {depth}"


def motion_label(previous: Optional[Tuple[float, float]], current: Tuple[float, float],
                 threshold: float = 10.0) -> str:
    """Label each axis independently when it moved more than `threshold` px."""
    if previous is None:
        return MOVEMENT_APPEARED

    dx = current[0] - previous[0]
    dy = current[1] - previous[1]

    parts = []
    if abs(dx) > threshold:
        parts.append("moving right" if dx > 0 else "moving left")
    if abs(dy) > threshold:
        parts.append("moving down" if dy > 0 else "moving up")

    if not parts:
        return MOVEMENT_STILL
    if len(parts) == 2:
        return f"{parts[0]} and {parts[1].replace('moving ', '')}"
    return parts[0]


def is_sudden(previous: Optional[TrackedPosition], current: Tuple[float, float],
              now: float, speed_threshold: float = 100.0) -> bool:
    """True when the centre moved faster than `speed_threshold` px/s."""
    if previous is None:
        return False

    elapsed = now - previous.last_seen
    if elapsed <= 0:
        return False

    speed = distance(previous.center, current) / elapsed
    return speed > speed_threshold


def detect_proximity_conflict(annotations: Sequence[Any], threshold: float = 150.0) -> bool:
    """True if any two person boxes have centres closer than `threshold` px.

    Accepts anything with a ``bbox`` attribute, or raw [x, y, w, h] boxes.
    """
    boxes = [getattr(a, "bbox", a) for a in annotations]
    if len(boxes) < 2:
        return False

    centers = np.array([bbox_center(b) for b in boxes], dtype=float)
    diffs = centers[:, None, :] - centers[None, :, :]
    dists = np.sqrt((diffs ** 2).sum(axis=-1))
    upper = np.triu_indices(len(boxes), k=1)
    return bool((dists[upper] < threshold).any())


def classify_activity(pose: str, sudden: bool = False, conflict: bool = False) -> str:
    if sudden:
        return ACTIVITY_AGGRESSIVE
    if conflict:
        return ACTIVITY_CLOSE
    if pose == POSE_LYING:
        return ACTIVITY_RESTING
    return ""


def estimate_age_range(height: float, viewport_height: float) -> str:
    """Rough age bucket from apparent size, used when no face is visible."""
    if height < viewport_height * 0.15:
        return "20-30"
    if height < viewport_height * 0.25:
        return "30-40"
    return "25-35"


def age_range_from_age(age: float) -> str:
    low = int(age // 10 * 10)
    return f"{low}-{low + 10}"


# ============================================================================
# Motion analysis over the position history
# ============================================================================

@dataclass
class MotionObservation:
    movement: str
    sudden: bool


class MotionAnalyzer:
    """Motion labels and sudden-movement flags for tracked identities."""

    def __init__(self, history: PositionHistory, threshold_px: float = 10.0,
                 sudden_speed_px: float = 100.0):
        self.history = history
        self.threshold_px = threshold_px
        self.sudden_speed_px = sudden_speed_px

    def observe(self, track_id: str, bbox: BBox, now: Optional[float] = None) -> MotionObservation:
        """Update history once and derive both motion signals from it."""
        now = self.history.clock() if now is None else now
        center = bbox_center(bbox)
        previous = self.history.update(track_id, center[0], center[1], now)
        return MotionObservation(
            movement=motion_label(previous.center if previous else None, center, self.threshold_px),
            sudden=is_sudden(previous, center, now, self.sudden_speed_px),
        )

    def track_motion(self, track_id: str, bbox: BBox, now: Optional[float] = None) -> str:
        return self.observe(track_id, bbox, now).movement

    def detect_sudden_movement(self, track_id: str, bbox: BBox, now: Optional[float] = None) -> bool:
        return self.observe(track_id, bbox, now).sudden


# ============================================================================
# Face attributes
# ============================================================================

@dataclass
class FaceAttributes:
    """Output of a face/expression model for one face."""
    bbox: Tuple[float, float, float, float]
    age: Optional[float] = None
    expression: Optional[str] = None
    score: float = 0.0

    @classmethod
    def from_scores(cls, bbox: BBox, expressions: Dict[str, float],
                    age: Optional[float] = None, score: float = 0.0) -> "FaceAttributes":
        """Build from per-expression probabilities, keeping the dominant one."""
        expression = max(expressions.items(), key=lambda kv: kv[1])[0] if expressions else None
        return cls(bbox=tuple(bbox[:4]), age=age, expression=expression, score=score)


class FaceAnalyzer(Protocol):
    def analyze(self, frame: Any) -> List[FaceAttributes]:
        ...


def match_faces(person_boxes: Sequence[BBox], faces: Sequence[FaceAttributes]) -> List[Optional[FaceAttributes]]:
    """Give each person the best-scoring unused face whose centre lies in its box."""
    remaining = sorted(faces, key=lambda f: f.score, reverse=True)
    matched = []
    for x, y, w, h in (b[:4] for b in person_boxes):
        found = None
        for face in remaining:
            fx, fy = bbox_center(face.bbox)
            if x <= fx <= x + w and y <= fy <= y + h:
                found = face
                break
        if found is not None:
            remaining.remove(found)
        matched.append(found)
    return matched


# ============================================================================
# Scene assembly
# ============================================================================

class SceneAnalyzer:
    """Turns one frame's detections into a SceneDescriptor plus overlay records.

    Owns the position history; construct one per video source.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        tracker: Optional[Tracker] = None,
        face_analyzer: Optional[FaceAnalyzer] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings or Settings()
        self.history = PositionHistory(self.settings.motion_window_ms, clock)
        self.motion = MotionAnalyzer(
            self.history,
            threshold_px=self.settings.motion_threshold_px,
            sudden_speed_px=self.settings.sudden_speed_px,
        )
        self.tracker = tracker or ProximityTracker(self.history, self.settings.match_radius_px)
        self.face_analyzer = face_analyzer
        self.clock = clock

    def analyze(
        self,
        detections: Sequence[Detection],
        viewport: Viewport,
        frame: Any = None,
        frame_b64: Optional[str] = None,
        now: Optional[float] = None,
    ) -> Tuple[SceneDescriptor, List[PersonAnnotation]]:
        now = self.clock() if now is None else now
        people = [d for d in detections if d.is_person]
        objects = list(dict.fromkeys(d.label for d in detections if not d.is_person))

        boxes = [d.bbox for d in people]
        ids = self.tracker.assign(boxes, now)
        conflict = detect_proximity_conflict(boxes, self.settings.proximity_px)

        faces: List[Optional[FaceAttributes]] = [None] * len(people)
        if self.face_analyzer is not None and frame is not None and people:
            faces = match_faces(boxes, self.face_analyzer.analyze(frame))

        annotations = []
        for detection, track_id, face in zip(people, ids, faces):
            observation = self.motion.observe(track_id, detection.bbox, now)
            pose = classify_pose(detection.bbox, viewport)

            alert = None
            if observation.sudden:
                alert = Alert("danger", SUDDEN_MOVEMENT_REASON)
            elif conflict:
                alert = Alert("warning", PROXIMITY_REASON)

            if face is not None and face.age is not None:
                age_range = age_range_from_age(face.age)
            else:
                age_range = estimate_age_range(detection.bbox[3], viewport.height)
            expression = face.expression if face is not None and face.expression else NEUTRAL_EXPRESSION

            person = PersonInfo(
                pose=pose,
                position=classify_position(detection.bbox, viewport),
                activity=classify_activity(pose, observation.sudden, conflict),
                movement=observation.movement,
                annotation=Annotation(
                    age_range=age_range,
                    expression=expression,
                    confidence=detection.score,
                    alert=alert,
                ),
            )
            annotations.append(PersonAnnotation(track_id, list(detection.bbox), person, detection.score))

        if conflict:
            logger.debug(f"Proximity conflict between {len(people)} people")

        scene = SceneDescriptor(
            people=tuple(a.person for a in annotations),
            objects=tuple(objects),
            frame=frame_b64,
        )
        return scene, annotations

    def reset(self):
        self.history.clear()
