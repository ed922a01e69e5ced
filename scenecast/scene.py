"""
Scene Data Models

Immutable records passed from the heuristic analyzer to the description queue.
A SceneDescriptor is built once per analyzed frame and consumed once.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Tuple

import pydantic
from pydantic import BaseModel, ConfigDict, Field

from .exceptions import ValidationError
from .frames import strip_data_url

UNKNOWN_AGE = "unknown age"
NEUTRAL_EXPRESSION = "neutral expression"


@dataclass(frozen=True)
class Alert:
    """Heuristic alert raised for a person."""
    type: str  # warning, danger
    reason: str

    def to_dict(self) -> Dict[str, str]:
        return {"type": self.type, "reason": self.reason}


@dataclass(frozen=True)
class Annotation:
    """Per-person attributes coming from face analysis or heuristics."""
    age_range: str = UNKNOWN_AGE
    expression: str = NEUTRAL_EXPRESSION
    confidence: float = 0.0
    alert: Optional[Alert] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ageRange": self.age_range,
            "expression": self.expression,
            "confidence": self.confidence,
            "alert": self.alert.to_dict() if self.alert else None,
        }


@dataclass(frozen=True)
class PersonInfo:
    """Everything the commentary knows about one person."""
    pose: str
    position: str
    activity: str = ""
    movement: str = ""
    annotation: Annotation = field(default_factory=Annotation)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pose": self.pose,
            "position": self.position,
            "activity": self.activity,
            "movement": self.movement,
            "annotation": self.annotation.to_dict(),
        }


@dataclass(frozen=True)
class SceneDescriptor:
    """Snapshot of one analyzed frame, the unit of work for descriptions."""
    people: Tuple[PersonInfo, ...] = ()
    objects: Tuple[str, ...] = ()
    frame: Optional[str] = None  # base64 JPEG, no data: prefix
    is_scenic: bool = False
    error: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not self.people and not self.objects

    def to_dict(self, include_frame: bool = False) -> Dict[str, Any]:
        data = {
            "people": [p.to_dict() for p in self.people],
            "objects": list(self.objects),
            "isScenic": self.is_scenic,
            "error": self.error,
        }
        if include_frame:
            data["frame"] = self.frame
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SceneDescriptor":
        """Build a descriptor from the camelCase payload used on the wire."""
        if not isinstance(data, dict):
            raise ValidationError("scene payload must be an object")

        try:
            people = tuple(_person_from_dict(p) for p in data.get("people") or [])
            objects = tuple(str(o) for o in data.get("objects") or [])
            frame = data.get("frame")
            frame = strip_data_url(frame) if frame else None
        except (TypeError, ValueError, AttributeError, KeyError) as e:
            raise ValidationError(f"malformed scene payload: {e}") from e

        return cls(
            people=people,
            objects=objects,
            frame=frame,
            is_scenic=bool(data.get("isScenic", data.get("is_scenic", False))),
            error=data.get("error") or None,
        )


def _person_from_dict(data: Dict[str, Any]) -> PersonInfo:
    annotation = data.get("annotation") or {}
    alert = annotation.get("alert")
    return PersonInfo(
        pose=str(data["pose"]),
        position=str(data["position"]),
        activity=str(data.get("activity") or ""),
        movement=str(data.get("movement") or ""),
        annotation=Annotation(
            age_range=annotation.get("ageRange") or UNKNOWN_AGE,
            expression=annotation.get("expression") or NEUTRAL_EXPRESSION,
            confidence=float(annotation.get("confidence") or 0.0),
            alert=Alert(type=alert["type"], reason=alert["reason"]) if alert else None,
        ),
    )


@dataclass
class PersonAnnotation:
    """Overlay record for one detected person (drawn by the renderer)."""
    track_id: str
    bbox: List[float]
    person: PersonInfo
    score: float = 0.0

    @property
    def alert(self) -> Optional[Alert]:
        return self.person.annotation.alert

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.track_id,
            "bbox": list(self.bbox),
            "score": self.score,
            **self.person.to_dict(),
        }


# ============================================================================
# Wire payload validation
# ============================================================================

class AlertModel(BaseModel):
    type: Literal["warning", "danger"]
    reason: str


class AnnotationModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    age_range: Optional[str] = Field(default=None, alias="ageRange")
    expression: Optional[str] = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    alert: Optional[AlertModel] = None


class PersonModel(BaseModel):
    pose: str
    position: str
    activity: str = ""
    movement: str = ""
    annotation: AnnotationModel = Field(default_factory=AnnotationModel)


class SceneModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    people: List[PersonModel] = Field(default_factory=list)
    objects: List[str] = Field(default_factory=list)
    frame: Optional[str] = None
    is_scenic: bool = Field(default=False, alias="isScenic")
    error: Optional[str] = None


def parse_scene(payload: Any) -> SceneDescriptor:
    """Validate an external payload (HTTP body, CLI file) into a SceneDescriptor."""
    try:
        model = SceneModel.model_validate(payload)
    except pydantic.ValidationError as e:
        raise ValidationError(f"invalid scene payload: {e.error_count()} error(s): {e.errors()[0]['msg']}") from e
    return SceneDescriptor.from_dict(model.model_dump(by_alias=True))
