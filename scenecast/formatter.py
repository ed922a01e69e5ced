"""
Commentary Formatter

Builds the chat request for the description model and the deterministic
template description used whenever the model is unavailable. Both carry the
same facts: pose, position, movement, activity, age range, expression and
nearby objects.
"""

from typing import Any, Dict, List, Sequence

from .frames import to_data_url
from .heuristics import MOVEMENT_APPEARED, MOVEMENT_STILL
from .prompts import get_prompt, render_prompt
from .scene import NEUTRAL_EXPRESSION, UNKNOWN_AGE, PersonInfo, SceneDescriptor

NO_DETECTION = "No objects or people detected in the scene."
SCENIC_FALLBACK = (
    "This video shows a scenic view. The analysis system is focusing on the "
    "natural elements and landscape features of the scene."
)
RATE_LIMITED = "Rate limit exceeded. Please try again in a moment."
PAUSED_PREFIX = "Analysis paused: "


def person_clause(person: PersonInfo) -> str:
    """One sentence for one person."""
    age = person.annotation.age_range or UNKNOWN_AGE
    expression = person.annotation.expression or NEUTRAL_EXPRESSION

    parts = [f"A person ({age}, {expression}) is {person.pose} {person.position}".rstrip()]
    if person.movement == MOVEMENT_APPEARED:
        parts.append("they just appeared")
    elif person.movement and person.movement != MOVEMENT_STILL:
        parts.append(f"they are {person.movement}")
    if person.activity:
        parts.append(f"while {person.activity}")
    return ", ".join(parts) + "."


def objects_sentence(objects: Sequence[str]) -> str:
    if not objects:
        return ""
    return f"Nearby objects include {' and '.join(objects)}."


def scene_context(scene: SceneDescriptor) -> str:
    """Plain-text summary of the detections, shared by both paths."""
    sentences = [person_clause(p) for p in scene.people]
    if scene.objects:
        sentences.append(objects_sentence(scene.objects))
    return " ".join(sentences)


def fallback_description(scene: SceneDescriptor) -> str:
    """Deterministic description used without a model.

    Always returns a non-empty sentence, including for empty scenes.
    """
    if scene.error:
        return scene.error

    if scene.is_empty:
        return SCENIC_FALLBACK if scene.is_scenic else NO_DETECTION

    return scene_context(scene)


def paused_message(error: str) -> str:
    return f"{PAUSED_PREFIX}{error}"


def build_messages(scene: SceneDescriptor) -> List[Dict[str, Any]]:
    """Chat-completion messages: system instruction, optional image, summary."""
    if scene.is_scenic and scene.is_empty:
        text = render_prompt("scenic_user")
    else:
        text = render_prompt("scene_user", scene_context=scene_context(scene) or NO_DETECTION)

    content: List[Dict[str, Any]] = []
    if scene.frame:
        content.append({"type": "image_url", "image_url": {"url": to_data_url(scene.frame)}})
    content.append({"type": "text", "text": text})

    return [
        {"role": "system", "content": get_prompt("scene_system")},
        {"role": "user", "content": content},
    ]
