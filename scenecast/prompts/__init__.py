"""
Prompt Management for SceneCast

Prompts live in editable text files next to this module and can be
overridden with environment variables.

Usage:
    from scenecast.prompts import get_prompt, render_prompt

    system = get_prompt("scene_system")
    prompt = render_prompt("scene_user", scene_context="A person (20-30, happy) ...")
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

# Directory containing prompt files
PROMPTS_DIR = Path(__file__).parent

# Cache for loaded prompts
_cache: Dict[str, str] = {}


def get_prompt(name: str, default: Optional[str] = None) -> str:
    """Load prompt template by name.

    Looks for:
    1. Environment variable SC_PROMPT_{NAME} (uppercase)
    2. File prompts/{name}.txt
    3. Default value if provided
    """
    env_value = os.environ.get(f"SC_PROMPT_{name.upper()}")
    if env_value:
        return env_value

    if name in _cache:
        return _cache[name]

    txt_path = PROMPTS_DIR / f"{name}.txt"
    if txt_path.exists():
        template = txt_path.read_text(encoding="utf-8").strip()
        _cache[name] = template
        return template

    if default is not None:
        return default

    logger.warning(f"Prompt '{name}' not found in {PROMPTS_DIR}")
    return ""


def render_prompt(name: str, default: Optional[str] = None, **kwargs: Any) -> str:
    """Load and render prompt template with str.format variables."""
    template = get_prompt(name, default)
    if not template:
        return ""

    try:
        return template.format(**kwargs)
    except (KeyError, IndexError) as e:
        logger.warning(f"Missing variable {e} in prompt '{name}'")
        return template


def reload_prompts():
    """Clear prompt cache to force reload from files."""
    _cache.clear()
