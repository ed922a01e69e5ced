"""
SceneCast - rate-limited natural-language commentary for video scenes

Object detections and motion heuristics are turned into scene descriptors,
which a single-worker queue sends to a vision language model without
exceeding the provider's token budget. Without a model, descriptions come
from a deterministic template.

Heavy modules (openai, aiohttp, OpenCV) are imported only when accessed.
"""

__version__ = "0.1.0"
__license__ = "Apache-2.0"


# Lazy import system - modules loaded only when accessed
def __getattr__(name):
    """Lazy import handler - imports modules only when accessed."""

    # Configuration
    if name in ("Config", "Settings"):
        from . import config
        return getattr(config, name)

    # Analysis core
    if name in ("SceneAnalyzer", "Viewport", "detect_proximity_conflict"):
        from . import heuristics
        return getattr(heuristics, name)
    if name in ("SceneDescriptor", "PersonInfo", "Annotation", "Alert"):
        from . import scene
        return getattr(scene, name)
    if name in ("Detection", "normalize_detections"):
        from .detector import models
        return getattr(models, name)
    if name == "FrameSampler":
        from .sampler import FrameSampler
        return FrameSampler

    # Descriptions
    if name in ("DescriptionQueue", "build_queue"):
        from . import description_queue
        return getattr(description_queue, name)
    if name in ("RateLimiter", "estimate_tokens"):
        from . import rate_limiter
        return getattr(rate_limiter, name)
    if name in ("fallback_description", "build_messages"):
        from . import formatter
        return getattr(formatter, name)
    if name in ("CommentaryPipeline", "build_pipeline"):
        from . import pipeline
        return getattr(pipeline, name)

    # Diagnostics
    if name == "enable_diagnostics":
        from .diagnostics import enable_diagnostics
        return enable_diagnostics

    # Exceptions
    if name in ("SceneCastError", "ConfigurationError", "ProviderError",
                "RateLimitError", "EmptyResponseError", "ValidationError"):
        from . import exceptions
        return getattr(exceptions, name)

    raise AttributeError(f"module 'scenecast' has no attribute '{name}'")


__all__ = [
    "Config",
    "Settings",
    "SceneAnalyzer",
    "Viewport",
    "detect_proximity_conflict",
    "SceneDescriptor",
    "PersonInfo",
    "Annotation",
    "Alert",
    "Detection",
    "normalize_detections",
    "FrameSampler",
    "DescriptionQueue",
    "build_queue",
    "RateLimiter",
    "estimate_tokens",
    "fallback_description",
    "build_messages",
    "CommentaryPipeline",
    "build_pipeline",
    "enable_diagnostics",
    "SceneCastError",
    "ConfigurationError",
    "ProviderError",
    "RateLimitError",
    "EmptyResponseError",
    "ValidationError",
]
