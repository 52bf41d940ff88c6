"""Scene media generation pipeline."""

from .generation import (
    GenerationPipeline,
    ImageGenerator,
    VideoGenerator,
    RunContext,
    sanitize_prompt,
    simplify_prompt,
    video_prompt,
    MAX_PROMPT_LENGTH,
)
from .recorder import persist_progress, persist_regeneration

__all__ = [
    "GenerationPipeline",
    "ImageGenerator",
    "VideoGenerator",
    "RunContext",
    "sanitize_prompt",
    "simplify_prompt",
    "video_prompt",
    "MAX_PROMPT_LENGTH",
    "persist_progress",
    "persist_regeneration",
]
