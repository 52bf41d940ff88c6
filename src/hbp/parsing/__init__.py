"""Parsing of curator replies into scenes and persona names."""

from .scenes import extract_scenes, has_scene_markers
from .persona import resolve_persona_name, DEFAULT_PERSONA_NAME

__all__ = [
    "extract_scenes",
    "has_scene_markers",
    "resolve_persona_name",
    "DEFAULT_PERSONA_NAME",
]
