"""Claude-backed agents."""

from .base import BaseAgent
from .curator import CuratorAgent, CuratorInput, detect_phase, manage_context

__all__ = [
    "BaseAgent",
    "CuratorAgent",
    "CuratorInput",
    "detect_phase",
    "manage_context",
]
