"""Data models for History By People."""

from .scene import Scene, SceneStatus, GenerationResult, MEDIA_VALIDITY, utcnow
from .conversation import Role, Phase, Message, ConversationRecord
from .persona import PersonaStatus, PersonaMetadata, PersonaRecord
from .events import (
    StatusEvent,
    ProgressEvent,
    SceneCompleteEvent,
    CompleteEvent,
    ErrorEvent,
    PipelineEvent,
)

__all__ = [
    "Scene",
    "SceneStatus",
    "GenerationResult",
    "MEDIA_VALIDITY",
    "utcnow",
    "Role",
    "Phase",
    "Message",
    "ConversationRecord",
    "PersonaStatus",
    "PersonaMetadata",
    "PersonaRecord",
    "StatusEvent",
    "ProgressEvent",
    "SceneCompleteEvent",
    "CompleteEvent",
    "ErrorEvent",
    "PipelineEvent",
]
