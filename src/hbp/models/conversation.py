"""Conversation transcript models."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List

from pydantic import BaseModel, Field

from .scene import utcnow


class Role(str, Enum):
    """Speaker of a chat message."""
    USER = "user"
    ASSISTANT = "assistant"


class Phase(str, Enum):
    """Stage of the curated conversation."""
    CLARIFICATION = "clarification"
    CURATION = "curation"
    VISUALIZATION = "visualization"


class Message(BaseModel):
    """A single chat turn."""

    role: Role
    content: str
    timestamp: datetime = Field(default_factory=utcnow)

    def to_api(self) -> Dict[str, str]:
        """Return the role/content pair sent to the LLM."""
        return {"role": self.role.value, "content": self.content}


class ConversationRecord(BaseModel):
    """Persisted conversation transcript."""

    id: str = Field(..., description="Conversation identifier")
    title: str = Field(default="New Conversation")
    created_at: datetime = Field(default_factory=utcnow)
    last_modified: datetime = Field(default_factory=utcnow)
    messages: List[Message] = Field(default_factory=list)
    current_phase: Phase = Field(default=Phase.CLARIFICATION)
    metadata: Dict[str, Any] = Field(default_factory=dict)
