"""Persona visual story model."""

import re
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from .scene import GenerationResult, utcnow


class PersonaStatus(str, Enum):
    """Generation state of a persona's visual story."""
    GENERATING = "generating"
    COMPLETE = "complete"


class PersonaMetadata(BaseModel):
    """Bookkeeping attached to a persona record."""

    status: PersonaStatus = Field(default=PersonaStatus.GENERATING)
    total_scenes: int = Field(default=0, ge=0)
    rate_limited_scenes: int = Field(default=0, ge=0)


class PersonaRecord(BaseModel):
    """A persona and the generated scenes of its visual story."""

    id: str = Field(..., description="Stable id from conversation id and persona name")
    conversation_id: str
    persona_name: str
    scenes: List[GenerationResult] = Field(default_factory=list)
    metadata: PersonaMetadata = Field(default_factory=PersonaMetadata)
    created_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    @staticmethod
    def make_id(conversation_id: str, persona_name: str) -> str:
        slug = re.sub(r"\s+", "_", persona_name.strip())
        return f"{conversation_id}_{slug}"

    @classmethod
    def start(
        cls,
        conversation_id: str,
        persona_name: str,
        scenes: List[GenerationResult],
    ) -> "PersonaRecord":
        """Create the record stored when a generation run begins."""
        return cls(
            id=cls.make_id(conversation_id, persona_name),
            conversation_id=conversation_id,
            persona_name=persona_name,
            scenes=scenes,
            metadata=PersonaMetadata(total_scenes=len(scenes)),
        )

    def scene(self, scene_number: int) -> Optional[GenerationResult]:
        for result in self.scenes:
            if result.scene_number == scene_number:
                return result
        return None
