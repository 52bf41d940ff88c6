"""Scene and generation result models."""

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

MEDIA_VALIDITY = timedelta(hours=24)


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class SceneStatus(str, Enum):
    """Lifecycle of a scene's media generation."""
    PENDING = "pending"
    GENERATING = "generating"
    COMPLETE = "complete"
    FAILED = "failed"


class Scene(BaseModel):
    """One unit of narrative plus rendering instruction from a curator reply."""

    scene_number: int = Field(..., description="1-based position in the sequence", gt=0)
    title: str = Field(..., description="Scene title", min_length=1)
    visual_prompt: str = Field(default="", description="Image generation instruction")
    context: str = Field(default="", description="Narrative accompanying the scene")


class GenerationResult(Scene):
    """A scene together with the media produced for it."""

    image_url: Optional[str] = Field(None, description="Generated still")
    video_url: Optional[str] = Field(
        None, description="Generated clip, or the still when video degraded"
    )
    status: SceneStatus = Field(default=SceneStatus.PENDING)
    error: Optional[str] = Field(None, description="Failure message, set iff failed")
    error_code: Optional[str] = Field(None, description="Service failure code")
    video_error: Optional[str] = Field(
        None, description="Why the clip fell back to the still"
    )
    video_fallback: bool = Field(default=False)
    is_rate_limited: bool = Field(default=False)
    retried: bool = Field(default=False, description="Succeeded or failed on the simplified prompt")
    created_at: Optional[datetime] = None
    generated_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    last_updated: Optional[datetime] = None

    @classmethod
    def pending(cls, scene: Scene) -> "GenerationResult":
        """Build the placeholder stored before generation starts.

        Only the scene fields carry over when ``scene`` is itself a result.
        """
        return cls(**scene.model_dump(include=set(Scene.model_fields)), created_at=utcnow())

    def is_media_valid(self, now: Optional[datetime] = None) -> bool:
        """Check whether the clip reference is still inside its validity window.

        Records without any timestamp predate expiry tracking and are
        assumed valid.
        """
        if not self.video_url:
            return False

        if self.expires_at is not None:
            deadline = self.expires_at
        elif self.generated_at is not None:
            deadline = self.generated_at + MEDIA_VALIDITY
        elif self.created_at is not None:
            deadline = self.created_at + MEDIA_VALIDITY
        else:
            return True

        return (now or utcnow()) < deadline
