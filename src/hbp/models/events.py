"""Progress events emitted by the generation pipeline."""

import json
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, Field

from .scene import GenerationResult


class _Event(BaseModel):
    message: str = ""

    def to_sse(self) -> str:
        """Render the event as one server-sent-events frame."""
        return f"data: {json.dumps(self.model_dump(mode='json'))}\n\n"


class StatusEvent(_Event):
    """Pipeline start."""
    type: Literal["status"] = "status"
    total_scenes: int
    current_scene: int = 0


class ProgressEvent(_Event):
    """A scene is about to be generated."""
    type: Literal["progress"] = "progress"
    current_scene: int
    total_scenes: int
    scene_number: int
    title: str
    rate_limited: bool = Field(default=False, description="Run is in image-only mode")


class SceneCompleteEvent(_Event):
    """A scene resolved, successfully or not."""
    type: Literal["scene_complete"] = "scene_complete"
    scene: GenerationResult
    current_scene: int
    total_scenes: int


class CompleteEvent(_Event):
    """Every scene resolved."""
    type: Literal["complete"] = "complete"
    results: List[GenerationResult]
    rate_limited_count: int = 0
    success: bool = True


class ErrorEvent(_Event):
    """The run aborted outside any single scene."""
    type: Literal["error"] = "error"
    error: Optional[str] = None
    success: bool = False


PipelineEvent = Union[StatusEvent, ProgressEvent, SceneCompleteEvent, CompleteEvent, ErrorEvent]
