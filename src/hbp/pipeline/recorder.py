"""Write-through persistence of pipeline progress."""

import logging
from typing import Iterable, Iterator, Sequence

from ..models import (
    CompleteEvent,
    ErrorEvent,
    GenerationResult,
    PersonaRecord,
    PersonaStatus,
    PipelineEvent,
    Scene,
    SceneCompleteEvent,
)
from ..storage import StorageManager

logger = logging.getLogger(__name__)


def persist_progress(
    events: Iterable[PipelineEvent],
    storage: StorageManager,
    conversation_id: str,
    persona_name: str,
    scenes: Sequence[Scene],
) -> Iterator[PipelineEvent]:
    """Store a run's results as they arrive and pass every event through.

    The persona record is saved with all scenes pending before the first
    event, so a reader polling storage sees partial progress.
    """
    record = PersonaRecord.start(
        conversation_id,
        persona_name,
        [GenerationResult.pending(scene) for scene in scenes],
    )
    storage.save_persona(record)

    yield from _write_through(events, storage, record)


def persist_regeneration(
    events: Iterable[PipelineEvent],
    storage: StorageManager,
    record: PersonaRecord,
    scenes: Sequence[Scene],
) -> Iterator[PipelineEvent]:
    """Like ``persist_progress``, for a rerun of some scenes of a stored persona.

    The rerun scenes are reset to pending and the persona goes back to
    ``generating`` until the run completes. Other scenes are left untouched.
    """
    rerun = {scene.scene_number for scene in scenes}
    record.scenes = [
        GenerationResult.pending(result) if result.scene_number in rerun else result
        for result in record.scenes
    ]
    record.metadata.status = PersonaStatus.GENERATING
    record.completed_at = None
    storage.save_persona(record)

    yield from _write_through(events, storage, record)


def _write_through(
    events: Iterable[PipelineEvent],
    storage: StorageManager,
    record: PersonaRecord,
) -> Iterator[PipelineEvent]:
    for event in events:
        if isinstance(event, SceneCompleteEvent):
            changes = event.scene.model_dump(exclude={"scene_number"})
            storage.update_persona_scene(record.id, event.scene.scene_number, **changes)
        elif isinstance(event, CompleteEvent):
            storage.complete_persona(record.id)
        elif isinstance(event, ErrorEvent):
            logger.warning(f"Run for {record.persona_name} ended early: {event.error}")
        yield event
