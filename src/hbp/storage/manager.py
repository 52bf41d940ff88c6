"""Conversation and persona persistence."""

import json
import logging
import re
from datetime import datetime
from typing import Any, Optional, Sequence, Type, TypeVar

from pydantic import BaseModel, Field, ValidationError

from ..config import config
from ..models import (
    ConversationRecord,
    GenerationResult,
    Message,
    PersonaRecord,
    PersonaStatus,
    Phase,
    Role,
    utcnow,
)
from .local import LocalStore

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

EXPORT_VERSION = "1.0"
DEFAULT_TITLE = "New Conversation"
MAX_TITLE_LENGTH = 50


class Settings(BaseModel):
    """User preferences kept alongside the data."""

    auto_save: bool = True
    max_conversations: int = Field(default=50, gt=0)
    max_personas: int = Field(default=100, gt=0)
    auto_restore: bool = True


def generate_title(messages: Sequence[Message]) -> str:
    """Derive a conversation title from its first user utterance."""
    first = next((m.content for m in messages if m.role == Role.USER), "")
    if not first:
        return DEFAULT_TITLE

    title = first if len(first) <= MAX_TITLE_LENGTH else first[: MAX_TITLE_LENGTH - 3] + "..."
    title = re.sub(r"[^\w\s\-.,!?]", "", title).strip()
    return title or DEFAULT_TITLE


class StorageManager:
    """Owns the persisted conversations, personas, and settings.

    Collections are stored recent-first. Saving a new conversation beyond
    ``max_conversations`` evicts the oldest ones together with their personas.
    """

    CONVERSATIONS = "conversations"
    PERSONAS = "personas"
    SETTINGS = "settings"
    ACTIVE_CONVERSATION = "active_conversation"

    def __init__(
        self,
        store: Optional[LocalStore] = None,
        max_conversations: Optional[int] = None,
        max_personas: Optional[int] = None,
    ) -> None:
        self._store = store or LocalStore(config.storage_dir)

        # Saved settings override config; explicit arguments override both
        stored = self._stored_settings()
        self.max_conversations = max_conversations or (
            stored.max_conversations if stored else config.max_conversations
        )
        self.max_personas = max_personas or (
            stored.max_personas if stored else config.max_personas
        )

    # Serialization helpers

    def _load(self, key: str, model: Type[ModelT]) -> list[ModelT]:
        raw = self._store.get_item(key)
        if not raw:
            return []
        try:
            return [model.model_validate(item) for item in json.loads(raw)]
        except (ValueError, TypeError) as e:
            logger.error(f"Error loading {key}: {e}")
            return []

    def _dump(self, key: str, records: Sequence[BaseModel]) -> None:
        self._store.set_item(key, json.dumps([r.model_dump(mode="json") for r in records]))

    # Conversation management

    def save_conversation(
        self,
        conversation_id: str,
        messages: Sequence[Message],
        phase: Phase = Phase.CLARIFICATION,
        metadata: Optional[dict[str, Any]] = None,
    ) -> ConversationRecord:
        """Insert or replace a conversation and make it the active one."""
        conversations = self.get_conversations()
        existing_index = next(
            (i for i, c in enumerate(conversations) if c.id == conversation_id), None
        )

        record = ConversationRecord(
            id=conversation_id,
            title=generate_title(messages),
            messages=list(messages),
            current_phase=phase,
            metadata={**(metadata or {}), "message_count": len(messages)},
        )

        if existing_index is not None:
            record.created_at = conversations[existing_index].created_at
            conversations[existing_index] = record
        else:
            conversations.insert(0, record)

            if len(conversations) > self.max_conversations:
                removed = conversations[self.max_conversations:]
                conversations = conversations[: self.max_conversations]
                for conversation in removed:
                    logger.info(f"Evicting conversation {conversation.id}")
                    self.delete_personas_by_conversation(conversation.id)

        self._dump(self.CONVERSATIONS, conversations)
        self.set_active_conversation(conversation_id)
        return record

    def get_conversations(self) -> list[ConversationRecord]:
        return self._load(self.CONVERSATIONS, ConversationRecord)

    def get_conversation(self, conversation_id: str) -> Optional[ConversationRecord]:
        return next((c for c in self.get_conversations() if c.id == conversation_id), None)

    def delete_conversation(self, conversation_id: str) -> bool:
        """Delete a conversation and its personas. Returns False if unknown."""
        conversations = self.get_conversations()
        remaining = [c for c in conversations if c.id != conversation_id]
        if len(remaining) == len(conversations):
            return False

        self._dump(self.CONVERSATIONS, remaining)
        self.delete_personas_by_conversation(conversation_id)

        if self.get_active_conversation_id() == conversation_id:
            self.clear_active_conversation()
        return True

    # Persona management

    def save_persona(self, persona: PersonaRecord) -> PersonaRecord:
        personas = self.get_personas()
        existing_index = next((i for i, p in enumerate(personas) if p.id == persona.id), None)

        if existing_index is not None:
            personas[existing_index] = persona
        else:
            personas.insert(0, persona)
            # Limit total personas
            del personas[self.max_personas:]

        self._dump(self.PERSONAS, personas)
        return persona

    def update_persona_scene(
        self,
        persona_id: str,
        scene_number: int,
        **changes: Any,
    ) -> Optional[PersonaRecord]:
        """Merge field changes into one scene of a stored persona.

        A scene number the persona does not have yet is appended, in which
        case ``changes`` must describe a complete scene.

        Returns:
            The updated record, or None if the persona is unknown.
        """
        personas = self.get_personas()
        persona = next((p for p in personas if p.id == persona_id), None)
        if persona is None:
            return None

        now = utcnow()
        for index, scene in enumerate(persona.scenes):
            if scene.scene_number == scene_number:
                merged = {**scene.model_dump(), **changes, "last_updated": now}
                persona.scenes[index] = GenerationResult.model_validate(merged)
                break
        else:
            persona.scenes.append(
                GenerationResult.model_validate(
                    {"created_at": now, **changes, "scene_number": scene_number}
                )
            )
            persona.metadata.total_scenes = len(persona.scenes)

        self._dump(self.PERSONAS, personas)
        return persona

    def complete_persona(
        self,
        persona_id: str,
        rate_limited_scenes: Optional[int] = None,
    ) -> Optional[PersonaRecord]:
        """Mark a persona's visual story as finished.

        ``rate_limited_scenes`` defaults to the number of stored scenes
        flagged as rate limited.
        """
        personas = self.get_personas()
        persona = next((p for p in personas if p.id == persona_id), None)
        if persona is None:
            return None

        if rate_limited_scenes is None:
            rate_limited_scenes = sum(1 for s in persona.scenes if s.is_rate_limited)
        persona.metadata.status = PersonaStatus.COMPLETE
        persona.metadata.rate_limited_scenes = rate_limited_scenes
        persona.completed_at = utcnow()

        self._dump(self.PERSONAS, personas)
        return persona

    def get_personas(self) -> list[PersonaRecord]:
        return self._load(self.PERSONAS, PersonaRecord)

    def get_persona(self, persona_id: str) -> Optional[PersonaRecord]:
        return next((p for p in self.get_personas() if p.id == persona_id), None)

    def get_personas_by_conversation(self, conversation_id: str) -> list[PersonaRecord]:
        return [p for p in self.get_personas() if p.conversation_id == conversation_id]

    def delete_persona(self, persona_id: str) -> bool:
        personas = self.get_personas()
        remaining = [p for p in personas if p.id != persona_id]
        if len(remaining) == len(personas):
            return False
        self._dump(self.PERSONAS, remaining)
        return True

    def delete_personas_by_conversation(self, conversation_id: str) -> int:
        """Delete every persona of a conversation and return how many went."""
        personas = self.get_personas()
        remaining = [p for p in personas if p.conversation_id != conversation_id]
        removed = len(personas) - len(remaining)
        if removed:
            self._dump(self.PERSONAS, remaining)
        return removed

    # Active conversation tracking

    def set_active_conversation(self, conversation_id: str) -> None:
        self._store.set_item(self.ACTIVE_CONVERSATION, json.dumps(conversation_id))

    def get_active_conversation_id(self) -> Optional[str]:
        raw = self._store.get_item(self.ACTIVE_CONVERSATION)
        if not raw:
            return None
        try:
            return json.loads(raw)
        except ValueError as e:
            logger.error(f"Error reading active conversation: {e}")
            return None

    def clear_active_conversation(self) -> None:
        self._store.remove_item(self.ACTIVE_CONVERSATION)

    # Settings management

    def _stored_settings(self) -> Optional[Settings]:
        raw = self._store.get_item(self.SETTINGS)
        if not raw:
            return None
        try:
            return Settings.model_validate_json(raw)
        except ValidationError as e:
            logger.error(f"Error loading settings: {e}")
            return None

    def get_settings(self) -> Settings:
        stored = self._stored_settings()
        if stored:
            return stored
        return Settings(
            max_conversations=self.max_conversations,
            max_personas=self.max_personas,
        )

    def save_settings(self, **changes: Any) -> Settings:
        settings = Settings.model_validate({**self.get_settings().model_dump(), **changes})
        self._store.set_item(self.SETTINGS, settings.model_dump_json())
        self.max_conversations = settings.max_conversations
        self.max_personas = settings.max_personas
        return settings

    # Data management

    def clear_all_data(self) -> None:
        for key in (self.CONVERSATIONS, self.PERSONAS, self.SETTINGS, self.ACTIVE_CONVERSATION):
            self._store.remove_item(key)

    def export_data(self) -> str:
        """Serialize every conversation, persona, and the settings to JSON."""
        data = {
            "conversations": [c.model_dump(mode="json") for c in self.get_conversations()],
            "personas": [p.model_dump(mode="json") for p in self.get_personas()],
            "settings": self.get_settings().model_dump(mode="json"),
            "exported_at": utcnow().isoformat(),
            "version": EXPORT_VERSION,
        }
        return json.dumps(data, indent=2)

    def import_data(self, json_data: str) -> None:
        """Replace stored collections with those present in an export.

        Raises:
            ValueError: If the document is not valid JSON or any record
                fails validation. Nothing is written in that case.
        """
        data = json.loads(json_data)
        if not isinstance(data, dict):
            raise ValueError("Import document must be a JSON object")

        conversations = personas = settings = None
        if "conversations" in data:
            conversations = [ConversationRecord.model_validate(c) for c in data["conversations"]]
        if "personas" in data:
            personas = [PersonaRecord.model_validate(p) for p in data["personas"]]
        if "settings" in data:
            settings = Settings.model_validate(data["settings"])

        if conversations is not None:
            self._dump(self.CONVERSATIONS, conversations)
        if personas is not None:
            self._dump(self.PERSONAS, personas)
        if settings is not None:
            self._store.set_item(self.SETTINGS, settings.model_dump_json())
            self.max_conversations = settings.max_conversations
            self.max_personas = settings.max_personas

    def get_storage_stats(self, now: Optional[datetime] = None) -> dict[str, int]:
        conversations = self.get_conversations()
        personas = self.get_personas()
        scenes = [scene for persona in personas for scene in persona.scenes]

        return {
            "conversations": len(conversations),
            "personas": len(personas),
            "total_messages": sum(len(c.messages) for c in conversations),
            "total_scenes": len(scenes),
            "active_videos": sum(1 for s in scenes if s.is_media_valid(now)),
            "expired_videos": sum(1 for s in scenes if s.video_url and not s.is_media_valid(now)),
        }
