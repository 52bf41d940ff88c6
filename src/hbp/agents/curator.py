"""Historical perspective curator."""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, Optional, Sequence

from ..config import config
from ..models import Message, Phase, Role
from ..parsing import has_scene_markers
from .base import BaseAgent

logger = logging.getLogger(__name__)

PROMPT_TEMPLATE_PATH = Path(__file__).parent.parent / "templates" / "prompts" / "curator.txt"

CHARS_PER_TOKEN = 4

CURATION_CUES = (
    "ready to explore the stories",
    "whose story would you like to explore",
    "who's story would you like to explore",
)


def _load_system_prompt() -> str:
    """Load the system prompt from template file."""
    if PROMPT_TEMPLATE_PATH.exists():
        return PROMPT_TEMPLATE_PATH.read_text(encoding="utf-8")
    # Fallback inline prompt if template not found
    return """You are a historical perspective curator. Help the user narrow a
historical topic to a specific time and place, summarize the context, then
introduce 2-3 named people who lived through it.

When the user picks a person, write exactly 3 scenes, each as:

**Scene X: [Scene Title]**
Visual Prompt: [detailed photorealistic description, under 800 characters]
Historical Learning Context: [3-5 sentences linking history to the person]"""


def estimate_tokens(text: str) -> float:
    return len(text) / CHARS_PER_TOKEN


def manage_context(
    messages: Sequence[Message],
    system_prompt: str = "",
    max_tokens: int = 3000,
) -> list[Message]:
    """Return the newest messages that fit the token budget.

    The system prompt counts against the budget. The newest message is
    always kept, and the window is trimmed so it opens with a user turn.
    """
    budget = max_tokens - estimate_tokens(system_prompt)
    window: list[Message] = []

    for message in reversed(messages):
        cost = estimate_tokens(message.content)
        if window and cost > budget:
            break
        window.insert(0, message)
        budget -= cost

    while len(window) > 1 and window[0].role != Role.USER:
        window.pop(0)

    if len(window) < len(messages):
        logger.debug(f"Context trimmed from {len(messages)} to {len(window)} messages")
    return window


def detect_phase(text: str, previous: Phase = Phase.CLARIFICATION) -> Phase:
    """Infer the conversation phase from an assistant reply."""
    if has_scene_markers(text):
        return Phase.VISUALIZATION

    lowered = text.lower()
    if any(cue in lowered for cue in CURATION_CUES):
        return Phase.CURATION

    return previous


@dataclass
class CuratorInput:
    """A new user message and the conversation before it."""

    message: str
    history: list[Message] = field(default_factory=list)

    def transcript(self) -> list[Message]:
        return [*self.history, Message(role=Role.USER, content=self.message)]


class CuratorAgent(BaseAgent[CuratorInput, str]):
    """Guides the user from a topic to personas to a scene sequence."""

    def __init__(
        self,
        *args,
        max_context_tokens: Optional[int] = None,
        max_reply_tokens: Optional[int] = None,
        temperature: float = 0.8,
        **kwargs,
    ) -> None:
        super().__init__(*args, **kwargs)
        self._system_prompt = _load_system_prompt()
        self.max_context_tokens = max_context_tokens or config.max_context_tokens
        self.max_reply_tokens = max_reply_tokens or config.max_reply_tokens
        self.temperature = temperature

    @property
    def name(self) -> str:
        return "CuratorAgent"

    @property
    def system_prompt(self) -> str:
        return self._system_prompt

    def _context(self, input_data: CuratorInput) -> list[Message]:
        message = input_data.message.strip()
        if not message:
            raise ValueError("Message is required")
        return manage_context(
            CuratorInput(message, input_data.history).transcript(),
            self.system_prompt,
            self.max_context_tokens,
        )

    def run(self, input_data: CuratorInput) -> str:
        """Return the complete assistant reply."""
        return self._create_message(
            self._context(input_data),
            max_tokens=self.max_reply_tokens,
            temperature=self.temperature,
        )

    def reply(self, message: str, history: Sequence[Message] = ()) -> Iterator[str]:
        """Stream the assistant's reply to `message`.

        Raises:
            ValueError: If the message is empty.
        """
        context = self._context(CuratorInput(message, list(history)))
        self._logger.info(f"Replying with {len(context)} messages of context")
        return self._stream_message(
            context,
            max_tokens=self.max_reply_tokens,
            temperature=self.temperature,
        )
