"""Heuristic persona name resolution.

The curator reply is unstructured, so the display name of the persona being
visualized is guessed by an ordered list of matchers; the first one that
produces a name wins. Matcher order is part of the behavior users see: a
reordering changes which name labels a visual story.
"""

import logging
import re
from typing import Callable, Optional, Sequence

from ..models import Message, Role

logger = logging.getLogger(__name__)

DEFAULT_PERSONA_NAME = "Character"

_NAME = r"[A-Z][a-zA-Z\-]*(?:\s+[A-Z][a-zA-Z\-]*)?"
_ARTICLE_NAME = rf"(?:(?:the|a|an)\s+)?{_NAME}"

_DIRECTIVE = re.compile(r"GENERATE_VISUALS:[ \t]*([^\n]+)")

_NARRATIVE_PATTERNS = [
    re.compile(r"(?i:bring)\s+([^\n.!?]+?)['’]s\s+(?i:story)\s+(?i:to\s+life)"),
    re.compile(rf"\bI am\s+({_ARTICLE_NAME})"),
    re.compile(rf"\bMy name is\s+({_NAME})"),
    re.compile(rf"(?i:through\s+the\s+eyes\s+of)\s+({_ARTICLE_NAME})"),
    re.compile(rf"\b({_NAME})['’]s\s+(?i:story|journey|perspective)\b"),
]

_CAPITALIZED = re.compile(r"\b[A-Z][a-z]+(?:[ \t]+[A-Z][a-z]+)?\b")

_CONTEXT_PATTERN = re.compile(
    rf"\b(?i:show|tell|about)(?:\s+(?i:me))?(?:\s+(?i:about))?\s+({_NAME})['’]s\b"
)

_STOPWORDS = frozenset({
    # Generic nouns
    "Scene", "Scenes", "Historical", "History", "Emperor", "Empress", "King",
    "Queen", "Prince", "Princess", "Lord", "Lady", "Sir", "General", "Captain",
    "Dynasty", "Empire", "Kingdom", "Republic", "Revolution", "War", "City",
    "Visual", "Prompt", "Context", "Learning", "Story", "Stories", "Persona",
    "Identity", "Daily", "Life", "Moment", "Impact", "Consequences",
    "Adaptation", "Struggle", "Resolution", "Legacy", "Character", "Phase",
    # Sentence starters
    "The", "This", "That", "These", "Those", "Here", "There", "Now", "Let",
    "In", "On", "At", "As", "By", "For", "From", "With", "When", "While",
    "A", "An", "I", "We", "You", "Our", "Your", "My", "It", "Its", "Each",
    "Ready", "Great", "Perfect", "Excellent", "Wonderful", "Below", "Welcome",
})


def _clean(candidate: str) -> str:
    name = candidate.strip().strip("*_\"'").strip()
    name = re.sub(r"^(?:the|a|an)\s+", "", name, flags=re.IGNORECASE)
    return name.strip()


def _from_directive(text: str) -> Optional[str]:
    match = _DIRECTIVE.search(text)
    if match:
        return _clean(match.group(1)) or None
    return None


def _from_narrative(text: str) -> Optional[str]:
    for pattern in _NARRATIVE_PATTERNS:
        match = pattern.search(text)
        if match:
            name = _clean(match.group(1))
            if name:
                return name
    return None


def _from_capitalized(text: str) -> Optional[str]:
    first_paragraph = re.split(r"\n\s*\n", text.strip(), maxsplit=1)[0]
    for match in _CAPITALIZED.finditer(first_paragraph):
        tokens = [t for t in match.group(0).split() if t not in _STOPWORDS]
        if tokens:
            return " ".join(tokens)
    return None


_MATCHERS: list[Callable[[str], Optional[str]]] = [
    _from_directive,
    _from_narrative,
    _from_capitalized,
]


def _from_conversation(conversation: Sequence[Message]) -> Optional[str]:
    for message in reversed(conversation):
        name = _from_directive(message.content)
        if name:
            return name

    for message in reversed(conversation):
        if message.role != Role.USER:
            continue
        match = _CONTEXT_PATTERN.search(message.content)
        if match:
            name = _clean(match.group(1))
            if name:
                return name
    return None


def resolve_persona_name(
    text: str,
    conversation: Optional[Sequence[Message]] = None,
) -> str:
    """Infer the display name of the persona a reply visualizes.

    Args:
        text: The assistant reply containing the scene sequence.
        conversation: Earlier turns, oldest first.

    Returns:
        The first name any matcher produces, or ``"Character"``.
    """
    text = text or ""
    for matcher in _MATCHERS:
        name = matcher(text)
        if name:
            logger.debug(f"Resolved persona name '{name}' via {matcher.__name__}")
            return name

    if conversation:
        name = _from_conversation(conversation)
        if name:
            logger.debug(f"Resolved persona name '{name}' from conversation")
            return name

    return DEFAULT_PERSONA_NAME
