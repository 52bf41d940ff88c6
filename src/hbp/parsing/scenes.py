"""Scene extraction from curator replies.

The curator is asked to format each scene as::

    **Scene 2: Historical Moment**
    Visual Prompt: <one or more lines>
    Context: <one or more lines>

Model output only loosely follows that template, so extraction is a
best-effort scan: every well-formed block becomes a Scene, anything else is
ignored. No match is an empty list, never an error.
"""

import logging
import re

from ..models import Scene

logger = logging.getLogger(__name__)

# A paragraph continues over following lines until a blank line or the next
# scene heading. The visual prompt additionally stops at the context label.
_CONTEXT_LABEL = r"\**(?:Historical Learning )?Context:\**"
_BREAK = r"\*\*Scene|[ \t]*(?:\n|$)"

_SCENE_PATTERN = re.compile(
    r"\*\*Scene (\d+):\s*([^*\n]+?)\s*\*\*\s*"
    r"\**Visual Prompt:\**[ \t]*\n?[ \t]*"
    rf"([^\n]+(?:\n(?!{_BREAK}|{_CONTEXT_LABEL})[^\n]*)*)\s*"
    rf"{_CONTEXT_LABEL}[ \t]*\n?[ \t]*"
    rf"([^\n]+(?:\n(?!{_BREAK})[^\n]*)*)"
)

_MARKERS = ("**Scene 1:", "Scene 1:", "GENERATE_VISUALS:")


def _collapse(value: str) -> str:
    return re.sub(r"\s*\n\s*", " ", value.strip())


def extract_scenes(text: str) -> list[Scene]:
    """Parse scene blocks out of free-form assistant text.

    Args:
        text: Raw assistant reply.

    Returns:
        Scenes in order of appearance. Blocks missing a visual prompt or a
        context, and repeated scene numbers, are skipped.
    """
    if not text:
        return []

    normalized = text.replace("\r\n", "\n")
    scenes: list[Scene] = []
    seen: set[int] = set()

    for match in _SCENE_PATTERN.finditer(normalized):
        number = int(match.group(1))
        title = _collapse(match.group(2))
        visual_prompt = _collapse(match.group(3))
        context = _collapse(match.group(4))

        if number < 1 or not title or number in seen:
            logger.debug(f"Skipping scene block {number}: '{title}'")
            continue

        seen.add(number)
        scenes.append(
            Scene(
                scene_number=number,
                title=title,
                visual_prompt=visual_prompt,
                context=context,
            )
        )

    logger.debug(f"Parsed {len(scenes)} scenes from {len(text)} chars")
    return scenes


def has_scene_markers(text: str) -> bool:
    """Return True if the text looks like a scene sequence reply."""
    return any(marker in text for marker in _MARKERS)
