"""External service integrations."""

from .anthropic import AnthropicClient
from .errors import (
    GenerationServiceError,
    RateLimitError,
    BadOutputError,
    FailureKind,
    classify_failure,
)
from .imagen import ImagenClient
from .media import MediaStore
from .speech import SpeechClient, voice_instructions
from .veo import VeoClient
from .vertex import VertexClient

__all__ = [
    "AnthropicClient",
    "GenerationServiceError",
    "RateLimitError",
    "BadOutputError",
    "FailureKind",
    "classify_failure",
    "ImagenClient",
    "MediaStore",
    "SpeechClient",
    "voice_instructions",
    "VeoClient",
    "VertexClient",
]
