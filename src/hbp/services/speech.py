"""Scene narration with Google Cloud Text-to-Speech."""

import base64
import logging
from typing import Any, Optional

import google.auth
import google.auth.transport.requests
import requests

from ..config import config
from .errors import GenerationServiceError, RateLimitError

logger = logging.getLogger(__name__)

SYNTHESIZE_URL = "https://texttospeech.googleapis.com/v1/text:synthesize"
SCOPES = ["https://www.googleapis.com/auth/cloud-platform"]

DEFAULT_VOICE_INSTRUCTIONS = (
    "Narrate as a historian with quiet gravity and empathy for the people "
    "involved. Keep a measured pace, pause briefly before moments of loss, "
    "and articulate names and places clearly."
)

# Lowercase name fragment -> delivery style
PERSONA_VOICE_INSTRUCTIONS = {
    "charles thornton": (
        "Speak as an experienced civic official of 1906: formal, measured and "
        "authoritative, slowing down when describing the damage and pausing "
        "before admitting hard truths about who was helped first."
    ),
    "mei lin": (
        "Speak with gentle strength and quiet dignity, the warm voice of a young "
        "immigrant who has known hardship but keeps her hope. Pause slightly "
        "when recalling discrimination or loss and pronounce Chinatown clearly."
    ),
}


def voice_instructions(persona_name: Optional[str]) -> str:
    """Return the delivery style for a persona, or the narrator default."""
    name = (persona_name or "").lower()
    for fragment, instructions in PERSONA_VOICE_INSTRUCTIONS.items():
        if fragment in name:
            return instructions
    return DEFAULT_VOICE_INSTRUCTIONS


class SpeechClient:
    """Text-to-speech synthesis in a persona-specific voice."""

    DEFAULT_TIMEOUT = 60.0  # seconds

    def __init__(
        self,
        project_id: Optional[str] = None,
        model: Optional[str] = None,
        voice: Optional[str] = None,
        language: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
    ) -> None:
        """Initialize the speech client.

        Args:
            project_id: Google Cloud project billed for synthesis.
            model: Text-to-Speech model name.
            voice: Voice name.
            language: BCP-47 language code.
            timeout: Per-request timeout in seconds.
            session: Optional requests session (tests inject one).
        """
        self._project_id = project_id or config.google_cloud_project
        self._model = model or config.tts_model
        self._voice = voice or config.tts_voice
        self._language = language or config.tts_language
        self._timeout = timeout
        self._session = session or requests.Session()
        self._credentials = None

        if not self._project_id:
            raise ValueError("GOOGLE_CLOUD_PROJECT not set")

    def _token(self) -> str:
        if self._credentials is None:
            self._credentials, _ = google.auth.default(scopes=SCOPES)
        if not self._credentials.valid:
            self._credentials.refresh(google.auth.transport.requests.Request())
        return self._credentials.token

    def synthesize(self, text: str, persona_name: Optional[str] = None) -> bytes:
        """Narrate text and return WAV audio.

        Args:
            text: Text to speak.
            persona_name: Persona whose voice style to use.

        Raises:
            ValueError: If the text is empty.
            RateLimitError: If the project's quota is exhausted.
            GenerationServiceError: On any other failure.
        """
        if not text or not text.strip():
            raise ValueError("Text is required")

        body: dict[str, Any] = {
            "input": {"text": text, "prompt": voice_instructions(persona_name)},
            "voice": {
                "languageCode": self._language,
                "name": self._voice,
                "modelName": self._model,
            },
            "audioConfig": {"audioEncoding": "LINEAR16"},
        }
        headers = {
            "Authorization": f"Bearer {self._token()}",
            "Content-Type": "application/json",
            "X-Goog-User-Project": self._project_id,
        }

        logger.info(f"Narrating {len(text)} characters for {persona_name or 'narrator'}")
        try:
            response = self._session.post(
                SYNTHESIZE_URL, json=body, headers=headers, timeout=self._timeout
            )
        except requests.RequestException as e:
            raise GenerationServiceError(f"Speech request failed: {e}") from e

        if response.status_code != 200:
            error_msg = f"{response.status_code}: {response.text[:500]}"
            logger.error(f"Text-to-Speech error: {error_msg}")
            if response.status_code == 429:
                raise RateLimitError(error_msg)
            raise GenerationServiceError(error_msg, status_code=response.status_code)

        audio = response.json().get("audioContent")
        if not audio:
            raise GenerationServiceError("No audio in response")
        return base64.b64decode(audio)
