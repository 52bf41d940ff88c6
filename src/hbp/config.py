"""Configuration management."""

import os
from pathlib import Path
from pydantic import BaseModel, Field
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Config(BaseModel):
    """Application configuration."""

    # API Keys
    anthropic_api_key: str = Field(
        default_factory=lambda: os.getenv("ANTHROPIC_API_KEY", ""),
        description="Anthropic API key"
    )
    google_application_credentials: str = Field(
        default_factory=lambda: os.getenv("GOOGLE_APPLICATION_CREDENTIALS", ""),
        description="Path to Google Cloud service account JSON"
    )
    google_cloud_project: str = Field(
        default_factory=lambda: os.getenv("GOOGLE_CLOUD_PROJECT", ""),
        description="Google Cloud project ID"
    )
    google_cloud_location: str = Field(
        default_factory=lambda: os.getenv("GOOGLE_CLOUD_LOCATION", "us-central1"),
        description="Vertex AI region"
    )
    media_bucket: str = Field(
        default_factory=lambda: os.getenv("HBP_MEDIA_BUCKET", ""),
        description="GCS bucket (gs://...) receiving generated images and videos"
    )
    sign_media_urls: bool = Field(
        default_factory=lambda: _env_flag("HBP_SIGN_MEDIA_URLS"),
        description="Replace gs:// media URIs with signed HTTPS URLs"
    )

    # Paths
    workspace: Path = Field(
        default_factory=lambda: Path(os.getenv("HBP_WORKSPACE", ".history-by-people")),
        description="Local storage and media directory"
    )

    # Model settings
    default_model: str = Field(
        default="claude-sonnet-4-20250514",
        description="Default Claude model"
    )
    imagen_model: str = Field(
        default_factory=lambda: os.getenv("HBP_IMAGEN_MODEL", "imagen-3.0-generate-002"),
        description="Imagen model for scene stills"
    )
    imagen_reference_model: str = Field(
        default="imagen-3.0-capability-001",
        description="Imagen model used when a style reference image is supplied"
    )
    veo_model: str = Field(
        default_factory=lambda: os.getenv("HBP_VEO_MODEL", "veo-2.0-generate-001"),
        description="Veo model for image-to-video"
    )

    tts_model: str = Field(
        default_factory=lambda: os.getenv("HBP_TTS_MODEL", "gemini-2.5-flash-tts"),
        description="Cloud Text-to-Speech model for scene narration"
    )
    tts_voice: str = Field(
        default_factory=lambda: os.getenv("HBP_TTS_VOICE", "Charon"),
        description="Narration voice name"
    )
    tts_language: str = Field(default="en-US", description="Narration language code")

    # Conversation settings
    max_context_tokens: int = Field(
        default=3000,
        description="Approximate token budget for the chat context window"
    )
    max_reply_tokens: int = Field(
        default=800,
        description="Maximum tokens in one assistant reply"
    )

    # Generation settings
    aspect_ratio: str = Field(default="16:9", description="Aspect ratio for stills and clips")
    video_duration: int = Field(default=5, description="Clip length in seconds")
    media_validity_hours: int = Field(
        default=24,
        description="Hours a generated media reference is assumed reachable"
    )

    # Storage limits
    max_conversations: int = Field(default=50, description="Stored conversation cap")
    max_personas: int = Field(default=100, description="Stored persona cap")

    @property
    def storage_dir(self) -> Path:
        """Directory holding the persisted key-value documents."""
        return self.workspace / "storage"

    @property
    def media_dir(self) -> Path:
        """Directory for media written locally when no bucket is configured."""
        return self.workspace / "media"

    def validate_required(self) -> None:
        """Validate that required credentials are set."""
        if not self.anthropic_api_key:
            raise ValueError("ANTHROPIC_API_KEY not set")

    def validate_media_required(self) -> None:
        """Validate that Vertex AI configuration for Imagen and Veo is set.

        Raises:
            ValueError: If any required media configuration is missing.
        """
        missing: list[str] = []

        if not self.google_cloud_project:
            missing.append("GOOGLE_CLOUD_PROJECT")

        if missing:
            raise ValueError(
                f"Missing required media configuration: {', '.join(missing)}. "
                "Set the corresponding environment variables."
            )

        # Validate bucket format
        if self.media_bucket and not self.media_bucket.startswith("gs://"):
            raise ValueError(
                f"HBP_MEDIA_BUCKET must be a GCS URI starting with 'gs://'. "
                f"Got: {self.media_bucket}"
            )

        if self.sign_media_urls and not self.media_bucket:
            raise ValueError("HBP_SIGN_MEDIA_URLS requires HBP_MEDIA_BUCKET")


# Global config instance
config = Config()
