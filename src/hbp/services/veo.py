"""Google Veo client for image-to-video clips via Vertex AI."""

import logging
import time
from typing import Any, Optional

from ..config import config
from .errors import BadOutputError, GenerationServiceError, RateLimitError, is_rate_limit
from .media import bucket_prefix, image_source, save_base64
from .vertex import VertexClient

logger = logging.getLogger(__name__)

# google.rpc.Code.RESOURCE_EXHAUSTED
_RESOURCE_EXHAUSTED = 8

# Client errors worth polling again
_RETRYABLE_CLIENT_STATUSES = (408,)


def _is_transient(error: GenerationServiceError) -> bool:
    """Transport failures and 5xx responses are retried; quota and 4xx are not."""
    if is_rate_limit(error):
        return False
    status = error.status_code
    return status is None or status >= 500 or status in _RETRYABLE_CLIENT_STATUSES


class VeoClient:
    """Client wrapper for Google Veo video generation via Vertex AI.

    This client handles:
    - Submitting image-to-video requests as long-running operations
    - Polling for operation completion
    - Mapping quota, filtering and timeout outcomes to typed errors
    """

    # Default configuration
    DEFAULT_POLL_INTERVAL = 10.0  # seconds
    DEFAULT_MAX_POLL_TIME = 600.0  # 10 minutes

    def __init__(
        self,
        vertex: Optional[VertexClient] = None,
        model: Optional[str] = None,
        media_bucket: Optional[str] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        max_poll_time: float = DEFAULT_MAX_POLL_TIME,
    ) -> None:
        """Initialize the Veo client.

        Args:
            vertex: Vertex AI transport. Created from config if not provided.
            model: Veo model name.
            media_bucket: gs:// bucket receiving clips. Clips are returned
                inline and written to the local media directory when unset.
            poll_interval: Seconds between polling checks.
            max_poll_time: Maximum seconds to wait for generation.
        """
        self._vertex = vertex or VertexClient()
        self._model = model or config.veo_model
        self._media_bucket = media_bucket if media_bucket is not None else config.media_bucket
        self._poll_interval = poll_interval
        self._max_poll_time = max_poll_time

    @property
    def model(self) -> str:
        return self._model

    def create_video(
        self,
        source_image: str,
        prompt: str,
        aspect_ratio: str = "16:9",
        duration_seconds: int = 5,
    ) -> str:
        """Animate a still into a short clip.

        Args:
            source_image: gs:// URI or local path of the seed image.
            prompt: Motion and camera description.
            aspect_ratio: Video aspect ratio ('16:9' or '9:16').
            duration_seconds: Clip length (Veo supports 5-8s).

        Returns:
            A gs:// URI or local file path of the generated clip.

        Raises:
            ValueError: If the prompt is empty or the aspect ratio unsupported.
            RateLimitError: If the project's quota is exhausted.
            BadOutputError: If every generated clip was filtered.
            GenerationServiceError: On timeouts and other failures.
        """
        if not prompt or not prompt.strip():
            raise ValueError("Prompt cannot be empty")

        if aspect_ratio not in ("16:9", "9:16"):
            raise ValueError(f"Invalid aspect_ratio: {aspect_ratio}. Must be '16:9' or '9:16'")

        # Clamp duration to Veo's supported range
        duration = max(5, min(8, int(duration_seconds)))

        parameters: dict[str, Any] = {
            "aspectRatio": aspect_ratio,
            "durationSeconds": duration,
            "sampleCount": 1,
        }
        if self._media_bucket:
            parameters["storageUri"] = bucket_prefix(self._media_bucket, "videos")

        body = {
            "instances": [{"prompt": prompt, "image": image_source(source_image)}],
            "parameters": parameters,
        }

        logger.info(f"Starting Veo generation from {source_image}")
        logger.debug(f"Prompt: {prompt[:100]}...")
        response = self._vertex.post(self._model, "predictLongRunning", body)

        operation_name = response.get("name")
        if not operation_name:
            raise GenerationServiceError("No operation name in response", payload=response)

        operation = self._poll_operation(operation_name)
        return self._extract_video(operation)

    def _poll_operation(self, operation_name: str) -> dict[str, Any]:
        """Poll an operation until it is done or the wait limit passes."""
        start_time = time.time()
        poll_count = 0

        while True:
            elapsed = time.time() - start_time
            if elapsed > self._max_poll_time:
                logger.warning(f"Operation {operation_name} timed out after {elapsed:.1f}s")
                raise GenerationServiceError(
                    f"Operation timed out after {self._max_poll_time}s"
                )

            poll_count += 1
            logger.debug(f"Polling operation (attempt {poll_count}): {operation_name}")

            try:
                operation = self._vertex.post(
                    self._model,
                    "fetchPredictOperation",
                    {"operationName": operation_name},
                )
                if operation.get("done"):
                    return operation

            except GenerationServiceError as e:
                if not _is_transient(e):
                    logger.error(f"Operation {operation_name} cannot be polled: {e}")
                    raise
                logger.warning(f"Error checking operation status: {e}")

            time.sleep(self._poll_interval)

    def _extract_video(self, operation: dict[str, Any]) -> str:
        error = operation.get("error")
        if error:
            message = error.get("message", "Video generation failed")
            logger.error(f"Operation {operation.get('name')} failed: {message}")
            if error.get("code") == _RESOURCE_EXHAUSTED:
                raise RateLimitError(message, payload=operation)
            raise GenerationServiceError(
                message, failure_code=str(error.get("code")), payload=operation
            )

        result = operation.get("response", {})
        videos = result.get("videos", [])
        if not videos:
            if result.get("raiMediaFilteredCount"):
                reasons = ", ".join(result.get("raiMediaFilteredReasons", [])) or "filtered"
                raise BadOutputError(f"Video filtered: {reasons}", payload=result)
            raise GenerationServiceError("No video in completed operation", payload=result)

        video = videos[0]
        if video.get("gcsUri"):
            logger.info(f"Video stored at {video['gcsUri']}")
            return video["gcsUri"]

        if video.get("bytesBase64Encoded"):
            return str(save_base64(video["bytesBase64Encoded"], "video", ".mp4"))

        raise GenerationServiceError("No video data in response", payload=result)
