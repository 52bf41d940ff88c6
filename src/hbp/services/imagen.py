"""Google Imagen client for scene stills via Vertex AI."""

import logging
from typing import Any, Optional

from ..config import config
from .errors import BadOutputError, GenerationServiceError
from .media import bucket_prefix, image_source, save_base64
from .vertex import VertexClient

logger = logging.getLogger(__name__)


class ImagenClient:
    """Text-to-image generation with Google Imagen."""

    def __init__(
        self,
        vertex: Optional[VertexClient] = None,
        model: Optional[str] = None,
        reference_model: Optional[str] = None,
        media_bucket: Optional[str] = None,
    ) -> None:
        """Initialize the Imagen client.

        Args:
            vertex: Vertex AI transport. Created from config if not provided.
            model: Imagen model name.
            reference_model: Model used when a style reference is supplied.
            media_bucket: gs:// bucket receiving images. Images are written
                to the local media directory when unset.
        """
        self._vertex = vertex or VertexClient()
        self._model = model or config.imagen_model
        self._reference_model = reference_model or config.imagen_reference_model
        self._media_bucket = media_bucket if media_bucket is not None else config.media_bucket

    @property
    def model(self) -> str:
        return self._model

    def create_image(
        self,
        prompt: str,
        aspect_ratio: str = "16:9",
        reference_image: Optional[str] = None,
    ) -> str:
        """Generate one image from a text prompt.

        Args:
            prompt: Text description of the image.
            aspect_ratio: Image aspect ratio ('1:1', '16:9', '9:16', '4:3', '3:4').
            reference_image: Earlier image whose style the new one should follow.

        Returns:
            A gs:// URI or local file path of the generated image.

        Raises:
            BadOutputError: If the service filtered or returned no image.
            RateLimitError: If the project's quota is exhausted.
            GenerationServiceError: On any other failure.
        """
        instance: dict[str, Any] = {"prompt": prompt}
        model = self._model

        if reference_image:
            model = self._reference_model
            instance["referenceImages"] = [
                {
                    "referenceType": "REFERENCE_TYPE_STYLE",
                    "referenceId": 1,
                    "referenceImage": image_source(reference_image),
                    "styleImageConfig": {"styleDescription": "matching scene style"},
                }
            ]

        parameters: dict[str, Any] = {
            "sampleCount": 1,
            "aspectRatio": aspect_ratio,
            "includeRaiReason": True,
        }
        if self._media_bucket:
            parameters["storageUri"] = bucket_prefix(self._media_bucket, "images")

        logger.info(f"Generating image with {model}: {prompt[:50]}...")
        data = self._vertex.post(model, "predict", {"instances": [instance], "parameters": parameters})

        predictions = data.get("predictions", [])
        if not predictions:
            raise BadOutputError("No image returned; the prompt was likely filtered")

        prediction = predictions[0]
        if prediction.get("raiFilteredReason"):
            raise BadOutputError(
                f"Image filtered: {prediction['raiFilteredReason']}", payload=prediction
            )

        if prediction.get("gcsUri"):
            logger.info(f"Image stored at {prediction['gcsUri']}")
            return prediction["gcsUri"]

        image_data = prediction.get("bytesBase64Encoded")
        if not image_data:
            raise GenerationServiceError("No image data in response", payload=prediction)

        return str(save_base64(image_data, "image", ".png"))
