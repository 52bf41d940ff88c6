"""Minimal Vertex AI REST transport shared by the Imagen and Veo clients."""

import logging
from typing import Any, Optional

import google.auth
import google.auth.transport.requests
import requests

from ..config import config
from .errors import GenerationServiceError, RateLimitError

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/cloud-platform"]


class VertexClient:
    """Authenticated POSTs against publisher model endpoints."""

    DEFAULT_TIMEOUT = 120.0  # seconds

    def __init__(
        self,
        project_id: Optional[str] = None,
        location: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
    ) -> None:
        """Initialize the transport.

        Args:
            project_id: Google Cloud project ID.
            location: GCP region for Vertex AI.
            timeout: Per-request timeout in seconds.
            session: Optional requests session (tests inject one).
        """
        self._project_id = project_id or config.google_cloud_project
        self._location = location or config.google_cloud_location
        self._timeout = timeout
        self._session = session or requests.Session()
        self._credentials = None

        if not self._project_id:
            raise ValueError("GOOGLE_CLOUD_PROJECT not set")

    @property
    def project_id(self) -> str:
        return self._project_id

    @property
    def location(self) -> str:
        return self._location

    def model_url(self, model: str, method: str) -> str:
        return (
            f"https://{self._location}-aiplatform.googleapis.com/v1/"
            f"projects/{self._project_id}/locations/{self._location}/"
            f"publishers/google/models/{model}:{method}"
        )

    def _token(self) -> str:
        if self._credentials is None:
            self._credentials, _ = google.auth.default(scopes=SCOPES)
        if not self._credentials.valid:
            self._credentials.refresh(google.auth.transport.requests.Request())
        return self._credentials.token

    def post(self, model: str, method: str, body: dict[str, Any]) -> dict[str, Any]:
        """POST a JSON body to a model method and return the decoded response.

        Raises:
            RateLimitError: On HTTP 429.
            GenerationServiceError: On any other non-200 response or
                transport failure.
        """
        url = self.model_url(model, method)
        headers = {
            "Authorization": f"Bearer {self._token()}",
            "Content-Type": "application/json",
        }

        try:
            response = self._session.post(url, json=body, headers=headers, timeout=self._timeout)
        except requests.RequestException as e:
            raise GenerationServiceError(f"Request to {model} failed: {e}") from e

        if response.status_code == 200:
            return response.json()

        try:
            payload = response.json()
        except ValueError:
            payload = {"error": {"message": response.text[:500]}}

        error_msg = f"{response.status_code}: {response.text[:500]}"
        logger.error(f"Vertex AI error from {model}: {error_msg}")

        if response.status_code == 429:
            raise RateLimitError(error_msg, payload=payload)
        raise GenerationServiceError(
            error_msg, status_code=response.status_code, payload=payload
        )
