"""Media references: local files and Google Cloud Storage objects."""

import base64
import logging
import mimetypes
import time
import uuid
from datetime import timedelta
from pathlib import Path
from typing import Optional

from google.api_core import exceptions as google_exceptions
from google.cloud import storage

from ..config import config

logger = logging.getLogger(__name__)


def split_gcs_uri(gcs_uri: str) -> tuple[str, str]:
    """Split ``gs://bucket/path`` into bucket and blob names."""
    if not gcs_uri.startswith("gs://"):
        raise ValueError(f"Invalid GCS URI: {gcs_uri}")

    uri_parts = gcs_uri[5:].split("/", 1)
    if len(uri_parts) != 2 or not uri_parts[1]:
        raise ValueError(f"Invalid GCS URI format: {gcs_uri}")
    return uri_parts[0], uri_parts[1]


def bucket_prefix(bucket: str, folder: str) -> str:
    """Return the ``gs://`` prefix generated media of one kind is written under."""
    return f"{bucket.rstrip('/')}/{folder}/"


def image_source(ref: str) -> dict[str, str]:
    """Build the Vertex AI image payload for a GCS URI or a local file."""
    mime_type = mimetypes.guess_type(ref)[0] or "image/png"
    if ref.startswith("gs://"):
        return {"gcsUri": ref, "mimeType": mime_type}

    path = Path(ref)
    if not path.exists():
        raise FileNotFoundError(f"Image not found: {ref}")
    return {
        "bytesBase64Encoded": base64.b64encode(path.read_bytes()).decode("ascii"),
        "mimeType": mime_type,
    }


def save_base64(data: str, kind: str, suffix: str, media_dir: Optional[Path] = None) -> Path:
    """Decode inline media into the workspace media directory."""
    target_dir = media_dir or config.media_dir
    target_dir.mkdir(parents=True, exist_ok=True)
    path = target_dir / f"{kind}_{uuid.uuid4().hex[:12]}{suffix}"
    with open(path, "wb") as f:
        f.write(base64.b64decode(data))
    logger.info(f"Saved {kind} to {path}")
    return path


class MediaStore:
    """Access to generated media kept in Google Cloud Storage."""

    DEFAULT_MAX_RETRIES = 3
    DEFAULT_RETRY_DELAY = 2.0

    def __init__(
        self,
        project_id: Optional[str] = None,
        client: Optional[storage.Client] = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        validity_hours: Optional[int] = None,
    ) -> None:
        self._client = client or storage.Client(project=project_id or config.google_cloud_project)
        self._max_retries = max_retries
        self._retry_delay = retry_delay
        self._validity = timedelta(hours=validity_hours or config.media_validity_hours)

    def public_url(self, uri: Optional[str]) -> Optional[str]:
        """Return a V4 signed URL for ``gs://`` references, anything else unchanged."""
        if not uri or not uri.startswith("gs://"):
            return uri

        bucket_name, blob_name = split_gcs_uri(uri)
        blob = self._client.bucket(bucket_name).blob(blob_name)
        return blob.generate_signed_url(version="v4", expiration=self._validity, method="GET")

    def download(self, uri: str, local_path: Path) -> Path:
        """Download a generated file from GCS to a local path.

        Args:
            uri: GCS URI (gs://bucket/path/to/file).
            local_path: Local path to save the file.

        Returns:
            The local path written.
        """
        bucket_name, blob_name = split_gcs_uri(uri)

        # Ensure local directory exists
        local_path.parent.mkdir(parents=True, exist_ok=True)

        # Download with retry
        for attempt in range(self._max_retries):
            try:
                bucket = self._client.bucket(bucket_name)
                blob = bucket.blob(blob_name)
                blob.download_to_filename(str(local_path))
                logger.debug(f"Downloaded {uri} to {local_path}")
                return local_path

            except google_exceptions.NotFound:
                logger.error(f"File not found in GCS: {uri}")
                raise

            except Exception as e:
                delay = self._retry_delay * (2**attempt)
                logger.warning(f"Download failed (attempt {attempt + 1}): {e}. Retrying in {delay}s...")
                if attempt == self._max_retries - 1:
                    raise
                time.sleep(delay)

        return local_path
