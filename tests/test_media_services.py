"""
Tests for the Vertex AI transport, the Imagen and Veo clients, and narration.
"""

import base64
from unittest.mock import MagicMock

import pytest
import requests

from hbp.services import (
    BadOutputError,
    FailureKind,
    GenerationServiceError,
    ImagenClient,
    RateLimitError,
    SpeechClient,
    VeoClient,
    VertexClient,
    classify_failure,
    voice_instructions,
)
from hbp.services.media import bucket_prefix, image_source, split_gcs_uri
from hbp.services.speech import DEFAULT_VOICE_INSTRUCTIONS


def response(status_code, payload=None, text=""):
    mock = MagicMock(status_code=status_code, text=text)
    mock.json.return_value = payload if payload is not None else {}
    return mock


@pytest.fixture
def vertex():
    return MagicMock(spec=VertexClient)


class TestVertexClient:
    """Tests for the REST transport."""

    @pytest.fixture
    def session(self):
        return MagicMock()

    @pytest.fixture
    def client(self, session, monkeypatch):
        client = VertexClient(project_id="hbp-test", location="us-central1", session=session)
        monkeypatch.setattr(client, "_token", lambda: "token")
        return client

    def test_model_url(self, client):
        assert client.model_url("veo-2.0-generate-001", "predictLongRunning") == (
            "https://us-central1-aiplatform.googleapis.com/v1/projects/hbp-test/"
            "locations/us-central1/publishers/google/models/veo-2.0-generate-001:predictLongRunning"
        )

    def test_success(self, client, session):
        session.post.return_value = response(200, {"predictions": []})

        assert client.post("imagen", "predict", {"instances": []}) == {"predictions": []}
        headers = session.post.call_args.kwargs["headers"]
        assert headers["Authorization"] == "Bearer token"

    def test_429_is_rate_limit(self, client, session):
        session.post.return_value = response(429, {"error": {"code": 429}}, "quota")

        with pytest.raises(RateLimitError):
            client.post("imagen", "predict", {})

    def test_server_error(self, client, session):
        session.post.return_value = response(500, {"error": {"message": "boom"}}, "boom")

        with pytest.raises(GenerationServiceError) as exc_info:
            client.post("imagen", "predict", {})
        assert exc_info.value.status_code == 500
        assert exc_info.value.payload == {"error": {"message": "boom"}}

    def test_transport_error(self, client, session):
        session.post.side_effect = requests.ConnectionError("unreachable")

        with pytest.raises(GenerationServiceError):
            client.post("imagen", "predict", {})

    def test_requires_project(self, monkeypatch):
        from hbp.config import config

        monkeypatch.setattr(config, "google_cloud_project", "")
        with pytest.raises(ValueError):
            VertexClient()


class TestMediaHelpers:
    """Tests for media reference helpers."""

    def test_split_gcs_uri(self):
        assert split_gcs_uri("gs://bucket/images/a.png") == ("bucket", "images/a.png")
        with pytest.raises(ValueError):
            split_gcs_uri("gs://bucket")
        with pytest.raises(ValueError):
            split_gcs_uri("/tmp/a.png")

    def test_bucket_prefix(self):
        assert bucket_prefix("gs://bucket/", "videos") == "gs://bucket/videos/"

    def test_image_source(self, tmp_path):
        assert image_source("gs://b/a.jpg") == {"gcsUri": "gs://b/a.jpg", "mimeType": "image/jpeg"}

        path = tmp_path / "a.png"
        path.write_bytes(b"png")
        assert image_source(str(path)) == {
            "bytesBase64Encoded": base64.b64encode(b"png").decode("ascii"),
            "mimeType": "image/png",
        }

        with pytest.raises(FileNotFoundError):
            image_source(str(tmp_path / "missing.png"))


class TestImagenClient:
    """Tests for still generation."""

    @pytest.fixture
    def imagen(self, vertex):
        return ImagenClient(
            vertex=vertex,
            model="imagen-test",
            reference_model="imagen-capability-test",
            media_bucket="gs://hbp-media",
        )

    def test_returns_gcs_uri(self, imagen, vertex):
        vertex.post.return_value = {"predictions": [{"gcsUri": "gs://hbp-media/images/x.png"}]}

        assert imagen.create_image("a harbor", aspect_ratio="16:9") == "gs://hbp-media/images/x.png"

        model, method, body = vertex.post.call_args.args
        assert (model, method) == ("imagen-test", "predict")
        assert body["instances"] == [{"prompt": "a harbor"}]
        assert body["parameters"]["storageUri"] == "gs://hbp-media/images/"
        assert body["parameters"]["aspectRatio"] == "16:9"

    def test_style_reference(self, imagen, vertex):
        vertex.post.return_value = {"predictions": [{"gcsUri": "gs://hbp-media/images/y.png"}]}

        imagen.create_image("a harbor", reference_image="gs://hbp-media/images/x.png")

        model, _, body = vertex.post.call_args.args
        reference = body["instances"][0]["referenceImages"][0]
        assert model == "imagen-capability-test"
        assert reference["referenceType"] == "REFERENCE_TYPE_STYLE"
        assert reference["referenceImage"]["gcsUri"] == "gs://hbp-media/images/x.png"

    @pytest.mark.parametrize(
        "payload",
        [{"predictions": []}, {"predictions": [{"raiFilteredReason": "people"}]}, {}],
    )
    def test_filtered_output(self, imagen, vertex, payload):
        vertex.post.return_value = payload

        with pytest.raises(BadOutputError):
            imagen.create_image("a harbor")

    def test_inline_image_saved_locally(self, vertex, workspace):
        vertex.post.return_value = {
            "predictions": [{"bytesBase64Encoded": base64.b64encode(b"img").decode("ascii")}]
        }
        imagen = ImagenClient(vertex=vertex, model="imagen-test", media_bucket="")

        path = imagen.create_image("a harbor")

        assert path.startswith(str(workspace / "media"))
        with open(path, "rb") as f:
            assert f.read() == b"img"
        assert "storageUri" not in vertex.post.call_args.args[2]["parameters"]


class TestVeoClient:
    """Tests for clip generation."""

    @pytest.fixture
    def veo(self, vertex):
        return VeoClient(
            vertex=vertex,
            model="veo-test",
            media_bucket="gs://hbp-media",
            poll_interval=0,
        )

    def test_polls_until_done(self, veo, vertex):
        vertex.post.side_effect = [
            {"name": "operations/1"},
            {"done": False},
            {"done": True, "response": {"videos": [{"gcsUri": "gs://hbp-media/videos/v.mp4"}]}},
        ]

        uri = veo.create_video("gs://hbp-media/images/x.png", "Cinematic view: smoke", duration_seconds=20)

        assert uri == "gs://hbp-media/videos/v.mp4"
        methods = [c.args[1] for c in vertex.post.call_args_list]
        assert methods == ["predictLongRunning", "fetchPredictOperation", "fetchPredictOperation"]
        body = vertex.post.call_args_list[0].args[2]
        assert body["parameters"]["durationSeconds"] == 8
        assert body["parameters"]["storageUri"] == "gs://hbp-media/videos/"
        assert body["instances"][0]["image"]["gcsUri"] == "gs://hbp-media/images/x.png"
        assert vertex.post.call_args_list[1].args[2] == {"operationName": "operations/1"}

    def test_transient_poll_error_is_retried(self, veo, vertex):
        vertex.post.side_effect = [
            {"name": "operations/1"},
            GenerationServiceError("503: unavailable"),
            {"done": True, "response": {"videos": [{"gcsUri": "gs://hbp-media/videos/v.mp4"}]}},
        ]

        assert veo.create_video("gs://hbp-media/images/x.png", "smoke") == "gs://hbp-media/videos/v.mp4"

    def test_server_error_while_polling_is_retried(self, veo, vertex):
        vertex.post.side_effect = [
            {"name": "operations/1"},
            GenerationServiceError("502: bad gateway", status_code=502),
            {"done": True, "response": {"videos": [{"gcsUri": "gs://hbp-media/videos/v.mp4"}]}},
        ]

        assert veo.create_video("gs://hbp-media/images/x.png", "smoke") == "gs://hbp-media/videos/v.mp4"

    def test_rate_limit_while_polling_raised_at_once(self, veo, vertex):
        vertex.post.side_effect = [
            {"name": "operations/1"},
            RateLimitError("429: quota"),
        ]

        with pytest.raises(RateLimitError) as exc_info:
            veo.create_video("gs://hbp-media/images/x.png", "smoke")
        assert classify_failure(exc_info.value) is FailureKind.RATE_LIMIT
        assert vertex.post.call_count == 2

    def test_client_error_while_polling_raised_at_once(self, veo, vertex):
        vertex.post.side_effect = [
            {"name": "operations/1"},
            GenerationServiceError("404: operation not found", status_code=404),
        ]

        with pytest.raises(GenerationServiceError) as exc_info:
            veo.create_video("gs://hbp-media/images/x.png", "smoke")
        assert exc_info.value.status_code == 404
        assert vertex.post.call_count == 2

    def test_resource_exhausted_operation(self, veo, vertex):
        vertex.post.side_effect = [
            {"name": "operations/1"},
            {"done": True, "error": {"code": 8, "message": "Quota exceeded"}},
        ]

        with pytest.raises(RateLimitError):
            veo.create_video("gs://hbp-media/images/x.png", "smoke")

    def test_failed_operation(self, veo, vertex):
        vertex.post.side_effect = [
            {"name": "operations/1"},
            {"done": True, "error": {"code": 13, "message": "Internal"}},
        ]

        with pytest.raises(GenerationServiceError) as exc_info:
            veo.create_video("gs://hbp-media/images/x.png", "smoke")
        assert exc_info.value.failure_code == "13"

    def test_filtered_clip(self, veo, vertex):
        vertex.post.side_effect = [
            {"name": "operations/1"},
            {"done": True, "response": {"raiMediaFilteredCount": 1}},
        ]

        with pytest.raises(BadOutputError):
            veo.create_video("gs://hbp-media/images/x.png", "smoke")

    def test_timeout(self, vertex):
        veo = VeoClient(vertex=vertex, model="veo-test", poll_interval=0, max_poll_time=-1)
        vertex.post.return_value = {"name": "operations/1"}

        with pytest.raises(GenerationServiceError, match="timed out"):
            veo.create_video("gs://hbp-media/images/x.png", "smoke")

    @pytest.mark.parametrize("prompt,aspect_ratio", [("", "16:9"), ("smoke", "1:1")])
    def test_invalid_arguments(self, veo, vertex, prompt, aspect_ratio):
        with pytest.raises(ValueError):
            veo.create_video("gs://hbp-media/images/x.png", prompt, aspect_ratio=aspect_ratio)
        vertex.post.assert_not_called()


class TestSpeechClient:
    """Tests for scene narration."""

    @pytest.fixture
    def session(self):
        return MagicMock()

    @pytest.fixture
    def speech(self, session, monkeypatch):
        client = SpeechClient(
            project_id="hbp-test",
            model="gemini-2.5-flash-tts",
            voice="Charon",
            session=session,
        )
        monkeypatch.setattr(client, "_token", lambda: "token")
        return client

    def test_synthesize(self, speech, session):
        audio = base64.b64encode(b"RIFF").decode("ascii")
        session.post.return_value = response(200, {"audioContent": audio})

        assert speech.synthesize("The ground shook.", "Mei Lin") == b"RIFF"

        body = session.post.call_args.kwargs["json"]
        assert body["input"]["text"] == "The ground shook."
        assert body["input"]["prompt"] == voice_instructions("Mei Lin")
        assert body["voice"]["modelName"] == "gemini-2.5-flash-tts"
        assert body["voice"]["name"] == "Charon"
        assert session.post.call_args.kwargs["headers"]["X-Goog-User-Project"] == "hbp-test"

    def test_quota(self, speech, session):
        session.post.return_value = response(429, text="quota")

        with pytest.raises(RateLimitError):
            speech.synthesize("The ground shook.")

    def test_missing_audio(self, speech, session):
        session.post.return_value = response(200, {})

        with pytest.raises(GenerationServiceError):
            speech.synthesize("The ground shook.")

    def test_empty_text(self, speech, session):
        with pytest.raises(ValueError):
            speech.synthesize("  ")
        session.post.assert_not_called()

    def test_voice_instructions(self):
        assert "immigrant" in voice_instructions("Mei Lin")
        assert "civic official" in voice_instructions("Mayor Charles Thornton")
        assert voice_instructions("Anonymous Sailor") == DEFAULT_VOICE_INSTRUCTIONS
        assert voice_instructions(None) == DEFAULT_VOICE_INSTRUCTIONS
