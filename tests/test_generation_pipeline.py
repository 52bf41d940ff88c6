"""
Tests for the scene media generation pipeline.
"""

import pytest

from hbp.models import (
    CompleteEvent,
    ErrorEvent,
    ProgressEvent,
    SceneCompleteEvent,
    SceneStatus,
    StatusEvent,
)
from hbp.pipeline import GenerationPipeline, sanitize_prompt, simplify_prompt, video_prompt
from hbp.services.errors import (
    BAD_OUTPUT_CODE,
    BadOutputError,
    GenerationServiceError,
    RateLimitError,
)

from conftest import FakeImages, FakeVideos


def run_pipeline(scenes, images=None, videos=None, **kwargs):
    images = images or FakeImages()
    videos = videos or FakeVideos()
    pipeline = GenerationPipeline(images, videos, aspect_ratio="16:9", video_duration=5, **kwargs)
    return list(pipeline.run(scenes, "Mei Lin")), images, videos


def results_of(events):
    return [e.scene for e in events if isinstance(e, SceneCompleteEvent)]


class TestPromptHelpers:
    """Tests for prompt shaping."""

    def test_long_prompt_truncated(self):
        prompt = sanitize_prompt("x" * 1200)

        assert len(prompt) == 900
        assert prompt.endswith("...")

    def test_prompt_at_limit_untouched(self):
        assert sanitize_prompt("y" * 990) == "y" * 990

    def test_empty_prompt_uses_title(self):
        assert sanitize_prompt("", "Market Day") == "Market Day - historical scene"
        assert sanitize_prompt(None, "Market Day") == "Market Day - historical scene"

    def test_simplify_keeps_three_clauses(self):
        assert simplify_prompt("a woman, dark eyes, blue tunic, lamplight, 1906") == (
            "a woman, dark eyes, blue tunic"
        )

    def test_video_prompt(self):
        assert video_prompt("Smoke rises.") == "Cinematic view: Smoke rises."
        assert video_prompt("z" * 300, shortened=True) == "z" * 100


class TestPipelineRun:
    """Tests for a full pipeline run."""

    def test_event_order(self, scenes):
        """status, then progress/scene_complete pairs, then complete."""
        events, _, _ = run_pipeline(scenes)

        types = [e.type for e in events]
        assert types == ["status"] + ["progress", "scene_complete"] * 3 + ["complete"]
        assert isinstance(events[0], StatusEvent)
        assert events[0].total_scenes == 3
        assert [e.current_scene for e in events if isinstance(e, ProgressEvent)] == [1, 2, 3]

    def test_all_scenes_complete(self, scenes):
        events, images, videos = run_pipeline(scenes)
        complete = events[-1]

        assert isinstance(complete, CompleteEvent)
        assert complete.success
        assert complete.rate_limited_count == 0
        assert len(complete.results) == 3
        for index, result in enumerate(complete.results):
            assert result.status == SceneStatus.COMPLETE
            assert result.image_url == f"gs://hbp-media/images/image_{index}.png"
            assert result.video_url == f"gs://hbp-media/videos/video_{index}.mp4"
            assert not result.video_fallback
            assert result.expires_at is not None
            assert result.is_media_valid()

        assert [c["source_image"] for c in videos.calls] == [r.image_url for r in complete.results]
        assert videos.calls[0]["prompt"].startswith("Cinematic view: Historical context")
        assert all(c["reference_image"] is None for c in images.calls)

    def test_video_rate_limit_switches_to_image_only(self, scenes):
        """After a video rate limit no further video calls are made."""
        videos = FakeVideos(failures={0: RateLimitError("Daily task limit reached")})
        events, images, videos = run_pipeline(scenes, videos=videos)
        results = results_of(events)

        assert len(images.calls) == 3
        assert len(videos.calls) == 1
        for result in results:
            assert result.status == SceneStatus.COMPLETE
            assert result.video_fallback
            assert result.is_rate_limited
            assert result.video_url == result.image_url

        progress = [e for e in events if isinstance(e, ProgressEvent)]
        assert [p.rate_limited for p in progress] == [False, True, True]
        assert events[-1].rate_limited_count == 3
        assert events[-1].success

    def test_rate_limit_detected_from_message(self, scenes):
        videos = FakeVideos(failures={1: GenerationServiceError("You have hit your daily task limit")})
        events, _, videos = run_pipeline(scenes, videos=videos)
        results = results_of(events)

        assert len(videos.calls) == 2
        assert not results[0].is_rate_limited
        assert results[1].is_rate_limited and results[2].is_rate_limited
        assert events[-1].rate_limited_count == 2

    def test_generic_video_failure_falls_back_for_one_scene(self, scenes):
        videos = FakeVideos(failures={0: GenerationServiceError("Operation timed out")})
        events, _, videos = run_pipeline(scenes, videos=videos)
        results = results_of(events)

        assert len(videos.calls) == 3
        assert results[0].video_fallback
        assert results[0].video_error == "Operation timed out"
        assert not results[0].is_rate_limited
        assert results[0].expires_at is None
        assert not results[1].video_fallback

    def test_video_echoing_image_is_a_fallback(self, scenes):
        events, _, _ = run_pipeline(scenes, videos=FakeVideos(echo_image=True))

        for result in results_of(events):
            assert result.video_fallback
            assert result.expires_at is None

    def test_bad_output_retried_once_with_simplified_prompt(self, scenes):
        images = FakeImages(failures={0: BadOutputError("filtered")})
        events, images, videos = run_pipeline(scenes, images=images)
        first = results_of(events)[0]

        assert len(images.calls) == 4
        assert images.calls[1]["prompt"] == "Mei Lin, age 24, dark eyes"
        assert first.status == SceneStatus.COMPLETE
        assert first.retried
        assert first.visual_prompt == scenes[0].visual_prompt
        assert videos.calls[0]["prompt"] == scenes[0].context[:100].strip()

    def test_bad_output_twice_fails_scene(self, scenes):
        images = FakeImages(
            failures={
                0: BadOutputError("filtered: full prompt"),
                1: BadOutputError("filtered: simplified prompt"),
            }
        )
        events, images, videos = run_pipeline(scenes, images=images)
        results = results_of(events)

        assert len(images.calls) == 4
        assert results[0].status == SceneStatus.FAILED
        assert results[0].error == "filtered: simplified prompt"
        assert results[0].error_code == BAD_OUTPUT_CODE
        assert results[0].retried
        assert results[0].video_url is None
        assert results[1].status == SceneStatus.COMPLETE
        assert len(videos.calls) == 2
        assert events[-1].success

    def test_generic_image_failure_not_retried(self, scenes):
        images = FakeImages(failures={0: GenerationServiceError("500: backend error")})
        events, images, _ = run_pipeline(scenes, images=images)
        first = results_of(events)[0]

        assert len(images.calls) == 3
        assert first.status == SceneStatus.FAILED
        assert first.error == "500: backend error"
        assert first.error_code == "UNKNOWN"
        assert not first.retried

    def test_image_rate_limit_fails_only_that_scene(self, scenes):
        """Stills and clips have separate quotas, so later clips are still attempted."""
        images = FakeImages(failures={0: RateLimitError("quota")})
        events, _, videos = run_pipeline(scenes, images=images)
        results = results_of(events)

        assert results[0].status == SceneStatus.FAILED
        assert results[0].error_code == "RATE_LIMIT"
        assert results[0].is_rate_limited
        assert not results[0].retried
        assert len(videos.calls) == 2
        assert not results[1].video_fallback and not results[1].is_rate_limited
        progress = [e for e in events if isinstance(e, ProgressEvent)]
        assert [p.rate_limited for p in progress] == [False, False, False]
        assert events[-1].rate_limited_count == 1

    def test_style_reference(self, scenes):
        """The first still is passed to every later image call."""
        events, images, _ = run_pipeline(scenes, use_style_reference=True)

        references = [c["reference_image"] for c in images.calls]
        assert references == [None, "gs://hbp-media/images/image_0.png", "gs://hbp-media/images/image_0.png"]

    def test_runs_are_independent(self, scenes):
        """The image-only flag does not leak into the next run."""
        videos = FakeVideos(failures={0: RateLimitError("quota")})
        pipeline = GenerationPipeline(FakeImages(), videos)

        list(pipeline.run(scenes, "Mei Lin"))
        second = list(pipeline.run(scenes, "Mei Lin"))

        assert len(videos.calls) == 4
        assert second[-1].rate_limited_count == 0

    @pytest.mark.parametrize("persona_name,scene_input", [("", None), ("Mei Lin", [{"title": "x"}])])
    def test_invalid_input_yields_error_event(self, scenes, persona_name, scene_input):
        pipeline = GenerationPipeline(FakeImages(), FakeVideos())

        events = list(pipeline.run(scene_input or scenes, persona_name))

        assert len(events) == 1
        assert isinstance(events[0], ErrorEvent)
        assert events[0].message == "Failed to generate visual sequence"
        assert not events[0].success

    def test_sse_frame(self, scenes):
        events, _, _ = run_pipeline(scenes)

        frame = events[0].to_sse()
        assert frame.startswith('data: {"message": ')
        assert '"type": "status"' in frame
        assert frame.endswith("\n\n")
