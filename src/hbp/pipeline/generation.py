"""Sequential scene-to-media generation pipeline.

Each scene is rendered as a still, then the still is animated into a clip.
Scenes are processed strictly one after another: the media service limits
tasks per caller, and the first still can serve as the style reference for
the rest.

Failure handling per scene:

* video failure: the still stands in for the clip (``video_fallback``);
  a rate-limit failure additionally switches the rest of the run to
  image-only mode.
* image failure with bad output: one retry with the first three clauses of
  the visual prompt.
* any other image failure: the scene is marked failed. An image rate limit
  fails only that scene, since stills and clips draw on separate quotas.

Per-scene errors never abort the run; only errors outside the per-scene
boundary end it with an ``error`` event.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Iterator, Optional, Protocol

from ..config import config
from ..models import (
    CompleteEvent,
    ErrorEvent,
    GenerationResult,
    MEDIA_VALIDITY,
    PipelineEvent,
    ProgressEvent,
    Scene,
    SceneCompleteEvent,
    SceneStatus,
    StatusEvent,
    utcnow,
)
from ..services.errors import FailureKind, classify_failure

logger = logging.getLogger(__name__)

MAX_PROMPT_LENGTH = 990
TRUNCATED_LENGTH = 897
TRUNCATION_MARKER = "..."
RETRY_CONTEXT_LENGTH = 100


class ImageGenerator(Protocol):
    def create_image(
        self,
        prompt: str,
        aspect_ratio: str = ...,
        reference_image: Optional[str] = ...,
    ) -> str: ...


class VideoGenerator(Protocol):
    def create_video(
        self,
        source_image: str,
        prompt: str,
        aspect_ratio: str = ...,
        duration_seconds: int = ...,
    ) -> str: ...


def sanitize_prompt(prompt: Optional[str], title: str = "") -> str:
    """Keep a prompt under the media service's length ceiling."""
    text = (prompt or "").strip() or f"{title} - historical scene"
    if len(text) > MAX_PROMPT_LENGTH:
        logger.warning(f"Prompt too long ({len(text)} chars), truncating")
        text = text[:TRUNCATED_LENGTH] + TRUNCATION_MARKER
    return text


def simplify_prompt(prompt: str) -> str:
    """Reduce a prompt to its first three comma-separated clauses."""
    clauses = [clause.strip() for clause in prompt.split(",")]
    return ", ".join(clause for clause in clauses[:3] if clause)


def video_prompt(context: str, shortened: bool = False) -> str:
    """Build the motion prompt for a scene's clip."""
    if shortened:
        return sanitize_prompt(context[:RETRY_CONTEXT_LENGTH], "Cinematic view")
    return sanitize_prompt(f"Cinematic view: {context}".strip())


@dataclass
class RunContext:
    """State threaded through one ``run()``; never shared between runs."""

    rate_limited: bool = False
    style_reference: Optional[str] = None
    rate_limited_count: int = 0


class GenerationPipeline:
    """Turns scenes into stills and clips, reporting progress as events."""

    def __init__(
        self,
        images: ImageGenerator,
        videos: VideoGenerator,
        aspect_ratio: Optional[str] = None,
        video_duration: Optional[int] = None,
        use_style_reference: bool = False,
    ) -> None:
        """Initialize the pipeline.

        Args:
            images: Still image generator.
            videos: Image-to-video generator.
            aspect_ratio: Aspect ratio for stills and clips.
            video_duration: Clip length in seconds.
            use_style_reference: Pass the first still as a style reference
                when generating later stills.
        """
        self._images = images
        self._videos = videos
        self._aspect_ratio = aspect_ratio or config.aspect_ratio
        self._video_duration = video_duration or config.video_duration
        self._use_style_reference = use_style_reference

    def run(self, scenes: Iterable[Scene], persona_name: str) -> Iterator[PipelineEvent]:
        """Generate media for every scene in order.

        Yields:
            ``status``, then ``progress`` and ``scene_complete`` per scene,
            then ``complete``; or ``error`` if the run itself fails.
        """
        ctx = RunContext()
        results: list[GenerationResult] = []

        try:
            scene_list = list(scenes)
            if not persona_name:
                raise ValueError("Persona name is required")
            for scene in scene_list:
                if not isinstance(scene, Scene):
                    raise TypeError(f"Expected Scene, got {type(scene).__name__}")

            total = len(scene_list)
            logger.info(f"Starting visual sequence generation for {persona_name} ({total} scenes)")
            yield StatusEvent(
                message=f"Starting generation of {total} scenes for {persona_name}...",
                total_scenes=total,
            )

            for index, scene in enumerate(scene_list, start=1):
                yield ProgressEvent(
                    message=f"Generating Scene {scene.scene_number}: {scene.title}",
                    current_scene=index,
                    total_scenes=total,
                    scene_number=scene.scene_number,
                    title=scene.title,
                    rate_limited=ctx.rate_limited,
                )

                result = self._process_scene(scene, ctx)
                results.append(result)
                if result.is_rate_limited:
                    ctx.rate_limited_count += 1

                yield SceneCompleteEvent(
                    message=f"Scene {scene.scene_number} {result.status.value}",
                    scene=result,
                    current_scene=index,
                    total_scenes=total,
                )

            logger.info(f"Visual sequence generation completed for {persona_name}")
            yield CompleteEvent(
                message=f"Generated {len(results)} scenes for {persona_name}",
                results=results,
                rate_limited_count=ctx.rate_limited_count,
            )

        except Exception as e:
            logger.error(f"Visual generation error: {e}")
            yield ErrorEvent(message="Failed to generate visual sequence", error=str(e))

    def _process_scene(self, scene: Scene, ctx: RunContext) -> GenerationResult:
        """Resolve one scene to ``complete`` or ``failed``.

        A bad-output image failure re-enters the same path once with the
        simplified prompt, so the retry gets identical video handling.
        """
        logger.info(f"Generating Scene {scene.scene_number}: {scene.title}")
        result = GenerationResult.pending(scene)
        result.status = SceneStatus.GENERATING
        prompt = sanitize_prompt(scene.visual_prompt, scene.title)

        while True:
            try:
                image_url = self._create_image(prompt, ctx)
                break
            except Exception as e:
                kind = classify_failure(e)
                if kind is FailureKind.BAD_OUTPUT and not result.retried:
                    prompt = sanitize_prompt(
                        simplify_prompt(scene.visual_prompt or prompt), scene.title
                    )
                    result.retried = True
                    logger.info(
                        f"Retrying Scene {scene.scene_number} with simplified prompt: {prompt}"
                    )
                    continue
                return self._fail(result, e, kind)

        result.image_url = image_url
        if self._use_style_reference and ctx.style_reference is None:
            ctx.style_reference = image_url

        self._attach_video(result, scene, image_url, ctx)
        return result

    def _create_image(self, prompt: str, ctx: RunContext) -> str:
        if ctx.style_reference:
            return self._images.create_image(
                prompt, aspect_ratio=self._aspect_ratio, reference_image=ctx.style_reference
            )
        return self._images.create_image(prompt, aspect_ratio=self._aspect_ratio)

    def _attach_video(
        self,
        result: GenerationResult,
        scene: Scene,
        image_url: str,
        ctx: RunContext,
    ) -> None:
        result.status = SceneStatus.COMPLETE

        if ctx.rate_limited:
            logger.info(f"Rate limited; using image for Scene {scene.scene_number}")
            self._fall_back(result, image_url, "Video skipped: rate limit reached")
            result.is_rate_limited = True
            return

        try:
            video_url = self._videos.create_video(
                image_url,
                video_prompt(scene.context, shortened=result.retried),
                aspect_ratio=self._aspect_ratio,
                duration_seconds=self._video_duration,
            )
        except Exception as e:
            if classify_failure(e) is FailureKind.RATE_LIMIT:
                logger.warning(
                    f"Video rate limited at Scene {scene.scene_number}; "
                    "switching to image-only for the rest of this run"
                )
                ctx.rate_limited = True
                result.is_rate_limited = True
            else:
                logger.warning(
                    f"Video generation failed for Scene {scene.scene_number}, "
                    f"using image as fallback: {e}"
                )
            self._fall_back(result, image_url, str(e))
            return

        now = utcnow()
        result.video_url = video_url
        result.video_fallback = video_url == image_url
        result.generated_at = now
        if not result.video_fallback:
            result.expires_at = now + MEDIA_VALIDITY
        logger.info(f"Scene {scene.scene_number} complete: {video_url}")

    @staticmethod
    def _fall_back(result: GenerationResult, image_url: str, reason: str) -> None:
        result.video_url = image_url
        result.video_fallback = True
        result.video_error = reason
        result.generated_at = utcnow()

    @staticmethod
    def _fail(
        result: GenerationResult,
        error: Exception,
        kind: FailureKind,
    ) -> GenerationResult:
        logger.error(f"Scene {result.scene_number} failed: {error}")
        result.status = SceneStatus.FAILED
        result.error = str(error) or type(error).__name__
        result.error_code = getattr(error, "failure_code", None) or (
            "RATE_LIMIT" if kind is FailureKind.RATE_LIMIT else "UNKNOWN"
        )
        if kind is FailureKind.RATE_LIMIT:
            result.is_rate_limited = True
        return result
