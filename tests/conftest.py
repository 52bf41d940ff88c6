"""
Pytest configuration and shared fixtures.
"""

from pathlib import Path
from typing import Optional

import pytest

from hbp.config import config
from hbp.models import Scene
from hbp.storage import LocalStore, StorageManager


SAMPLE_REPLY = """Let me bring Mei Lin's story to life through three scenes.

**Scene 1: Identity & Daily Life**
Visual Prompt: Mei Lin, a 24-year-old Chinese woman with dark almond eyes and black hair in a low bun, wearing a blue cotton tunic, in a crowded Chinatown grocery, San Francisco 1906, warm lamplight
Historical Learning Context: The Chinese Exclusion Act of 1882 shaped every part of Mei Lin's life.
It confined families like hers to a few crowded blocks.

**Scene 2: The Earthquake**
Visual Prompt: Mei Lin, a 24-year-old Chinese woman with dark almond eyes, clutching a shawl, among collapsed wooden buildings at dawn, dust in the air
Context: At 5:12 a.m. on April 18, 1906 the ground split open beneath the city.

**Scene 3: Rebuilding**
**Visual Prompt:** Mei Lin, a 24-year-old Chinese woman with dark almond eyes, handing out rice at a relief camp in the Presidio, tents and smoke behind her
**Context:** Relief camps were segregated, yet the destroyed records let many claim citizenship.
"""


class FakeImages:
    """Image generator returning predictable URIs, failing on demand."""

    def __init__(self, failures: Optional[dict] = None) -> None:
        self.calls: list[dict] = []
        self._failures = failures or {}

    def create_image(self, prompt, aspect_ratio="16:9", reference_image=None):
        index = len(self.calls)
        self.calls.append(
            {"prompt": prompt, "aspect_ratio": aspect_ratio, "reference_image": reference_image}
        )
        if index in self._failures:
            raise self._failures[index]
        return f"gs://hbp-media/images/image_{index}.png"


class FakeVideos:
    """Video generator returning predictable URIs, failing on demand."""

    def __init__(self, failures: Optional[dict] = None, echo_image: bool = False) -> None:
        self.calls: list[dict] = []
        self._failures = failures or {}
        self._echo_image = echo_image

    def create_video(self, source_image, prompt, aspect_ratio="16:9", duration_seconds=5):
        index = len(self.calls)
        self.calls.append(
            {
                "source_image": source_image,
                "prompt": prompt,
                "aspect_ratio": aspect_ratio,
                "duration_seconds": duration_seconds,
            }
        )
        if index in self._failures:
            raise self._failures[index]
        if self._echo_image:
            return source_image
        return f"gs://hbp-media/videos/video_{index}.mp4"


@pytest.fixture
def sample_reply() -> str:
    return SAMPLE_REPLY


@pytest.fixture
def scenes() -> list[Scene]:
    return [
        Scene(
            scene_number=n,
            title=f"Scene title {n}",
            visual_prompt=f"Mei Lin, age 24, dark eyes, blue tunic, scene {n}, lamplight",
            context=f"Historical context for scene {n}. " * 10,
        )
        for n in (1, 2, 3)
    ]


@pytest.fixture
def workspace(tmp_path, monkeypatch) -> Path:
    """Point the global config at a temporary workspace."""
    monkeypatch.setattr(config, "workspace", tmp_path)
    return tmp_path


@pytest.fixture
def store(tmp_path) -> LocalStore:
    return LocalStore(tmp_path / "storage")


@pytest.fixture
def storage(store) -> StorageManager:
    return StorageManager(store, max_conversations=50, max_personas=100)
