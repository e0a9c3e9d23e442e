"""Central Pytest Fixtures for LifeTales.

Provides fake pipeline stages, a fast-timeout pipeline, story stores with
chapters, mocked Gemini clients and sample image bytes.

Fixtures included:
- Stages: transcriber, analyzer, synthesizer, illustrator (hand-written fakes)
- Pipeline: fast_settings, pipeline, session
- Core data: store, story_with_chapters, png_bytes
- AI Mocks: mock_gemini_client
"""

from __future__ import annotations

import asyncio
import io
import logging
from unittest.mock import AsyncMock, MagicMock

import pytest
from PIL import Image

from lifetales.ai.client import AIResponse, GeneratedImage, StructuredAIResponse
from lifetales.ai.stages.base import SemanticAnalysis
from lifetales.config import PipelineSettings, reset_config
from lifetales.core.models import Chapter, PipelineConfig, StorySpace
from lifetales.core.store import StoryStore
from lifetales.pipeline.orchestrator import MemoryPipeline
from lifetales.session import StorySession

# =============================================================================
# Fake Stages
# =============================================================================


class FakeTranscriber:
    """Returns a fixed transcript, or raises ``error``."""

    def __init__(self, transcript: str = "We walked along the river at dawn.") -> None:
        self.transcript = transcript
        self.error: Exception | None = None
        self.delay = 0.0
        self.calls: list[tuple[bytes, str]] = []

    async def transcribe(self, audio: bytes, mime_type: str) -> str:
        self.calls.append((audio, mime_type))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.transcript


class FakeAnalyzer:
    def __init__(self, mood: str = "Peaceful", tags: list[str] | None = None) -> None:
        self.result = SemanticAnalysis(mood=mood, tags=tags or ["river", "dawn", "walk"])
        self.error: Exception | None = None
        self.delay = 0.0
        self.calls: list[str] = []

    async def analyze(self, text: str) -> SemanticAnalysis:
        self.calls.append(text)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result


class FakeSynthesizer:
    def __init__(self, narrative: str = "At first light we followed the river, unhurried.") -> None:
        self.narrative = narrative
        self.error: Exception | None = None
        self.delay = 0.0
        self.calls: list[tuple[str, PipelineConfig]] = []

    async def synthesize(self, raw_text: str, config: PipelineConfig) -> str:
        self.calls.append((raw_text, config))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.narrative


class FakeIllustrator:
    def __init__(self, illustration: str | None = "data:image/png;base64,iVBORw0KGgo=") -> None:
        self.illustration = illustration
        self.error: Exception | None = None
        self.delay = 0.0
        self.calls: list[tuple[str, str]] = []

    async def illustrate(self, narrative: str, mood: str) -> str | None:
        self.calls.append((narrative, mood))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.illustration


# =============================================================================
# Autouse
# =============================================================================


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch: pytest.MonkeyPatch):
    """Isolate tests from real keys, cached config and CLI logging setup."""
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    reset_config()
    yield
    reset_config()
    package_logger = logging.getLogger("lifetales")
    package_logger.handlers = []
    package_logger.propagate = True
    package_logger.setLevel(logging.NOTSET)


# =============================================================================
# Pipeline Fixtures
# =============================================================================


@pytest.fixture
def transcriber() -> FakeTranscriber:
    return FakeTranscriber()


@pytest.fixture
def analyzer() -> FakeAnalyzer:
    return FakeAnalyzer()


@pytest.fixture
def synthesizer() -> FakeSynthesizer:
    return FakeSynthesizer()


@pytest.fixture
def illustrator() -> FakeIllustrator:
    return FakeIllustrator()


@pytest.fixture
def fast_settings() -> PipelineSettings:
    """Short timeouts and display intervals so timing tests run quickly."""
    return PipelineSettings(
        transcription_timeout_seconds=0.5,
        analysis_timeout_seconds=0.5,
        synthesis_timeout_seconds=0.5,
        illustration_timeout_seconds=0.5,
        completed_display_seconds=0.02,
        error_display_seconds=0.03,
    )


@pytest.fixture
def pipeline(
    transcriber: FakeTranscriber,
    analyzer: FakeAnalyzer,
    synthesizer: FakeSynthesizer,
    illustrator: FakeIllustrator,
    fast_settings: PipelineSettings,
) -> MemoryPipeline:
    return MemoryPipeline(transcriber, analyzer, synthesizer, illustrator, settings=fast_settings)


@pytest.fixture
def session(pipeline: MemoryPipeline, fast_settings: PipelineSettings) -> StorySession:
    return StorySession(pipeline, settings=fast_settings)


# =============================================================================
# Core Data Fixtures
# =============================================================================


@pytest.fixture
def store() -> StoryStore:
    return StoryStore()


def _add_chapters(store: StoryStore, story: StorySpace, narratives: list[str]) -> None:
    for narrative in narratives:
        store.append_chapter(story.id, Chapter(narrative=narrative, mood="Calm", raw_input=narrative))


@pytest.fixture
def add_chapters():
    """Helper that appends chapters in the given (chronological) order."""
    return _add_chapters


@pytest.fixture
def story_with_chapters(store: StoryStore) -> StorySpace:
    """A story whose chapters were written as 'one' .. 'five', in that order."""
    story = store.create_story("Kyoto Spring", "Travel")
    _add_chapters(store, story, ["one", "two", "three", "four", "five"])
    return story


@pytest.fixture
def png_bytes() -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (8, 8), color="orange").save(buffer, format="PNG")
    return buffer.getvalue()


# =============================================================================
# AI Mocks
# =============================================================================


@pytest.fixture
def mock_gemini_client(png_bytes: bytes) -> MagicMock:
    """A GeminiClient stand-in whose async methods return canned responses."""
    client = MagicMock()
    client.transcribe_audio = AsyncMock(
        return_value=AIResponse(text="  We walked along the river.  ", model="gemini-2.5-flash")
    )
    client.generate = AsyncMock(
        return_value=AIResponse(
            text="We followed the river as the city woke.",
            model="gemini-2.5-flash",
            finish_reason="STOP",
        )
    )
    client.generate_structured = AsyncMock(
        return_value=StructuredAIResponse(
            data={"mood": "Peaceful", "tags": ["river", "morning", "walk"]},
            raw_text='{"mood": "Peaceful", "tags": ["river", "morning", "walk"]}',
            model="gemini-2.5-flash",
        )
    )
    client.generate_image = AsyncMock(
        return_value=GeneratedImage(data=png_bytes, mime_type="image/png", model="gemini-2.5-flash-image")
    )
    return client
