"""Stage contracts, stage errors and analysis fallbacks.

Each pipeline stage is a Protocol with one async method. The orchestrator
depends only on these contracts; the Gemini-backed implementations live in
the sibling modules and tests substitute hand-written fakes.

Stages never decide policy. A stage that cannot do its job raises its
``StageError`` subclass and the orchestrator decides whether the run dies
or degrades.
"""

from __future__ import annotations

from typing import Literal, Protocol, runtime_checkable

from pydantic import BaseModel, Field, field_validator

from lifetales.core.models import AnalysisDefaults, PipelineConfig, _dedupe_tags


# =============================================================================
# Analysis result and fallbacks
# =============================================================================


class SemanticAnalysis(BaseModel):
    """Mood and keywords for a memory.

    This model doubles as the ``response_schema`` sent to Gemini, so it
    stays flat and simple.
    """

    mood: str = Field(..., description="A single adjective describing the emotion")
    tags: list[str] = Field(default_factory=list, description="Short relevant keywords")

    @field_validator("mood")
    @classmethod
    def mood_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("mood must not be blank")
        return v

    @field_validator("tags", mode="before")
    @classmethod
    def normalize_tags(cls, v: object) -> object:
        return _dedupe_tags(v)

    @classmethod
    def fallback(
        cls,
        mood: str = AnalysisDefaults.FALLBACK_MOOD,
        tags: tuple[str, ...] | list[str] = AnalysisDefaults.FALLBACK_TAGS,
    ) -> "SemanticAnalysis":
        return cls(mood=mood, tags=list(tags))


# =============================================================================
# Stage errors
# =============================================================================


class StageError(Exception):
    """Base class for stage failures.

    Attributes:
        stage: Short stage name used in logs ("transcription", ...).
        message: Human-readable description (never contains user content).
        original_error: The client error or parse failure behind this one.
    """

    stage: str = "stage"

    def __init__(self, message: str, original_error: Exception | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.original_error = original_error


class TranscriptionFailed(StageError):
    stage = "transcription"


class AnalysisDegraded(StageError):
    """Semantic analysis produced nothing usable.

    Attributes:
        reason: ``"backend"`` when the call itself failed, ``"malformed"``
            when the model answered with something that is not a valid
            analysis.
    """

    stage = "analysis"

    def __init__(
        self,
        message: str,
        reason: Literal["backend", "malformed"],
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message, original_error=original_error)
        self.reason = reason


class SynthesisDegraded(StageError):
    stage = "synthesis"


class IllustrationOmitted(StageError):
    stage = "illustration"


# =============================================================================
# Stage contracts
# =============================================================================


@runtime_checkable
class Transcriber(Protocol):
    async def transcribe(self, audio: bytes, mime_type: str) -> str:
        """Return the verbatim transcript or raise ``TranscriptionFailed``."""
        ...


@runtime_checkable
class SemanticAnalyzer(Protocol):
    async def analyze(self, text: str) -> SemanticAnalysis:
        """Return mood and tags or raise ``AnalysisDegraded``."""
        ...


@runtime_checkable
class NarrativeSynthesizer(Protocol):
    async def synthesize(self, raw_text: str, config: PipelineConfig) -> str:
        """Return one narrative paragraph or raise ``SynthesisDegraded``."""
        ...


@runtime_checkable
class Illustrator(Protocol):
    async def illustrate(self, narrative: str, mood: str) -> str | None:
        """Return an image data URL, None, or raise ``IllustrationOmitted``."""
        ...
