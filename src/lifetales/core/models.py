"""Core Data Models for LifeTales.

A *story space* is one ongoing narrative thread (a trip, a project, a year).
It holds *chapters*. Each chapter is one spoken or typed memory that went
through the pipeline and came out as polished prose with a mood, a few
tags, and optionally an illustration.

The pipeline never builds a Chapter itself. It returns an AgentResponse, and
the session turns that into exactly one Chapter once the run has completed.

Example:
    >>> story = StorySpace(title="Kyoto Spring", theme="Travel")
    >>> response = AgentResponse(
    ...     transcription="We walked along the river",
    ...     narrative="We wandered the riverbank as petals fell...",
    ...     mood="Peaceful",
    ...     tags=["travel", "spring"],
    ... )
    >>> chapter = Chapter.from_response(response, MediaType.VOICE)
"""

from __future__ import annotations

import uuid
from collections import deque
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _dedupe_tags(tags: Any) -> Any:
    """Strip, drop blanks and de-duplicate while keeping first-seen order."""
    if not isinstance(tags, (list, tuple)):
        return tags
    seen: dict[str, None] = {}
    for tag in tags:
        if not isinstance(tag, str):
            continue
        tag = tag.strip()
        if tag and tag.lower() not in (t.lower() for t in seen):
            seen[tag] = None
    return list(seen)


class AnalysisDefaults:
    """Values used when semantic analysis cannot produce a result."""

    FALLBACK_MOOD: str = "Reflective"
    FALLBACK_TAGS: tuple[str, ...] = ("Life",)


# =============================================================================
# Enums
# =============================================================================


class MediaType(str, Enum):
    """Origin of a chapter's raw input.

    Attributes:
        VOICE: Recorded audio, transcribed by the pipeline.
        TEXT: A typed note, fed straight to analysis.
        IMAGE: Reserved for photo memories; no pipeline produces it yet.
    """

    VOICE = "voice"
    TEXT = "text"
    IMAGE = "image"


class InputKind(str, Enum):
    """What the caller hands to the pipeline."""

    AUDIO = "audio"
    TEXT = "text"


class AgentStatus(str, Enum):
    """Pipeline phase. Exactly one is active per session at a time.

    The stage statuses are emitted in the order
    TRANSCRIBING → ANALYZING → WEAVING → ILLUSTRATING → COMPLETED
    (or ERROR). IDLE and LISTENING belong to the caller.
    """

    IDLE = "IDLE"
    LISTENING = "LISTENING"
    TRANSCRIBING = "TRANSCRIBING"  # Speech agent
    ANALYZING = "ANALYZING"  # Semantic agent
    WEAVING = "WEAVING"  # Story builder agent
    ILLUSTRATING = "ILLUSTRATING"  # Visual agent
    COMPLETED = "COMPLETED"
    ERROR = "ERROR"

    @property
    def is_terminal(self) -> bool:
        """True for the statuses a run ends on."""
        return self in (AgentStatus.COMPLETED, AgentStatus.ERROR)

    @property
    def message(self) -> str:
        """Operator-facing text for this status."""
        return AGENT_MESSAGES[self]


AGENT_MESSAGES: dict[AgentStatus, str] = {
    AgentStatus.IDLE: "Ready to listen...",
    AgentStatus.LISTENING: "Listening...",
    AgentStatus.TRANSCRIBING: "Speech Agent is transcribing...",
    AgentStatus.ANALYZING: "Semantic Agent is finding meaning...",
    AgentStatus.WEAVING: "Story Builder is writing the chapter...",
    AgentStatus.ILLUSTRATING: "Visual Agent is painting the scene...",
    AgentStatus.COMPLETED: "Memory preserved.",
    AgentStatus.ERROR: "Something went wrong.",
}


# =============================================================================
# Pipeline I/O
# =============================================================================


class PipelineInput(BaseModel):
    """Raw input for one pipeline run.

    Audio payloads are raw bytes (the SDK handles transport encoding);
    text payloads are the user's note.
    """

    model_config = ConfigDict(frozen=True)

    kind: InputKind
    payload: bytes | str
    mime_type: str | None = None

    @model_validator(mode="after")
    def check_payload(self) -> "PipelineInput":
        """Match payload type to kind and reject empty input."""
        if self.kind == InputKind.AUDIO:
            if not isinstance(self.payload, bytes):
                raise ValueError("audio input requires a bytes payload")
            if not self.payload:
                raise ValueError("audio input is empty")
        else:
            if not isinstance(self.payload, str):
                raise ValueError("text input requires a str payload")
            if not self.payload.strip():
                raise ValueError("text input is blank")
        return self

    @classmethod
    def audio(cls, data: bytes, mime_type: str | None = None) -> "PipelineInput":
        return cls(kind=InputKind.AUDIO, payload=data, mime_type=mime_type)

    @classmethod
    def text(cls, note: str) -> "PipelineInput":
        return cls(kind=InputKind.TEXT, payload=note)

    @property
    def media_type(self) -> MediaType:
        """Chapter media type this input produces."""
        return MediaType.VOICE if self.kind == InputKind.AUDIO else MediaType.TEXT


class PipelineConfig(BaseModel):
    """Per-run settings handed to the synthesis stage.

    ``story_context`` is derived from the target story right before the run
    and is never stored.
    """

    story_context: str = ""
    style: str = "narrative"


class AgentResponse(BaseModel):
    """Aggregated result of a completed pipeline run."""

    transcription: str
    narrative: str = Field(..., min_length=1)
    mood: str = Field(..., min_length=1)
    tags: list[str] = Field(default_factory=list)
    illustration: str | None = None

    @field_validator("tags", mode="before")
    @classmethod
    def normalize_tags(cls, v: Any) -> Any:
        return _dedupe_tags(v)


class StatusEvent(BaseModel):
    """One status transition, as published on the status channel."""

    model_config = ConfigDict(frozen=True)

    run_id: str
    status: AgentStatus
    timestamp: datetime = Field(default_factory=_utcnow)

    @property
    def message(self) -> str:
        return self.status.message


# =============================================================================
# Story Models
# =============================================================================


class Chapter(BaseModel):
    """One immutable memory entry within a story space.

    Attributes:
        id: Unique chapter identifier.
        timestamp: When the chapter was created (UTC).
        raw_input: The transcribed or typed text.
        narrative: Synthesized prose; never empty.
        mood: Single mood label; never empty.
        tags: Short keywords, de-duplicated in order.
        illustration: Data URL of the generated image, if any.
        media_type: Origin of the raw input.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: f"ch_{uuid.uuid4().hex[:12]}")
    timestamp: datetime = Field(default_factory=_utcnow)
    raw_input: str = ""
    narrative: str = Field(..., min_length=1)
    mood: str = Field(..., min_length=1)
    tags: tuple[str, ...] = ()
    illustration: str | None = None
    media_type: MediaType = MediaType.VOICE

    @field_validator("tags", mode="before")
    @classmethod
    def normalize_tags(cls, v: Any) -> Any:
        return _dedupe_tags(v)

    @field_validator("narrative", "mood")
    @classmethod
    def reject_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v

    @classmethod
    def from_response(
        cls,
        response: AgentResponse,
        media_type: MediaType,
        timestamp: datetime | None = None,
    ) -> "Chapter":
        """Build the chapter for a completed pipeline run."""
        return cls(
            timestamp=timestamp or _utcnow(),
            raw_input=response.transcription,
            narrative=response.narrative,
            mood=response.mood,
            tags=tuple(response.tags),
            illustration=response.illustration,
            media_type=media_type,
        )


class StorySpace(BaseModel):
    """A named collection of chapters, newest first.

    Chapters are only ever added through ``StoryStore.append_chapter``,
    which prepends in O(1).
    """

    id: str = Field(default_factory=lambda: f"story_{uuid.uuid4().hex[:12]}")
    title: str
    theme: str
    created_at: datetime = Field(default_factory=_utcnow)
    cover_image: str | None = None
    chapters: deque[Chapter] = Field(default_factory=deque)

    @property
    def chapter_count(self) -> int:
        return len(self.chapters)
