"""Core data model, store and context derivation."""

from lifetales.core.context import derive_story_context
from lifetales.core.models import (
    AGENT_MESSAGES,
    AgentResponse,
    AgentStatus,
    Chapter,
    InputKind,
    MediaType,
    PipelineConfig,
    PipelineInput,
    StatusEvent,
    StorySpace,
)
from lifetales.core.store import StoryNotFoundError, StoryStore

__all__ = [
    "AGENT_MESSAGES",
    "AgentResponse",
    "AgentStatus",
    "Chapter",
    "InputKind",
    "MediaType",
    "PipelineConfig",
    "PipelineInput",
    "StatusEvent",
    "StoryNotFoundError",
    "StoryStore",
    "StorySpace",
    "derive_story_context",
]
