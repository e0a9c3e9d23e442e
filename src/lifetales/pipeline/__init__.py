"""Memory pipeline orchestration and status reporting."""

from lifetales.pipeline.orchestrator import (
    MemoryPipeline,
    PipelineBusyError,
    PipelineError,
    PipelineErrorKind,
    TranscriptionFailedError,
    build_gemini_pipeline,
)
from lifetales.pipeline.status import RunContext, StatusChannel, StatusListener, Subscription

__all__ = [
    "MemoryPipeline",
    "PipelineBusyError",
    "PipelineError",
    "PipelineErrorKind",
    "RunContext",
    "StatusChannel",
    "StatusListener",
    "Subscription",
    "TranscriptionFailedError",
    "build_gemini_pipeline",
]
