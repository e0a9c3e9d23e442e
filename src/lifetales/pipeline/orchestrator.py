"""Memory Pipeline: transcribe, analyze, weave, illustrate.

This module turns one raw memory (recorded audio or a typed note) into an
``AgentResponse`` by running four stages in strict sequence:

1. Transcription (audio only) - fatal on failure
2. Semantic analysis - falls back to a fixed mood and tags
3. Narrative synthesis - falls back to the raw text
4. Illustration - omitted on failure

Only the loss of the user's input is fatal. Every later stage enhances
what is already there, so its failure lowers quality but never loses the
memory.

The pipeline never touches the story store. It returns a value, and the
caller (see ``lifetales.session``) decides what to do with it.

Example:
    >>> pipeline = MemoryPipeline(transcriber, analyzer, synthesizer, illustrator)
    >>> response = await pipeline.run(
    ...     PipelineInput.audio(webm_bytes, "audio/webm"),
    ...     PipelineConfig(story_context=context),
    ...     on_status=lambda event: print(event.message),
    ... )
    >>> pipeline.last_run.statuses
    [TRANSCRIBING, ANALYZING, WEAVING, ILLUSTRATING, COMPLETED]
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Awaitable, TypeVar

from lifetales.ai.client import GeminiClient
from lifetales.ai.stages import (
    GeminiIllustrator,
    GeminiNarrativeSynthesizer,
    GeminiSemanticAnalyzer,
    GeminiTranscriber,
)
from lifetales.ai.stages.base import (
    AnalysisDegraded,
    Illustrator,
    NarrativeSynthesizer,
    SemanticAnalysis,
    SemanticAnalyzer,
    StageError,
    Transcriber,
    TranscriptionFailed,
)
from lifetales.config import PipelineSettings
from lifetales.core.models import AgentResponse, AgentStatus, InputKind, PipelineConfig, PipelineInput
from lifetales.pipeline.status import RunContext, StatusChannel, StatusListener
from lifetales.utils.logging import LogContext

logger = logging.getLogger(__name__)

T = TypeVar("T")


# =============================================================================
# Errors
# =============================================================================


class PipelineErrorKind(str, Enum):
    """Fatal failure kinds that escape a pipeline run."""

    TRANSCRIPTION_FAILED = "TranscriptionFailed"


class PipelineError(Exception):
    """A run ended in ERROR.

    Attributes:
        message: Human-readable description (never contains user content).
        kind: What went wrong.
        run_id: Id of the failed run.
        original_error: The stage error behind the failure.
    """

    def __init__(
        self,
        message: str,
        kind: PipelineErrorKind,
        run_id: str | None = None,
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.run_id = run_id
        self.original_error = original_error


class TranscriptionFailedError(PipelineError):
    """Audio could not be turned into text; there is nothing to build on."""

    def __init__(
        self,
        message: str = "Could not transcribe the recording.",
        run_id: str | None = None,
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(
            message,
            kind=PipelineErrorKind.TRANSCRIPTION_FAILED,
            run_id=run_id,
            original_error=original_error,
        )


class PipelineBusyError(RuntimeError):
    """A run was started while another run on the same pipeline is active."""

    def __init__(self, active_run_id: str | None = None) -> None:
        self.active_run_id = active_run_id
        self.message = "A memory is already being processed. Wait for it to finish."
        super().__init__(self.message)


# =============================================================================
# Pipeline
# =============================================================================


class MemoryPipeline:
    """Sequences the four stages and applies the failure policy.

    One pipeline accepts one run at a time. Status events go to the
    pipeline's ``StatusChannel`` and to the optional per-run ``on_status``
    listener.

    Args:
        transcriber: Speech-to-text stage.
        analyzer: Mood and tags stage.
        synthesizer: Narrative stage.
        illustrator: Image stage.
        settings: Timeouts, fallbacks and defaults.
        channel: Channel to publish on. A private one is created if omitted.
    """

    def __init__(
        self,
        transcriber: Transcriber,
        analyzer: SemanticAnalyzer,
        synthesizer: NarrativeSynthesizer,
        illustrator: Illustrator,
        settings: PipelineSettings | None = None,
        channel: StatusChannel | None = None,
    ) -> None:
        self._transcriber = transcriber
        self._analyzer = analyzer
        self._synthesizer = synthesizer
        self._illustrator = illustrator
        self._settings = settings or PipelineSettings()
        self._channel = channel or StatusChannel()
        self._active: RunContext | None = None
        self.last_run: RunContext | None = None

    @property
    def channel(self) -> StatusChannel:
        return self._channel

    @property
    def is_running(self) -> bool:
        return self._active is not None

    # -------------------------------------------------------------------------
    # Entry point
    # -------------------------------------------------------------------------

    async def run(
        self,
        pipeline_input: PipelineInput,
        config: PipelineConfig | None = None,
        on_status: StatusListener | None = None,
    ) -> AgentResponse:
        """Run one memory through the pipeline.

        Args:
            pipeline_input: Validated audio or text input.
            config: Story context and style for synthesis.
            on_status: Listener for this run's status events only.

        Returns:
            The aggregated response. Degraded stages are reflected only in
            its content.

        Raises:
            TranscriptionFailedError: If audio could not be transcribed.
            PipelineBusyError: If another run is in progress.
        """
        if self._active is not None:
            raise PipelineBusyError(self._active.run_id)

        config = config or PipelineConfig(style=self._settings.default_style)
        ctx = RunContext()
        self._active = ctx
        self.last_run = ctx
        subscription = self._channel.subscribe(on_status) if on_status is not None else None

        try:
            with LogContext(f"Pipeline run {ctx.run_id[:8]}", logger=logger):
                return await self._execute(ctx, pipeline_input, config)
        finally:
            if subscription is not None:
                subscription.cancel()
            self._active = None

    async def _execute(self, ctx: RunContext, pipeline_input: PipelineInput, config: PipelineConfig) -> AgentResponse:
        s = self._settings

        # Stage 1: acquisition
        if pipeline_input.kind == InputKind.AUDIO:
            self._emit(ctx, AgentStatus.TRANSCRIBING)
            raw_text = await self._transcribe(ctx, pipeline_input)
        else:
            raw_text = str(pipeline_input.payload)

        # Stage 2: semantic analysis
        self._emit(ctx, AgentStatus.ANALYZING)
        analysis = await self._analyze(ctx, raw_text)

        # Stage 3: narrative synthesis
        self._emit(ctx, AgentStatus.WEAVING)
        try:
            narrative = await self._stage(
                "synthesis",
                self._synthesizer.synthesize(raw_text, config),
                s.synthesis_timeout_seconds,
            )
            narrative = (narrative or "").strip()
            if not narrative:
                raise StageError("Synthesis returned a blank narrative")
        except Exception as e:
            self._degrade(ctx, "synthesis", e)
            narrative = raw_text

        # Stage 4: illustration
        self._emit(ctx, AgentStatus.ILLUSTRATING)
        illustration: str | None = None
        try:
            illustration = await self._stage(
                "illustration",
                self._illustrator.illustrate(narrative, analysis.mood),
                s.illustration_timeout_seconds,
            )
        except Exception as e:
            # Decorative only; nothing is surfaced
            ctx.mark_degraded("illustration")
            logger.info(f"Illustration omitted: {type(e).__name__}")

        response = AgentResponse(
            transcription=raw_text,
            narrative=narrative,
            mood=analysis.mood,
            tags=analysis.tags,
            illustration=illustration or None,
        )
        self._emit(ctx, AgentStatus.COMPLETED)
        return response

    # -------------------------------------------------------------------------
    # Stage helpers
    # -------------------------------------------------------------------------

    async def _transcribe(self, ctx: RunContext, pipeline_input: PipelineInput) -> str:
        mime_type = pipeline_input.mime_type or self._settings.default_audio_mime_type
        try:
            transcript = await self._stage(
                "transcription",
                self._transcriber.transcribe(bytes(pipeline_input.payload), mime_type),  # type: ignore[arg-type]
                self._settings.transcription_timeout_seconds,
            )
            transcript = (transcript or "").strip()
            if not transcript:
                raise TranscriptionFailed("Transcription returned no text")
        except Exception as e:
            logger.error(f"Transcription failed: {type(e).__name__}")
            self._emit(ctx, AgentStatus.ERROR)
            raise TranscriptionFailedError(run_id=ctx.run_id, original_error=e) from e
        return transcript

    async def _analyze(self, ctx: RunContext, raw_text: str) -> SemanticAnalysis:
        try:
            analysis = await self._stage(
                "analysis",
                self._analyzer.analyze(raw_text),
                self._settings.analysis_timeout_seconds,
            )
            if not analysis.mood or not analysis.mood.strip():
                raise AnalysisDegraded("Analysis returned a blank mood", reason="malformed")
            return analysis
        except Exception as e:
            self._degrade(ctx, "analysis", e)
            return SemanticAnalysis.fallback(
                mood=self._settings.fallback_mood,
                tags=self._settings.fallback_tags,
            )

    async def _stage(self, name: str, call: Awaitable[T], timeout: float) -> T:
        with LogContext(f"Stage {name}", level=logging.DEBUG, logger=logger):
            return await asyncio.wait_for(call, timeout=timeout)

    def _degrade(self, ctx: RunContext, stage: str, error: Exception) -> None:
        ctx.mark_degraded(stage)
        detail = f" ({error.reason})" if isinstance(error, AnalysisDegraded) else ""
        logger.warning(f"Stage {stage} degraded: {type(error).__name__}{detail}")

    def _emit(self, ctx: RunContext, status: AgentStatus) -> None:
        event = ctx.advance(status)
        logger.debug(f"[{ctx.run_id[:8]}] {status.value}")
        self._channel.publish(event)


def build_gemini_pipeline(
    client: GeminiClient,
    settings: PipelineSettings | None = None,
    channel: StatusChannel | None = None,
    synthesis_temperature: float = 0.7,
    analysis_temperature: float = 0.2,
) -> MemoryPipeline:
    """Wire the Gemini-backed stages around one shared client."""
    return MemoryPipeline(
        transcriber=GeminiTranscriber(client),
        analyzer=GeminiSemanticAnalyzer(client, temperature=analysis_temperature),
        synthesizer=GeminiNarrativeSynthesizer(client, temperature=synthesis_temperature),
        illustrator=GeminiIllustrator(client),
        settings=settings,
        channel=channel,
    )
