"""Story session: the store, the pipeline and the status display lifecycle.

A ``StorySession`` is what an app (or the CLI) holds on to. It owns the
in-memory ``StoryStore`` and a ``MemoryPipeline``, derives the story context
before each run, and appends exactly one chapter when a run completes.

After a run ends the status stays on COMPLETED or ERROR for a short display
interval and then returns to IDLE, unless a newer run has started in the
meantime.

Example:
    >>> session = create_session()
    >>> story = session.create_story("Kyoto Spring", "Travel")
    >>> session.subscribe(lambda event: print(event.message))
    >>> chapter = await session.record_memory(story.id, PipelineInput.text("We walked..."))
    Semantic Agent is finding meaning...
    Story Builder is writing the chapter...
    Visual Agent is painting the scene...
    Memory preserved.
"""

from __future__ import annotations

import asyncio
import logging

from lifetales.ai.client import get_client
from lifetales.config import AppConfig, PipelineSettings, get_config
from lifetales.core.context import derive_story_context
from lifetales.core.models import AgentStatus, Chapter, PipelineConfig, PipelineInput, StatusEvent, StorySpace
from lifetales.core.store import StoryStore
from lifetales.pipeline.orchestrator import (
    MemoryPipeline,
    PipelineBusyError,
    PipelineError,
    build_gemini_pipeline,
)
from lifetales.pipeline.status import RunContext, StatusListener, Subscription

logger = logging.getLogger(__name__)


class StorySession:
    """Single-user, in-memory session around one pipeline.

    Args:
        pipeline: The memory pipeline; its channel carries session status.
        store: Story store. A fresh one is created if omitted.
        settings: Display intervals, context window and defaults.
    """

    def __init__(
        self,
        pipeline: MemoryPipeline,
        store: StoryStore | None = None,
        settings: PipelineSettings | None = None,
    ) -> None:
        self._settings = settings or PipelineSettings()
        self._pipeline = pipeline
        self._store = store or StoryStore(default_theme=self._settings.default_theme)
        self._status = AgentStatus.IDLE
        self._generation = 0
        self._reset_handle: asyncio.TimerHandle | None = None
        self._pipeline.channel.subscribe(self._track_status)

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    @property
    def status(self) -> AgentStatus:
        return self._status

    @property
    def status_message(self) -> str:
        return self._status.message

    @property
    def store(self) -> StoryStore:
        return self._store

    @property
    def last_run(self) -> RunContext | None:
        """Context of the most recent pipeline run."""
        return self._pipeline.last_run

    def subscribe(self, listener: StatusListener) -> Subscription:
        """Observe every status change, including the return to IDLE."""
        return self._pipeline.channel.subscribe(listener)

    def begin_listening(self) -> None:
        """Show LISTENING while the caller captures audio.

        Ignored while a run is in progress.
        """
        if self._pipeline.is_running:
            return
        self._cancel_reset()
        self._publish(AgentStatus.LISTENING)

    # -------------------------------------------------------------------------
    # Store queries
    # -------------------------------------------------------------------------

    def create_story(self, title: str, theme: str = "") -> StorySpace:
        return self._store.create_story(title, theme)

    def list_stories(self) -> list[StorySpace]:
        return self._store.list_stories()

    def get_story(self, story_id: str) -> StorySpace:
        return self._store.get_story(story_id)

    # -------------------------------------------------------------------------
    # Recording
    # -------------------------------------------------------------------------

    async def record_memory(self, story_id: str, pipeline_input: PipelineInput) -> Chapter:
        """Run a memory through the pipeline and add it to a story.

        The store is only touched after the run completes, so a failed run
        leaves the story exactly as it was.

        Args:
            story_id: Target story.
            pipeline_input: Audio or text input.

        Returns:
            The newly added chapter.

        Raises:
            StoryNotFoundError: If the story does not exist.
            PipelineBusyError: If another memory is being processed.
            TranscriptionFailedError: If the audio could not be transcribed.
        """
        story = self._store.get_story(story_id)
        if self._pipeline.is_running:
            raise PipelineBusyError(self._pipeline.last_run.run_id if self._pipeline.last_run else None)

        self._cancel_reset()
        self._generation += 1
        generation = self._generation

        config = PipelineConfig(
            story_context=derive_story_context(
                story,
                window=self._settings.context_window,
                separator=self._settings.context_separator,
            ),
            style=self._settings.default_style,
        )

        try:
            response = await self._pipeline.run(pipeline_input, config)
        except PipelineError as e:
            logger.warning(f"Memory not recorded: {e.kind.value}")
            self._schedule_idle(generation, self._settings.error_display_seconds)
            raise

        chapter = Chapter.from_response(response, pipeline_input.media_type)
        self._store.append_chapter(story_id, chapter)
        logger.info(f"Chapter {chapter.id} added to story {story_id} ({story.chapter_count} chapters)")

        self._schedule_idle(generation, self._settings.completed_display_seconds)
        return chapter

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _track_status(self, event: StatusEvent) -> None:
        self._status = event.status

    def _publish(self, status: AgentStatus) -> None:
        last = self._pipeline.last_run
        run_id = last.run_id if last is not None else ""
        self._pipeline.channel.publish(StatusEvent(run_id=run_id, status=status))

    def _schedule_idle(self, generation: int, delay: float) -> None:
        loop = asyncio.get_running_loop()
        self._reset_handle = loop.call_later(delay, self._reset_to_idle, generation)

    def _reset_to_idle(self, generation: int) -> None:
        self._reset_handle = None
        if generation != self._generation or self._pipeline.is_running:
            return
        self._publish(AgentStatus.IDLE)

    def _cancel_reset(self) -> None:
        if self._reset_handle is not None:
            self._reset_handle.cancel()
            self._reset_handle = None


def create_session(config: AppConfig | None = None) -> StorySession:
    """Build a session wired to Gemini from configuration.

    Raises:
        AIUnavailableError: If AI is disabled or no API key is configured.
    """
    config = config or get_config()
    client = get_client(config)
    pipeline = build_gemini_pipeline(
        client,
        settings=config.pipeline,
        synthesis_temperature=config.ai.synthesis_temperature,
        analysis_temperature=config.ai.analysis_temperature,
    )
    return StorySession(pipeline, settings=config.pipeline)
