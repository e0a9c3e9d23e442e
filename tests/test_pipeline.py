"""Tests for MemoryPipeline: status ordering, failure policy and overlap."""

from __future__ import annotations

import asyncio

import pytest

from lifetales.ai.stages.base import (
    AnalysisDegraded,
    IllustrationOmitted,
    SemanticAnalysis,
    SynthesisDegraded,
    TranscriptionFailed,
)
from lifetales.config import PipelineSettings
from lifetales.core.models import AgentStatus, PipelineConfig, PipelineInput, StatusEvent
from lifetales.pipeline.orchestrator import (
    MemoryPipeline,
    PipelineBusyError,
    PipelineError,
    PipelineErrorKind,
    TranscriptionFailedError,
)

AUDIO = PipelineInput.audio(b"\x1a\x45\xdf\xa3fake-webm", "audio/webm")
TEXT = PipelineInput.text("Dinner with grandma, she told the war story again.")

FULL_SEQUENCE = [
    AgentStatus.TRANSCRIBING,
    AgentStatus.ANALYZING,
    AgentStatus.WEAVING,
    AgentStatus.ILLUSTRATING,
    AgentStatus.COMPLETED,
]


def run(pipeline: MemoryPipeline, pipeline_input: PipelineInput, config: PipelineConfig | None = None, **kwargs):
    return asyncio.run(pipeline.run(pipeline_input, config or PipelineConfig(), **kwargs))


# =============================================================================
# Happy paths
# =============================================================================


class TestSuccessfulRuns:
    def test_audio_run_emits_full_sequence(self, pipeline: MemoryPipeline) -> None:
        events: list[StatusEvent] = []

        response = run(pipeline, AUDIO, on_status=events.append)

        assert [e.status for e in events] == FULL_SEQUENCE
        assert pipeline.last_run.statuses == FULL_SEQUENCE
        assert response.transcription == "We walked along the river at dawn."
        assert response.narrative == "At first light we followed the river, unhurried."
        assert response.mood == "Peaceful"
        assert response.tags == ["river", "dawn", "walk"]
        assert response.illustration == "data:image/png;base64,iVBORw0KGgo="

    def test_events_share_run_id(self, pipeline: MemoryPipeline) -> None:
        events: list[StatusEvent] = []
        run(pipeline, AUDIO, on_status=events.append)

        assert {e.run_id for e in events} == {pipeline.last_run.run_id}

    def test_stage_inputs_chain(self, pipeline: MemoryPipeline, transcriber, analyzer, synthesizer, illustrator) -> None:
        config = PipelineConfig(story_context="We landed in Osaka.", style="narrative")

        run(pipeline, AUDIO, config)

        assert transcriber.calls == [(AUDIO.payload, "audio/webm")]
        assert analyzer.calls == ["We walked along the river at dawn."]
        assert synthesizer.calls == [("We walked along the river at dawn.", config)]
        assert illustrator.calls == [("At first light we followed the river, unhurried.", "Peaceful")]

    def test_default_audio_mime_type(self, pipeline: MemoryPipeline, transcriber) -> None:
        run(pipeline, PipelineInput.audio(b"audio"))
        assert transcriber.calls[0][1] == "audio/mp3"

    def test_text_input_skips_transcription(self, pipeline: MemoryPipeline, transcriber) -> None:
        events: list[StatusEvent] = []

        response = run(pipeline, TEXT, on_status=events.append)

        assert AgentStatus.TRANSCRIBING not in [e.status for e in events]
        assert [e.status for e in events] == FULL_SEQUENCE[1:]
        assert transcriber.calls == []
        assert response.transcription == TEXT.payload

    def test_typed_note_kept_as_given(self, pipeline: MemoryPipeline, analyzer) -> None:
        response = run(pipeline, PipelineInput.text("  Dinner with grandma\n"))

        assert response.transcription == "  Dinner with grandma\n"
        assert analyzer.calls == ["  Dinner with grandma\n"]

    def test_no_degradations_recorded(self, pipeline: MemoryPipeline) -> None:
        run(pipeline, AUDIO)
        assert pipeline.last_run.degradations == []
        assert pipeline.last_run.is_finished

    def test_channel_subscribers_receive_events(self, pipeline: MemoryPipeline) -> None:
        seen: list[AgentStatus] = []
        pipeline.channel.subscribe(lambda e: seen.append(e.status))

        run(pipeline, TEXT)
        run(pipeline, TEXT)

        assert seen == FULL_SEQUENCE[1:] * 2

    def test_on_status_only_sees_its_own_run(self, pipeline: MemoryPipeline) -> None:
        events: list[StatusEvent] = []

        run(pipeline, TEXT, on_status=events.append)
        run(pipeline, TEXT)

        assert len(events) == len(FULL_SEQUENCE) - 1


# =============================================================================
# Fatal transcription failure
# =============================================================================


class TestTranscriptionFailure:
    def test_stage_error_is_fatal(self, pipeline: MemoryPipeline, transcriber, analyzer) -> None:
        transcriber.error = TranscriptionFailed("unsupported encoding")
        events: list[StatusEvent] = []

        with pytest.raises(TranscriptionFailedError) as exc_info:
            run(pipeline, AUDIO, on_status=events.append)

        assert [e.status for e in events] == [AgentStatus.TRANSCRIBING, AgentStatus.ERROR]
        assert exc_info.value.kind == PipelineErrorKind.TRANSCRIPTION_FAILED
        assert exc_info.value.run_id == pipeline.last_run.run_id
        assert isinstance(exc_info.value, PipelineError)
        assert analyzer.calls == []

    def test_unexpected_error_is_fatal(self, pipeline: MemoryPipeline, transcriber) -> None:
        transcriber.error = RuntimeError("boom")

        with pytest.raises(TranscriptionFailedError):
            run(pipeline, AUDIO)

        assert pipeline.last_run.status == AgentStatus.ERROR

    def test_empty_transcript_is_fatal(self, pipeline: MemoryPipeline, transcriber) -> None:
        transcriber.transcript = "   "

        with pytest.raises(TranscriptionFailedError):
            run(pipeline, AUDIO)

    def test_timeout_is_fatal(self, pipeline: MemoryPipeline, transcriber, fast_settings: PipelineSettings) -> None:
        transcriber.delay = fast_settings.transcription_timeout_seconds + 0.5

        with pytest.raises(TranscriptionFailedError) as exc_info:
            run(pipeline, AUDIO)

        assert isinstance(exc_info.value.original_error, asyncio.TimeoutError)

    def test_pipeline_usable_after_failure(self, pipeline: MemoryPipeline, transcriber) -> None:
        transcriber.error = TranscriptionFailed("nope")
        with pytest.raises(TranscriptionFailedError):
            run(pipeline, AUDIO)

        transcriber.error = None
        assert run(pipeline, AUDIO).narrative


# =============================================================================
# Degrading stages
# =============================================================================


class TestAnalysisDegrades:
    @pytest.mark.parametrize(
        "error",
        [
            AnalysisDegraded("backend down", reason="backend"),
            AnalysisDegraded("not json", reason="malformed"),
            RuntimeError("unexpected"),
        ],
    )
    def test_fallback_mood_and_tags(self, pipeline: MemoryPipeline, analyzer, error: Exception) -> None:
        analyzer.error = error
        events: list[StatusEvent] = []

        response = run(pipeline, AUDIO, on_status=events.append)

        assert response.mood == "Reflective"
        assert response.tags == ["Life"]
        assert response.narrative == "At first light we followed the river, unhurried."
        assert events[-1].status == AgentStatus.COMPLETED
        assert pipeline.last_run.degradations == ["analysis"]

    def test_blank_mood_falls_back(self, pipeline: MemoryPipeline, analyzer) -> None:
        analyzer.result = SemanticAnalysis.model_construct(mood="  ", tags=["x"])

        response = run(pipeline, TEXT)

        assert response.mood == "Reflective"
        assert response.tags == ["Life"]

    def test_timeout_falls_back(self, pipeline: MemoryPipeline, analyzer, fast_settings: PipelineSettings) -> None:
        analyzer.delay = fast_settings.analysis_timeout_seconds + 0.5

        response = run(pipeline, TEXT)

        assert response.mood == "Reflective"

    def test_fallback_is_configurable(self, transcriber, analyzer, synthesizer, illustrator) -> None:
        settings = PipelineSettings(fallback_mood="Nostalgic", fallback_tags=["Memory"])
        pipeline = MemoryPipeline(transcriber, analyzer, synthesizer, illustrator, settings=settings)
        analyzer.error = AnalysisDegraded("x", reason="backend")

        response = run(pipeline, TEXT)

        assert response.mood == "Nostalgic"
        assert response.tags == ["Memory"]

    def test_illustrator_gets_fallback_mood(self, pipeline: MemoryPipeline, analyzer, illustrator) -> None:
        analyzer.error = AnalysisDegraded("x", reason="malformed")
        run(pipeline, TEXT)
        assert illustrator.calls[0][1] == "Reflective"


class TestSynthesisDegrades:
    def test_narrative_falls_back_to_raw_text(self, pipeline: MemoryPipeline, synthesizer) -> None:
        synthesizer.error = SynthesisDegraded("backend down")

        response = run(pipeline, AUDIO)

        assert response.narrative == "We walked along the river at dawn."
        assert pipeline.last_run.status == AgentStatus.COMPLETED
        assert pipeline.last_run.degradations == ["synthesis"]

    def test_blank_narrative_falls_back(self, pipeline: MemoryPipeline, synthesizer) -> None:
        synthesizer.narrative = "  "
        assert run(pipeline, TEXT).narrative == TEXT.payload

    def test_timeout_falls_back(self, pipeline: MemoryPipeline, synthesizer, fast_settings: PipelineSettings) -> None:
        synthesizer.delay = fast_settings.synthesis_timeout_seconds + 0.5
        assert run(pipeline, TEXT).narrative == TEXT.payload

    def test_illustrator_gets_fallback_narrative(self, pipeline: MemoryPipeline, synthesizer, illustrator) -> None:
        synthesizer.error = SynthesisDegraded("x")
        run(pipeline, TEXT)
        assert illustrator.calls[0][0] == TEXT.payload


class TestIllustrationOmitted:
    @pytest.mark.parametrize("error", [IllustrationOmitted("bad bytes"), RuntimeError("boom")])
    def test_failure_is_silent(self, pipeline: MemoryPipeline, illustrator, error: Exception) -> None:
        illustrator.error = error
        events: list[StatusEvent] = []

        response = run(pipeline, AUDIO, on_status=events.append)

        assert response.illustration is None
        assert [e.status for e in events] == FULL_SEQUENCE

    def test_no_image_is_none(self, pipeline: MemoryPipeline, illustrator) -> None:
        illustrator.illustration = None
        assert run(pipeline, TEXT).illustration is None

    def test_timeout_is_silent(self, pipeline: MemoryPipeline, illustrator, fast_settings: PipelineSettings) -> None:
        illustrator.delay = fast_settings.illustration_timeout_seconds + 0.5
        response = run(pipeline, TEXT)
        assert response.illustration is None
        assert response.narrative


# =============================================================================
# Observers and overlap
# =============================================================================


def test_failing_listener_does_not_break_run(pipeline: MemoryPipeline) -> None:
    def broken(event: StatusEvent) -> None:
        raise RuntimeError("display crashed")

    seen: list[AgentStatus] = []
    pipeline.channel.subscribe(broken)
    pipeline.channel.subscribe(lambda e: seen.append(e.status))

    response = run(pipeline, AUDIO)

    assert response.narrative
    assert seen == FULL_SEQUENCE


def test_overlapping_run_is_rejected(pipeline: MemoryPipeline, transcriber) -> None:
    transcriber.delay = 0.05

    async def scenario():
        first = asyncio.create_task(pipeline.run(AUDIO, PipelineConfig()))
        await asyncio.sleep(0)
        assert pipeline.is_running
        with pytest.raises(PipelineBusyError):
            await pipeline.run(TEXT, PipelineConfig())
        return await first

    response = asyncio.run(scenario())

    assert response.transcription == "We walked along the river at dawn."
    assert pipeline.last_run.statuses == FULL_SEQUENCE
    assert not pipeline.is_running
