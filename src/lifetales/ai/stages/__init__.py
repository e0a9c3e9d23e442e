"""Pipeline stages: contracts, errors and Gemini implementations."""

from lifetales.ai.stages.analysis import GeminiSemanticAnalyzer
from lifetales.ai.stages.base import (
    AnalysisDefaults,
    AnalysisDegraded,
    IllustrationOmitted,
    Illustrator,
    NarrativeSynthesizer,
    SemanticAnalysis,
    SemanticAnalyzer,
    StageError,
    SynthesisDegraded,
    Transcriber,
    TranscriptionFailed,
)
from lifetales.ai.stages.illustration import GeminiIllustrator, verify_image_bytes
from lifetales.ai.stages.synthesis import GeminiNarrativeSynthesizer
from lifetales.ai.stages.transcription import GeminiTranscriber

__all__ = [
    "AnalysisDefaults",
    "AnalysisDegraded",
    "GeminiIllustrator",
    "GeminiNarrativeSynthesizer",
    "GeminiSemanticAnalyzer",
    "GeminiTranscriber",
    "IllustrationOmitted",
    "Illustrator",
    "NarrativeSynthesizer",
    "SemanticAnalysis",
    "SemanticAnalyzer",
    "StageError",
    "SynthesisDegraded",
    "Transcriber",
    "TranscriptionFailed",
    "verify_image_bytes",
]
