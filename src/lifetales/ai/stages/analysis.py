"""Semantic analysis stage: mood and tags from structured Gemini output."""

from __future__ import annotations

import logging

from pydantic import ValidationError

from lifetales.ai.client import AIClientError, GeminiClient
from lifetales.ai.prompts import SEMANTIC_ANALYSIS_PROMPT
from lifetales.ai.stages.base import AnalysisDegraded, SemanticAnalysis

logger = logging.getLogger(__name__)


class GeminiSemanticAnalyzer:
    """Asks Gemini for ``{"mood": ..., "tags": [...]}`` under a JSON schema.

    Args:
        client: Shared Gemini client.
        temperature: Sampling temperature; analysis wants stable labels.
        max_tags: Tags beyond this many are dropped.
    """

    def __init__(self, client: GeminiClient, temperature: float = 0.2, max_tags: int = 3) -> None:
        self._client = client
        self._temperature = temperature
        self._max_tags = max_tags

    async def analyze(self, text: str) -> SemanticAnalysis:
        """Classify ``text``.

        Raises:
            AnalysisDegraded: ``reason="backend"`` if the call failed,
                ``reason="malformed"`` if the output was not a usable analysis.
        """
        system, prompt = SEMANTIC_ANALYSIS_PROMPT.render(text=text)

        try:
            response = await self._client.generate_structured(
                prompt,
                SemanticAnalysis,
                system_instruction=system or None,
                temperature=self._temperature,
            )
        except AIClientError as e:
            raise AnalysisDegraded(
                f"Analysis request failed: {e.message}", reason="backend", original_error=e
            ) from e

        if not response.parse_success:
            raise AnalysisDegraded(response.parse_error or "Unparseable analysis", reason="malformed")

        try:
            analysis = SemanticAnalysis.model_validate(response.data)
        except ValidationError as e:
            raise AnalysisDegraded("Analysis failed validation", reason="malformed", original_error=e) from e

        if len(analysis.tags) > self._max_tags:
            analysis = analysis.model_copy(update={"tags": analysis.tags[: self._max_tags]})
        return analysis
