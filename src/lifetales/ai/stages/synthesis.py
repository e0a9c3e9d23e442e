"""Story builder stage: raw memory text to a narrative paragraph."""

from __future__ import annotations

import logging

from lifetales.ai.client import AIClientError, GeminiClient
from lifetales.ai.prompts import STORY_BUILDER_PROMPT
from lifetales.ai.stages.base import SynthesisDegraded
from lifetales.core.models import PipelineConfig

logger = logging.getLogger(__name__)


class GeminiNarrativeSynthesizer:
    """Rewrites a memory fragment in the story's voice, continuing its context."""

    def __init__(self, client: GeminiClient, temperature: float = 0.7) -> None:
        self._client = client
        self._temperature = temperature

    async def synthesize(self, raw_text: str, config: PipelineConfig) -> str:
        """Write one chapter paragraph for ``raw_text``.

        Raises:
            SynthesisDegraded: On backend failure or a blank narrative.
        """
        system, prompt = STORY_BUILDER_PROMPT.render(
            context=config.story_context,
            input=raw_text,
            style=config.style,
        )

        try:
            response = await self._client.generate(
                prompt,
                system_instruction=system or None,
                temperature=self._temperature,
            )
        except AIClientError as e:
            raise SynthesisDegraded(f"Synthesis request failed: {e.message}", original_error=e) from e

        narrative = response.text.strip()
        if not narrative:
            raise SynthesisDegraded("Synthesis returned no text")
        if response.is_truncated():
            logger.info("Narrative was truncated by the token limit")
        return narrative
