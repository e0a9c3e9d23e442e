"""Speech-to-text stage backed by Gemini."""

from __future__ import annotations

import logging

from lifetales.ai.client import AIClientError, GeminiClient
from lifetales.ai.stages.base import TranscriptionFailed

logger = logging.getLogger(__name__)


class GeminiTranscriber:
    """Transcribes inline audio with the text model's audio input."""

    def __init__(self, client: GeminiClient) -> None:
        self._client = client

    async def transcribe(self, audio: bytes, mime_type: str) -> str:
        """Transcribe ``audio`` verbatim.

        Raises:
            TranscriptionFailed: On backend failure or an empty transcript.
        """
        try:
            response = await self._client.transcribe_audio(audio, mime_type)
        except AIClientError as e:
            raise TranscriptionFailed(f"Transcription request failed: {e.message}", original_error=e) from e

        transcript = response.text.strip()
        if not transcript:
            raise TranscriptionFailed("Transcription returned no text")

        logger.debug(f"Transcribed {len(audio)} bytes of {mime_type} into {len(transcript)} chars")
        return transcript
