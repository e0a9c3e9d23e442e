"""Central Gemini API Client for LifeTales.

This module is the SOLE INTERFACE to the Gemini API. The pipeline stages talk
to Gemini only through ``GeminiClient``. No other file imports google-genai.

The client provides:
- Async generation through ``client.aio`` so stage calls are suspension points
- Typed exceptions for predictable error handling
- Structured response models for consistent outputs
- Multimodal helpers for audio transcription and image generation
- Security-first logging (never logs secrets, prompts, transcripts or narratives)

Failed calls are never retried here. Every failure surfaces as an
``AIClientError`` and the calling stage decides what it means.

Example:
    >>> from lifetales.ai.client import get_client, AIUnavailableError
    >>>
    >>> try:
    ...     client = get_client()
    ...     response = await client.generate("Rewrite this memory...")
    ...     print(response.text)
    ... except AIUnavailableError:
    ...     print("AI not available")
"""

from __future__ import annotations

import base64
import json
import logging
import re
import time
from typing import Any, Literal

from google import genai
from google.genai import errors as genai_errors
from google.genai import types
from pydantic import BaseModel, Field, ValidationError

from lifetales.config import AppConfig, APIKeyNotFoundError, get_api_key, get_config
from lifetales.utils.logging import RedactingFilter

logger = logging.getLogger(__name__)
logger.addFilter(RedactingFilter())


# =============================================================================
# Exception Hierarchy
# =============================================================================


class AIClientError(Exception):
    """Base exception for all AI client errors.

    Attributes:
        message: Human-readable error description (safe to log).
        details: Additional error context (may contain sensitive data, don't log).
        original_error: The underlying exception that caused this error.
    """

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.original_error = original_error

    def __str__(self) -> str:
        """Return message without exposing sensitive details."""
        return self.message


class AIUnavailableError(AIClientError):
    """AI service is not available (disabled, no key, offline).

    Attributes:
        reason: Why AI is unavailable.
    """

    def __init__(
        self,
        reason: Literal["disabled", "no_api_key", "offline", "service_down"],
        message: str | None = None,
        original_error: Exception | None = None,
    ) -> None:
        self.reason = reason

        default_messages = {
            "disabled": "AI features are disabled in configuration",
            "no_api_key": "No Gemini API key configured",
            "offline": "Cannot reach Gemini API (network offline)",
            "service_down": "Gemini service is temporarily unavailable",
        }

        msg = message or default_messages.get(reason, f"AI unavailable: {reason}")
        super().__init__(msg, original_error=original_error)


class AIAuthenticationError(AIClientError):
    """API key is invalid or expired."""

    def __init__(
        self,
        message: str = "API authentication failed. Please check your API key.",
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message, original_error=original_error)


class AIRateLimitError(AIClientError):
    """Rate limit exceeded."""

    def __init__(
        self,
        message: str = "Rate limit exceeded. Please wait before trying again.",
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message, original_error=original_error)


class AIQuotaExceededError(AIClientError):
    """Quota or billing limit reached."""

    def __init__(
        self,
        message: str = "API quota exceeded. Check your billing and usage limits.",
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message, original_error=original_error)


class AIServerError(AIClientError):
    """Server-side error (5xx).

    Attributes:
        status_code: HTTP status code if available.
    """

    def __init__(
        self,
        message: str = "AI server error. The service may be temporarily unavailable.",
        status_code: int | None = None,
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message, original_error=original_error)
        self.status_code = status_code


class AIBadRequestError(AIClientError):
    """Invalid request (unsupported audio encoding, bad parameters, etc.)."""

    def __init__(
        self,
        message: str = "Invalid request to AI service.",
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message, original_error=original_error)


class AITimeoutError(AIClientError):
    """Request timed out on the backend side."""

    def __init__(
        self,
        message: str = "Request to AI service timed out.",
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message, original_error=original_error)


class TokenLimitExceededError(AIClientError):
    """Input or output exceeded token limits."""

    def __init__(
        self,
        message: str = "Token limit exceeded. Please reduce input size.",
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message, original_error=original_error)


class ModelNotAvailableError(AIClientError):
    """Requested model doesn't exist or isn't available.

    Attributes:
        model_name: The model that was requested.
    """

    def __init__(
        self,
        model_name: str,
        message: str | None = None,
        original_error: Exception | None = None,
    ) -> None:
        msg = message or f"Model '{model_name}' not found. Check model name in configuration."
        super().__init__(msg, original_error=original_error)
        self.model_name = model_name


class ContentBlockedError(AIClientError):
    """Content was blocked by safety filters.

    Attributes:
        blocked_reason: The reason for blocking if available.
    """

    def __init__(
        self,
        message: str = "Content blocked by safety filters.",
        blocked_reason: str | None = None,
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message, original_error=original_error)
        self.blocked_reason = blocked_reason


# =============================================================================
# Response Models
# =============================================================================


class AIResponse(BaseModel):
    """Standardized response from text generation.

    Attributes:
        text: The generated content ("" when the model returned no text).
        model: Name of the model that generated this response.
        prompt_tokens: Number of tokens in the input prompt.
        completion_tokens: Number of tokens in the generated output.
        total_tokens: Total tokens used.
        finish_reason: Why generation stopped (e.g., "STOP", "MAX_TOKENS").
        latency_ms: Time taken for generation in milliseconds.
        raw_response: Original SDK response (excluded from serialization).
    """

    text: str = Field(..., description="The generated content")
    model: str = Field(..., description="Model that generated this response")
    prompt_tokens: int | None = Field(None, description="Tokens in input prompt")
    completion_tokens: int | None = Field(None, description="Tokens in output")
    total_tokens: int | None = Field(None, description="Total tokens used")
    finish_reason: str | None = Field(None, description="Why generation stopped")
    latency_ms: float | None = Field(None, description="Generation time in ms")
    raw_response: Any = Field(None, exclude=True, description="Original SDK response")

    def is_truncated(self) -> bool:
        """Check if the response was cut short by token limits."""
        return self.finish_reason in {"MAX_TOKENS", "RECITATION"}


class StructuredAIResponse(BaseModel):
    """Response when requesting structured/JSON output.

    If parsing or schema validation fails, ``parse_success`` is False and
    ``parse_error`` says why. Parse failures never raise.

    Attributes:
        data: Parsed and validated content (empty dict if parsing failed).
        raw_text: Original text before parsing.
        model: Model that generated this response.
        tokens_used: Total tokens consumed.
        latency_ms: Generation time in milliseconds.
        parse_success: Whether JSON parsing and validation succeeded.
        parse_error: Error message if parsing failed.
    """

    data: dict[str, Any] = Field(default_factory=dict, description="Parsed JSON content")
    raw_text: str = Field(..., description="Original text before parsing")
    model: str = Field(..., description="Model that generated this response")
    tokens_used: int | None = Field(None, description="Total tokens consumed")
    latency_ms: float | None = Field(None, description="Generation time in ms")
    parse_success: bool = Field(True, description="Whether JSON parsing succeeded")
    parse_error: str | None = Field(None, description="Error if parsing failed")


class GeneratedImage(BaseModel):
    """Inline image returned by an image-capable model."""

    data: bytes
    mime_type: str = "image/png"
    model: str = ""

    def to_data_url(self) -> str:
        """Encode as ``data:<mime>;base64,<data>``."""
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.mime_type};base64,{encoded}"


# =============================================================================
# JSON helpers
# =============================================================================


def extract_json(text: str) -> Any:
    """Parse JSON from model output, tolerating code fences and chatter.

    Raises:
        json.JSONDecodeError: If no JSON document can be recovered.
    """
    text = text.strip()
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        fenced = re.search(r"```(?:json)?\s*([\s\S]*?)\s*```", text)
        if fenced:
            return json.loads(fenced.group(1))
        embedded = re.search(r"(\{[\s\S]*\}|\[[\s\S]*\])", text)
        if embedded:
            return json.loads(embedded.group(1))
        raise e


# =============================================================================
# Main AI Client Class
# =============================================================================


class GeminiClient:
    """Async client for all Gemini API communication.

    The underlying ``genai.Client`` is created once; no API calls are made
    during initialization.

    Example:
        >>> client = GeminiClient(config, api_key="...")
        >>> transcript = await client.transcribe_audio(audio_bytes, "audio/webm")
        >>> analysis = await client.generate_structured(prompt, SemanticAnalysis)
        >>> if analysis.parse_success:
        ...     print(analysis.data["mood"])
    """

    TRANSCRIPTION_INSTRUCTION = "Transcribe this audio precisely. Return only the transcription."

    def __init__(self, config: AppConfig | None = None, api_key: str | None = None) -> None:
        """Initialize the client.

        Args:
            config: Application configuration. If None, loads from get_config().
            api_key: Override API key. If None, loads from configured sources.

        Raises:
            AIUnavailableError: If AI is disabled or no API key is configured.
        """
        self._config = config or get_config()
        self._logger = logging.getLogger(f"{__name__}.GeminiClient")
        if not any(isinstance(f, RedactingFilter) for f in self._logger.filters):
            self._logger.addFilter(RedactingFilter())

        if not self._config.ai.is_enabled():
            raise AIUnavailableError("disabled")

        if api_key is None:
            try:
                api_key = get_api_key().get_secret_value()
            except APIKeyNotFoundError as e:
                raise AIUnavailableError("no_api_key", original_error=e) from e

        # Never log the key
        self._client = genai.Client(api_key=api_key)
        self._logger.info(f"Gemini client configured: text={self.text_model}, image={self.image_model}")

    @property
    def text_model(self) -> str:
        return self._config.ai.text_model

    @property
    def image_model(self) -> str:
        return self._config.ai.image_model

    # -------------------------------------------------------------------------
    # Public capabilities
    # -------------------------------------------------------------------------

    async def generate(
        self,
        prompt: str | list[Any],
        system_instruction: str | None = None,
        model: str | None = None,
        **overrides: Any,
    ) -> AIResponse:
        """Generate text from a prompt or a list of multimodal parts.

        Args:
            prompt: A string prompt, or a list of parts (text, ``types.Part``).
            system_instruction: Optional system instruction.
            model: Model name override.
            **overrides: Per-call ``GenerateContentConfig`` fields
                (temperature, max_output_tokens, ...).

        Returns:
            AIResponse with the generated text and metadata.

        Raises:
            AIClientError: On any backend failure.
        """
        model_name = model or self.text_model
        gen_config = self._build_config(system_instruction=system_instruction, **overrides)

        start_time = time.perf_counter()
        raw_response = await self._call(model_name, prompt, gen_config)
        latency_ms = (time.perf_counter() - start_time) * 1000

        response = self._parse_response(raw_response, model_name, latency_ms)

        # Log success (no content - security!)
        self._logger.info(
            f"Generation successful: {response.total_tokens or '?'} tokens in {latency_ms:.0f}ms",
            extra={"model": model_name, "tokens": response.total_tokens, "time_ms": latency_ms},
        )
        return response

    async def transcribe_audio(
        self,
        audio: bytes,
        mime_type: str,
        instruction: str | None = None,
    ) -> AIResponse:
        """Transcribe inline audio bytes.

        Raises:
            AIBadRequestError: If the backend rejects the audio encoding.
            AIClientError: On any other backend failure.
        """
        parts = [
            types.Part.from_bytes(data=audio, mime_type=mime_type),
            instruction or self.TRANSCRIPTION_INSTRUCTION,
        ]
        return await self.generate(parts)

    async def generate_structured(
        self,
        prompt: str,
        schema: type[BaseModel],
        system_instruction: str | None = None,
        **overrides: Any,
    ) -> StructuredAIResponse:
        """Generate constrained JSON output matching ``schema``.

        The schema is sent as ``response_schema`` and the output is validated
        against it locally as well. Malformed output is reported through
        ``parse_success=False``; only backend failures raise.

        Raises:
            AIClientError: On backend failure.
        """
        response = await self.generate(
            prompt,
            system_instruction=system_instruction,
            response_mime_type="application/json",
            response_schema=schema,
            **overrides,
        )

        data: dict[str, Any] = {}
        parse_success = False
        parse_error: str | None = None

        try:
            parsed = extract_json(response.text)
            data = schema.model_validate(parsed).model_dump()
            parse_success = True
        except json.JSONDecodeError as e:
            parse_error = f"JSON parse error: {e.msg}"
        except ValidationError as e:
            parse_error = f"Schema validation failed: {e.error_count()} error(s)"

        if not parse_success:
            self._logger.warning(f"Structured output rejected: {parse_error}")

        return StructuredAIResponse(
            data=data,
            raw_text=response.text,
            model=response.model,
            tokens_used=response.total_tokens,
            latency_ms=response.latency_ms,
            parse_success=parse_success,
            parse_error=parse_error,
        )

    async def generate_image(self, prompt: str, model: str | None = None) -> GeneratedImage | None:
        """Generate an image and return the first inline image part.

        Returns:
            The image, or None if the model answered without one.

        Raises:
            AIClientError: On backend failure.
        """
        model_name = model or self.image_model
        raw_response = await self._call(model_name, prompt, None)

        for part in self._iter_parts(raw_response):
            inline = getattr(part, "inline_data", None)
            if inline is not None and inline.data:
                self._logger.info(f"Image generated by {model_name}")
                return GeneratedImage(
                    data=inline.data,
                    mime_type=inline.mime_type or "image/png",
                    model=model_name,
                )

        self._logger.info(f"No image part in response from {model_name}")
        return None

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _build_config(
        self,
        system_instruction: str | None = None,
        **overrides: Any,
    ) -> types.GenerateContentConfig:
        params: dict[str, Any] = {"max_output_tokens": self._config.ai.max_output_tokens}
        if system_instruction:
            params["system_instruction"] = system_instruction
        params.update(overrides)
        return types.GenerateContentConfig(**params)

    async def _call(
        self,
        model_name: str,
        contents: str | list[Any],
        gen_config: types.GenerateContentConfig | None,
    ) -> Any:
        """Execute the API call, mapping SDK errors onto our hierarchy."""
        try:
            return await self._client.aio.models.generate_content(
                model=model_name,
                contents=contents,
                config=gen_config,
            )
        except Exception as e:
            mapped = self._map_exception(e, model_name)
            self._logger.error(
                f"Gemini call failed: {type(mapped).__name__}",
                extra={"model": model_name},
            )
            raise mapped from e

    def _parse_response(self, raw_response: Any, model_name: str, latency_ms: float) -> AIResponse:
        """Convert an SDK response into an AIResponse.

        Raises:
            ContentBlockedError: If the prompt was blocked before generation.
        """
        feedback = getattr(raw_response, "prompt_feedback", None)
        block_reason = getattr(feedback, "block_reason", None) if feedback else None
        if block_reason and not raw_response.candidates:
            raise ContentBlockedError(blocked_reason=str(block_reason))

        prompt_tokens = completion_tokens = total_tokens = None
        usage = getattr(raw_response, "usage_metadata", None)
        if usage:
            prompt_tokens = getattr(usage, "prompt_token_count", None)
            completion_tokens = getattr(usage, "candidates_token_count", None)
            total_tokens = getattr(usage, "total_token_count", None)

        finish_reason = None
        if raw_response.candidates:
            reason = getattr(raw_response.candidates[0], "finish_reason", None)
            if reason is not None:
                finish_reason = getattr(reason, "name", str(reason))

        return AIResponse(
            text=raw_response.text or "",
            model=model_name,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=total_tokens,
            finish_reason=finish_reason,
            latency_ms=latency_ms,
            raw_response=raw_response,
        )

    @staticmethod
    def _iter_parts(raw_response: Any) -> list[Any]:
        candidates = getattr(raw_response, "candidates", None) or []
        if not candidates:
            return []
        content = getattr(candidates[0], "content", None)
        return list(getattr(content, "parts", None) or [])

    def _map_exception(self, error: Exception, model_name: str) -> AIClientError:
        """Map SDK and transport exceptions to our exception hierarchy."""
        if isinstance(error, AIClientError):
            return error

        error_str = str(error).lower()

        if isinstance(error, genai_errors.APIError):
            code = error.code
            if code == 400:
                if "token" in error_str and ("limit" in error_str or "exceed" in error_str):
                    return TokenLimitExceededError(original_error=error)
                if "api key" in error_str:
                    return AIAuthenticationError(original_error=error)
                return AIBadRequestError(original_error=error)
            if code in (401, 403):
                return AIAuthenticationError(original_error=error)
            if code == 404:
                return ModelNotAvailableError(model_name, original_error=error)
            if code == 429:
                if "billing" in error_str:
                    return AIQuotaExceededError(original_error=error)
                return AIRateLimitError(original_error=error)
            if code in (408, 504):
                return AITimeoutError(original_error=error)
            if code == 503:
                return AIUnavailableError("service_down", original_error=error)
            if code is not None and code >= 500:
                return AIServerError(status_code=code, original_error=error)

        # Transport-level failures surface as httpx exceptions; match by text
        if "timed out" in error_str or "timeout" in error_str:
            return AITimeoutError(original_error=error)
        if "connect" in error_str or "network" in error_str or "name resolution" in error_str:
            return AIUnavailableError("offline", original_error=error)
        if "blocked" in error_str or "safety" in error_str:
            return ContentBlockedError(original_error=error)

        return AIClientError(f"Gemini request failed: {type(error).__name__}", original_error=error)


# =============================================================================
# Module-Level Functions
# =============================================================================


def get_client(config: AppConfig | None = None) -> GeminiClient:
    """Factory function to create a configured client.

    Raises:
        AIUnavailableError: If AI is disabled or no API key is configured.
    """
    return GeminiClient(config=config)
