"""Gemini access layer: client, prompts and pipeline stages."""

from lifetales.ai.client import (
    AIClientError,
    AIResponse,
    AIUnavailableError,
    GeminiClient,
    GeneratedImage,
    StructuredAIResponse,
    get_client,
)

__all__ = [
    "AIClientError",
    "AIResponse",
    "AIUnavailableError",
    "GeminiClient",
    "GeneratedImage",
    "StructuredAIResponse",
    "get_client",
]
