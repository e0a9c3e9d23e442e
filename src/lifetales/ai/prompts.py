"""Prompt templates for the LifeTales pipeline.

Every prompt sent to Gemini is defined here. Stages render a template and
hand the result to ``GeminiClient``; no stage builds prompt text inline.

Example:
    >>> from lifetales.ai.prompts import get_prompt
    >>>
    >>> template = get_prompt("story_builder_v1")
    >>> system, user = template.render(context="", input="We hiked to the lake")
    >>> response = await client.generate(user, system_instruction=system)

Templates use ``string.Template`` placeholders (``$name``) so that braces in
user content and JSON examples need no escaping.
"""

from __future__ import annotations

import textwrap
from dataclasses import dataclass, field
from enum import Enum
from string import Template
from typing import Any


# =============================================================================
# Enums
# =============================================================================


class PromptCategory(str, Enum):
    """Pipeline stage a prompt belongs to."""

    SEMANTIC_ANALYSIS = "semantic_analysis"
    NARRATIVE_SYNTHESIS = "narrative_synthesis"
    VISUAL_GENERATION = "visual_generation"


# =============================================================================
# Data Structures
# =============================================================================


@dataclass
class PromptTemplate:
    """Metadata and content for a prompt template.

    Attributes:
        id: Unique identifier (e.g., "story_builder_v1").
        category: Pipeline stage the prompt serves.
        version: Version string for tracking wording changes.
        system_instruction: Role instruction, or "" when the prompt carries
            its role inline.
        user_prompt_template: User prompt with ``$placeholder`` variables.
        required_variables: Variables that MUST be provided.
        description: Human-readable purpose.
    """

    id: str
    category: PromptCategory
    version: str
    system_instruction: str
    user_prompt_template: str
    required_variables: set[str] = field(default_factory=set)
    description: str = ""

    def render(self, **variables: Any) -> tuple[str, str]:
        """Render the template with provided variables.

        Returns:
            Tuple of (system_instruction, rendered_user_prompt).

        Raises:
            ValueError: If required variables are missing.
        """
        missing = self.validate_variables(variables)
        if missing:
            raise ValueError(f"Missing required variables for prompt '{self.id}': {missing}")

        rendered = Template(self.user_prompt_template).substitute(variables)
        return self.system_instruction, rendered

    def validate_variables(self, variables: dict[str, Any]) -> list[str]:
        """Return the sorted names of required variables not in ``variables``."""
        return sorted(self.required_variables - set(variables))


# =============================================================================
# Prompt Templates
# =============================================================================


STORY_BUILDER_PROMPT = PromptTemplate(
    id="story_builder_v1",
    category=PromptCategory.NARRATIVE_SYNTHESIS,
    version="1.0.0",
    description="Rewrite a raw memory fragment as one chapter paragraph.",
    system_instruction="",
    user_prompt_template=textwrap.dedent(
        """
        You are the Story Builder Agent for 'LifeTales'.
        Your goal is to transform a raw memory fragment into a beautiful narrative chapter.

        Context from previous chapters: "$context"

        New Input Fragment: "$input"

        Instructions:
        1. Write a single paragraph (approx 50-80 words).
        2. Use a warm, reflective, and personal tone ($style).
        3. If there is context, ensure smooth continuity.
        4. Do not invent facts, but you can enhance the descriptive language.
        5. Output ONLY the narrative text.
    """
    ).strip(),
    required_variables={"context", "input", "style"},
)


SEMANTIC_ANALYSIS_PROMPT = PromptTemplate(
    id="semantic_analysis_v1",
    category=PromptCategory.SEMANTIC_ANALYSIS,
    version="1.0.0",
    description="Classify the mood of a memory and pick a few keywords.",
    system_instruction="",
    user_prompt_template=textwrap.dedent(
        """
        Analyze the following text.
        Return a JSON object with:
        - "mood": a single adjective describing the emotion (e.g., Peaceful, Excited, Melancholic).
        - "tags": an array of 3 short relevant keywords.

        Text:
        $text
    """
    ).strip(),
    required_variables={"text"},
)


VISUAL_GENERATION_PROMPT = PromptTemplate(
    id="visual_generation_v1",
    category=PromptCategory.VISUAL_GENERATION,
    version="1.0.0",
    description="Describe a soft illustration for a chapter.",
    system_instruction="",
    user_prompt_template=textwrap.dedent(
        """
        Create a soft, semi-abstract digital illustration style prompt for the following scene.
        Scene: $narrative
        Mood: $mood
        Style: Soft pastel colors, digital art, rounded shapes, warm lighting, minimalist composition.
    """
    ).strip(),
    required_variables={"narrative", "mood"},
)


# =============================================================================
# Prompt Registry
# =============================================================================


PROMPT_REGISTRY: dict[str, PromptTemplate] = {}


def register_prompt(template: PromptTemplate) -> None:
    """Register a prompt template in the global registry.

    Raises:
        ValueError: If a prompt with the same ID is already registered.
    """
    if template.id in PROMPT_REGISTRY:
        raise ValueError(f"Prompt '{template.id}' is already registered")
    PROMPT_REGISTRY[template.id] = template


def get_prompt(prompt_id: str) -> PromptTemplate:
    """Retrieve a prompt template by ID.

    Raises:
        KeyError: If no prompt with the given ID exists.
    """
    if prompt_id not in PROMPT_REGISTRY:
        available = ", ".join(sorted(PROMPT_REGISTRY))
        raise KeyError(f"Prompt '{prompt_id}' not found. Available prompts: {available}")
    return PROMPT_REGISTRY[prompt_id]


def list_prompts(category: PromptCategory | None = None) -> list[PromptTemplate]:
    """List registered prompts, optionally filtered by category."""
    templates = list(PROMPT_REGISTRY.values())
    if category is not None:
        templates = [t for t in templates if t.category == category]
    return sorted(templates, key=lambda t: t.id)


def _register_builtin_prompts() -> None:
    for template in [STORY_BUILDER_PROMPT, SEMANTIC_ANALYSIS_PROMPT, VISUAL_GENERATION_PROMPT]:
        register_prompt(template)


_register_builtin_prompts()
