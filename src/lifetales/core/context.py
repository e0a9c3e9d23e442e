"""Story context derivation for narrative continuity.

The synthesis stage gets the prose of the last few chapters so a new
chapter reads as a continuation. The context is derived fresh before every
run and never cached on the story.
"""

from __future__ import annotations

from itertools import islice

from lifetales.core.models import StorySpace

DEFAULT_CONTEXT_WINDOW = 3
DEFAULT_SEPARATOR = " "


def derive_story_context(
    story: StorySpace,
    window: int = DEFAULT_CONTEXT_WINDOW,
    separator: str = DEFAULT_SEPARATOR,
) -> str:
    """Join the narratives of the ``window`` most recent chapters.

    Chapters are stored newest first; the result is oldest-of-the-window
    first so the prose reads in order. Stories with fewer than ``window``
    chapters get an empty context.

    Args:
        story: The story the next chapter will be appended to.
        window: Number of recent chapters to include.
        separator: String placed between narratives.

    Returns:
        The joined narratives, or "" if the story is too short.

    Example:
        >>> # chapters created at t1 < t2 < t3 < t4
        >>> derive_story_context(story)
        'narrative t2 narrative t3 narrative t4'
    """
    if window < 1:
        raise ValueError("window must be at least 1")
    if len(story.chapters) < window:
        return ""

    recent = list(islice(story.chapters, window))
    return separator.join(chapter.narrative for chapter in reversed(recent))
