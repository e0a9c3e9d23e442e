"""In-memory Story/Chapter store.

Holds the session's story spaces, newest first. Chapters are write-once:
the only mutation is ``append_chapter``, which prepends. Nothing here is
persisted and there is no update or delete.

Example:
    >>> store = StoryStore()
    >>> story = store.create_story("Kyoto Spring", "Travel")
    >>> store.append_chapter(story.id, chapter)
    >>> store.get_story(story.id).chapters[0] is chapter
    True
"""

from __future__ import annotations

import logging
from collections import deque

from lifetales.core.models import Chapter, StorySpace

logger = logging.getLogger(__name__)

DEFAULT_THEME = "Personal"


class StoryNotFoundError(KeyError):
    """Raised when a story id is not in the store.

    Attributes:
        story_id: The id that was looked up.
    """

    def __init__(self, story_id: str) -> None:
        super().__init__(story_id)
        self.story_id = story_id
        self.message = f"Story not found: {story_id}"

    def __str__(self) -> str:
        return self.message


class StoryStore:
    """Ordered collection of story spaces.

    Single-writer by design: the session mutates it only after a pipeline
    run has completed, so no locking is done.
    """

    def __init__(self, default_theme: str = DEFAULT_THEME) -> None:
        self._stories: deque[StorySpace] = deque()
        self._index: dict[str, StorySpace] = {}
        self._default_theme = default_theme

    def create_story(self, title: str, theme: str = "") -> StorySpace:
        """Create an empty story space and put it at the front.

        Args:
            title: Display title; must not be blank.
            theme: Free-form theme ("Travel", "Project", ...). Blank means
                the default theme.

        Raises:
            ValueError: If the title is blank.
        """
        title = title.strip()
        if not title:
            raise ValueError("Story title must not be blank")

        story = StorySpace(title=title, theme=theme.strip() or self._default_theme)
        self._stories.appendleft(story)
        self._index[story.id] = story
        logger.debug(f"Created story {story.id}")
        return story

    def append_chapter(self, story_id: str, chapter: Chapter) -> None:
        """Prepend ``chapter`` to the story's chapters (most recent first).

        Raises:
            StoryNotFoundError: If ``story_id`` is unknown.
        """
        story = self.get_story(story_id)
        story.chapters.appendleft(chapter)
        logger.debug(f"Appended chapter {chapter.id} to story {story_id}")

    def get_story(self, story_id: str) -> StorySpace:
        """Look up a story by id.

        Raises:
            StoryNotFoundError: If ``story_id`` is unknown.
        """
        try:
            return self._index[story_id]
        except KeyError:
            raise StoryNotFoundError(story_id) from None

    def list_stories(self) -> list[StorySpace]:
        """All stories, most recently created first."""
        return list(self._stories)

    def __len__(self) -> int:
        return len(self._stories)

    def __contains__(self, story_id: object) -> bool:
        return story_id in self._index
