"""Ordered story collection with category filtering and title lookup."""

import json
import os
from typing import Iterable, Iterator

from cuentacuentos.chunker import fold
from cuentacuentos.errors import ConfigError
from cuentacuentos.models import Story, StoryCategory


class StoryCatalog:
    def __init__(self, stories: Iterable[Story]):
        self._stories = list(stories)

    def __iter__(self) -> Iterator[Story]:
        return iter(self._stories)

    def __len__(self) -> int:
        return len(self._stories)

    def by_category(self, category: StoryCategory | None = None) -> list[Story]:
        """Stories in catalog order; None means all categories."""
        if category is None:
            return list(self._stories)
        return [s for s in self._stories if s.category == category]

    def find(self, fragment: str, category: StoryCategory | None = None) -> Story | None:
        """First story whose title contains fragment, ignoring case and accents.

        None is a lookup miss.
        """
        needle = fold(fragment.strip())
        for story in self.by_category(category):
            if needle in fold(story.title):
                return story
        return None

    def neighbour(self, story: Story, offset: int, category: StoryCategory | None = None) -> Story | None:
        """Story offset places away from story in the filtered list, or None past either end."""
        stories = self.by_category(category)
        try:
            idx = stories.index(story)
        except ValueError:
            return None
        target = idx + offset
        if 0 <= target < len(stories):
            return stories[target]
        return None


def load_catalog(path: str) -> StoryCatalog:
    """Load {"stories": [{"title", "content", "category"}, ...]} from JSON."""
    if not os.path.exists(path):
        raise ConfigError(f"Catalog not found: {path}")
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Malformed catalog {path}: {e}") from e
    if not isinstance(data, dict) or not isinstance(data.get("stories", []), list):
        raise ConfigError(f"Catalog {path} must be an object with a \"stories\" list")

    stories = []
    for i, entry in enumerate(data.get("stories", [])):
        if not isinstance(entry, dict):
            raise ConfigError(f"Story #{i} in {path} is not an object")
        missing = [key for key in ("title", "content", "category") if key not in entry]
        if missing:
            raise ConfigError(f"Story #{i} in {path} is missing: {', '.join(missing)}")
        try:
            category = StoryCategory(entry["category"])
        except ValueError:
            raise ConfigError(f"Story {entry['title']!r} has unknown category {entry['category']!r}") from None
        stories.append(Story(title=entry["title"], content=entry["content"], category=category))
    return StoryCatalog(stories)
