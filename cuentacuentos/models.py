"""Data models for narration and voice commands."""

from dataclasses import dataclass
from enum import Enum


class StoryCategory(str, Enum):
    SLEEP = "sleep"
    FUN = "fun"
    EDUCATIONAL = "educational"
    ADVENTURE = "adventure"


# Spoken label for each category, as used in voice feedback
CATEGORY_LABELS = {
    StoryCategory.SLEEP: "dormir",
    StoryCategory.FUN: "diversión",
    StoryCategory.EDUCATIONAL: "educativo",
    StoryCategory.ADVENTURE: "aventuras",
}

# Display title for each category button
CATEGORY_TITLES = {
    StoryCategory.SLEEP: "Para Dormir",
    StoryCategory.FUN: "Diversión",
    StoryCategory.EDUCATIONAL: "Educativos",
    StoryCategory.ADVENTURE: "Aventuras",
}

for _table in (CATEGORY_LABELS, CATEGORY_TITLES):
    _missing = set(StoryCategory) - set(_table)
    if _missing:
        raise RuntimeError(f"Category table is missing: {sorted(c.value for c in _missing)}")


@dataclass(frozen=True)
class Story:
    title: str
    content: str
    category: StoryCategory


class PlaybackState(str, Enum):
    IDLE = "idle"
    PLAYING = "playing"
    PAUSED = "paused"
    FINISHED = "finished"
    STOPPED = "stopped"     # engine error mid-utterance; resumable only by an explicit call


@dataclass(frozen=True)
class Utterance:
    """One engine invocation for a single chunk.

    `generation` is the sequencer generation captured when the utterance was
    built; completions carrying an older generation are discarded.
    """
    text: str
    language: str
    rate: float
    volume: float
    chunk_index: int = 0
    generation: int = 0


class IntentKind(str, Enum):
    PLAY_PAUSE = "play_pause"
    PLAY_NAMED = "play_named"
    PAUSE_ONLY = "pause_only"
    LIST = "list"
    SET_CATEGORY = "set_category"
    NEXT = "next"
    PREVIOUS = "previous"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Intent:
    kind: IntentKind
    title: str | None = None                # PLAY_NAMED only
    category: StoryCategory | None = None   # SET_CATEGORY only


@dataclass(frozen=True)
class RecognitionResult:
    transcript: str
    is_final: bool = True


class Outcome(str, Enum):
    """Status returned by public operations instead of raising."""
    OK = "ok"
    NOOP = "noop"
    ENGINE_UNAVAILABLE = "engine_unavailable"
    LOOKUP_MISS = "lookup_miss"
