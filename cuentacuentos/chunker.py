"""Text helpers: split story text into spoken chunks, fold text for matching."""

import unicodedata

from cuentacuentos.constants import CHUNK_WORDS
from cuentacuentos.errors import ConfigError


def chunk(text: str, max_words: int = CHUNK_WORDS) -> list[str]:
    """Split text into chunks of at most max_words words.

    Whitespace runs collapse to single spaces. The last chunk may be shorter.
    Empty or whitespace-only text gives an empty list.
    """
    if isinstance(max_words, bool) or not isinstance(max_words, int) or max_words < 1:
        raise ConfigError(f"Chunk size must be a positive integer, got {max_words!r}")

    words = text.split()
    return [
        " ".join(words[start:start + max_words])
        for start in range(0, len(words), max_words)
    ]


def fold(text: str) -> str:
    """Case-fold and strip diacritics: "Diversión" -> "diversion"."""
    decomposed = unicodedata.normalize("NFKD", text.casefold())
    return "".join(c for c in decomposed if not unicodedata.combining(c))
