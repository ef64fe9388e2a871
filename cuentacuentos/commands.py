"""Classify spoken transcripts into playback intents.

Matching is plain substring containment on case- and diacritic-folded text,
checked in a fixed priority order; the first rule that matches wins.
"""

import logging
from typing import Callable, Sequence

from cuentacuentos.chunker import fold
from cuentacuentos.constants import LANGUAGE
from cuentacuentos.errors import RecognitionError
from cuentacuentos.models import (
    Intent,
    IntentKind,
    Outcome,
    RecognitionResult,
    StoryCategory,
)

logger = logging.getLogger(__name__)

PLAY_KEYWORDS = ("reproducir", "play")

# Priority order after the play rule
KEYWORD_RULES = [
    (("pausa",), Intent(IntentKind.PAUSE_ONLY)),
    (("listar",), Intent(IntentKind.LIST)),
    (("dormir",), Intent(IntentKind.SET_CATEGORY, category=StoryCategory.SLEEP)),
    (("diversión",), Intent(IntentKind.SET_CATEGORY, category=StoryCategory.FUN)),
    (("educativo",), Intent(IntentKind.SET_CATEGORY, category=StoryCategory.EDUCATIONAL)),
    (("aventuras",), Intent(IntentKind.SET_CATEGORY, category=StoryCategory.ADVENTURE)),
    (("siguiente", "next"), Intent(IntentKind.NEXT)),
    (("anterior", "previous"), Intent(IntentKind.PREVIOUS)),
]

UNKNOWN = Intent(IntentKind.UNKNOWN)

# Recognizers sometimes wrap a phrase in punctuation ("¿Reproducir?")
_EDGE_CHARS = " \t\r\n.,;:!?¡¿\"'"


def classify(transcript: str) -> Intent:
    """Map one transcript to an Intent.

    "reproducir" / "play" alone toggles playback; followed by other words it
    names a story, and the remaining words are returned as the title fragment.
    """
    command = transcript.strip(_EDGE_CHARS)
    folded = fold(command)

    if any(keyword in folded for keyword in PLAY_KEYWORDS):
        if folded in PLAY_KEYWORDS:
            return Intent(IntentKind.PLAY_PAUSE)
        remainder = command.lower()
        for keyword in PLAY_KEYWORDS:
            remainder = remainder.replace(keyword, "", 1)
        remainder = remainder.strip(_EDGE_CHARS)
        if not remainder:
            return Intent(IntentKind.PLAY_PAUSE)
        return Intent(IntentKind.PLAY_NAMED, title=remainder)

    for keywords, intent in KEYWORD_RULES:
        if any(fold(keyword) in folded for keyword in keywords):
            return intent

    return UNKNOWN


def latest_final(results: Sequence[RecognitionResult]) -> str | None:
    """Transcript of the last final result in a batch, ignoring interim ones."""
    for result in reversed(results):
        if result.is_final:
            return result.transcript
    return None


class VoiceCommandInterpreter:
    """Owns at most one recognition session and turns its results into intents."""

    def __init__(
        self,
        engine,
        language: str = LANGUAGE,
        continuous: bool = True,
        on_error: Callable[[RecognitionError], None] | None = None,
    ):
        self.engine = engine
        self.language = language
        self.continuous = continuous
        self._on_error = on_error
        self._on_intent: Callable[[Intent], object] | None = None
        self._session = 0
        self._active = False
        self.last_error: RecognitionError | None = None

    @property
    def active(self) -> bool:
        return self._active

    def start(self, on_intent: Callable[[Intent], object]) -> Outcome:
        """Start listening, replacing any existing session."""
        self.stop()
        if self.engine is None or not getattr(self.engine, "available", True):
            logger.warning("No speech recognition engine available")
            return Outcome.ENGINE_UNAVAILABLE

        self._session += 1
        session = self._session
        self._on_intent = on_intent
        self._active = True
        self.last_error = None
        try:
            self.engine.start(
                language=self.language,
                continuous=self.continuous,
                on_results=lambda results: self._deliver(session, results),
                on_error=lambda exc: self._fail(session, exc),
            )
        except Exception as e:
            self._active = False
            self._session += 1
            self._report(RecognitionError(f"Could not start recognition: {e}"), e)
            return Outcome.ENGINE_UNAVAILABLE

        logger.info("Voice control active (%s)", self.language)
        return Outcome.OK

    def stop(self) -> None:
        if not self._active:
            return
        self._active = False
        self._session += 1
        self.engine.stop()
        logger.info("Voice control stopped")

    def handle_results(self, results: Sequence[RecognitionResult]) -> Intent | None:
        """Classify a result batch from the current session."""
        return self._deliver(self._session, results)

    def handle_error(self, exc: Exception) -> None:
        self._fail(self._session, exc)

    def _deliver(self, session: int, results: Sequence[RecognitionResult]) -> Intent | None:
        if session != self._session or not self._active:
            logger.debug("Ignoring results from an inactive recognition session")
            return None
        transcript = latest_final(results)
        if transcript is None:
            return None
        if not self.continuous:
            # Single-shot session: one final phrase ends it
            self.stop()

        intent = classify(transcript)
        if intent.kind is IntentKind.UNKNOWN:
            logger.info("Unrecognized command: %r", transcript)
            return intent
        logger.info("Command %r -> %s", transcript, intent.kind.value)
        self._on_intent(intent)
        return intent

    def _fail(self, session: int, exc: Exception) -> None:
        if session != self._session or not self._active:
            logger.debug("Ignoring error from an inactive recognition session: %s", exc)
            return
        self._active = False
        self._session += 1
        self.engine.stop()
        self._report(RecognitionError(f"Speech recognition failed: {exc}"), exc)

    def _report(self, error: RecognitionError, cause: Exception) -> None:
        error.__cause__ = cause
        self.last_error = error
        logger.warning("%s", error)
        if self._on_error is not None:
            self._on_error(error)
