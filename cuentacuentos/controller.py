"""Application controller: routes intents to the sequencer and catalog.

Spoken feedback ("Cambiando a la sección ...", story listings, the command
help) goes through the same output engine as narration, so announcing
always cancels the narration first.
"""

import asyncio
import logging
from typing import Callable

from cuentacuentos.catalog import StoryCatalog
from cuentacuentos.commands import VoiceCommandInterpreter
from cuentacuentos.models import (
    CATEGORY_LABELS,
    Intent,
    IntentKind,
    Outcome,
    Story,
    StoryCategory,
    Utterance,
)
from cuentacuentos.sequencer import NarrationSequencer

logger = logging.getLogger(__name__)

MSG_NOT_FOUND = "No se encontró la historia solicitada."
MSG_EMPTY_SECTION = "No hay cuentos en esta sección"
MSG_SECTION = "Cambiando a la sección {label}"
COMMANDS_HELP = """
Comandos de voz:
- "reproducir" o "play": pausar, reanudar, o reiniciar si terminó
- "reproducir nombre-del-cuento"
- "pausa": para pausar sin reanudar
- "siguiente": pasar al siguiente cuento
- "anterior": cuento anterior
- "dormir", "diversión", "educativo", "aventuras": cambiar de sección
- "listar": enumerar cuentos de la sección actual
"""


def describe_intent(intent: Intent) -> str:
    """Short Spanish description of an intent, for command notifications."""
    if intent.kind is IntentKind.PLAY_PAUSE:
        return "Comando: reproducir / pausar"
    if intent.kind is IntentKind.PLAY_NAMED:
        return f"Comando: reproducir «{intent.title}»"
    if intent.kind is IntentKind.SET_CATEGORY:
        return f"Comando: sección => {intent.category.value}"
    names = {
        IntentKind.PAUSE_ONLY: "pausa",
        IntentKind.LIST: "listar",
        IntentKind.NEXT: "siguiente",
        IntentKind.PREVIOUS: "anterior",
        IntentKind.UNKNOWN: "desconocido",
    }
    return f"Comando: {names[intent.kind]}"


class StoryController:
    def __init__(
        self,
        sequencer: NarrationSequencer,
        interpreter: VoiceCommandInterpreter,
        catalog: StoryCatalog,
        feedback: bool = True,
        on_command: Callable[[Intent], None] | None = None,
    ):
        self.sequencer = sequencer
        self.interpreter = interpreter
        self.catalog = catalog
        self.feedback = feedback
        self.selected_category: StoryCategory | None = None
        self.last_announcement: str | None = None
        self._on_command = on_command
        self._tasks: set[asyncio.Task] = set()

        self._handlers = {
            IntentKind.PLAY_PAUSE: lambda intent: self.sequencer.toggle_play_pause(),
            IntentKind.PLAY_NAMED: lambda intent: self.play_named(intent.title),
            IntentKind.PAUSE_ONLY: lambda intent: self.sequencer.pause_only(),
            IntentKind.LIST: lambda intent: self.list_stories(),
            IntentKind.SET_CATEGORY: lambda intent: self.set_category(intent.category),
            IntentKind.NEXT: lambda intent: self.play_neighbour(1),
            IntentKind.PREVIOUS: lambda intent: self.play_neighbour(-1),
        }
        missing = set(IntentKind) - {IntentKind.UNKNOWN} - set(self._handlers)
        if missing:
            raise RuntimeError(f"No handler for intents: {sorted(k.value for k in missing)}")

    # --- voice control ---

    def start_voice_control(self) -> Outcome:
        return self.interpreter.start(self.handle_intent)

    def stop_voice_control(self) -> None:
        self.interpreter.stop()

    def handle_intent(self, intent: Intent) -> Outcome:
        handler = self._handlers.get(intent.kind)
        if handler is None:
            return Outcome.NOOP
        logger.info("%s", describe_intent(intent))
        if self._on_command is not None:
            self._on_command(intent)
        return handler(intent)

    # --- actions ---

    def play_story(self, story: Story) -> Outcome:
        """Start story from the beginning, dropping whatever was playing."""
        self.sequencer.cancel_narration()
        return self.sequencer.start_narration(story)

    def play_named(self, fragment: str) -> Outcome:
        story = self.catalog.find(fragment, self.selected_category)
        if story is None:
            logger.info("No story matches %r", fragment)
            self.announce(MSG_NOT_FOUND)
            return Outcome.LOOKUP_MISS
        return self.play_story(story)

    def play_neighbour(self, offset: int) -> Outcome:
        current = self.sequencer.current_story
        if current is None:
            return Outcome.NOOP
        target = self.catalog.neighbour(current, offset, self.selected_category)
        if target is None:
            return Outcome.NOOP
        return self.play_story(target)

    def list_stories(self) -> Outcome:
        stories = self.catalog.by_category(self.selected_category)
        if not stories:
            return self.announce(MSG_EMPTY_SECTION)
        titles = ", ".join(s.title for s in stories) + "."
        if self.selected_category is not None:
            label = CATEGORY_LABELS[self.selected_category]
            return self.announce(f"Sección {label}. Cuentos disponibles: {titles}")
        return self.announce(f"Cuentos disponibles: {titles}")

    def set_category(self, category: StoryCategory) -> Outcome:
        """Voice category switch: select and announce."""
        self.selected_category = category
        return self.announce(MSG_SECTION.format(label=CATEGORY_LABELS[category]))

    def select_category(self, category: StoryCategory | None) -> None:
        """Category button: stop narration, then select."""
        self.sequencer.cancel_narration()
        self.selected_category = category

    def speak_commands(self) -> Outcome:
        """Stop listening and read the command help aloud."""
        self.interpreter.stop()
        return self.announce(COMMANDS_HELP)

    def announce(self, text: str) -> Outcome:
        """Speak a feedback message, cancelling any narration in progress."""
        self.last_announcement = text
        if not self.feedback:
            return Outcome.NOOP
        self.sequencer.cancel_narration()
        if not self.sequencer.engine_available:
            return Outcome.ENGINE_UNAVAILABLE
        config = self.sequencer.config
        utterance = Utterance(
            text=" ".join(text.split()),
            language=config.language,
            rate=config.rate,
            volume=self.sequencer.volume,
            generation=self.sequencer.generation,
        )
        task = asyncio.get_running_loop().create_task(self._speak_feedback(utterance))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return Outcome.OK

    async def _speak_feedback(self, utterance: Utterance) -> None:
        try:
            await self.sequencer.engine.speak(utterance)
        except Exception as e:
            logger.warning("Feedback message failed: %s", e)

    def snapshot(self) -> dict:
        """Everything a presentation layer needs to render."""
        story = self.sequencer.current_story
        return {
            "is_playing": self.sequencer.is_playing,
            "finished": self.sequencer.is_finished,
            "current_story": story.title if story else None,
            "chunk_index": self.sequencer.chunk_index,
            "chunk_count": len(self.sequencer.chunks),
            "volume": self.sequencer.volume,
            "voice_active": self.interpreter.active,
            "selected_category": self.selected_category.value if self.selected_category else None,
        }
