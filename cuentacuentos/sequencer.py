"""Chunk-by-chunk narration state machine.

A story is split into chunks and spoken one utterance at a time by a driving
task. Every cancel, restart or new story bumps the generation; completions and
errors from utterances of an older generation are discarded, so an engine that
reports late after a cancel can never move the live session.

    IDLE --start--> PLAYING --pause--> PAUSED --resume--> PLAYING
    PLAYING --last chunk done--> FINISHED --toggle--> PLAYING (chunk 0)
    PLAYING --engine error--> STOPPED --toggle--> PLAYING (same chunk)
    any --cancel--> IDLE
"""

import asyncio
import logging
from typing import Callable

from cuentacuentos.chunker import chunk
from cuentacuentos.config import NarrationConfig, check_volume
from cuentacuentos.errors import ConfigError, PlaybackError
from cuentacuentos.models import Outcome, PlaybackState, Story, Utterance

logger = logging.getLogger(__name__)


class NarrationSequencer:
    def __init__(
        self,
        engine,
        config: NarrationConfig | None = None,
        on_error: Callable[[PlaybackError], None] | None = None,
        on_change: Callable[["NarrationSequencer"], None] | None = None,
    ):
        self.engine = engine
        self.config = (config or NarrationConfig()).validate()
        self._on_error = on_error
        self._on_change = on_change
        self._volume = self.config.volume
        self._generation = 0
        self._resumed = asyncio.Event()
        self._resumed.set()
        self._task: asyncio.Task | None = None
        self._tasks: set[asyncio.Task] = set()
        self._story: Story | None = None
        self._chunks: list[str] = []
        self._chunk_index = 0
        self._state = PlaybackState.IDLE
        self.last_error: PlaybackError | None = None

    # --- read-only view ---

    @property
    def state(self) -> PlaybackState:
        return self._state

    @property
    def is_playing(self) -> bool:
        return self._state is PlaybackState.PLAYING

    @property
    def is_finished(self) -> bool:
        return self._state is PlaybackState.FINISHED

    @property
    def current_story(self) -> Story | None:
        return self._story

    @property
    def chunks(self) -> tuple[str, ...]:
        return tuple(self._chunks)

    @property
    def chunk_index(self) -> int:
        return self._chunk_index

    @property
    def volume(self) -> float:
        return self._volume

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def engine_available(self) -> bool:
        return self.engine is not None and getattr(self.engine, "available", True)

    # --- public operations ---

    def start_narration(self, story: Story, start_index: int = 0) -> Outcome:
        """Narrate story from start_index, replacing whatever was playing.

        Must be called from a running event loop.
        """
        if not self.engine_available:
            logger.warning("No speech output engine available, cannot narrate %r", story.title)
            return Outcome.ENGINE_UNAVAILABLE

        chunks = chunk(story.content, self.config.chunk_words)
        if not 0 <= start_index <= len(chunks):
            raise ConfigError(f"Start chunk {start_index} out of range for {len(chunks)} chunks")

        self._invalidate()
        self._story = story
        self._chunks = chunks
        self._chunk_index = start_index
        self.last_error = None
        logger.info("Narrating %r from chunk %d/%d", story.title, start_index, len(chunks))
        self._launch()
        return Outcome.OK

    def toggle_play_pause(self) -> Outcome:
        """Pause, resume, or restart depending on the current state."""
        if not self.engine_available:
            return Outcome.ENGINE_UNAVAILABLE

        if self._state is PlaybackState.PLAYING:
            return self.pause_only()

        if self._state is PlaybackState.PAUSED:
            self.engine.resume()
            self._resumed.set()
            self._set_state(PlaybackState.PLAYING)
            return Outcome.OK

        if self._state is PlaybackState.FINISHED and self._story is not None:
            return self._restart(0)

        if self._state is PlaybackState.STOPPED:
            return self._restart(self._chunk_index)

        return Outcome.NOOP

    def pause_only(self) -> Outcome:
        """Pause if playing. Never resumes or restarts."""
        if not self.engine_available:
            return Outcome.ENGINE_UNAVAILABLE
        if self._state is not PlaybackState.PLAYING:
            return Outcome.NOOP
        self.engine.pause()
        self._resumed.clear()
        self._set_state(PlaybackState.PAUSED)
        return Outcome.OK

    def cancel_narration(self) -> None:
        """Stop immediately and forget the current story."""
        self._invalidate()
        was_idle = self._state is PlaybackState.IDLE
        self._story = None
        self._chunks = []
        self._chunk_index = 0
        self.last_error = None
        self._state = PlaybackState.IDLE
        if not was_idle:
            logger.debug("Narration cancelled")
            self._changed()

    def set_volume(self, volume: float) -> None:
        """Set the volume for the next utterance. Raises ConfigError outside [0, 1]."""
        self._volume = check_volume(volume)
        self._changed()

    async def join(self) -> None:
        """Wait until the current driving task ends.

        Returns once the story finishes, playback stops on an error, or the
        session is cancelled. Blocks indefinitely while paused.
        """
        while self._task is not None and not self._task.done():
            await asyncio.wait({self._task})

    # --- internals ---

    def _invalidate(self) -> None:
        self._generation += 1
        self._task = None
        # Wake any driving task parked on a pause so it can observe the new generation
        self._resumed.set()
        if self.engine_available:
            self.engine.cancel()

    def _restart(self, index: int) -> Outcome:
        self._invalidate()
        self._chunk_index = index
        self.last_error = None
        logger.info("Restarting %r at chunk %d", self._story.title, index)
        self._launch()
        return Outcome.OK

    def _launch(self) -> None:
        if self._chunk_index >= len(self._chunks):
            self._set_state(PlaybackState.FINISHED)
            return
        self._set_state(PlaybackState.PLAYING)
        task = asyncio.get_running_loop().create_task(self._drive(self._generation))
        self._task = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _drive(self, generation: int) -> None:
        while True:
            await self._resumed.wait()
            if generation != self._generation:
                return
            utterance = Utterance(
                text=self._chunks[self._chunk_index],
                language=self.config.language,
                rate=self.config.rate,
                volume=self._volume,
                chunk_index=self._chunk_index,
                generation=generation,
            )
            logger.debug("Speaking chunk %d/%d", utterance.chunk_index + 1, len(self._chunks))
            try:
                await self.engine.speak(utterance)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._chunk_failed(utterance, e)
                return
            if not self._chunk_completed(utterance):
                return

    def _chunk_completed(self, utterance: Utterance) -> bool:
        """Advance past a finished chunk. Returns True if another chunk should play."""
        if utterance.generation != self._generation:
            logger.debug(
                "Ignoring stale completion of chunk %d (generation %d, now %d)",
                utterance.chunk_index, utterance.generation, self._generation,
            )
            return False
        self._chunk_index = utterance.chunk_index + 1
        if self._chunk_index >= len(self._chunks):
            logger.info("Finished %r", self._story.title)
            self._set_state(PlaybackState.FINISHED)
            return False
        self._changed()
        return True

    def _chunk_failed(self, utterance: Utterance, exc: Exception) -> None:
        if utterance.generation != self._generation:
            logger.debug("Ignoring stale error on chunk %d: %s", utterance.chunk_index, exc)
            return
        error = PlaybackError(
            f"Speech engine failed on chunk {utterance.chunk_index}: {exc}",
            chunk_index=utterance.chunk_index,
        )
        error.__cause__ = exc
        self.last_error = error
        logger.warning("%s", error)
        self._set_state(PlaybackState.STOPPED)
        if self._on_error is not None:
            self._on_error(error)

    def _set_state(self, state: PlaybackState) -> None:
        if state is not self._state:
            logger.debug("Playback %s -> %s", self._state.value, state.value)
        self._state = state
        self._changed()

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change(self)
