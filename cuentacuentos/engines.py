"""Speech output and recognition engines.

The sequencer and interpreter only depend on the two protocols below. The
concrete engines synthesize with edge-tts, decode with pydub and play through a
PyAudio stream. They listen through the speech_recognition microphone wrapper.
Blocking work runs in worker threads; every event is handed back to the
asyncio loop.
"""

import asyncio
import importlib.util
import logging
import os
import shutil
import tempfile
import threading
from contextlib import contextmanager
from typing import Callable, Protocol, Sequence

import edge_tts
import speech_recognition as sr
from pydub import AudioSegment
from pydub.utils import ratio_to_db

from cuentacuentos.config import resolve_voice
from cuentacuentos.constants import PHRASE_TIME_LIMIT, PLAYBACK_SLICE_MS
from cuentacuentos.models import RecognitionResult, Utterance

logger = logging.getLogger(__name__)

AMBIENT_CALIBRATION_SECONDS = 0.5


class SpeechOutputEngine(Protocol):
    available: bool

    async def speak(self, utterance: Utterance) -> None:
        """Speak one utterance. Returns on completion (or cancel), raises on failure."""

    def pause(self) -> None: ...

    def resume(self) -> None: ...

    def cancel(self) -> None: ...


class SpeechRecognitionEngine(Protocol):
    available: bool

    def start(
        self,
        language: str,
        continuous: bool,
        on_results: Callable[[Sequence[RecognitionResult]], None],
        on_error: Callable[[Exception], None],
    ) -> None: ...

    def stop(self) -> None: ...


def rate_to_percent(rate: float) -> str:
    """Convert a rate multiplier to edge-tts's relative form: 0.9 -> "-10%"."""
    return f"{round((rate - 1.0) * 100):+d}%"


def apply_volume(audio: AudioSegment, volume: float) -> AudioSegment:
    """Scale amplitude by volume (0.0–1.0). Zero gives silence of the same length."""
    if volume <= 0:
        return AudioSegment.silent(duration=len(audio), frame_rate=audio.frame_rate)
    if volume >= 1:
        return audio
    return audio + ratio_to_db(volume)


@contextmanager
def open_output(audio: AudioSegment):
    """One PyAudio output stream matching audio's sample format, closed on exit."""
    import pyaudio

    pa = pyaudio.PyAudio()
    stream = pa.open(
        format=pa.get_format_from_width(audio.sample_width),
        channels=audio.channels,
        rate=audio.frame_rate,
        output=True,
    )
    try:
        yield stream
    finally:
        stream.stop_stream()
        stream.close()
        pa.terminate()


class _Playback:
    """Control flags for one in-flight utterance, shared with the player thread."""

    def __init__(self):
        self.cancelled = threading.Event()
        self.resumed = threading.Event()
        self.resumed.set()


class EdgeSpeechEngine:
    """Neural TTS via edge-tts, played locally through one output stream per utterance.

    Audio is written to the stream in short slices, so pause holds playback
    mid-utterance and resumes from the same point, and cancel stops within
    one slice.
    """

    def __init__(self, voice: str = "", slice_ms: int = PLAYBACK_SLICE_MS):
        self.voice = voice
        self.slice_ms = slice_ms
        self._current: _Playback | None = None

    @property
    def available(self) -> bool:
        # ffmpeg decodes the synthesized MP3, PyAudio plays it
        return shutil.which("ffmpeg") is not None and importlib.util.find_spec("pyaudio") is not None

    def voice_for(self, language: str) -> str:
        return resolve_voice(language, self.voice)

    async def speak(self, utterance: Utterance) -> None:
        playback = _Playback()
        self._current = playback
        try:
            audio = await self._synthesize(utterance)
            if playback.cancelled.is_set():
                return
            audio = apply_volume(audio, utterance.volume)
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, self._play, audio, playback)
        finally:
            if self._current is playback:
                self._current = None

    async def _synthesize(self, utterance: Utterance) -> AudioSegment:
        voice = self.voice_for(utterance.language)
        communicate = edge_tts.Communicate(utterance.text, voice, rate=rate_to_percent(utterance.rate))
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "utterance.mp3")
            await communicate.save(path)
            # 0-byte file counts as failure
            if not os.path.exists(path) or os.path.getsize(path) == 0:
                raise RuntimeError(f"TTS produced 0-byte file for: {utterance.text[:50]}...")
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(None, AudioSegment.from_mp3, path)

    def _play(self, audio: AudioSegment, playback: _Playback) -> None:
        with open_output(audio) as stream:
            for start in range(0, len(audio), self.slice_ms):
                playback.resumed.wait()
                if playback.cancelled.is_set():
                    return
                stream.write(audio[start:start + self.slice_ms].raw_data)

    def pause(self) -> None:
        if self._current is not None:
            self._current.resumed.clear()

    def resume(self) -> None:
        if self._current is not None:
            self._current.resumed.set()

    def cancel(self) -> None:
        if self._current is not None:
            self._current.cancelled.set()
            self._current.resumed.set()


class MicrophoneRecognitionEngine:
    """Listening via speech_recognition's background listener.

    Opening the microphone and calibrating for ambient noise run in a worker
    thread, so start() returns at once. Each recognized phrase arrives as a
    single final result. Phrases the recognizer cannot understand are dropped;
    service errors and a microphone that fails to open are reported through
    on_error. The listener runs until stop(); single-shot sessions are ended
    by the caller after the first result.
    """

    def __init__(self, recognizer: sr.Recognizer | None = None, phrase_time_limit: float = PHRASE_TIME_LIMIT):
        self.recognizer = recognizer or sr.Recognizer()
        self.phrase_time_limit = phrase_time_limit
        self._stop_listening = None
        self._session = 0

    @property
    def available(self) -> bool:
        try:
            return len(sr.Microphone.list_microphone_names()) > 0
        except (AttributeError, OSError):
            # AttributeError: PyAudio is not installed
            return False

    def start(self, language, continuous, on_results, on_error) -> None:
        self.stop()
        session = self._session
        loop = asyncio.get_running_loop()
        opening = loop.run_in_executor(None, self._listen, loop, language, on_results, on_error)
        opening.add_done_callback(lambda f: self._opened(session, f, on_error))

    def _listen(self, loop, language, on_results, on_error):
        microphone = sr.Microphone()
        with microphone as source:
            self.recognizer.adjust_for_ambient_noise(source, duration=AMBIENT_CALIBRATION_SECONDS)

        def callback(recognizer, audio):
            try:
                text = recognizer.recognize_google(audio, language=language)
            except sr.UnknownValueError:
                logger.debug("Could not understand audio")
                return
            except sr.RequestError as e:
                loop.call_soon_threadsafe(on_error, e)
                return
            loop.call_soon_threadsafe(on_results, [RecognitionResult(text, is_final=True)])

        return self.recognizer.listen_in_background(
            microphone, callback, phrase_time_limit=self.phrase_time_limit,
        )

    def _opened(self, session: int, opening: asyncio.Future, on_error) -> None:
        if opening.cancelled():
            return
        exc = opening.exception()
        if exc is not None:
            if session == self._session:
                on_error(exc)
            return
        stopper = opening.result()
        if session != self._session:
            # stop() or a newer start() came first
            stopper(wait_for_stop=False)
            return
        self._stop_listening = stopper

    def stop(self) -> None:
        self._session += 1
        if self._stop_listening is not None:
            self._stop_listening(wait_for_stop=False)
            self._stop_listening = None
