"""Shared fixtures: in-memory speech engines and sample stories."""

import asyncio

import pytest

from cuentacuentos.catalog import StoryCatalog
from cuentacuentos.config import NarrationConfig
from cuentacuentos.models import RecognitionResult, Story, StoryCategory


class FakeSpeechEngine:
    """Records utterances. Each speak() waits until the test completes or fails it.

    cancel() only records the call, like a real engine whose cancel is
    asynchronous: the pending speak may still complete or fail afterwards.
    """

    def __init__(self, available=True, auto_complete=False):
        self.available = available
        self.auto_complete = auto_complete
        self.spoken = []
        self.pending = []
        self.calls = []

    async def speak(self, utterance):
        self.spoken.append(utterance)
        if self.auto_complete:
            await asyncio.sleep(0)
            return
        future = asyncio.get_running_loop().create_future()
        self.pending.append(future)
        await future

    def complete(self, index=-1):
        self.pending[index].set_result(None)

    def fail(self, exc, index=-1):
        self.pending[index].set_exception(exc)

    def in_flight(self):
        return [f for f in self.pending if not f.done()]

    def pause(self):
        self.calls.append("pause")

    def resume(self):
        self.calls.append("resume")

    def cancel(self):
        self.calls.append("cancel")


class FakeRecognitionEngine:
    def __init__(self, available=True, fail_on_start=None):
        self.available = available
        self.fail_on_start = fail_on_start
        self.starts = []
        self.stops = 0
        self.on_results = None
        self.on_error = None

    def start(self, language, continuous, on_results, on_error):
        if self.fail_on_start is not None:
            raise self.fail_on_start
        self.starts.append((language, continuous))
        self.on_results = on_results
        self.on_error = on_error

    def stop(self):
        self.stops += 1

    def say(self, *transcripts, is_final=True):
        self.on_results([RecognitionResult(t, is_final=is_final) for t in transcripts])

    def break_down(self, exc):
        self.on_error(exc)


@pytest.fixture
def speech_engine():
    return FakeSpeechEngine()


@pytest.fixture
def recognition_engine():
    return FakeRecognitionEngine()


@pytest.fixture
def small_chunks():
    """Two words per chunk so short texts span several chunks."""
    return NarrationConfig(chunk_words=2)


@pytest.fixture
def three_chunk_story():
    return Story(
        title="La Tortuga y el Sol",
        content="uno dos tres cuatro cinco",
        category=StoryCategory.EDUCATIONAL,
    )


@pytest.fixture
def sample_catalog():
    return StoryCatalog([
        Story(title="La Luna Dormilona", content="luna luna luna", category=StoryCategory.SLEEP),
        Story(title="El Conejo Bailarín", content="conejo baila mucho", category=StoryCategory.FUN),
        Story(title="La Tortuga y el Sol", content="tortuga sol día noche", category=StoryCategory.EDUCATIONAL),
        Story(title="El Osito Dormido", content="osito duerme", category=StoryCategory.SLEEP),
    ])


@pytest.fixture
def instant_engine():
    """Finishes every utterance on the next loop iteration."""
    return FakeSpeechEngine(auto_complete=True)


@pytest.fixture
def offline_engine():
    return FakeSpeechEngine(available=False)
