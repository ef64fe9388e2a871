"""Tests for the narration sequencer."""

import asyncio

import pytest

from cuentacuentos.config import NarrationConfig
from cuentacuentos.errors import ConfigError, PlaybackError
from cuentacuentos.models import Outcome, PlaybackState, Story, StoryCategory
from cuentacuentos.sequencer import NarrationSequencer


async def settle():
    """Let scheduled driving tasks run until they block again."""
    for _ in range(5):
        await asyncio.sleep(0)


def _view(seq):
    return (seq.state, seq.chunk_index, seq.is_playing, seq.is_finished, seq.current_story, seq.chunks)


# --- Sequencing ---

def test_plays_every_chunk_in_order(speech_engine, small_chunks, three_chunk_story):
    """K chunks give K utterances 0..K-1, never overlapping, ending in FINISHED."""
    seq = NarrationSequencer(speech_engine, small_chunks)

    async def scenario():
        assert seq.start_narration(three_chunk_story) is Outcome.OK
        for _ in range(3):
            await settle()
            assert len(speech_engine.in_flight()) == 1
            speech_engine.complete()
        await settle()

    asyncio.run(scenario())
    assert [u.chunk_index for u in speech_engine.spoken] == [0, 1, 2]
    assert [u.text for u in speech_engine.spoken] == ["uno dos", "tres cuatro", "cinco"]
    assert seq.state is PlaybackState.FINISHED
    assert seq.is_finished
    assert not seq.is_playing
    assert seq.chunk_index == 3


def test_utterance_carries_config(speech_engine, three_chunk_story):
    """Language, rate and volume come from the config."""
    config = NarrationConfig(language="es-MX", rate=1.2, volume=0.7)
    seq = NarrationSequencer(speech_engine, config)

    async def scenario():
        seq.start_narration(three_chunk_story)
        await settle()

    asyncio.run(scenario())
    utterance = speech_engine.spoken[0]
    assert utterance.language == "es-MX"
    assert utterance.rate == 1.2
    assert utterance.volume == 0.7
    assert utterance.generation == seq.generation


def test_default_language_and_rate(speech_engine, three_chunk_story):
    seq = NarrationSequencer(speech_engine)

    async def scenario():
        seq.start_narration(three_chunk_story)
        await settle()

    asyncio.run(scenario())
    assert speech_engine.spoken[0].language == "es-ES"
    assert speech_engine.spoken[0].rate == 0.9


def test_start_from_chunk(speech_engine, small_chunks, three_chunk_story):
    seq = NarrationSequencer(speech_engine, small_chunks)

    async def scenario():
        seq.start_narration(three_chunk_story, start_index=2)
        await settle()

    asyncio.run(scenario())
    assert seq.chunk_index == 2
    assert speech_engine.spoken[0].text == "cinco"


def test_start_index_out_of_range(speech_engine, small_chunks, three_chunk_story):
    seq = NarrationSequencer(speech_engine, small_chunks)
    with pytest.raises(ConfigError):
        seq.start_narration(three_chunk_story, start_index=4)
    with pytest.raises(ConfigError):
        seq.start_narration(three_chunk_story, start_index=-1)
    assert seq.state is PlaybackState.IDLE


def test_empty_story_finishes_immediately(speech_engine):
    seq = NarrationSequencer(speech_engine)
    empty = Story(title="Vacío", content="   ", category=StoryCategory.FUN)

    async def scenario():
        assert seq.start_narration(empty) is Outcome.OK
        await settle()

    asyncio.run(scenario())
    assert seq.is_finished
    assert speech_engine.spoken == []


def test_join_waits_for_finish(instant_engine, small_chunks, three_chunk_story):
    engine = instant_engine
    seq = NarrationSequencer(engine, small_chunks)

    async def scenario():
        seq.start_narration(three_chunk_story)
        await seq.join()

    asyncio.run(scenario())
    assert seq.is_finished
    assert len(engine.spoken) == 3


# --- Cancellation and fencing ---

def test_stale_completion_after_cancel_is_ignored(speech_engine, small_chunks, three_chunk_story):
    """Chunk 0 completing after cancel() leaves the session idle."""
    seq = NarrationSequencer(speech_engine, small_chunks)

    async def scenario():
        seq.start_narration(three_chunk_story)
        await settle()
        seq.cancel_narration()
        speech_engine.complete()
        await settle()

    asyncio.run(scenario())
    assert seq.state is PlaybackState.IDLE
    assert seq.chunk_index == 0
    assert not seq.is_playing
    assert not seq.is_finished
    assert seq.current_story is None
    assert seq.chunks == ()
    assert len(speech_engine.spoken) == 1
    assert "cancel" in speech_engine.calls


def test_stale_error_after_cancel_is_ignored(speech_engine, small_chunks, three_chunk_story):
    errors = []
    seq = NarrationSequencer(speech_engine, small_chunks, on_error=errors.append)

    async def scenario():
        seq.start_narration(three_chunk_story)
        await settle()
        seq.cancel_narration()
        speech_engine.fail(RuntimeError("interrupted"))
        await settle()

    asyncio.run(scenario())
    assert errors == []
    assert seq.last_error is None
    assert seq.state is PlaybackState.IDLE


def test_new_story_fences_previous(speech_engine, small_chunks, three_chunk_story):
    """Completion of the old story's chunk does not advance the new story."""
    seq = NarrationSequencer(speech_engine, small_chunks)
    other = Story(title="El Conejo", content="a b c d", category=StoryCategory.FUN)

    async def scenario():
        seq.start_narration(three_chunk_story)
        await settle()
        first_generation = seq.generation
        seq.start_narration(other)
        assert seq.generation > first_generation
        await settle()
        speech_engine.complete(0)
        await settle()

    asyncio.run(scenario())
    assert seq.current_story == other
    assert seq.chunk_index == 0
    assert seq.is_playing
    assert [u.text for u in speech_engine.spoken] == ["uno dos", "a b"]


def test_cancel_when_idle_changes_nothing(speech_engine):
    changes = []
    seq = NarrationSequencer(speech_engine, on_change=changes.append)
    before = _view(seq)
    seq.cancel_narration()
    assert _view(seq) == before
    assert changes == []


def test_generation_increases_on_every_cancel(speech_engine):
    seq = NarrationSequencer(speech_engine)
    g0 = seq.generation
    seq.cancel_narration()
    seq.cancel_narration()
    assert seq.generation == g0 + 2


# --- Pause / resume / toggle ---

def test_pause_and_resume_same_utterance(speech_engine, small_chunks, three_chunk_story):
    seq = NarrationSequencer(speech_engine, small_chunks)

    async def scenario():
        seq.start_narration(three_chunk_story)
        await settle()
        assert seq.pause_only() is Outcome.OK
        assert seq.state is PlaybackState.PAUSED
        assert seq.chunk_index == 0
        assert seq.toggle_play_pause() is Outcome.OK
        assert seq.state is PlaybackState.PLAYING
        await settle()

    asyncio.run(scenario())
    assert speech_engine.calls == ["cancel", "pause", "resume"]
    # Resume continues the in-flight utterance rather than re-speaking it
    assert len(speech_engine.spoken) == 1


def test_toggle_pauses_when_playing(speech_engine, three_chunk_story):
    seq = NarrationSequencer(speech_engine)

    async def scenario():
        seq.start_narration(three_chunk_story)
        await settle()
        seq.toggle_play_pause()

    asyncio.run(scenario())
    assert seq.state is PlaybackState.PAUSED
    assert "pause" in speech_engine.calls


def test_pause_between_chunks_holds_next_chunk(speech_engine, small_chunks, three_chunk_story):
    seq = NarrationSequencer(speech_engine, small_chunks)

    async def scenario():
        seq.start_narration(three_chunk_story)
        await settle()
        seq.pause_only()
        speech_engine.complete()
        await settle()
        assert seq.chunk_index == 1
        assert len(speech_engine.spoken) == 1
        seq.toggle_play_pause()
        await settle()

    asyncio.run(scenario())
    assert [u.chunk_index for u in speech_engine.spoken] == [0, 1]
    assert seq.is_playing


def test_pause_only_never_resumes(speech_engine, three_chunk_story):
    seq = NarrationSequencer(speech_engine)
    assert seq.pause_only() is Outcome.NOOP

    async def scenario():
        seq.start_narration(three_chunk_story)
        await settle()
        seq.pause_only()
        assert seq.pause_only() is Outcome.NOOP

    asyncio.run(scenario())
    assert seq.state is PlaybackState.PAUSED
    assert speech_engine.calls.count("pause") == 1
    assert "resume" not in speech_engine.calls


def test_pause_only_noop_when_finished(instant_engine, small_chunks, three_chunk_story):
    engine = instant_engine
    seq = NarrationSequencer(engine, small_chunks)

    async def scenario():
        seq.start_narration(three_chunk_story)
        await seq.join()
        assert seq.pause_only() is Outcome.NOOP

    asyncio.run(scenario())
    assert seq.is_finished


def test_toggle_restarts_from_finished(instant_engine, small_chunks, three_chunk_story):
    engine = instant_engine
    seq = NarrationSequencer(engine, small_chunks)

    async def scenario():
        seq.start_narration(three_chunk_story)
        await seq.join()
        generation = seq.generation
        assert seq.toggle_play_pause() is Outcome.OK
        assert seq.chunk_index == 0
        assert seq.state is PlaybackState.PLAYING
        assert seq.generation > generation
        await seq.join()

    asyncio.run(scenario())
    assert [u.chunk_index for u in engine.spoken] == [0, 1, 2, 0, 1, 2]
    assert seq.is_finished


def test_toggle_when_idle_is_noop(speech_engine):
    seq = NarrationSequencer(speech_engine)
    assert seq.toggle_play_pause() is Outcome.NOOP
    assert seq.state is PlaybackState.IDLE


# --- Engine errors ---

def test_engine_error_stops_without_finishing(speech_engine, small_chunks, three_chunk_story):
    errors = []
    seq = NarrationSequencer(speech_engine, small_chunks, on_error=errors.append)
    cause = RuntimeError("audio device lost")

    async def scenario():
        seq.start_narration(three_chunk_story)
        await settle()
        speech_engine.complete()
        await settle()
        speech_engine.fail(cause)
        await settle()

    asyncio.run(scenario())
    assert seq.state is PlaybackState.STOPPED
    assert not seq.is_playing
    assert not seq.is_finished
    assert seq.chunk_index == 1
    assert len(errors) == 1
    assert isinstance(errors[0], PlaybackError)
    assert errors[0].chunk_index == 1
    assert errors[0].__cause__ is cause
    assert seq.last_error is errors[0]
    # No automatic retry
    assert len(speech_engine.spoken) == 2


def test_toggle_after_error_replays_current_chunk(speech_engine, small_chunks, three_chunk_story):
    seq = NarrationSequencer(speech_engine, small_chunks)

    async def scenario():
        seq.start_narration(three_chunk_story)
        await settle()
        speech_engine.fail(RuntimeError("boom"))
        await settle()
        assert seq.toggle_play_pause() is Outcome.OK
        await settle()

    asyncio.run(scenario())
    assert [u.chunk_index for u in speech_engine.spoken] == [0, 0]
    assert seq.is_playing
    assert seq.last_error is None


# --- Volume ---

@pytest.mark.parametrize("volume", [-0.5, 1.5, "loud", True])
def test_volume_out_of_range(speech_engine, volume):
    seq = NarrationSequencer(speech_engine)
    with pytest.raises(ConfigError):
        seq.set_volume(volume)
    assert seq.volume == 1.0


def test_volume_applies_to_next_utterance(speech_engine, small_chunks, three_chunk_story):
    seq = NarrationSequencer(speech_engine, small_chunks)

    async def scenario():
        seq.set_volume(0.4)
        seq.start_narration(three_chunk_story)
        await settle()
        seq.set_volume(0.8)
        speech_engine.complete()
        await settle()

    asyncio.run(scenario())
    assert [u.volume for u in speech_engine.spoken] == [0.4, 0.8]


# --- Engine availability ---

def test_missing_engine_is_reported(three_chunk_story):
    seq = NarrationSequencer(None)
    assert seq.start_narration(three_chunk_story) is Outcome.ENGINE_UNAVAILABLE
    assert seq.toggle_play_pause() is Outcome.ENGINE_UNAVAILABLE
    assert seq.pause_only() is Outcome.ENGINE_UNAVAILABLE
    assert seq.state is PlaybackState.IDLE
    assert seq.current_story is None


def test_unavailable_engine_is_reported(offline_engine, three_chunk_story):
    engine = offline_engine
    seq = NarrationSequencer(engine)
    assert seq.start_narration(three_chunk_story) is Outcome.ENGINE_UNAVAILABLE
    assert engine.spoken == []
    assert engine.calls == []


def test_on_change_reports_transitions(speech_engine, small_chunks, three_chunk_story):
    states = []
    seq = NarrationSequencer(speech_engine, small_chunks, on_change=lambda s: states.append(s.state))

    async def scenario():
        seq.start_narration(three_chunk_story)
        await settle()
        seq.pause_only()
        seq.cancel_narration()

    asyncio.run(scenario())
    assert states == [PlaybackState.PLAYING, PlaybackState.PAUSED, PlaybackState.IDLE]


def test_invalid_config_rejected(speech_engine):
    with pytest.raises(ConfigError):
        NarrationSequencer(speech_engine, NarrationConfig(chunk_words=0))
