"""CLI interface with subcommand routing."""

import argparse
import asyncio
import logging
import os
import sys

from cuentacuentos.catalog import StoryCatalog, load_catalog
from cuentacuentos.chunker import chunk
from cuentacuentos.commands import VoiceCommandInterpreter
from cuentacuentos.config import NarrationConfig, load_config, save_config, update_config
from cuentacuentos.constants import CATALOG_PATH, CONFIG_PATH, VERSION
from cuentacuentos.controller import StoryController, describe_intent
from cuentacuentos.engines import EdgeSpeechEngine, MicrophoneRecognitionEngine
from cuentacuentos.errors import ConfigError
from cuentacuentos.models import CATEGORY_TITLES, Outcome, StoryCategory
from cuentacuentos.sequencer import NarrationSequencer


def _load_catalog(path: str) -> StoryCatalog:
    try:
        return load_catalog(path)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        raise SystemExit(1)


def _load_config(path: str) -> NarrationConfig:
    try:
        return load_config(path)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        raise SystemExit(1)


def _output_engine(config: NarrationConfig) -> EdgeSpeechEngine:
    engine = EdgeSpeechEngine(voice=config.resolved_voice())
    if not engine.available:
        print("Error: ffmpeg and PyAudio are required for playback.", file=sys.stderr)
        print("Install with: brew install ffmpeg && pip install 'cuentacuentos[audio]'", file=sys.stderr)
        raise SystemExit(1)
    return engine


def _print_progress(sequencer: NarrationSequencer) -> None:
    total = len(sequencer.chunks)
    if sequencer.is_playing and total:
        print(f"  Chunk {sequencer.chunk_index + 1}/{total}")


def cmd_list(args):
    """List stories, optionally for one category."""
    catalog = _load_catalog(args.catalog)
    category = StoryCategory(args.category) if args.category else None
    stories = catalog.by_category(category)
    if not stories:
        print("No stories found.")
        return
    for cat in StoryCategory:
        in_cat = [s for s in stories if s.category == cat]
        if not in_cat:
            continue
        print(f"{CATEGORY_TITLES[cat]}:")
        for story in in_cat:
            print(f"  {story.title}")


def cmd_chunks(args):
    """Print the chunks a text file would be narrated in."""
    if not os.path.exists(args.file):
        print(f"Error: File not found: {args.file}", file=sys.stderr)
        raise SystemExit(1)
    config = _load_config(args.config)
    words = args.words if args.words is not None else config.chunk_words

    with open(args.file, encoding="utf-8") as f:
        text = f.read()

    try:
        chunks = chunk(text, words)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        raise SystemExit(1)

    if not chunks:
        print(f"Error: File is empty: {args.file}", file=sys.stderr)
        raise SystemExit(1)
    for i, text_chunk in enumerate(chunks):
        print(f"[{i + 1}/{len(chunks)}] {text_chunk}")


def cmd_read(args):
    """Narrate one story and wait for it to finish."""
    catalog = _load_catalog(args.catalog)
    config = _load_config(args.config)
    story = catalog.find(args.title)
    if story is None:
        print(f"Error: No story matches '{args.title}'.", file=sys.stderr)
        raise SystemExit(1)

    engine = _output_engine(config)
    sequencer = NarrationSequencer(engine, config, on_change=_print_progress)
    if args.volume is not None:
        try:
            sequencer.set_volume(args.volume)
        except ConfigError as e:
            print(f"Error: {e}", file=sys.stderr)
            raise SystemExit(1)

    async def narrate():
        sequencer.start_narration(story, args.from_chunk)
        try:
            await sequencer.join()
        except asyncio.CancelledError:
            # Ctrl-C: stop the player thread before the loop shuts down
            sequencer.cancel_narration()
            raise

    print(f"Reading: {story.title}")
    try:
        asyncio.run(narrate())
    except KeyboardInterrupt:
        print("\nCancelled.")
        return
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        raise SystemExit(1)

    if sequencer.last_error is not None:
        print(f"Error: {sequencer.last_error}", file=sys.stderr)
        raise SystemExit(1)
    print("Done.")


def cmd_listen(args):
    """Run hands-free voice control until Ctrl-C or a recognition error."""
    catalog = _load_catalog(args.catalog)
    config = _load_config(args.config)
    engine = _output_engine(config)
    recognizer = MicrophoneRecognitionEngine()
    if not recognizer.available:
        print("Error: No microphone available (is PyAudio installed?).", file=sys.stderr)
        raise SystemExit(1)

    async def listen():
        failed = asyncio.Event()
        sequencer = NarrationSequencer(engine, config)
        interpreter = VoiceCommandInterpreter(
            recognizer, language=config.language, on_error=lambda e: failed.set(),
        )
        controller = StoryController(
            sequencer, interpreter, catalog,
            on_command=lambda intent: print(describe_intent(intent)),
        )
        if controller.start_voice_control() is not Outcome.OK:
            return interpreter.last_error or "Voice control could not start"
        print(f"Listening ({config.language}). Say \"listar\" to hear the stories. Ctrl-C to quit.")
        try:
            await failed.wait()
        finally:
            controller.stop_voice_control()
            sequencer.cancel_narration()
        return interpreter.last_error

    try:
        error = asyncio.run(listen())
    except KeyboardInterrupt:
        print("\nStopped.")
        return
    if error:
        print(f"Error: {error}", file=sys.stderr)
        raise SystemExit(1)


def cmd_config(args):
    """Show or update the config file."""
    config = _load_config(args.config)
    if args.action == "show":
        for key, value in vars(config).items():
            print(f"  {key:<12} {value}")
        print(f"  {'(voice)':<12} {config.resolved_voice()}")
        return

    if len(args.values) != 2:
        print("Error: 'config set' requires <key> and <value>", file=sys.stderr)
        raise SystemExit(1)
    key, value = args.values
    try:
        config = update_config(config, key, value)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        raise SystemExit(1)
    save_config(config, args.config)
    print(f"Updated: {key} → {getattr(config, key)}")


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="cuentacuentos",
        description="Cuentacuentos — voice-controlled story narration",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log playback and recognition events")
    parser.add_argument("--catalog", default=CATALOG_PATH, help="Story catalog JSON file")
    parser.add_argument("--config", default=CONFIG_PATH, help="Narration config JSON file")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # list
    list_parser = subparsers.add_parser("list", help="List stories")
    list_parser.add_argument("--category", choices=[c.value for c in StoryCategory], help="Only this category")
    list_parser.set_defaults(func=cmd_list)

    # chunks
    chunks_parser = subparsers.add_parser("chunks", help="Show how a text file is split for narration")
    chunks_parser.add_argument("file", help="Path to a text file")
    chunks_parser.add_argument("--words", type=int, help="Words per chunk (default from config)")
    chunks_parser.set_defaults(func=cmd_chunks)

    # read
    read_parser = subparsers.add_parser("read", help="Narrate a story")
    read_parser.add_argument("title", help="Title or part of a title")
    read_parser.add_argument("--from-chunk", type=int, default=0, help="Chunk to start at (0-based)")
    read_parser.add_argument("--volume", type=float, help="Volume between 0 and 1")
    read_parser.set_defaults(func=cmd_read)

    # listen
    listen_parser = subparsers.add_parser("listen", help="Hands-free voice control")
    listen_parser.set_defaults(func=cmd_listen)

    # config
    config_parser = subparsers.add_parser("config", help="Show or update settings")
    config_parser.add_argument("action", choices=["show", "set"])
    config_parser.add_argument("values", nargs="*", help="<key> <value> for set")
    config_parser.set_defaults(func=cmd_config)

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if not args.command:
        parser.print_help()
        return

    args.func(args)
