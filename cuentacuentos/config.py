"""Narration settings with JSON file overrides."""

import json
import logging
import os
from dataclasses import asdict, dataclass, fields

from cuentacuentos.constants import (
    CHUNK_WORDS,
    DEFAULT_VOICE,
    DEFAULT_VOLUME,
    LANGUAGE,
    SPEECH_RATE,
    VOICE_BY_LANGUAGE,
)
from cuentacuentos.errors import ConfigError

logger = logging.getLogger(__name__)


@dataclass
class NarrationConfig:
    language: str = LANGUAGE
    rate: float = SPEECH_RATE
    chunk_words: int = CHUNK_WORDS
    volume: float = DEFAULT_VOLUME
    voice: str = ""     # empty = pick from VOICE_BY_LANGUAGE

    def validate(self) -> "NarrationConfig":
        """Raise ConfigError on out-of-range values; return self for chaining."""
        if isinstance(self.chunk_words, bool) or not isinstance(self.chunk_words, int) or self.chunk_words < 1:
            raise ConfigError(f"chunk_words must be a positive integer, got {self.chunk_words!r}")
        check_volume(self.volume)
        if not isinstance(self.rate, (int, float)) or self.rate <= 0:
            raise ConfigError(f"rate must be positive, got {self.rate!r}")
        if not self.language:
            raise ConfigError("language must not be empty")
        return self

    def resolved_voice(self) -> str:
        return resolve_voice(self.language, self.voice)


def resolve_voice(language: str, voice: str = "") -> str:
    """Explicit voice if set, else the voice for language, else the default."""
    return voice or VOICE_BY_LANGUAGE.get(language, DEFAULT_VOICE)


def check_volume(volume) -> float:
    if isinstance(volume, bool) or not isinstance(volume, (int, float)):
        raise ConfigError(f"Volume must be a number, got {volume!r}")
    if not 0.0 <= volume <= 1.0:
        raise ConfigError(f"Volume must be between 0 and 1, got {volume}")
    return float(volume)


def load_config(path: str) -> NarrationConfig:
    """Load config from a JSON file. Missing file gives defaults."""
    if not os.path.exists(path):
        return NarrationConfig()
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Malformed config file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must hold a JSON object, got {type(data).__name__}")

    known = {f.name for f in fields(NarrationConfig)}
    unknown = set(data) - known
    if unknown:
        raise ConfigError(f"Unknown config keys in {path}: {', '.join(sorted(unknown))}")
    logger.debug("Loaded config from %s", path)
    return NarrationConfig(**data).validate()


def save_config(cfg: NarrationConfig, path: str) -> str:
    """Write cfg as JSON. Returns the path written."""
    cfg.validate()
    with open(path, "w", encoding="utf-8") as f:
        json.dump(asdict(cfg), f, indent=2, ensure_ascii=False)
    return path


def update_config(cfg: NarrationConfig, key: str, value: str) -> NarrationConfig:
    """Return a copy of cfg with key set from a command-line string."""
    known = {f.name for f in fields(NarrationConfig)}
    if key not in known:
        raise ConfigError(f"Invalid config key: {key}. Valid keys: {', '.join(sorted(known))}")
    converters = {"rate": float, "volume": float, "chunk_words": int}
    try:
        converted = converters.get(key, str)(value)
    except ValueError as e:
        raise ConfigError(f"Invalid value for {key}: {value}") from e
    data = asdict(cfg)
    data[key] = converted
    return NarrationConfig(**data).validate()
