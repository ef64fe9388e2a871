"""All magic numbers and configuration constants."""

CHUNK_WORDS = 40                    # words per spoken chunk
LANGUAGE = "es-ES"                  # BCP-47 locale for narration and recognition
SPEECH_RATE = 0.9                   # 1.0 = engine default, 0.9 = 10% slower
DEFAULT_VOLUME = 1.0                # narration volume, 0.0–1.0
PLAYBACK_SLICE_MS = 250             # pause/cancel granularity of the local player
VOICE_BY_LANGUAGE = {
    "es-ES": "es-ES-ElviraNeural",
    "es-MX": "es-MX-DaliaNeural",
    "en-US": "en-US-AriaNeural",
    "en-GB": "en-GB-SoniaNeural",
}
DEFAULT_VOICE = "es-ES-ElviraNeural"
CATALOG_PATH = "demo/stories.json"
CONFIG_PATH = "cuentacuentos.json"
PHRASE_TIME_LIMIT = 5.0             # seconds per background recognition phrase
VERSION = "0.1.0"
