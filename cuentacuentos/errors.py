"""Exception taxonomy.

ConfigError is raised at the call site. The others are handed to
`on_error` callbacks and never escape an engine callback or driving task.
A missing engine and a catalog miss are not exceptions: see
`Outcome.ENGINE_UNAVAILABLE` and `Outcome.LOOKUP_MISS`.
"""


class CuentacuentosError(Exception):
    pass


class ConfigError(CuentacuentosError, ValueError):
    """Invalid chunk size, volume, rate or config file contents."""


class PlaybackError(CuentacuentosError):
    """The output engine failed while speaking a chunk."""

    def __init__(self, message: str, chunk_index: int | None = None):
        super().__init__(message)
        self.chunk_index = chunk_index


class RecognitionError(CuentacuentosError):
    """The recognition engine failed; the voice session is now inactive."""
