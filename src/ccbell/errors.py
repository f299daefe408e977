"""ccbell exception hierarchy."""


class BellError(Exception):
    """Base class for all ccbell errors."""


class StatePersistenceError(BellError):
    """Raised when a state mutation that must be persisted could not be committed.

    Only raised for stacked dispatch, where losing queue coordination could
    duplicate or lose playback. Every other state failure fails open.
    """


class PlaybackError(BellError):
    """Raised when a sound cannot be handed to an audio player."""
