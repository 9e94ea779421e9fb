"""Custom exceptions for the tempo playlist module."""


class TempoPlaylistError(Exception):
    """Base class for playlist builder errors."""

    pass


class ConfigurationError(ValueError):
    """Raised when configuration values are invalid."""

    pass


class InvalidStateError(TempoPlaylistError):
    """Raised when an operation is not allowed in the builder's current state."""

    pass


class PlaylistCreationError(TempoPlaylistError):
    """Raised when writing the reviewed selection to Spotify fails."""

    pass
