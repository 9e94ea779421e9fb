"""Exception classes for the Spotify Web API client."""

from typing import Optional


class SpotifyError(Exception):
    """Base exception for all Spotify API errors.

    Attributes:
        status: HTTP status code (None for transport-level failures)
        message: Error message from the server or client
    """

    def __init__(self, status: Optional[int], message: str):
        """Initialize Spotify error.

        Args:
            status: HTTP status code, or None when no response was received
            message: Human-readable error message
        """
        self.status = status
        self.message = message
        if status is None:
            super().__init__(f"Spotify Error: {message}")
        else:
            super().__init__(f"Spotify Error {status}: {message}")


class SpotifyAuthenticationError(SpotifyError):
    """Authorization could not be (re)established.

    Raised when the token refresh itself fails, when a request is still
    rejected with 401 after a refresh, or when the PKCE redirect is invalid.
    The user must authorize again.
    """

    pass


class SpotifyNotFoundError(SpotifyError):
    """Requested resource not found (HTTP 404)."""

    pass


class SpotifyResponseError(SpotifyError):
    """Response body does not have the expected shape."""

    pass
