"""Spotify Web API client module for playlist and library access."""

__version__ = "1.0.0"

from .auth import (
    AuthorizationRequest,
    build_authorization_request,
    create_code_challenge,
    exchange_code,
    generate_code_verifier,
    parse_redirect,
    refresh_access_token,
)
from .client import SpotifyClient
from .exceptions import (
    SpotifyAuthenticationError,
    SpotifyError,
    SpotifyNotFoundError,
    SpotifyResponseError,
)
from .models import (
    SAVED_TRACKS_SOURCE,
    CreatedPlaylist,
    PlaylistSource,
    SpotifyConfig,
    SpotifyToken,
    SpotifyUser,
    Track,
)
from .token_store import TokenStore

__all__ = [
    # Client
    "SpotifyClient",
    # Models
    "SpotifyConfig",
    "SpotifyToken",
    "SpotifyUser",
    "PlaylistSource",
    "SAVED_TRACKS_SOURCE",
    "Track",
    "CreatedPlaylist",
    "TokenStore",
    # Authentication
    "AuthorizationRequest",
    "build_authorization_request",
    "create_code_challenge",
    "generate_code_verifier",
    "parse_redirect",
    "exchange_code",
    "refresh_access_token",
    # Exceptions
    "SpotifyError",
    "SpotifyAuthenticationError",
    "SpotifyNotFoundError",
    "SpotifyResponseError",
]
