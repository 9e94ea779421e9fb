"""Data models for Spotify Web API integration."""

import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

DEFAULT_SCOPES = (
    "user-read-email",
    "playlist-read-private",
    "playlist-modify-private",
    "playlist-modify-public",
    "user-library-read",
)

# Spotify rejects "localhost" redirect URIs, loopback must be spelled out
DEFAULT_REDIRECT_URI = "http://127.0.0.1:8888/callback"


@dataclass
class SpotifyConfig:
    """Configuration for one authenticated Spotify session.

    Attributes:
        client_id: Spotify application client ID (PKCE, no secret)
        redirect_uri: Redirect URI registered for the application
        scopes: OAuth scopes requested during authorization
        api_base_url: Base URL for Web API requests
        accounts_base_url: Base URL for the accounts service
        timeout_seconds: Per-request timeout
        default_retry_after: Seconds to wait on 429 without a Retry-After header
        max_transport_retries: Retries for network failures before giving up
        page_delay: Pause between consecutive page requests
    """

    client_id: str
    redirect_uri: str = DEFAULT_REDIRECT_URI
    scopes: tuple = DEFAULT_SCOPES
    api_base_url: str = "https://api.spotify.com/v1/"
    accounts_base_url: str = "https://accounts.spotify.com"
    timeout_seconds: float = 30.0
    default_retry_after: float = 1.0
    max_transport_retries: int = 3
    page_delay: float = 0.05

    def __post_init__(self):
        """Validate configuration on initialization."""
        if not self.client_id:
            raise ValueError("client_id is required")
        if not self.redirect_uri or not self.redirect_uri.startswith(("http://", "https://")):
            raise ValueError("redirect_uri must be a valid HTTP/HTTPS URL")
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        if self.default_retry_after < 0:
            raise ValueError("default_retry_after cannot be negative")
        if not self.api_base_url.endswith("/"):
            self.api_base_url = self.api_base_url + "/"

    @property
    def authorize_url(self) -> str:
        return f"{self.accounts_base_url.rstrip('/')}/authorize"

    @property
    def token_url(self) -> str:
        return f"{self.accounts_base_url.rstrip('/')}/api/token"


@dataclass
class SpotifyToken:
    """OAuth token pair and its expiry.

    Attributes:
        access_token: Bearer token sent with every API request
        refresh_token: Token used to obtain a new access token
        expires_at: Unix timestamp (seconds) after which the access token is stale
    """

    access_token: str
    refresh_token: Optional[str] = None
    expires_at: float = 0.0

    def is_expired(self, margin_seconds: float = 0.0, now: Optional[float] = None) -> bool:
        """Check whether the access token expires within ``margin_seconds``.

        A zero ``expires_at`` means the expiry is unknown and the token is
        treated as valid until the server rejects it.
        """
        if not self.expires_at:
            return False
        current = time.time() if now is None else now
        return self.expires_at - current < margin_seconds

    def to_dict(self) -> dict:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": self.expires_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SpotifyToken":
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_at=float(data.get("expires_at") or 0.0),
        )


@dataclass(frozen=True)
class SpotifyUser:
    """Profile of the authenticated user."""

    id: str
    display_name: Optional[str] = None
    email: Optional[str] = None


@dataclass(frozen=True)
class PlaylistSource:
    """Read-only snapshot of a playlist used as a scan source.

    Attributes:
        id: Spotify playlist ID
        name: Display name
        track_count: Declared number of tracks (advisory, may be stale)
        owner_id: Owning user ID
        snapshot_id: Spotify snapshot ID at listing time
        modified_at: Last modification time, when known
        offset: Offset to start paginating from
    """

    id: str
    name: str
    track_count: int = 0
    owner_id: Optional[str] = None
    snapshot_id: Optional[str] = None
    modified_at: Optional[datetime] = None
    offset: int = 0


SAVED_TRACKS_SOURCE = PlaylistSource(id="saved", name="Saved Tracks")


@dataclass(frozen=True)
class Track:
    """A playable track fetched from a playlist or the saved library.

    Attributes:
        id: Spotify track ID
        name: Track title
        artist: Primary artist name
        duration_ms: Duration in milliseconds
        uri: Spotify URI used when inserting into playlists
        source_id: ID of the collection the track was fetched from
        source_name: Name of that collection
        added_at: When the track was added to the collection
        artists: All credited artist names
    """

    id: str
    name: str
    artist: str
    duration_ms: int
    uri: str
    source_id: Optional[str] = None
    source_name: Optional[str] = None
    added_at: Optional[datetime] = None
    artists: tuple = field(default_factory=tuple)

    @property
    def duration_minutes(self) -> float:
        return self.duration_ms / 60000


@dataclass(frozen=True)
class CreatedPlaylist:
    """Playlist created by the builder."""

    id: str
    name: str
    url: Optional[str] = None
    track_count: int = 0
