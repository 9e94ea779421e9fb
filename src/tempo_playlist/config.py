"""Configuration management for tempo playlist building.

All configuration is read from environment variables (NO .env files).
Command line flags override individual values after loading.
"""
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from src.spotify.models import DEFAULT_REDIRECT_URI, SpotifyConfig
from src.spotify.token_store import TokenStore

from .exceptions import ConfigurationError
from .models import ScanSettings, SourceOrder, TempoRange

_TRUE_VALUES = ('1', 'true', 'yes', 'on')
_FALSE_VALUES = ('0', 'false', 'no', 'off')


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from None


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from None


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == '':
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ConfigurationError(f"{name} must be true or false, got {raw!r}")


@dataclass
class TempoPlaylistConfig:
    """Configuration for tempo playlist building (reads from environment)."""

    # Required: Spotify
    spotify_client_id: str

    # Required: Gemini
    gemini_api_key: str

    # Optional: Spotify
    spotify_redirect_uri: str = DEFAULT_REDIRECT_URI

    # Optional: scan defaults
    min_bpm: float = 100
    max_bpm: float = 130
    target_minutes: float = 30
    max_concurrency: int = 10
    source_order: str = 'recent'
    include_saved: bool = True

    # Optional: storage
    token_file: Optional[Path] = None
    diagnostics_dir: Optional[Path] = None

    @classmethod
    def from_environment(cls, require_oracle: bool = True) -> 'TempoPlaylistConfig':
        """Load configuration from environment variables (NO .env files).

        Args:
            require_oracle: Whether GEMINI_API_KEY must be set (login and logout don't need it)

        Returns:
            TempoPlaylistConfig: Loaded configuration object

        Raises:
            EnvironmentError: If required environment variables are missing
            ConfigurationError: If an optional variable cannot be parsed
        """
        required = {'SPOTIFY_CLIENT_ID': os.getenv('SPOTIFY_CLIENT_ID')}
        if require_oracle:
            required['GEMINI_API_KEY'] = os.getenv('GEMINI_API_KEY')

        missing = [var for var, value in required.items() if not value]
        if missing:
            raise EnvironmentError(
                f"Required environment variables missing: {', '.join(missing)}\n"
                f"These variables must be set in your shell environment (NOT in .env files).\n"
                f"Example: export SPOTIFY_CLIENT_ID='your-client-id'"
            )

        token_file = os.getenv('TEMPO_TOKEN_FILE')
        diagnostics_dir = os.getenv('TEMPO_DIAGNOSTICS_DIR')

        return cls(
            spotify_client_id=required['SPOTIFY_CLIENT_ID'],
            gemini_api_key=required.get('GEMINI_API_KEY') or os.getenv('GEMINI_API_KEY', ''),
            spotify_redirect_uri=os.getenv('SPOTIFY_REDIRECT_URI') or DEFAULT_REDIRECT_URI,
            min_bpm=_env_float('TEMPO_MIN_BPM', 100),
            max_bpm=_env_float('TEMPO_MAX_BPM', 130),
            target_minutes=_env_float('TEMPO_TARGET_MINUTES', 30),
            max_concurrency=_env_int('TEMPO_MAX_CONCURRENCY', 10),
            source_order=os.getenv('TEMPO_SOURCE_ORDER', 'recent').strip().lower(),
            include_saved=_env_bool('TEMPO_INCLUDE_SAVED', True),
            token_file=Path(token_file).expanduser() if token_file else None,
            diagnostics_dir=Path(diagnostics_dir).expanduser() if diagnostics_dir else None,
        )

    def validate(self) -> None:
        """Validate scan configuration.

        Raises:
            ConfigurationError: If any value is out of range
        """
        if self.min_bpm <= 0 or self.max_bpm <= 0:
            raise ConfigurationError(
                f"Invalid BPM range: {self.min_bpm:g}-{self.max_bpm:g}. Bounds must be > 0"
            )
        if self.min_bpm > self.max_bpm:
            raise ConfigurationError(
                f"Invalid BPM range: min {self.min_bpm:g} is greater than max {self.max_bpm:g}"
            )
        if self.target_minutes <= 0:
            raise ConfigurationError(
                f"Invalid target_minutes: {self.target_minutes:g}. Must be > 0"
            )
        if self.max_concurrency < 1:
            raise ConfigurationError(
                f"Invalid max_concurrency: {self.max_concurrency}. Must be >= 1"
            )
        if self.source_order not in [order.value for order in SourceOrder]:
            raise ConfigurationError(
                f"Invalid source_order: {self.source_order}. "
                f"Must be 'recent' or 'random'"
            )

    def to_spotify_config(self) -> SpotifyConfig:
        """Convert to SpotifyConfig for SpotifyClient."""
        return SpotifyConfig(
            client_id=self.spotify_client_id,
            redirect_uri=self.spotify_redirect_uri,
        )

    def to_scan_settings(self, random_seed: Optional[int] = None) -> ScanSettings:
        """Build validated ScanSettings for the assembler.

        Raises:
            ConfigurationError: If the configuration is invalid
        """
        self.validate()
        return ScanSettings(
            tempo_range=TempoRange(self.min_bpm, self.max_bpm),
            target_minutes=self.target_minutes,
            max_concurrency=self.max_concurrency,
            source_order=SourceOrder(self.source_order),
            include_saved=self.include_saved,
            random_seed=random_seed,
        )

    def token_store(self) -> TokenStore:
        return TokenStore(self.token_file)

    def __repr__(self) -> str:
        """Return string representation with sensitive data masked."""
        return (
            f"TempoPlaylistConfig("
            f"spotify_client_id='{self.spotify_client_id}', "
            f"gemini_api_key='***', "
            f"spotify_redirect_uri='{self.spotify_redirect_uri}', "
            f"min_bpm={self.min_bpm:g}, "
            f"max_bpm={self.max_bpm:g}, "
            f"target_minutes={self.target_minutes:g}, "
            f"max_concurrency={self.max_concurrency}, "
            f"source_order='{self.source_order}', "
            f"include_saved={self.include_saved}, "
            f"token_file={str(self.token_file) if self.token_file else None}, "
            f"diagnostics_dir={str(self.diagnostics_dir) if self.diagnostics_dir else None}"
            f")"
        )
