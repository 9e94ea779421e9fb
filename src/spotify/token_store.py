"""File persistence for Spotify tokens.

Tokens and their expiry are the only state the builder keeps between runs.
"""

import json
import logging
import os
from pathlib import Path
from typing import Optional, Union

from .models import SpotifyToken

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_FILE = Path.home() / ".tempo_playlist" / "spotify_tokens.json"


class TokenStore:
    """Reads and writes a single token pair as JSON."""

    def __init__(self, path: Union[str, Path, None] = None):
        self.path = Path(path) if path else DEFAULT_TOKEN_FILE

    def load(self) -> Optional[SpotifyToken]:
        """Return the stored token, or None if absent or unreadable."""
        if not self.path.exists():
            return None
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            return SpotifyToken.from_dict(data)
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Ignoring unreadable token file {self.path}: {e}")
            return None

    def save(self, token: SpotifyToken) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(token.to_dict()), encoding="utf-8")
        os.chmod(tmp_path, 0o600)
        os.replace(tmp_path, self.path)
        logger.debug(f"Saved Spotify token to {self.path}")

    def clear(self) -> bool:
        """Delete the token file. Returns True if a file was removed."""
        try:
            self.path.unlink()
        except FileNotFoundError:
            return False
        logger.info(f"Removed stored Spotify token {self.path}")
        return True
