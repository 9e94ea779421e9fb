"""Transform raw Spotify Web API objects into builder models."""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from .models import PlaylistSource, Track

logger = logging.getLogger(__name__)

UNKNOWN_ARTIST = "Unknown Artist"


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a Spotify ISO 8601 timestamp.

    Examples:
        >>> parse_timestamp("2024-03-01T12:00:00Z")
        datetime.datetime(2024, 3, 1, 12, 0, tzinfo=datetime.timezone.utc)
        >>> parse_timestamp(None) is None
        True
        >>> parse_timestamp("not a date") is None
        True
    """
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (TypeError, ValueError):
        return None


def transform_track(
    raw_item: Dict[str, Any],
    source: Optional[PlaylistSource] = None,
) -> Optional[Track]:
    """Transform a playlist or saved-library item into a Track.

    Both ``playlists/{id}/tracks`` and ``me/tracks`` wrap the track object in
    an item carrying ``added_at``. Items are skipped (None) when they are
    local files, have no track object, or lack an id, a name, or a duration.

    Args:
        raw_item: Item object from a paginated tracks response
        source: Collection the item was listed from

    Returns:
        Track, or None when the item cannot be scanned
    """
    if not isinstance(raw_item, dict):
        return None

    track = raw_item.get("track")
    if not isinstance(track, dict):
        return None
    if raw_item.get("is_local") or track.get("is_local"):
        return None

    track_id = track.get("id")
    name = (track.get("name") or "").strip()
    duration_ms = track.get("duration_ms")
    if not track_id or not name or not isinstance(duration_ms, int) or duration_ms <= 0:
        logger.debug(f"Skipping item with missing fields: {track_id or name or '<unknown>'}")
        return None

    artist_names = tuple(
        str(artist.get("name")).strip()
        for artist in (track.get("artists") or [])
        if isinstance(artist, dict) and artist.get("name")
    )

    return Track(
        id=str(track_id),
        name=name,
        artist=artist_names[0] if artist_names else UNKNOWN_ARTIST,
        duration_ms=duration_ms,
        uri=track.get("uri") or f"spotify:track:{track_id}",
        source_id=source.id if source else None,
        source_name=source.name if source else None,
        added_at=parse_timestamp(raw_item.get("added_at")),
        artists=artist_names,
    )


def transform_playlist(raw: Dict[str, Any]) -> Optional[PlaylistSource]:
    """Transform a simplified playlist object into a PlaylistSource.

    Spotify does not report a modification time on simplified playlists;
    ``modified_at`` is only filled when the payload carries one.
    """
    if not isinstance(raw, dict) or not raw.get("id"):
        return None

    tracks_info = raw.get("tracks") or {}
    owner = raw.get("owner") or {}
    return PlaylistSource(
        id=str(raw["id"]),
        name=raw.get("name") or "Untitled",
        track_count=int(tracks_info.get("total") or 0),
        owner_id=owner.get("id"),
        snapshot_id=raw.get("snapshot_id"),
        modified_at=parse_timestamp(raw.get("modified_at") or raw.get("added_at")),
    )
