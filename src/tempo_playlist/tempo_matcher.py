"""Tempo range matching with half-time and double-time aliasing.

Tempo estimators and human cadence targets commonly disagree by a factor of
two, so a track also qualifies when half or double its estimate is in range.
"""

from typing import Optional, Tuple

from src.spotify.models import Track

from .models import MatchResult, TempoRange, TempoVariant


def tempo_candidates(bpm: float) -> Tuple[Tuple[TempoVariant, float], ...]:
    """Candidate values in priority order.

    Examples:
        >>> tempo_candidates(80)
        ((<TempoVariant.ORIGINAL: 'original'>, 80), (<TempoVariant.HALF_TIME: 'half-time'>, 40.0), (<TempoVariant.DOUBLE_TIME: 'double-time'>, 160))
    """
    return (
        (TempoVariant.ORIGINAL, bpm),
        (TempoVariant.HALF_TIME, bpm / 2),
        (TempoVariant.DOUBLE_TIME, bpm * 2),
    )


def match_tempo(bpm: Optional[float], tempo_range: TempoRange, track: Track) -> Optional[MatchResult]:
    """Match an estimated tempo against an inclusive range.

    Candidates are checked as original, half-time, double-time; the first one
    inside ``tempo_range`` wins, so the original value is preferred whenever
    it qualifies.

    Args:
        bpm: Estimated tempo (None or non-positive never matches)
        tempo_range: Inclusive target range
        track: Track the estimate belongs to

    Returns:
        MatchResult for the winning candidate, or None

    Examples:
        >>> match = match_tempo(78, TempoRange(150, 170), track)
        >>> match.display_bpm, match.variant.value
        (156, 'double-time')
    """
    if bpm is None or bpm <= 0:
        return None

    for variant, candidate in tempo_candidates(bpm):
        if tempo_range.contains(candidate):
            return MatchResult(track=track, display_bpm=candidate, variant=variant, original_bpm=bpm)
    return None
