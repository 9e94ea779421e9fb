"""Data models for tempo-targeted playlist assembly."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Set

from src.spotify.models import PlaylistSource, Track


class EstimateOutcome(str, Enum):
    """How a tempo resolution ended."""

    RESOLVED = "resolved"
    EXHAUSTED = "exhausted"  # every tier failed or returned an invalid value
    CANCELLED = "cancelled"


class TempoVariant(str, Enum):
    """Which multiple of the estimated tempo satisfied the target range."""

    ORIGINAL = "original"
    HALF_TIME = "half-time"
    DOUBLE_TIME = "double-time"


class ScanPhase(str, Enum):
    """Phase of a scan session. Transitions only move forward."""

    SCANNING_PRIMARY = "scanning-primary"
    SCANNING_SECONDARY = "scanning-secondary"
    COMPLETE = "complete"


_PHASE_ORDER = {
    ScanPhase.SCANNING_PRIMARY: 0,
    ScanPhase.SCANNING_SECONDARY: 1,
    ScanPhase.COMPLETE: 2,
}


class AssemblerState(str, Enum):
    """Lifecycle of the playlist builder."""

    SELECT = "select"
    SCANNING_PRIMARY = "scanning-primary"
    SCANNING_SECONDARY = "scanning-secondary"
    REVIEW = "review"
    CREATING = "creating"
    COMPLETE = "complete"


class SourceOrder(str, Enum):
    """Order in which primary playlists are scanned."""

    RECENT = "recent"
    RANDOM = "random"


@dataclass(frozen=True)
class TempoRange:
    """Inclusive BPM range a selection must satisfy.

    Attributes:
        min_bpm: Lower bound (inclusive)
        max_bpm: Upper bound (inclusive)
    """

    min_bpm: float
    max_bpm: float

    def __post_init__(self):
        if self.min_bpm <= 0 or self.max_bpm <= 0:
            raise ValueError("BPM bounds must be positive")
        if self.min_bpm > self.max_bpm:
            raise ValueError(f"min_bpm ({self.min_bpm}) must not exceed max_bpm ({self.max_bpm})")

    def contains(self, bpm: float) -> bool:
        return self.min_bpm <= bpm <= self.max_bpm

    def __str__(self) -> str:
        return f"{self.min_bpm:g}-{self.max_bpm:g} BPM"


@dataclass(frozen=True)
class TempoEstimate:
    """Result of resolving one track's tempo through the oracle tiers.

    Attributes:
        bpm: Estimated tempo, None unless the outcome is RESOLVED
        tier: Ordinal (1-3) of the tier that produced the value, None if none did
        citations: Source URIs the oracle grounded its answer on
        raw_text: Raw text of the last answer received (diagnostics)
        outcome: RESOLVED, EXHAUSTED or CANCELLED
    """

    bpm: Optional[float]
    tier: Optional[int]
    citations: List[str] = field(default_factory=list)
    raw_text: str = ""
    outcome: EstimateOutcome = EstimateOutcome.RESOLVED

    @property
    def is_resolved(self) -> bool:
        return self.outcome is EstimateOutcome.RESOLVED and self.bpm is not None

    @classmethod
    def exhausted(cls, raw_text: str = "") -> "TempoEstimate":
        return cls(bpm=None, tier=None, raw_text=raw_text, outcome=EstimateOutcome.EXHAUSTED)

    @classmethod
    def cancelled(cls) -> "TempoEstimate":
        return cls(bpm=None, tier=None, outcome=EstimateOutcome.CANCELLED)


@dataclass(frozen=True)
class OracleAttempt:
    """Diagnostic record of one oracle tier attempt."""

    item_id: Optional[str]
    title: str
    artist: str
    tier: int
    tier_label: str
    model: str
    raw_text: str = ""
    parsed_bpm: Optional[float] = None
    valid: bool = False
    citations: List[str] = field(default_factory=list)
    search_snippets: List[str] = field(default_factory=list)
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def grounded(self) -> bool:
        return bool(self.citations)

    def to_dict(self) -> dict:
        return {
            "item_id": self.item_id,
            "song": f'"{self.title}" by {self.artist}',
            "tier": self.tier,
            "tier_label": self.tier_label,
            "model": self.model,
            "raw_text": self.raw_text,
            "parsed_bpm": self.parsed_bpm,
            "valid": self.valid,
            "citations": list(self.citations),
            "search_snippets": list(self.search_snippets),
            "grounded": self.grounded,
            "error": self.error,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class MatchResult:
    """A track whose tempo (or its half/double) falls inside the target range.

    Attributes:
        track: The accepted track
        display_bpm: The candidate value that lies in range
        variant: Which candidate matched
        original_bpm: Raw oracle estimate, kept for provenance
    """

    track: Track
    display_bpm: float
    variant: TempoVariant
    original_bpm: float


@dataclass
class ScanSettings:
    """User-supplied parameters for one scan.

    Attributes:
        tempo_range: Inclusive BPM range
        target_minutes: Duration the selection should reach
        max_concurrency: Maximum simultaneous oracle resolutions
        source_order: Ordering policy for primary playlists
        include_saved: Scan the saved library when playlists fall short
        random_seed: Seed for the RANDOM ordering policy (None = unseeded)
    """

    tempo_range: TempoRange
    target_minutes: float = 30
    max_concurrency: int = 10
    source_order: SourceOrder = SourceOrder.RECENT
    include_saved: bool = True
    random_seed: Optional[int] = None

    def __post_init__(self):
        if self.target_minutes <= 0:
            raise ValueError("target_minutes must be positive")
        if self.max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.source_order = SourceOrder(self.source_order)

    @property
    def target_duration_ms(self) -> int:
        return int(self.target_minutes * 60_000)


@dataclass
class ScanSession:
    """State of one user-initiated scan.

    The selection is kept in acceptance order. ``accept`` is the only way to
    grow it, so the accumulated duration always equals the sum of the
    selected tracks' durations and no track id appears twice.
    """

    target_duration_ms: int
    tempo_range: TempoRange
    accumulated_ms: int = 0
    selection: List[MatchResult] = field(default_factory=list)
    phase: ScanPhase = ScanPhase.SCANNING_PRIMARY
    cancelled: bool = False
    sources: List[PlaylistSource] = field(default_factory=list)
    skipped_sources: List[PlaylistSource] = field(default_factory=list)
    current_source: Optional[PlaylistSource] = None
    submitted_count: int = 0
    settled_count: int = 0
    unresolved_count: int = 0
    rejected_count: int = 0
    started_at: datetime = field(default_factory=datetime.now)
    _selected_ids: Set[str] = field(default_factory=set, repr=False)

    @property
    def target_reached(self) -> bool:
        return self.accumulated_ms >= self.target_duration_ms

    @property
    def accumulated_minutes(self) -> float:
        return self.accumulated_ms / 60_000

    @property
    def target_minutes(self) -> float:
        return self.target_duration_ms / 60_000

    @property
    def no_matches(self) -> bool:
        return self.phase is ScanPhase.COMPLETE and not self.selection

    def contains(self, track_id: str) -> bool:
        return track_id in self._selected_ids

    def accept(self, match: MatchResult) -> bool:
        """Add a match to the selection. Returns False if the track is already selected."""
        if match.track.id in self._selected_ids:
            return False
        self._selected_ids.add(match.track.id)
        self.selection.append(match)
        self.accumulated_ms += match.track.duration_ms
        return True

    def advance_phase(self, phase: ScanPhase) -> None:
        """Move to ``phase``. Staying put is allowed, going back is not.

        Raises:
            ValueError: If ``phase`` precedes the current phase
        """
        if _PHASE_ORDER[phase] < _PHASE_ORDER[self.phase]:
            raise ValueError(f"Cannot move scan phase from {self.phase.value} back to {phase.value}")
        self.phase = phase

    def variant_breakdown(self) -> Dict[TempoVariant, int]:
        breakdown = {variant: 0 for variant in TempoVariant}
        for match in self.selection:
            breakdown[match.variant] += 1
        return breakdown

    def source_names(self) -> List[str]:
        """Distinct source names in the selection, in first-use order."""
        names: List[str] = []
        for match in self.selection:
            name = match.track.source_name or "Unknown"
            if name not in names:
                names.append(name)
        return names
