"""Tempo-targeted playlist building from Spotify libraries with Gemini BPM lookup."""

__version__ = "1.0.0"

from .assembler import DurationTargetAssembler, order_sources
from .config import TempoPlaylistConfig
from .diagnostics_log import DiagnosticsLogger
from .exceptions import (
    ConfigurationError,
    InvalidStateError,
    PlaylistCreationError,
    TempoPlaylistError,
)
from .models import (
    AssemblerState,
    EstimateOutcome,
    MatchResult,
    OracleAttempt,
    ScanPhase,
    ScanSession,
    ScanSettings,
    SourceOrder,
    TempoEstimate,
    TempoRange,
    TempoVariant,
)
from .scheduler import CancellationToken, ConcurrentScanScheduler, ScanOutcome
from .status_tracker import ItemState, ItemStatus, LiveStatusTracker, StatusEvent, TierState
from .tempo_matcher import match_tempo, tempo_candidates
from .tempo_oracle import DEFAULT_TIERS, OracleTier, TempoOracleClient, extract_bpm

__all__ = [
    # Orchestration
    "DurationTargetAssembler",
    "order_sources",
    "ConcurrentScanScheduler",
    "ScanOutcome",
    "CancellationToken",
    # Oracle
    "TempoOracleClient",
    "OracleTier",
    "DEFAULT_TIERS",
    "extract_bpm",
    # Matching
    "match_tempo",
    "tempo_candidates",
    # Observability
    "LiveStatusTracker",
    "ItemState",
    "ItemStatus",
    "StatusEvent",
    "TierState",
    "DiagnosticsLogger",
    # Models
    "AssemblerState",
    "EstimateOutcome",
    "MatchResult",
    "OracleAttempt",
    "ScanPhase",
    "ScanSession",
    "ScanSettings",
    "SourceOrder",
    "TempoEstimate",
    "TempoRange",
    "TempoVariant",
    # Configuration
    "TempoPlaylistConfig",
    # Exceptions
    "TempoPlaylistError",
    "ConfigurationError",
    "InvalidStateError",
    "PlaylistCreationError",
]
