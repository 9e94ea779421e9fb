"""
Live Status Tracker - Per-Track Scan Progress

In-memory view of where every submitted track stands: queued, being
analyzed, which oracle tiers have failed or succeeded, and how it settled.
Observers subscribe to a stream of StatusEvents; rendering is up to them.

Nothing in the scan reads this state back, so a broken observer can never
change which tracks are selected.
"""

import logging
from collections import deque
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Callable, Deque, Dict, List, Optional

from src.spotify.models import Track

from .models import MatchResult, OracleAttempt, TempoVariant

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_SIZE = 50


class ItemState(str, Enum):
    QUEUED = "queued"
    ANALYZING = "analyzing"
    MATCHED = "matched"
    REJECTED = "rejected"  # resolved, but no candidate in range
    UNRESOLVED = "unresolved"  # every tier failed
    CANCELLED = "cancelled"
    DISCARDED = "discarded"  # never started, or settled after the target was reached


class TierState(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class ItemStatus:
    item_id: str
    title: str
    artist: str
    source_name: Optional[str] = None
    state: ItemState = ItemState.QUEUED
    tiers: Dict[int, TierState] = field(default_factory=dict)
    bpm: Optional[float] = None
    display_bpm: Optional[float] = None
    variant: Optional[TempoVariant] = None
    updated_at: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class StatusEvent:
    """Change notification delivered to subscribers.

    Attributes:
        kind: "queued", "started", "attempt" or "settled"
        status: Copy of the item's status after the change
        attempt: The oracle attempt, for "attempt" events
    """

    kind: str
    status: ItemStatus
    attempt: Optional[OracleAttempt] = None


StatusListener = Callable[[StatusEvent], None]


class LiveStatusTracker:
    """Observable map of track id to ItemStatus."""

    def __init__(self, history_size: int = DEFAULT_HISTORY_SIZE):
        self._items: Dict[str, ItemStatus] = {}
        self._listeners: List[StatusListener] = []
        self.recent_attempts: Deque[OracleAttempt] = deque(maxlen=history_size)

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        """Register ``listener``; returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _publish(self, kind: str, status: ItemStatus, attempt: Optional[OracleAttempt] = None) -> None:
        status.updated_at = datetime.now()
        event = StatusEvent(kind=kind, status=replace(status, tiers=dict(status.tiers)), attempt=attempt)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception(f"Status listener {listener!r} failed on {kind} event")

    def _ensure(self, track: Track) -> ItemStatus:
        status = self._items.get(track.id)
        if status is None:
            status = ItemStatus(
                item_id=track.id,
                title=track.name,
                artist=track.artist,
                source_name=track.source_name,
            )
            self._items[track.id] = status
        return status

    def item_queued(self, track: Track) -> None:
        status = self._ensure(track)
        status.state = ItemState.QUEUED
        self._publish("queued", status)

    def item_started(self, track: Track) -> None:
        status = self._ensure(track)
        status.state = ItemState.ANALYZING
        self._publish("started", status)

    def record_attempt(self, attempt: OracleAttempt) -> None:
        """Store an oracle attempt and update the owning item's tier state."""
        self.recent_attempts.append(attempt)
        status = self._items.get(attempt.item_id) if attempt.item_id else None
        if status is None:
            return
        status.tiers[attempt.tier] = TierState.SUCCEEDED if attempt.valid else TierState.FAILED
        self._publish("attempt", status, attempt)

    def item_settled(
        self,
        track: Track,
        state: ItemState,
        bpm: Optional[float] = None,
        match: Optional[MatchResult] = None,
    ) -> None:
        status = self._ensure(track)
        status.state = state
        status.bpm = bpm
        if match is not None:
            status.display_bpm = match.display_bpm
            status.variant = match.variant
        self._publish("settled", status)

    def get(self, item_id: str) -> Optional[ItemStatus]:
        return self._items.get(item_id)

    def snapshot(self) -> List[ItemStatus]:
        return [replace(status, tiers=dict(status.tiers)) for status in self._items.values()]

    def counts(self) -> Dict[ItemState, int]:
        counts = {state: 0 for state in ItemState}
        for status in self._items.values():
            counts[status.state] += 1
        return counts

    def clear(self) -> None:
        self._items.clear()
        self.recent_attempts.clear()
