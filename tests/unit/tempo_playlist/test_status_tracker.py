"""Tests for LiveStatusTracker."""

from src.spotify.models import Track
from src.tempo_playlist.models import MatchResult, OracleAttempt, TempoVariant
from src.tempo_playlist.status_tracker import ItemState, LiveStatusTracker, TierState

TRACK = Track(id="t1", name="Song", artist="Artist", duration_ms=200_000, uri="spotify:track:t1", source_name="Run")


def attempt(tier, valid, item_id="t1"):
    return OracleAttempt(
        item_id=item_id,
        title="Song",
        artist="Artist",
        tier=tier,
        tier_label=f"TIER{tier}",
        model=f"model-{tier}",
        parsed_bpm=128.0 if valid else None,
        valid=valid,
    )


def test_lifecycle_events():
    tracker = LiveStatusTracker()
    events = []
    tracker.subscribe(events.append)

    tracker.item_queued(TRACK)
    tracker.item_started(TRACK)
    tracker.record_attempt(attempt(1, False))
    tracker.record_attempt(attempt(2, True))
    match = MatchResult(track=TRACK, display_bpm=128.0, variant=TempoVariant.ORIGINAL, original_bpm=128.0)
    tracker.item_settled(TRACK, ItemState.MATCHED, bpm=128.0, match=match)

    assert [e.kind for e in events] == ["queued", "started", "attempt", "attempt", "settled"]
    assert events[0].status.state is ItemState.QUEUED
    assert events[2].attempt.tier == 1

    status = tracker.get("t1")
    assert status.state is ItemState.MATCHED
    assert status.tiers == {1: TierState.FAILED, 2: TierState.SUCCEEDED}
    assert status.display_bpm == 128.0
    assert status.variant is TempoVariant.ORIGINAL
    assert status.source_name == "Run"


def test_events_carry_snapshots():
    tracker = LiveStatusTracker()
    events = []
    tracker.subscribe(events.append)

    tracker.item_queued(TRACK)
    tracker.item_started(TRACK)

    assert events[0].status.state is ItemState.QUEUED
    assert events[0].status is not tracker.get("t1")


def test_attempt_history_is_bounded():
    tracker = LiveStatusTracker(history_size=50)
    for index in range(60):
        tracker.record_attempt(attempt(1, False, item_id=f"x{index}"))

    assert len(tracker.recent_attempts) == 50
    assert tracker.recent_attempts[0].item_id == "x10"


def test_attempt_for_unknown_item_is_only_recorded():
    tracker = LiveStatusTracker()
    events = []
    tracker.subscribe(events.append)

    tracker.record_attempt(attempt(1, True, item_id=None))

    assert len(tracker.recent_attempts) == 1
    assert events == []


def test_unsubscribe():
    tracker = LiveStatusTracker()
    events = []
    unsubscribe = tracker.subscribe(events.append)

    tracker.item_queued(TRACK)
    unsubscribe()
    unsubscribe()
    tracker.item_started(TRACK)

    assert len(events) == 1


def test_failing_listener_is_isolated():
    tracker = LiveStatusTracker()
    received = []

    def broken(event):
        raise RuntimeError("render failed")

    tracker.subscribe(broken)
    tracker.subscribe(received.append)
    tracker.item_queued(TRACK)

    assert len(received) == 1
    assert tracker.get("t1").state is ItemState.QUEUED


def test_counts_and_clear():
    tracker = LiveStatusTracker()
    other = Track(id="t2", name="Other", artist="Artist", duration_ms=1000, uri="spotify:track:t2")
    tracker.item_queued(TRACK)
    tracker.item_settled(other, ItemState.REJECTED, bpm=90.0)

    counts = tracker.counts()
    assert counts[ItemState.QUEUED] == 1
    assert counts[ItemState.REJECTED] == 1
    assert counts[ItemState.MATCHED] == 0
    assert len(tracker.snapshot()) == 2

    tracker.clear()
    assert tracker.snapshot() == []
