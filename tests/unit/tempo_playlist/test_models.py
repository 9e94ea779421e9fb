"""Tests for scan session invariants and settings."""

import random

import pytest

from src.spotify.models import Track
from src.tempo_playlist.models import (
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


def make_match(track_id, duration_ms=180_000, variant=TempoVariant.ORIGINAL, source_name="Run"):
    track = Track(
        id=track_id,
        name=f"Song {track_id}",
        artist="Artist",
        duration_ms=duration_ms,
        uri=f"spotify:track:{track_id}",
        source_name=source_name,
    )
    return MatchResult(track=track, display_bpm=160.0, variant=variant, original_bpm=160.0)


@pytest.fixture
def session():
    return ScanSession(target_duration_ms=30 * 60_000, tempo_range=TempoRange(150, 170))


class TestScanSession:
    def test_accept_accumulates(self, session):
        assert session.accept(make_match("a", 200_000))
        assert session.accept(make_match("b", 100_000))

        assert session.accumulated_ms == 300_000
        assert [m.track.id for m in session.selection] == ["a", "b"]
        assert session.contains("a")

    def test_reaccept_is_idempotent(self, session):
        match = make_match("a", 200_000)
        session.accept(match)

        assert session.accept(match) is False
        assert session.accept(make_match("a", 999_999)) is False
        assert session.accumulated_ms == 200_000
        assert len(session.selection) == 1

    def test_accumulated_equals_selection_sum_after_every_accept(self, session):
        rng = random.Random(7)
        for _ in range(200):
            session.accept(make_match(str(rng.randint(0, 60)), rng.randint(1, 400_000)))
            assert session.accumulated_ms == sum(m.track.duration_ms for m in session.selection)
            assert len({m.track.id for m in session.selection}) == len(session.selection)

    def test_target_reached(self, session):
        session.accept(make_match("a", 29 * 60_000))
        assert not session.target_reached
        session.accept(make_match("b", 60_000))
        assert session.target_reached
        assert session.accumulated_minutes == 30

    def test_phase_moves_forward_only(self, session):
        session.advance_phase(ScanPhase.SCANNING_SECONDARY)
        session.advance_phase(ScanPhase.SCANNING_SECONDARY)
        session.advance_phase(ScanPhase.COMPLETE)

        with pytest.raises(ValueError):
            session.advance_phase(ScanPhase.SCANNING_PRIMARY)
        assert session.phase is ScanPhase.COMPLETE

    def test_phase_can_skip_secondary(self, session):
        session.advance_phase(ScanPhase.COMPLETE)
        assert session.phase is ScanPhase.COMPLETE

    def test_no_matches(self, session):
        assert not session.no_matches
        session.advance_phase(ScanPhase.COMPLETE)
        assert session.no_matches

    def test_variant_breakdown_and_sources(self, session):
        session.accept(make_match("a", variant=TempoVariant.DOUBLE_TIME, source_name="Run"))
        session.accept(make_match("b", variant=TempoVariant.ORIGINAL, source_name="Saved Tracks"))
        session.accept(make_match("c", variant=TempoVariant.DOUBLE_TIME, source_name="Run"))

        assert session.variant_breakdown() == {
            TempoVariant.ORIGINAL: 1,
            TempoVariant.HALF_TIME: 0,
            TempoVariant.DOUBLE_TIME: 2,
        }
        assert session.source_names() == ["Run", "Saved Tracks"]


class TestScanSettings:
    def test_defaults(self):
        settings = ScanSettings(TempoRange(100, 130))
        assert settings.target_duration_ms == 30 * 60_000
        assert settings.max_concurrency == 10
        assert settings.source_order is SourceOrder.RECENT
        assert settings.include_saved

    def test_coerces_order(self):
        assert ScanSettings(TempoRange(100, 130), source_order="random").source_order is SourceOrder.RANDOM

    @pytest.mark.parametrize("kwargs", [{"target_minutes": 0}, {"max_concurrency": 0}, {"source_order": "oldest"}])
    def test_rejects_invalid(self, kwargs):
        with pytest.raises(ValueError):
            ScanSettings(TempoRange(100, 130), **kwargs)


class TestTempoEstimate:
    def test_outcomes_are_distinct(self):
        assert TempoEstimate(bpm=120.0, tier=1).is_resolved
        assert TempoEstimate.exhausted("n/a").outcome is EstimateOutcome.EXHAUSTED
        assert TempoEstimate.cancelled().outcome is EstimateOutcome.CANCELLED
        assert not TempoEstimate.cancelled().is_resolved


def test_oracle_attempt_to_dict():
    attempt = OracleAttempt(
        item_id="t1", title="Song", artist="Artist", tier=1, tier_label="PRIMARY", model="m", error="boom"
    )
    data = attempt.to_dict()
    assert data["song"] == '"Song" by Artist'
    assert data["grounded"] is False
    assert data["error"] == "boom"
    assert "timestamp" in data
