"""Tests for the JSONL diagnostics sink."""

import json

import pytest

from src.tempo_playlist.diagnostics_log import DiagnosticsLogger
from src.tempo_playlist.models import OracleAttempt


def make_attempt(**overrides):
    values = dict(
        item_id="t1",
        title="Song",
        artist="Artist",
        tier=2,
        tier_label="SECONDARY",
        model="gemini-2.0-flash",
        raw_text="128 BPM",
        parsed_bpm=128.0,
        valid=True,
        citations=["https://tunebat.com/a"],
        search_snippets=["Tempo 128 BPM"],
    )
    values.update(overrides)
    return OracleAttempt(**values)


def test_creates_per_run_file(tmp_path):
    logger = DiagnosticsLogger(tmp_path / "diag")

    assert logger.log_file.exists()
    assert logger.log_file.name.startswith("diagnostics_")
    assert logger.log_file.suffix == ".jsonl"
    assert logger.list_log_files() == [logger.log_file]


def test_appends_one_line_per_attempt(tmp_path):
    logger = DiagnosticsLogger(tmp_path)

    logger.record_attempt(make_attempt())
    logger.record_attempt(make_attempt(tier=3, valid=False, parsed_bpm=None, error="timed out after 30s"))

    lines = logger.log_file.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 2

    first = json.loads(lines[0])
    assert first["song"] == '"Song" by Artist'
    assert first["model"] == "gemini-2.0-flash"
    assert first["parsed_bpm"] == 128.0
    assert first["grounded"] is True
    assert first["citations"] == ["https://tunebat.com/a"]

    records = logger.read_attempts()
    assert records[1]["error"] == "timed out after 30s"
    assert records[1]["grounded"] is False


def test_read_attempts_rejects_corrupt_lines(tmp_path):
    logger = DiagnosticsLogger(tmp_path)
    logger.log_file.write_text('{"tier": 1}\n\nnot json\n', encoding="utf-8")

    with pytest.raises(ValueError, match="line 3"):
        logger.read_attempts()


def test_read_attempts_missing_file(tmp_path):
    logger = DiagnosticsLogger(tmp_path)
    with pytest.raises(FileNotFoundError):
        logger.read_attempts(tmp_path / "missing.jsonl")
