"""
Tests for config module.

Tests configuration management including:
- TempoPlaylistConfig.from_environment()
- validate()
- to_spotify_config() / to_scan_settings()
- __repr__()
"""
import os
from pathlib import Path
from unittest.mock import patch

import pytest

from src.tempo_playlist.config import TempoPlaylistConfig
from src.tempo_playlist.exceptions import ConfigurationError
from src.tempo_playlist.models import SourceOrder


@pytest.fixture
def valid_env_vars():
    """Return dict of valid environment variables."""
    return {
        'SPOTIFY_CLIENT_ID': 'client-123',
        'GEMINI_API_KEY': 'gemini-secret-key',
        'SPOTIFY_REDIRECT_URI': 'http://127.0.0.1:9090/callback',
        'TEMPO_MIN_BPM': '150',
        'TEMPO_MAX_BPM': '170.5',
        'TEMPO_TARGET_MINUTES': '45',
        'TEMPO_MAX_CONCURRENCY': '4',
        'TEMPO_SOURCE_ORDER': 'Random',
        'TEMPO_INCLUDE_SAVED': 'no',
        'TEMPO_TOKEN_FILE': '/tmp/tempo/tokens.json',
        'TEMPO_DIAGNOSTICS_DIR': '/tmp/tempo/diag',
    }


def make_config(**overrides):
    values = dict(spotify_client_id='client-123', gemini_api_key='gemini-secret-key')
    values.update(overrides)
    return TempoPlaylistConfig(**values)


class TestFromEnvironment:
    """Tests for TempoPlaylistConfig.from_environment()."""

    def test_with_all_vars(self, valid_env_vars):
        """Test loading config with all environment variables set."""
        with patch.dict(os.environ, valid_env_vars, clear=True):
            config = TempoPlaylistConfig.from_environment()

        assert config.spotify_client_id == 'client-123'
        assert config.gemini_api_key == 'gemini-secret-key'
        assert config.spotify_redirect_uri == 'http://127.0.0.1:9090/callback'
        assert config.min_bpm == 150
        assert config.max_bpm == 170.5
        assert config.target_minutes == 45
        assert config.max_concurrency == 4
        assert config.source_order == 'random'
        assert config.include_saved is False
        assert config.token_file == Path('/tmp/tempo/tokens.json')
        assert config.diagnostics_dir == Path('/tmp/tempo/diag')

    def test_defaults(self):
        """Test optional vars fall back to defaults."""
        env_vars = {'SPOTIFY_CLIENT_ID': 'client-123', 'GEMINI_API_KEY': 'key'}

        with patch.dict(os.environ, env_vars, clear=True):
            config = TempoPlaylistConfig.from_environment()

        assert config.spotify_redirect_uri == 'http://127.0.0.1:8888/callback'
        assert (config.min_bpm, config.max_bpm) == (100, 130)
        assert config.target_minutes == 30
        assert config.max_concurrency == 10
        assert config.source_order == 'recent'
        assert config.include_saved is True
        assert config.token_file is None
        assert config.diagnostics_dir is None

    def test_missing_required_vars(self):
        """Test that missing variables are all named in the EnvironmentError."""
        with patch.dict(os.environ, {}, clear=True):
            with pytest.raises(EnvironmentError) as exc_info:
                TempoPlaylistConfig.from_environment()

        assert 'SPOTIFY_CLIENT_ID' in str(exc_info.value)
        assert 'GEMINI_API_KEY' in str(exc_info.value)

    def test_empty_value_counts_as_missing(self, valid_env_vars):
        valid_env_vars['GEMINI_API_KEY'] = ''

        with patch.dict(os.environ, valid_env_vars, clear=True):
            with pytest.raises(EnvironmentError, match='GEMINI_API_KEY'):
                TempoPlaylistConfig.from_environment()

    def test_oracle_key_optional_for_login(self):
        """Test login/logout only need the Spotify client ID."""
        with patch.dict(os.environ, {'SPOTIFY_CLIENT_ID': 'client-123'}, clear=True):
            config = TempoPlaylistConfig.from_environment(require_oracle=False)

        assert config.spotify_client_id == 'client-123'
        assert config.gemini_api_key == ''

    @pytest.mark.parametrize(
        'var,value',
        [
            ('TEMPO_MIN_BPM', 'fast'),
            ('TEMPO_TARGET_MINUTES', 'half an hour'),
            ('TEMPO_MAX_CONCURRENCY', '2.5'),
            ('TEMPO_INCLUDE_SAVED', 'maybe'),
        ],
    )
    def test_unparseable_values(self, valid_env_vars, var, value):
        valid_env_vars[var] = value

        with patch.dict(os.environ, valid_env_vars, clear=True):
            with pytest.raises(ConfigurationError, match=var):
                TempoPlaylistConfig.from_environment()

    def test_blank_optional_uses_default(self, valid_env_vars):
        valid_env_vars['TEMPO_MAX_CONCURRENCY'] = '  '

        with patch.dict(os.environ, valid_env_vars, clear=True):
            config = TempoPlaylistConfig.from_environment()

        assert config.max_concurrency == 10


class TestValidate:
    """Tests for validate()."""

    def test_valid_config_passes(self):
        make_config().validate()

    @pytest.mark.parametrize(
        'overrides,message',
        [
            ({'min_bpm': 0}, 'Bounds must be > 0'),
            ({'min_bpm': 140, 'max_bpm': 120}, 'greater than max'),
            ({'target_minutes': 0}, 'target_minutes'),
            ({'max_concurrency': 0}, 'max_concurrency'),
            ({'source_order': 'oldest'}, 'source_order'),
        ],
    )
    def test_invalid_values(self, overrides, message):
        with pytest.raises(ConfigurationError, match=message):
            make_config(**overrides).validate()

    def test_single_value_range_allowed(self):
        make_config(min_bpm=128, max_bpm=128).validate()


class TestConversions:
    """Tests for to_spotify_config() and to_scan_settings()."""

    def test_to_spotify_config(self):
        config = make_config(spotify_redirect_uri='http://127.0.0.1:9090/callback')

        spotify_config = config.to_spotify_config()

        assert spotify_config.client_id == 'client-123'
        assert spotify_config.redirect_uri == 'http://127.0.0.1:9090/callback'

    def test_to_scan_settings(self):
        config = make_config(min_bpm=150, max_bpm=170, target_minutes=45, max_concurrency=3,
                             source_order='random', include_saved=False)

        settings = config.to_scan_settings(random_seed=7)

        assert settings.tempo_range.min_bpm == 150
        assert settings.tempo_range.max_bpm == 170
        assert settings.target_minutes == 45
        assert settings.target_duration_ms == 45 * 60_000
        assert settings.max_concurrency == 3
        assert settings.source_order is SourceOrder.RANDOM
        assert settings.include_saved is False
        assert settings.random_seed == 7

    def test_to_scan_settings_validates(self):
        with pytest.raises(ConfigurationError):
            make_config(min_bpm=200, max_bpm=100).to_scan_settings()

    def test_token_store_path(self, tmp_path):
        config = make_config(token_file=tmp_path / 'tokens.json')
        assert config.token_store().path == tmp_path / 'tokens.json'


class TestRepr:
    """Tests for __repr__() masking."""

    def test_masks_api_key(self):
        config = make_config()

        result = repr(config)

        assert 'gemini-secret-key' not in result
        assert "gemini_api_key='***'" in result
        assert "spotify_client_id='client-123'" in result
        assert 'min_bpm=100' in result
